"""
Tests for database.py - SQLite schema and sessions.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from jobtracker.database import CompanyRecord, JobRecord, init_database, session_factory, utcnow


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Test that init_database creates the jobs and companies tables."""
        db_path = tmp_path / "test.db"
        session = session_factory(init_database(db_path))()
        assert session.query(JobRecord).count() == 0
        assert session.query(CompanyRecord).count() == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path)

        assert db_path.exists()


class TestRecords:
    """Test row defaults and constraints."""

    @pytest.fixture
    def db_session(self, tmp_path):
        """Create a temporary database and return a session."""
        db_path = tmp_path / "test.db"
        session = session_factory(init_database(db_path))()
        yield session
        session.close()

    def test_job_defaults(self, db_session):
        """Status, notes and position get board defaults."""
        db_session.add(JobRecord(id="j1", owner_id="alice", title="engineer", company="acme"))
        db_session.commit()

        job = db_session.get(JobRecord, "j1")
        assert job.status == "wishlist"
        assert job.notes == ""
        assert job.position == {"x": 0, "y": 0}

    def test_company_defaults(self, db_session):
        db_session.add(CompanyRecord(id="c1", owner_id="alice"))
        db_session.commit()

        company = db_session.get(CompanyRecord, "c1")
        assert company.company == ""
        assert company.starred is False
        assert company.updated is False
        assert company.last_updated is None

    def test_job_without_title_fails(self, db_session):
        db_session.add(JobRecord(id="j1", owner_id="alice", company="acme"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_duplicate_id_fails(self, db_session):
        db_session.add(JobRecord(id="j1", owner_id="alice", title="engineer", company="acme"))
        db_session.commit()

        db_session.expunge_all()
        db_session.add(JobRecord(id="j1", owner_id="bob", title="other", company="beta"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_query_by_owner(self, db_session):
        db_session.add(JobRecord(id="j1", owner_id="alice", title="engineer", company="acme"))
        db_session.add(JobRecord(id="j2", owner_id="bob", title="engineer", company="acme"))
        db_session.commit()

        assert [j.id for j in db_session.query(JobRecord).filter_by(owner_id="alice")] == ["j1"]

    def test_timestamps_set_on_insert(self, db_session):
        before = utcnow()
        db_session.add(JobRecord(id="j1", owner_id="alice", title="engineer", company="acme"))
        db_session.commit()
        after = utcnow()

        job = db_session.get(JobRecord, "j1")
        assert before <= job.created_at <= after
        assert abs((job.created_at - job.updated_at).total_seconds()) < 1


class TestSessionFactory:
    """Test the session factory the store builds on."""

    def test_rows_readable_after_close(self, tmp_path):
        Session = session_factory(init_database(tmp_path / "test.db"))

        with Session() as session:
            job = JobRecord(id="j1", owner_id="alice", title="engineer", company="acme")
            session.add(job)
            session.commit()

        assert job.title == "engineer"
        assert job.status == "wishlist"

    def test_sessions_share_engine(self, tmp_path):
        Session = session_factory(init_database(tmp_path / "test.db"))

        with Session() as session:
            session.add(CompanyRecord(id="c1", owner_id="alice"))
            session.commit()

        with Session() as session:
            assert session.get(CompanyRecord, "c1").owner_id == "alice"
