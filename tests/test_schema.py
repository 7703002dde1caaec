"""
Tests for schema validation.
"""

import pytest

from jobtracker.errors import ValidationError
from jobtracker.models import EntityType
from jobtracker.schema import (
    prepare_create,
    prepare_update,
    sanitize_fields,
    validate_create,
    validate_update,
)

JOB = EntityType.JOB
COMPANY = EntityType.COMPANY


class TestValidateCreate:
    """Test create payload validation."""

    def test_valid_job_minimal(self):
        """Title and company are enough."""
        assert validate_create(JOB, {"title": "Engineer", "company": "Acme"}) == []

    def test_valid_job_full(self, job_fields):
        data = {**job_fields, "status": "interview", "position": {"x": 12.5, "y": 40}}
        assert validate_create(JOB, data) == []

    def test_missing_required_field(self):
        """Missing required field should error."""
        errors = validate_create(JOB, {"company": "acme"})
        assert any("title" in err.lower() for err in errors)

    def test_empty_string_field(self):
        """Blank required field should error."""
        errors = validate_create(JOB, {"company": "acme", "title": "   "})
        assert errors == ["Field 'title' must be a non-empty string"]

    def test_non_string_required_field(self):
        errors = validate_create(JOB, {"company": "acme", "title": 42})
        assert len(errors) == 2
        assert "Field 'title' must be a string" in errors

    def test_invalid_status(self):
        errors = validate_create(JOB, {"title": "Engineer", "company": "Acme", "status": "ghosted"})
        assert any("status" in err for err in errors)

    def test_invalid_position(self):
        bad = [{"x": "left", "y": 0}, [1, 2], {"x": True, "y": 0}]
        for position in bad:
            errors = validate_create(JOB, {"title": "Engineer", "company": "Acme", "position": position})
            assert any("position" in err for err in errors), position

    def test_unknown_field(self):
        errors = validate_create(JOB, {"title": "Engineer", "company": "Acme", "salary": 100})
        assert errors == ["Unknown field: salary"]

    def test_null_notes_allowed(self):
        assert validate_create(JOB, {"title": "Engineer", "company": "Acme", "notes": None}) == []

    def test_company_has_no_required_fields(self):
        assert validate_create(COMPANY, {}) == []

    def test_company_flags_must_be_bool(self):
        errors = validate_create(COMPANY, {"starred": "yes"})
        assert errors == ["Field 'starred' must be true or false"]

    def test_company_last_updated_format(self):
        assert validate_create(COMPANY, {"last_updated": "2024-05-01"}) == []
        assert validate_create(COMPANY, {"last_updated": None}) == []
        assert validate_create(COMPANY, {"last_updated": "May 1st"}) != []


class TestValidateUpdate:
    """Test update payload validation."""

    def test_empty_payload(self):
        assert validate_update(JOB, {}) == ["Update payload cannot be empty"]

    def test_partial_update(self):
        assert validate_update(JOB, {"status": "offer"}) == []

    def test_cannot_blank_required_field(self):
        errors = validate_update(JOB, {"company": ""})
        assert errors == ["Field 'company' must be a non-empty string"]


class TestSanitize:
    """Protected fields are dropped, never rejected."""

    def test_protected_fields_removed(self):
        data = {
            "id": "x",
            "owner_id": "bob",
            "user_id": "bob",
            "created_at": "2024-01-01",
            "updated_at": "2024-01-01",
            "title": "Engineer",
        }
        assert sanitize_fields(data) == {"title": "Engineer"}


class TestPrepare:
    """Test the raising entry points."""

    def test_prepare_create_returns_clean_fields(self):
        fields = prepare_create(JOB, {"title": "Engineer", "company": "Acme", "notes": None, "user_id": "bob"})
        assert fields == {"title": "Engineer", "company": "Acme", "notes": ""}

    def test_prepare_create_raises_with_all_errors(self):
        with pytest.raises(ValidationError) as exc:
            prepare_create(JOB, {"status": "ghosted"})
        assert len(exc.value.errors) == 3
        assert exc.value.to_dict()["kind"] == "validation"

    def test_prepare_update_only_protected(self):
        with pytest.raises(ValidationError) as exc:
            prepare_update(JOB, {"id": "x"})
        assert exc.value.errors == ["Update payload cannot be empty"]

    def test_non_mapping_body(self):
        with pytest.raises(ValidationError):
            prepare_create(JOB, ["title", "company"])
        with pytest.raises(ValidationError):
            prepare_update(COMPANY, None)
