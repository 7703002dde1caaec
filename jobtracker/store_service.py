"""
Authoritative entity store.

Responsibilities:
- CRUD for jobs and companies, always scoped to a caller id.
- Stamp ids, ownership and timestamps; clients never choose them.
- Route every get/update/delete through the ownership guard.

Non-Responsibilities:
- No credential checks (the API resolves tokens before calling in).
- No caching.
"""

from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .database import CompanyRecord, JobRecord, init_database, session_factory, utcnow
from .errors import IdentifierCollisionError, TransportError, ValidationError
from .logger import get_logger
from .models import Entity, EntityType, entity_from_record
from .ownership import guard_owned
from .schema import prepare_create, prepare_update

logger = get_logger()

RECORD_MODELS = {
    EntityType.JOB: JobRecord,
    EntityType.COMPANY: CompanyRecord,
}


def _row_to_entity(entity_type: EntityType, row) -> Entity:
    record = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        record[column.name] = value
    return entity_from_record(entity_type, record)


class EntityStore:
    """Owner-scoped CRUD over the SQLAlchemy tables."""

    def __init__(self, engine: Engine, id_factory: Optional[Callable[[], str]] = None):
        self.engine = engine
        self._Session = session_factory(engine)
        self._new_id = id_factory or (lambda: str(uuid4()))

    @classmethod
    def open(cls, db_path: Path, **kwargs) -> "EntityStore":
        return cls(init_database(db_path), **kwargs)

    def _fail(self, action: str, entity_type: EntityType, exc: Exception) -> TransportError:
        logger.error(f"Store failed to {action} {entity_type.value}", error=str(exc))
        return TransportError(f"Failed to {action} {entity_type.label.lower()}")

    def list_entities(self, entity_type: EntityType, owner_id: str, order: Optional[str] = None) -> List[Entity]:
        """
        Return every entity of ``entity_type`` owned by ``owner_id``.

        Args:
            order: Optional column name; a leading '-' sorts descending
        """
        model = RECORD_MODELS[entity_type]
        stmt = select(model).where(model.owner_id == owner_id)
        if order:
            name = order.lstrip("-")
            column = model.__table__.columns.get(name)
            if column is None:
                raise ValidationError(f"Cannot sort by unknown field: {name}")
            stmt = stmt.order_by(column.desc() if order.startswith("-") else column.asc())
        try:
            with self._Session() as session:
                return [_row_to_entity(entity_type, row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise self._fail("list", entity_type, e) from e

    def get(self, entity_type: EntityType, entity_id: str, owner_id: str) -> Entity:
        try:
            with self._Session() as session:
                row = session.get(RECORD_MODELS[entity_type], entity_id)
                guard_owned(row, owner_id, entity_type, entity_id)
                return _row_to_entity(entity_type, row)
        except SQLAlchemyError as e:
            raise self._fail("read", entity_type, e) from e

    def create(self, entity_type: EntityType, owner_id: str, data: Mapping[str, Any]) -> Entity:
        """
        Insert a new entity owned by ``owner_id``.

        Any id, owner or timestamp in ``data`` is dropped before validation.
        """
        fields = prepare_create(entity_type, data)
        model = RECORD_MODELS[entity_type]
        try:
            with self._Session() as session, session.begin():
                entity_id = self._new_id()
                if session.get(model, entity_id) is not None:
                    raise IdentifierCollisionError(f"Generated {entity_type.value} id already exists: {entity_id}")
                now = utcnow()
                row = model(id=entity_id, owner_id=owner_id, created_at=now, updated_at=now, **fields)
                session.add(row)
                session.flush()
                entity = _row_to_entity(entity_type, row)
            logger.debug(f"Created {entity_type.label.lower()}", entity_id=entity_id, owner_id=owner_id)
            return entity
        except SQLAlchemyError as e:
            raise self._fail("create", entity_type, e) from e

    def update(self, entity_type: EntityType, entity_id: str, owner_id: str, data: Mapping[str, Any]) -> Entity:
        """Merge ``data`` into an owned entity and re-stamp updated_at."""
        fields = prepare_update(entity_type, data)
        try:
            with self._Session() as session, session.begin():
                row = session.get(RECORD_MODELS[entity_type], entity_id)
                guard_owned(row, owner_id, entity_type, entity_id)
                for name, value in fields.items():
                    setattr(row, name, value)
                row.updated_at = utcnow()
            return _row_to_entity(entity_type, row)
        except SQLAlchemyError as e:
            raise self._fail("update", entity_type, e) from e

    def delete(self, entity_type: EntityType, entity_id: str, owner_id: str) -> Entity:
        """Remove an owned entity and return what it looked like before."""
        try:
            with self._Session() as session, session.begin():
                row = session.get(RECORD_MODELS[entity_type], entity_id)
                guard_owned(row, owner_id, entity_type, entity_id)
                snapshot = _row_to_entity(entity_type, row)
                session.delete(row)
            return snapshot
        except SQLAlchemyError as e:
            raise self._fail("delete", entity_type, e) from e
