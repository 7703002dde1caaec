"""
Entity types tracked by the system.

Jobs and companies are immutable value objects. Every change produces a new
instance, which is what lets the cache take exact snapshots by copying
references.
"""

from dataclasses import dataclass, field, fields as dataclass_fields, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Union


class Stage(str, Enum):
    """Pipeline stage of a job card."""

    WISHLIST = "wishlist"
    APPLIED = "applied"
    INTERVIEW = "interview"
    OFFER = "offer"
    REJECTED = "rejected"

    @property
    def label(self) -> str:
        return self.value.capitalize()


STAGES = [s.value for s in Stage]


class EntityType(str, Enum):
    """Entity collections; the value doubles as the API collection name."""

    JOB = "jobs"
    COMPANY = "companies"

    @property
    def label(self) -> str:
        return "Job" if self is EntityType.JOB else "Company"

    @property
    def model(self):
        return Job if self is EntityType.JOB else Company


@dataclass(frozen=True)
class Position:
    x: float = 0
    y: float = 0

    @classmethod
    def from_value(cls, value: Any) -> "Position":
        if isinstance(value, Position):
            return value
        if not value:
            return cls()
        return cls(x=value.get("x", 0), y=value.get("y", 0))

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


class _EntityMixin:
    entity_type: ClassVar[EntityType]

    @classmethod
    def field_names(cls):
        return [f.name for f in dataclass_fields(cls)]

    @classmethod
    def from_record(cls, record: Mapping[str, Any]):
        """Build an entity from a store/wire record, ignoring unknown keys."""
        data = dict(record)
        if "owner_id" not in data and "user_id" in data:
            data["owner_id"] = data["user_id"]
        known = {k: v for k, v in data.items() if k in cls.field_names()}
        return cls(**cls._coerce(known))

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        return values

    def with_fields(self, values: Mapping[str, Any]):
        """Return a copy with ``values`` merged in."""
        return replace(self, **self._coerce(dict(values)))

    def to_record(self) -> Dict[str, Any]:
        record = {}
        for name in self.field_names():
            value = getattr(self, name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Position):
                value = value.to_dict()
            record[name] = value
        return record


@dataclass(frozen=True)
class Job(_EntityMixin):
    """A job application card on the board."""

    entity_type: ClassVar[EntityType] = EntityType.JOB

    id: str
    owner_id: str
    title: str = ""
    company: str = ""
    status: Stage = Stage.WISHLIST
    notes: str = ""
    position: Position = field(default_factory=Position)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def _coerce(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        if "status" in values:
            values["status"] = Stage(values["status"])
        if "position" in values:
            values["position"] = Position.from_value(values["position"])
        if values.get("notes", "") is None:
            values["notes"] = ""
        return values


@dataclass(frozen=True)
class Company(_EntityMixin):
    """A company the user keeps an eye on."""

    entity_type: ClassVar[EntityType] = EntityType.COMPANY

    id: str
    owner_id: str
    company: str = ""
    custom_company: str = ""
    starred: bool = False
    updated: bool = False
    last_updated: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.custom_company or self.company


Entity = Union[Job, Company]


def entity_from_record(entity_type: EntityType, record: Mapping[str, Any]) -> Entity:
    return entity_type.model.from_record(record)


def new_entity(entity_type: EntityType, entity_id: str, owner_id: str, values: Mapping[str, Any]) -> Entity:
    """Build an entity with defaults for everything ``values`` leaves out."""
    data = dict(values)
    data["id"] = entity_id
    data["owner_id"] = owner_id
    return entity_type.model.from_record(data)
