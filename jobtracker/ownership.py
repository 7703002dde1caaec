"""
Ownership guard.

Targets are always looked up by id alone and then checked against the
caller, so that "exists but belongs to someone else" and "does not exist"
produce the same NotFoundError. There is no forbidden signal.
"""

from typing import Optional, TypeVar

from .errors import NotFoundError
from .logger import get_logger
from .models import EntityType

logger = get_logger()

T = TypeVar("T")


def not_found_message(entity_type: EntityType) -> str:
    return f"{entity_type.label} not found or access denied"


def is_owned(candidate, caller_id: Optional[str]) -> bool:
    """True when ``candidate`` exists and belongs to ``caller_id``."""
    return candidate is not None and caller_id is not None and candidate.owner_id == caller_id


def guard_owned(candidate: Optional[T], caller_id: Optional[str], entity_type: EntityType, entity_id: str) -> T:
    """
    Return ``candidate`` if the caller owns it, else raise NotFoundError.

    Works for anything with an ``owner_id`` attribute: store rows and cached
    entities alike.
    """
    if candidate is None:
        raise NotFoundError(not_found_message(entity_type))
    if not is_owned(candidate, caller_id):
        logger.warning(
            f"{entity_type.label} access by non-owner",
            entity_id=entity_id,
            caller_id=caller_id,
        )
        raise NotFoundError(not_found_message(entity_type))
    return candidate
