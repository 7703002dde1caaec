from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import ValidationError
from .models import STAGES, EntityType

# Never honoured from a client payload; the store owns these.
PROTECTED_FIELDS = ("id", "owner_id", "user_id", "created_at", "updated_at")

REQUIRED_STR_FIELDS = {
    EntityType.JOB: ["title", "company"],
    EntityType.COMPANY: [],
}


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _check_str(name: str, v: Any) -> Optional[str]:
    if not isinstance(v, str):
        return f"Field '{name}' must be a string"
    return None


def _check_status(name: str, v: Any) -> Optional[str]:
    if v not in STAGES:
        return f"Field '{name}' must be one of: {', '.join(STAGES)}"
    return None


def _check_position(name: str, v: Any) -> Optional[str]:
    if not isinstance(v, dict):
        return f"Field '{name}' must be an object with numeric x and y"
    for axis in ("x", "y"):
        value = v.get(axis, 0)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f"Field '{name}.{axis}' must be a number"
    return None


def _check_bool(name: str, v: Any) -> Optional[str]:
    if not isinstance(v, bool):
        return f"Field '{name}' must be true or false"
    return None


def _check_date(name: str, v: Any) -> Optional[str]:
    if v is None:
        return None
    try:
        date.fromisoformat(v)
    except (TypeError, ValueError):
        return f"Field '{name}' must be a YYYY-MM-DD date or null"
    return None


FIELD_CHECKS: Dict[EntityType, Dict[str, Callable[[str, Any], Optional[str]]]] = {
    EntityType.JOB: {
        "title": _check_str,
        "company": _check_str,
        "status": _check_status,
        "notes": _check_str,
        "position": _check_position,
    },
    EntityType.COMPANY: {
        "company": _check_str,
        "custom_company": _check_str,
        "starred": _check_bool,
        "updated": _check_bool,
        "last_updated": _check_date,
    },
}


def sanitize_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop keys a client may never set (id, ownership, timestamps)."""
    return {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}


def _check_fields(entity_type: EntityType, data: Mapping[str, Any]) -> List[str]:
    errors: List[str] = []
    checks = FIELD_CHECKS[entity_type]
    for name, value in data.items():
        check = checks.get(name)
        if check is None:
            errors.append(f"Unknown field: {name}")
            continue
        if name == "notes" and value is None:
            continue
        problem = check(name, value)
        if problem:
            errors.append(problem)
    return errors


def validate_create(entity_type: EntityType, data: Mapping[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages for a create payload.
    Empty list means valid. Protected keys are expected to be stripped already.
    """
    errors: List[str] = []
    for f in REQUIRED_STR_FIELDS[entity_type]:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")
    for problem in _check_fields(entity_type, data):
        if problem not in errors:
            errors.append(problem)
    return errors


def validate_update(entity_type: EntityType, data: Mapping[str, Any]) -> List[str]:
    if not data:
        return ["Update payload cannot be empty"]
    errors = _check_fields(entity_type, data)
    # Required fields may be changed but not blanked.
    for f in REQUIRED_STR_FIELDS[entity_type]:
        if f in data and isinstance(data[f], str) and not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")
    return errors


def _normalize(fields: Dict[str, Any]) -> Dict[str, Any]:
    if "notes" in fields and fields["notes"] is None:
        fields["notes"] = ""
    return fields


def _raise_if_invalid(entity_type: EntityType, errors: List[str]) -> None:
    if errors:
        raise ValidationError(f"Invalid {entity_type.label.lower()}: {'; '.join(errors)}", errors)


def prepare_create(entity_type: EntityType, data: Any) -> Dict[str, Any]:
    """Sanitize and validate a create payload, raising ValidationError."""
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")
    fields = sanitize_fields(data)
    _raise_if_invalid(entity_type, validate_create(entity_type, fields))
    return _normalize(fields)


def prepare_update(entity_type: EntityType, data: Any) -> Dict[str, Any]:
    """Sanitize and validate an update payload, raising ValidationError."""
    if not isinstance(data, Mapping):
        raise ValidationError("Request body must be a JSON object")
    fields = sanitize_fields(data)
    _raise_if_invalid(entity_type, validate_update(entity_type, fields))
    return _normalize(fields)
