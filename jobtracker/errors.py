"""
Error taxonomy shared by the store, the adapters and the coordinator.

Every failure a caller can see is a StoreError with one of four kinds.
"Not found" and "not yours" are deliberately the same kind.
"""

from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    TRANSPORT = "transport"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
    ErrorKind.TRANSPORT: 503,
}


class StoreError(Exception):
    """Base class for per-operation, recoverable store failures."""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class UnauthorizedError(StoreError):
    """No credential, or one the identity provider rejected."""

    kind = ErrorKind.UNAUTHORIZED


class NotFoundError(StoreError):
    """Entity is absent or owned by someone else."""

    kind = ErrorKind.NOT_FOUND


class ValidationError(StoreError):
    """Payload is missing required fields, has bad values, or is empty."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.errors:
            data["errors"] = self.errors
        return data


class TransportError(StoreError):
    """Network or backing store failure."""

    kind = ErrorKind.TRANSPORT


class IdentifierCollisionError(RuntimeError):
    """A freshly generated id already exists. Not recoverable by retrying the user action."""
    pass


def error_for_kind(kind: ErrorKind, message: str) -> StoreError:
    """Build the StoreError subclass matching ``kind``."""
    cls = {
        ErrorKind.UNAUTHORIZED: UnauthorizedError,
        ErrorKind.NOT_FOUND: NotFoundError,
        ErrorKind.VALIDATION: ValidationError,
        ErrorKind.TRANSPORT: TransportError,
    }[kind]
    return cls(message)
