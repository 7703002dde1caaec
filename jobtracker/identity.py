"""
Identity boundary.

The core only ever sees an Identity triple handed over by the identity
provider. Issuing, refreshing and expiring credentials happen elsewhere; the
API side only needs a way to turn a bearer token back into a user id.
"""

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class Identity:
    caller_id: Optional[str] = None
    token: Optional[str] = None
    is_authenticated: bool = False

    @classmethod
    def signed_in(cls, caller_id: str, token: str) -> "Identity":
        return cls(caller_id=caller_id, token=token, is_authenticated=True)

    @classmethod
    def anonymous(cls) -> "Identity":
        return cls()


def parse_bearer(header: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


class StaticTokenVerifier:
    """Resolves tokens from a fixed token -> user id table (JOBTRACKER_TOKENS)."""

    def __init__(self, tokens: Dict[str, str]):
        self._tokens = dict(tokens)

    def __call__(self, token: str) -> Optional[str]:
        return self._tokens.get(token)
