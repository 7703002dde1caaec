"""
Settings read from JOBTRACKER_* environment variables.

Call env.load_env() first when a .env file should be honoured; the CLI does
this before anything reads settings.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional


def _parse_tokens(raw: str) -> Dict[str, str]:
    """Parse ``token:user,token2:user2`` into a token -> user id map."""
    tokens = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair or ":" not in pair:
            continue
        token, user_id = pair.split(":", 1)
        if token.strip() and user_id.strip():
            tokens[token.strip()] = user_id.strip()
    return tokens


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value) if value else None


@dataclass(frozen=True)
class Settings:
    api_url: str = "http://localhost:3001"
    token: Optional[str] = None
    user_id: Optional[str] = None
    db_path: Path = Path("data/jobtracker.db")
    tokens: Dict[str, str] = field(default_factory=dict)
    http_timeout: float = 15.0
    cache_path: Optional[Path] = None
    log_level: str = "INFO"
    log_dir: Optional[Path] = None
    port: int = 3001

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            api_url=env.get("JOBTRACKER_API_URL", cls.api_url).rstrip("/"),
            token=env.get("JOBTRACKER_TOKEN") or None,
            user_id=env.get("JOBTRACKER_USER_ID") or None,
            db_path=Path(env.get("JOBTRACKER_DB_PATH", str(cls.db_path))),
            tokens=_parse_tokens(env.get("JOBTRACKER_TOKENS", "")),
            http_timeout=float(env.get("JOBTRACKER_HTTP_TIMEOUT", cls.http_timeout)),
            cache_path=_optional_path(env.get("JOBTRACKER_CACHE_PATH")),
            log_level=env.get("JOBTRACKER_LOG_LEVEL", cls.log_level).upper(),
            log_dir=_optional_path(env.get("JOBTRACKER_LOG_DIR")),
            port=int(env.get("PORT", cls.port)),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
