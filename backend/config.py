from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache

DEFAULT_TOKEN_TTL = "2h"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_TTL_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str | None
    token_ttl_seconds: int
    frontend_origin: str
    log_level: str


def parse_ttl(value: str) -> int:
    """Parse ``90``, ``45m``, ``2h`` or ``7d`` into seconds."""
    match = re.fullmatch(r"\s*(\d+)\s*([smhd]?)\s*", value.lower())
    if not match:
        raise ValueError(f"Invalid token lifetime: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _TTL_UNITS.get(unit or "s")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    raw_ttl = os.getenv("JWT_EXPIRES_IN", DEFAULT_TOKEN_TTL)
    try:
        ttl = parse_ttl(raw_ttl)
    except ValueError:
        ttl = parse_ttl(DEFAULT_TOKEN_TTL)
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./moneyshield.db"),
        jwt_secret=os.getenv("JWT_SECRET") or None,
        token_ttl_seconds=ttl,
        frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level or get_settings().log_level)
