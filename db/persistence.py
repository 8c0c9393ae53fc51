"""
Option store and display cache backed by the relational database.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from sqlalchemy.engine import Engine

from db.models import CacheEntry, Option, as_utc, utcnow
from db.session import session_scope

logger = logging.getLogger("db.persistence")


class OptionStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class Cache(Protocol):
    def get(self, key: str) -> Any:
        """Cached value, or None on a miss."""

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _loads(raw: str, key: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable value stored under %s", key)
        return None


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------
class SQLOptionStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, key: str, default: Any = None) -> Any:
        with session_scope(self.engine) as session:
            row = session.get(Option, key)
            if row is None:
                return default
            value = _loads(row.value, key)
        return default if value is None else value

    def set(self, key: str, value: Any) -> None:
        with session_scope(self.engine) as session:
            row = session.get(Option, key)
            if row is None:
                session.add(Option(key=key, value=_dumps(value)))
            else:
                row.value = _dumps(value)
                row.updated_at = utcnow()
                session.add(row)

    def delete(self, key: str) -> None:
        with session_scope(self.engine) as session:
            row = session.get(Option, key)
            if row is not None:
                session.delete(row)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------
class SQLCache:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock

    def now(self) -> datetime:
        return as_utc(self.clock())

    def get(self, key: str) -> Any:
        with session_scope(self.engine) as session:
            row = session.get(CacheEntry, key)
            if row is None:
                return None
            if row.expires_at is not None and as_utc(row.expires_at) <= self.now():
                session.delete(row)
                return None
            return _loads(row.value, key)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        expires_at: Optional[datetime] = None
        if ttl_seconds and ttl_seconds > 0:
            expires_at = self.now() + timedelta(seconds=ttl_seconds)
        with session_scope(self.engine) as session:
            row = session.get(CacheEntry, key)
            if row is None:
                row = CacheEntry(key=key, value=_dumps(value), expires_at=expires_at)
            else:
                row.value = _dumps(value)
                row.expires_at = expires_at
                row.created_at = self.now()
            session.add(row)

    def delete(self, key: str) -> None:
        with session_scope(self.engine) as session:
            row = session.get(CacheEntry, key)
            if row is not None:
                session.delete(row)


__all__ = ["OptionStore", "Cache", "SQLOptionStore", "SQLCache"]
