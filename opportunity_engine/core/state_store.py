"""
SharedStateStore port and adapters.

The circuit breaker registry writes breaker state through this port so that
independent processes guarding the same service see the same circuit. Writes
are full overwrites (last writer wins) and every key carries a TTL so an
abandoned entry expires instead of wedging future calls.

Adapters:
    InMemoryStateStore  per-process (cachetools TLRUCache), used in tests and
                        single-process runs
    SqlStateStore       SQLModel table, shared by every process on the database
"""

import time
from threading import Lock
from typing import Callable, List, Optional, Protocol, Tuple

from cachetools import TLRUCache
from sqlalchemy.engine import Engine
from sqlmodel import Session, delete, select

from opportunity_engine.core.typing import col, utc_now
from opportunity_engine.models.shared_state import SharedStateEntry


class SharedStateStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: float) -> None: ...

    def delete(self, key: str) -> None: ...

    def list_keys_by_prefix(self, prefix: str) -> List[str]: ...


def _ttu(_key: str, value: Tuple[bytes, float], now: float) -> float:
    return now + value[1]


class InMemoryStateStore:
    """
    Process-local store with per-key TTL.

    Thread-safe: cachetools caches are not, so all access goes through a lock.
    """

    def __init__(self, maxsize: int = 1024, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_ttu, timer=timer)
        self._lock = Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._cache.get(key)
        return entry[0] if entry is not None else None

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: float) -> None:
        with self._lock:
            self._cache[key] = (value, ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def list_keys_by_prefix(self, prefix: str) -> List[str]:
        with self._lock:
            self._cache.expire()
            return sorted(k for k in self._cache.keys() if k.startswith(prefix))

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()


class SqlStateStore:
    """Store backed by the shared_state table."""

    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time):
        self.engine = engine
        self._clock = clock

    def get(self, key: str) -> Optional[bytes]:
        with Session(self.engine) as session:
            entry = session.exec(select(SharedStateEntry).where(SharedStateEntry.key == key)).first()
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                session.delete(entry)
                session.commit()
                return None
            return entry.value

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: float) -> None:
        expires_at = self._clock() + ttl_seconds
        with Session(self.engine) as session:
            entry = session.exec(select(SharedStateEntry).where(SharedStateEntry.key == key)).first()
            if entry:
                entry.value = value
                entry.expires_at = expires_at
                entry.updated_at = utc_now()
            else:
                entry = SharedStateEntry(key=key, value=value, expires_at=expires_at)
            session.add(entry)
            session.commit()

    def delete(self, key: str) -> None:
        with Session(self.engine) as session:
            session.execute(delete(SharedStateEntry).where(col(SharedStateEntry.key) == key))
            session.commit()

    def list_keys_by_prefix(self, prefix: str) -> List[str]:
        now = self._clock()
        with Session(self.engine) as session:
            keys = session.exec(
                select(SharedStateEntry.key)
                .where(col(SharedStateEntry.key).startswith(prefix))
                .where(col(SharedStateEntry.expires_at) > now)
                .order_by(col(SharedStateEntry.key))
            ).all()
        return list(keys)

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        with Session(self.engine) as session:
            result = session.execute(delete(SharedStateEntry).where(col(SharedStateEntry.expires_at) <= self._clock()))
            session.commit()
            return result.rowcount or 0
