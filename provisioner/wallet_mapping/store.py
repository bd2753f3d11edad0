"""
wallet_mapping/store.py

Key-value backends for Solana -> EVM mappings.

Contract (every backend):
- get(key) -> value or None
- put_if_absent(key, value) -> True if stored, False if the key already existed
- put(key, value) -> unconditional overwrite
- No delete. Mappings are append-only once written.
- Each single-key operation is linearizable; nothing here spans more than one key.

Backend failures are raised as MappingStoreError. "Key already exists" is NOT a
failure; it is the False branch of put_if_absent.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class MappingStoreError(Exception):
    """Backend unreachable or returned something unexpected."""
    pass


@runtime_checkable
class MappingStore(Protocol):
    @property
    def backend(self) -> str:
        ...

    def get(self, key: str) -> Optional[str]:
        ...

    def put_if_absent(self, key: str, value: str) -> bool:
        ...

    def put(self, key: str, value: str) -> None:
        ...


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ----------------------------
# In-memory
# ----------------------------

class MemoryMappingStore:
    """In-memory store (default for dev and tests, lost on restart)."""

    backend = "memory"

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.write_attempts: List[str] = []

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put_if_absent(self, key: str, value: str) -> bool:
        with self._lock:
            self.write_attempts.append(key)
            if key in self._data:
                return False
            self._data[key] = value
            return True

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self.write_attempts.append(key)
            self._data[key] = value

    def snapshot(self) -> Dict[str, str]:
        """For tests: copy of everything stored."""
        with self._lock:
            return dict(self._data)


# ----------------------------
# SQLite
# ----------------------------

class SqliteMappingStore:
    """
    SQLite-backed store. One connection per operation; the PRIMARY KEY on `key`
    gives the single-key conditional insert.
    """

    backend = "sqlite"

    def __init__(self, db_path: str, timeout: float = 10.0) -> None:
        self.db_path = db_path
        self.timeout = timeout
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            ensure_schema(conn)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as exc:
            raise MappingStoreError(f"Cannot open mapping database at {self.db_path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM wallet_mappings WHERE key = ? LIMIT 1",
                (key,),
            ).fetchone()
        except sqlite3.Error as exc:
            raise MappingStoreError(f"KV read error for {key!r}: {exc}") from exc
        finally:
            conn.close()
        if not row:
            return None
        return str(row[0])

    def put_if_absent(self, key: str, value: str) -> bool:
        now = utc_now_iso()
        conn = self._connect()
        try:
            cur = conn.execute(
                """
                INSERT INTO wallet_mappings (key, value, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO NOTHING
                """,
                (key, value, now, now),
            )
            conn.commit()
            return bool(cur.rowcount and cur.rowcount > 0)
        except sqlite3.Error as exc:
            raise MappingStoreError(f"KV write error for {key!r}: {exc}") from exc
        finally:
            conn.close()

    def put(self, key: str, value: str) -> None:
        now = utc_now_iso()
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO wallet_mappings (key, value, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (key, value, now, now),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise MappingStoreError(f"KV write error for {key!r}: {exc}") from exc
        finally:
            conn.close()


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create the mapping table if missing (non-destructive)."""
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS wallet_mappings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.commit()
    except sqlite3.Error as exc:
        raise MappingStoreError(f"Cannot create mapping schema: {exc}") from exc


# ----------------------------
# Redis
# ----------------------------

class RedisMappingStore:
    """
    Redis-backed store. SET NX is the conditional put.

    Keys are namespaced with `prefix` (the bucket); the mapping key scheme
    itself is untouched below the prefix.
    """

    backend = "redis"

    def __init__(self, redis_url: str, prefix: str = "solana_to_evm:", client: Any = None) -> None:
        import redis as _redis_lib

        self._errors = (_redis_lib.RedisError,)
        self._url = redis_url
        self.prefix = prefix
        if client is not None:
            self._client = client
        else:
            self._client = _redis_lib.Redis.from_url(
                redis_url,
                socket_connect_timeout=2,
                socket_timeout=2,
                decode_responses=True,
            )

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            value = self._client.get(self._key(key))
        except self._errors as exc:
            raise MappingStoreError(f"KV read error for {key!r}: {exc}") from exc
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        if not isinstance(value, str):
            raise MappingStoreError(f"Unexpected value type for {key!r}: {type(value).__name__}")
        return value

    def put_if_absent(self, key: str, value: str) -> bool:
        try:
            return bool(self._client.set(self._key(key), value, nx=True))
        except self._errors as exc:
            raise MappingStoreError(f"KV write error for {key!r}: {exc}") from exc

    def put(self, key: str, value: str) -> None:
        try:
            self._client.set(self._key(key), value)
        except self._errors as exc:
            raise MappingStoreError(f"KV write error for {key!r}: {exc}") from exc


# ----------------------------
# Backend selection
# ----------------------------

def build_store(config: Any) -> MappingStore:
    """Pick the backend named by config.store_backend."""
    backend = config.store_backend
    if backend == "sqlite":
        logger.info("[STORE] Using SQLite mapping store at %s", config.db_path)
        return SqliteMappingStore(config.db_path)
    if backend == "redis":
        logger.info("[STORE] Using Redis mapping store (prefix=%s)", config.redis_prefix)
        return RedisMappingStore(config.redis_url, prefix=config.redis_prefix)
    if backend == "memory":
        logger.warning("[STORE] Using in-memory mapping store; mappings are lost on restart")
        return MemoryMappingStore()
    raise MappingStoreError(f"Unknown store backend: {backend}")
