"""ICredentialStore adapters: in-memory (tests, single run) and SQLite (persistent pool)."""

import asyncio
import sqlite3
import threading
from contextlib import closing
from typing import Dict, List, Optional, Sequence

from panelcast import config
from panelcast.domain.models import Credential, CredentialStats, UsageUpdate
from panelcast.ports.interfaces import ICredentialStore


def _stats(records: Sequence[Credential], usage_limit: int) -> CredentialStats:
    total = len(records)
    valid = sum(1 for r in records if r.is_valid)
    return CredentialStats(
        valid=valid,
        invalid=total - valid,
        total=total,
        usage_limit_reached=sum(1 for r in records if r.use_count >= usage_limit),
        average_usage=(sum(r.use_count for r in records) / total) if total else 0.0,
    )


class InMemoryCredentialStore(ICredentialStore):
    """Mutations are serialized behind one asyncio.Lock."""

    def __init__(self, secrets: Sequence[str] = ()):
        self._lock = asyncio.Lock()
        self._records: Dict[str, Credential] = {}
        self._next_id = 1
        for secret in secrets:
            self._insert(secret)

    def _insert(self, secret: str) -> bool:
        if any(r.secret == secret for r in self._records.values()):
            return False
        credential_id = str(self._next_id)
        self._next_id += 1
        self._records[credential_id] = Credential(credential_id=credential_id, secret=secret)
        return True

    @property
    def credentials(self) -> List[Credential]:
        return list(self._records.values())

    async def try_acquire_least_used(self, usage_limit: int) -> Optional[Credential]:
        async with self._lock:
            candidates = [r for r in self._records.values() if r.is_valid and r.use_count < usage_limit]
            if not candidates:
                return None
            # min() keeps the first of equals, i.e. insertion order
            return min(candidates, key=lambda r: r.use_count)

    async def mark_invalid(self, credential_id: str) -> None:
        async with self._lock:
            record = self._records.get(credential_id)
            if record is not None:
                self._records[credential_id] = Credential(credential_id, record.secret, record.use_count, False)

    async def increment_usage(self, credential_id: str, usage_limit: int) -> UsageUpdate:
        async with self._lock:
            record = self._records[credential_id]
            new_count = record.use_count + 1
            retire = record.is_valid and new_count >= usage_limit
            self._records[credential_id] = Credential(
                credential_id, record.secret, new_count, record.is_valid and not retire
            )
            return UsageUpdate(new_count=new_count, marked_invalid=retire)

    async def add(self, secrets: Sequence[str]) -> int:
        async with self._lock:
            return sum(1 for secret in secrets if self._insert(secret))

    async def statistics(self, usage_limit: int) -> CredentialStats:
        async with self._lock:
            return _stats(list(self._records.values()), usage_limit)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS credentials (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    secret TEXT NOT NULL UNIQUE,
    use_count INTEGER NOT NULL DEFAULT 0,
    is_valid INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


class SQLiteCredentialStore(ICredentialStore):
    """Each operation is one IMMEDIATE transaction, run off the event loop."""

    def __init__(self, db_path: str = config.CREDENTIALS_DB):
        self._db_path = db_path
        self._thread_lock = threading.Lock()
        with closing(self._connect()) as conn:
            conn.execute(_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _transaction(self, fn):
        with self._thread_lock, closing(self._connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = fn(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return result

    @staticmethod
    def _row(row: sqlite3.Row) -> Credential:
        return Credential(
            credential_id=str(row["id"]),
            secret=row["secret"],
            use_count=row["use_count"],
            is_valid=bool(row["is_valid"]),
        )

    async def try_acquire_least_used(self, usage_limit: int) -> Optional[Credential]:
        def acquire(conn):
            row = conn.execute(
                "SELECT * FROM credentials WHERE is_valid = 1 AND use_count < ? "
                "ORDER BY use_count ASC, id ASC LIMIT 1",
                (usage_limit,),
            ).fetchone()
            return self._row(row) if row else None

        return await asyncio.to_thread(self._transaction, acquire)

    async def mark_invalid(self, credential_id: str) -> None:
        await asyncio.to_thread(
            self._transaction,
            lambda conn: conn.execute("UPDATE credentials SET is_valid = 0 WHERE id = ?", (int(credential_id),)),
        )

    async def increment_usage(self, credential_id: str, usage_limit: int) -> UsageUpdate:
        def increment(conn):
            before = conn.execute(
                "SELECT is_valid FROM credentials WHERE id = ?", (int(credential_id),)
            ).fetchone()
            if before is None:
                raise KeyError(credential_id)
            conn.execute(
                "UPDATE credentials SET use_count = use_count + 1, "
                "is_valid = CASE WHEN use_count + 1 >= ? THEN 0 ELSE is_valid END "
                "WHERE id = ?",
                (usage_limit, int(credential_id)),
            )
            after = conn.execute(
                "SELECT use_count, is_valid FROM credentials WHERE id = ?", (int(credential_id),)
            ).fetchone()
            return UsageUpdate(
                new_count=after["use_count"],
                marked_invalid=bool(before["is_valid"]) and not after["is_valid"],
            )

        return await asyncio.to_thread(self._transaction, increment)

    async def add(self, secrets: Sequence[str]) -> int:
        def insert(conn):
            added = 0
            for secret in secrets:
                cursor = conn.execute("INSERT OR IGNORE INTO credentials (secret) VALUES (?)", (secret,))
                added += cursor.rowcount
            return added

        return await asyncio.to_thread(self._transaction, insert)

    async def statistics(self, usage_limit: int) -> CredentialStats:
        def load(conn):
            return [self._row(r) for r in conn.execute("SELECT * FROM credentials ORDER BY id")]

        records = await asyncio.to_thread(self._transaction, load)
        return _stats(records, usage_limit)
