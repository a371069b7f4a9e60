"""
Row store accessor backed by SQLite.
"""

import asyncio
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from shared.logging import get_logger
from shared.errors import MutationFailed, StoreUnavailable


Params = Union[Sequence[Any], Dict[str, Any]]


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a write statement."""
    inserted_id: Optional[int]
    rowcount: int


class SQLiteStore:
    """Async facade over a SQLite database.

    Calls run in a worker thread and are serialized with a lock, so the
    event loop only suspends at these calls. Connection and operational
    failures raise ``StoreUnavailable``; constraint violations on writes
    raise ``MutationFailed``.
    """

    def __init__(self, database_path: str = ":memory:", timeout: float = 5.0):
        self.database_path = database_path
        self.timeout = timeout
        self.logger = get_logger("bulletin.store")
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()
        self._closed = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get SQLite connection."""
        if self._closed:
            raise StoreUnavailable("Store is closed", details={"database": self.database_path})
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(
                    self.database_path,
                    timeout=self.timeout,
                    check_same_thread=False,
                )
            except sqlite3.Error as e:
                raise StoreUnavailable(
                    "Failed to open store",
                    details={"database": self.database_path, "error": str(e)}
                ) from e
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self.logger.info("Opened row store", database=self.database_path)
        return self._conn

    async def query(self, statement: str, params: Params = ()) -> List[Dict[str, Any]]:
        """Run a read statement and return all rows as dicts."""
        def _query():
            cursor = self._get_connection().execute(statement, params)
            return [dict(row) for row in cursor.fetchall()]

        return await self._run(_query, statement)

    async def query_one(self, statement: str, params: Params = ()) -> Optional[Dict[str, Any]]:
        """Run a read statement and return the first row, if any."""
        def _query_one():
            row = self._get_connection().execute(statement, params).fetchone()
            return dict(row) if row is not None else None

        return await self._run(_query_one, statement)

    async def execute(self, statement: str, params: Params = ()) -> ExecuteResult:
        """Run a write statement and commit it."""
        def _execute():
            conn = self._get_connection()
            try:
                cursor = conn.execute(statement, params)
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            inserted_id = cursor.lastrowid if cursor.lastrowid else None
            return ExecuteResult(inserted_id=inserted_id, rowcount=cursor.rowcount)

        return await self._run(_execute, statement)

    async def transaction(self, work: Callable[[sqlite3.Connection], Any], label: str = "<transaction>") -> Any:
        """Run ``work(conn)`` as one transaction.

        ``work`` is a plain function executed in the worker thread. Its
        statements commit together when it returns; any exception rolls all
        of them back.
        """
        def _transaction():
            conn = self._get_connection()
            try:
                result = work(conn)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            return result

        return await self._run(_transaction, label)

    async def executescript(self, script: str) -> None:
        """Run a multi-statement script (schema setup, seeding)."""
        def _executescript():
            conn = self._get_connection()
            conn.executescript(script)
            conn.commit()

        await self._run(_executescript, "<script>")

    async def close(self) -> None:
        """Close the connection; later calls raise ``StoreUnavailable``."""
        async with self._lock:
            if self._conn is not None:
                await asyncio.to_thread(self._conn.close)
                self._conn = None
            self._closed = True
            self.logger.info("Closed row store", database=self.database_path)

    async def _run(self, func, statement: str) -> Any:
        async with self._lock:
            try:
                return await asyncio.to_thread(func)
            except sqlite3.IntegrityError as e:
                self.logger.warning("Store rejected write", statement=statement, error=str(e))
                raise MutationFailed(
                    "Constraint violation",
                    details={"error": str(e)}
                ) from e
            except sqlite3.Error as e:
                self.logger.error("Store call failed", statement=statement, error=str(e))
                raise StoreUnavailable(
                    "Store call failed",
                    details={"database": self.database_path, "error": str(e)}
                ) from e
