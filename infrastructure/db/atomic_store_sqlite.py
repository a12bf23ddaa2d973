from __future__ import annotations

import copy
import json
import logging
import sqlite3
from typing import Any, Dict, Mapping, Optional

from domain.errors import StoreConflictError, StoreError
from domain.repositories import AtomicStore, Commit, Fail, Transform, UpdateResult

logger = logging.getLogger(__name__)


class SqliteAtomicStore(AtomicStore):
    """
    SQLite-backed implementation of `AtomicStore`.

    Every key lives in one row of the `kv_store` table with its value
    encoded as JSON. Atomic updates run inside `BEGIN IMMEDIATE`, which
    takes the database write lock up front, so concurrent
    read-modify-writes serialise instead of overwriting each other.
    """

    def __init__(self, db_path: str, timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._timeout = timeout
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly below.
        return sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)

    def _ensure_table(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
        finally:
            conn.close()

    @staticmethod
    def _wrap(exc: sqlite3.Error) -> StoreError:
        message = str(exc)
        if isinstance(exc, sqlite3.OperationalError) and (
            "locked" in message or "busy" in message
        ):
            return StoreConflictError(message)
        return StoreError(message)

    @staticmethod
    def _select(conn: sqlite3.Connection, key: str) -> Optional[Any]:
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if not row:
            return None
        return json.loads(row[0])

    @staticmethod
    def _put(conn: sqlite3.Connection, key: str, value: Any) -> None:
        if value is None:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return
        conn.execute(
            """
            INSERT INTO kv_store (key, value)
            VALUES (?, ?)
            ON CONFLICT (key)
            DO UPDATE SET value = excluded.value
            """,
            (key, json.dumps(value)),
        )

    def atomic_update(self, key: str, fn: Transform) -> UpdateResult:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._select(conn, key)
                decision = fn(copy.deepcopy(current))
                if isinstance(decision, Commit):
                    self._put(conn, key, decision.value)
                    result = UpdateResult(committed=True, value=decision.value)
                elif isinstance(decision, Fail):
                    result = UpdateResult(committed=False, value=current, error=decision.kind)
                else:
                    result = UpdateResult(committed=False, value=current)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return result
        except sqlite3.Error as exc:
            logger.warning("atomic update of %s failed: %s", key, exc)
            raise self._wrap(exc) from exc
        finally:
            conn.close()

    def read(self, key: str) -> Optional[Any]:
        conn = self._get_connection()
        try:
            return self._select(conn, key)
        except sqlite3.Error as exc:
            raise self._wrap(exc) from exc
        finally:
            conn.close()

    def write(self, key: str, value: Any) -> None:
        self.batch_write({key: value})

    def delete(self, key: str) -> None:
        self.batch_write({key: None})

    def batch_write(self, values: Mapping[str, Any]) -> None:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for key, value in values.items():
                    self._put(conn, key, value)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise self._wrap(exc) from exc
        finally:
            conn.close()

    def scan(self, prefix: str) -> Dict[str, Any]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT key, value FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
            return {str(row[0]): json.loads(row[1]) for row in rows}
        except sqlite3.Error as exc:
            raise self._wrap(exc) from exc
        finally:
            conn.close()
