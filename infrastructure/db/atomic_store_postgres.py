from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

import psycopg2
import psycopg2.extensions

from domain.errors import StoreConflictError, StoreError
from domain.repositories import AtomicStore, Commit, Fail, Transform, UpdateResult


class PostgresAtomicStore(AtomicStore):
    """
    Postgres-backed implementation of `AtomicStore`.

    Uses a `kv_store` table with JSON-encoded values. Each atomic update
    holds a transaction-scoped advisory lock on the key, which also
    serialises writers racing to create a key that does not exist yet
    (a plain `SELECT ... FOR UPDATE` cannot lock a missing row).
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._ensure_table()

    def _get_connection(self):
        return psycopg2.connect(**self._db_params)

    def _ensure_table(self) -> None:
        """
        Ensure that the `kv_store` table exists.

        Schema:
          - key TEXT PRIMARY KEY
          - value TEXT  -- JSON document
        """

        conn = self._get_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(
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
    def _wrap(exc: psycopg2.Error) -> StoreError:
        if isinstance(exc, psycopg2.extensions.TransactionRollbackError):
            return StoreConflictError(str(exc))
        return StoreError(str(exc))

    @staticmethod
    def _lock(cur, key: str) -> None:
        cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (key,))

    @staticmethod
    def _select(cur, key: str) -> Optional[Any]:
        cur.execute("SELECT value FROM kv_store WHERE key = %s", (key,))
        row = cur.fetchone()
        if not row:
            return None
        return json.loads(row[0])

    @staticmethod
    def _put(cur, key: str, value: Any) -> None:
        if value is None:
            cur.execute("DELETE FROM kv_store WHERE key = %s", (key,))
            return
        cur.execute(
            """
            INSERT INTO kv_store (key, value)
            VALUES (%s, %s)
            ON CONFLICT (key)
            DO UPDATE SET value = EXCLUDED.value
            """,
            (key, json.dumps(value)),
        )

    def atomic_update(self, key: str, fn: Transform) -> UpdateResult:
        conn = self._get_connection()
        try:
            # `with conn` commits on success and rolls back on any exception.
            with conn:
                with conn.cursor() as cur:
                    self._lock(cur, key)
                    current = self._select(cur, key)
                    decision = fn(json.loads(json.dumps(current)))
                    if isinstance(decision, Commit):
                        self._put(cur, key, decision.value)
                        return UpdateResult(committed=True, value=decision.value)
                    if isinstance(decision, Fail):
                        return UpdateResult(committed=False, value=current, error=decision.kind)
                    return UpdateResult(committed=False, value=current)
        except psycopg2.Error as exc:
            raise self._wrap(exc) from exc
        finally:
            conn.close()

    def read(self, key: str) -> Optional[Any]:
        conn = self._get_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    return self._select(cur, key)
        except psycopg2.Error as exc:
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
            with conn:
                with conn.cursor() as cur:
                    # Lock in a stable order so two batches cannot deadlock.
                    for key in sorted(values):
                        self._lock(cur, key)
                    for key, value in values.items():
                        self._put(cur, key, value)
        except psycopg2.Error as exc:
            raise self._wrap(exc) from exc
        finally:
            conn.close()

    def scan(self, prefix: str) -> Dict[str, Any]:
        conn = self._get_connection()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT key, value FROM kv_store WHERE left(key, %s) = %s ORDER BY key",
                        (len(prefix), prefix),
                    )
                    return {str(row[0]): json.loads(row[1]) for row in cur.fetchall()}
        except psycopg2.Error as exc:
            raise self._wrap(exc) from exc
        finally:
            conn.close()
