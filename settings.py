from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from domain.repositories import AtomicStore


@dataclass(frozen=True)
class Settings:
    store_backend: str = "sqlite"
    db_path: str = "bux.db"
    postgres_dsn: Optional[str] = None
    starting_balance: int = 1000
    heist_entry_cost: int = 500
    credit_retry_attempts: int = 5
    credit_retry_delay: float = 0.2
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read settings from the environment. Call `load_dotenv()` first."""

    return Settings(
        store_backend=os.environ.get("STORE_BACKEND", "sqlite").lower(),
        db_path=os.environ.get("DB_PATH", "bux.db"),
        postgres_dsn=os.environ.get("POSTGRES_DSN"),
        starting_balance=int(os.environ.get("STARTING_BALANCE", "1000")),
        heist_entry_cost=int(os.environ.get("HEIST_ENTRY_COST", "500")),
        credit_retry_attempts=int(os.environ.get("CREDIT_RETRY_ATTEMPTS", "5")),
        credit_retry_delay=float(os.environ.get("CREDIT_RETRY_DELAY", "0.2")),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_store(settings: Settings) -> AtomicStore:
    if settings.store_backend == "memory":
        from infrastructure.db.atomic_store_memory import InMemoryAtomicStore

        return InMemoryAtomicStore()
    if settings.store_backend == "postgres":
        if not settings.postgres_dsn:
            raise RuntimeError("POSTGRES_DSN environment variable is not set.")
        from infrastructure.db.atomic_store_postgres import PostgresAtomicStore

        return PostgresAtomicStore({"dsn": settings.postgres_dsn})
    if settings.store_backend == "sqlite":
        from infrastructure.db.atomic_store_sqlite import SqliteAtomicStore

        return SqliteAtomicStore(settings.db_path)
    raise RuntimeError(f"Unknown STORE_BACKEND: {settings.store_backend}")
