from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from domain.errors import ReconciliationError, StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_step(
    step: Callable[[], T],
    *,
    user_id: str,
    amount: int,
    reason: str,
    attempts: int = 5,
    delay: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a step that must follow an already-committed mutation.

    Store failures are retried with a linear backoff. When every attempt
    fails the ledger is inconsistent, so the failure is logged at CRITICAL
    for an operator and raised as `ReconciliationError`.
    """

    last_error: StoreError | None = None
    for attempt in range(1, attempts + 1):
        try:
            return step()
        except StoreError as exc:
            last_error = exc
            logger.warning(
                "%s for %s failed (attempt %d/%d): %s",
                reason,
                user_id,
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts:
                sleep(delay * attempt)

    logger.critical(
        "RECONCILIATION REQUIRED: %s for %s (amount=%d) gave up after %d attempts: %s",
        reason,
        user_id,
        amount,
        attempts,
        last_error,
    )
    raise ReconciliationError(user_id, amount, reason) from last_error
