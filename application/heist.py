from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from domain.errors import ErrorKind, StoreError
from domain.models import BankStatus, HeistParticipant, HeistState, utc_now
from domain.repositories import (
    HEIST_BANK_KEY,
    HEIST_PARTICIPANTS_PREFIX,
    Abort,
    AtomicStore,
    Commit,
    Fail,
    heist_participant_key,
)

from .ledger import BalanceLedger
from .retry import retry_step

logger = logging.getLogger(__name__)


@dataclass
class HeistResult:
    success: bool
    error_kind: Optional[ErrorKind] = None
    entry_cost: int = 0
    balance: Optional[int] = None


class HeistCoordinator:
    """
    Gate for the global bank heist: at most one runs at a time.

    Starting a heist flips the bank status first and charges the entry
    cost second. The two live under different keys, so a failed charge is
    compensated by putting the bank back to `safe`.
    """

    def __init__(
        self,
        store: AtomicStore,
        ledger: BalanceLedger,
        entry_cost: int = 500,
        retry_attempts: int = 5,
        retry_delay: float = 0.2,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._entry_cost = entry_cost
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay

    def status(self) -> HeistState:
        bank = self._store.read(HEIST_BANK_KEY) or {}
        participants = self._store.scan(HEIST_PARTICIPANTS_PREFIX)
        return HeistState(
            bank_status=BankStatus(bank.get("status", BankStatus.SAFE.value)),
            participants=sorted(
                key[len(HEIST_PARTICIPANTS_PREFIX):] for key in participants
            ),
        )

    def reset(self) -> None:
        """Put the bank back to `safe` and drop every participant record."""

        values = {HEIST_BANK_KEY: {"status": BankStatus.SAFE.value}}
        for key in self._store.scan(HEIST_PARTICIPANTS_PREFIX):
            values[key] = None
        self._store.batch_write(values)
        logger.info("heist state reset")

    def _rollback(self, user_id: str) -> None:
        def _release(current):
            if current is None or current.get("startedBy") != user_id:
                return Abort()
            return Commit({"status": BankStatus.SAFE.value})

        retry_step(
            lambda: self._store.atomic_update(HEIST_BANK_KEY, _release),
            user_id=user_id,
            amount=self._entry_cost,
            reason="heist rollback",
            attempts=self._retry_attempts,
            delay=self._retry_delay,
        )

    def start(self, user_id: str) -> HeistResult:
        started_at = utc_now()

        def _lock_bank(current):
            if current is not None and current.get("status") == BankStatus.IN_PROGRESS.value:
                return Fail(ErrorKind.ALREADY_IN_PROGRESS)
            return Commit(
                {
                    "status": BankStatus.IN_PROGRESS.value,
                    "startedBy": user_id,
                    "startedAt": started_at,
                }
            )

        result = self._store.atomic_update(HEIST_BANK_KEY, _lock_bank)
        if not result.committed:
            return HeistResult(success=False, error_kind=result.error)

        try:
            debit = self._ledger.debit(user_id, self._entry_cost)
        except StoreError:
            self._rollback(user_id)
            raise
        if not debit.success:
            self._rollback(user_id)
            return HeistResult(success=False, error_kind=debit.error_kind)

        participant = HeistParticipant(user_id=user_id)
        retry_step(
            lambda: self._store.write(heist_participant_key(user_id), participant.to_record()),
            user_id=user_id,
            amount=self._entry_cost,
            reason="heist participant record",
            attempts=self._retry_attempts,
            delay=self._retry_delay,
        )
        logger.info("%s started a heist for %d BUX", user_id, self._entry_cost)
        return HeistResult(
            success=True,
            entry_cost=self._entry_cost,
            balance=debit.balance,
        )
