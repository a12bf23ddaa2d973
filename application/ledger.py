from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from domain.errors import ErrorKind
from domain.models import Account, utc_now
from domain.repositories import (
    Abort,
    AtomicStore,
    Commit,
    Fail,
    account_key,
)

from .retry import retry_step

logger = logging.getLogger(__name__)


def is_positive_amount(amount) -> bool:
    """BUX amounts are whole numbers greater than zero. `bool` does not count."""

    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


@dataclass
class BalanceResult:
    success: bool
    error_kind: Optional[ErrorKind] = None
    balance: Optional[int] = None


class BalanceLedger:
    """
    Debit, credit and transfer operations on account balances.

    Every mutation is one `atomic_update` on the account key, so two
    requests racing on the same balance serialise in the store and the
    balance can never go negative.
    """

    def __init__(
        self,
        store: AtomicStore,
        retry_attempts: int = 5,
        retry_delay: float = 0.2,
    ) -> None:
        self._store = store
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay

    def open_account(
        self,
        user_id: str,
        starting_balance: int = 0,
        display_name: str = "",
    ) -> Account:
        """Create the account if it does not exist yet. Idempotent."""

        record = Account(
            id=user_id,
            balance=starting_balance,
            created_at=utc_now(),
            display_name=display_name,
        ).to_record()

        def _create(current):
            if current is not None:
                return Abort()
            return Commit(record)

        result = self._store.atomic_update(account_key(user_id), _create)
        if result.committed:
            logger.info("opened account %s with %d BUX", user_id, starting_balance)
        return Account.from_record(user_id, result.value)

    def get_account(self, user_id: str) -> Optional[Account]:
        record = self._store.read(account_key(user_id))
        if record is None:
            return None
        return Account.from_record(user_id, record)

    def list_accounts(self) -> List[Account]:
        records = self._store.scan(account_key(""))
        return [
            Account.from_record(key[len(account_key("")):], record)
            for key, record in records.items()
        ]

    def debit(self, user_id: str, amount: int) -> BalanceResult:
        """
        Subtract `amount` from the balance in one atomic step.

        Fails with `INSUFFICIENT_FUNDS` (and writes nothing) when the account
        is missing or holds less than `amount`.
        """

        if not is_positive_amount(amount):
            return BalanceResult(success=False, error_kind=ErrorKind.INVALID_ARGUMENT)

        def _debit(current):
            if current is None:
                return Fail(ErrorKind.INSUFFICIENT_FUNDS)
            balance = int(current.get("balance", 0))
            if amount > balance:
                return Fail(ErrorKind.INSUFFICIENT_FUNDS)
            current["balance"] = balance - amount
            return Commit(current)

        result = self._store.atomic_update(account_key(user_id), _debit)
        if not result.committed:
            return BalanceResult(success=False, error_kind=result.error)

        new_balance = int(result.value["balance"])
        logger.info("debited %d BUX from %s (balance %d)", amount, user_id, new_balance)
        return BalanceResult(success=True, balance=new_balance)

    def credit(self, user_id: str, amount: int) -> BalanceResult:
        """Add `amount` to the balance. A missing account counts as 0."""

        if not is_positive_amount(amount):
            return BalanceResult(success=False, error_kind=ErrorKind.INVALID_ARGUMENT)

        created_at = utc_now()

        def _credit(current):
            if current is None:
                current = {"balance": 0, "createdAt": created_at}
            current["balance"] = int(current.get("balance", 0)) + amount
            return Commit(current)

        result = self._store.atomic_update(account_key(user_id), _credit)
        new_balance = int(result.value["balance"])
        logger.info("credited %d BUX to %s (balance %d)", amount, user_id, new_balance)
        return BalanceResult(success=True, balance=new_balance)

    def guaranteed_credit(self, user_id: str, amount: int, reason: str) -> int:
        """
        Credit that follows an already-committed debit or claim.

        Retries store failures and raises `ReconciliationError` once the
        retries are exhausted. Returns the new balance.
        """

        result = retry_step(
            lambda: self.credit(user_id, amount),
            user_id=user_id,
            amount=amount,
            reason=reason,
            attempts=self._retry_attempts,
            delay=self._retry_delay,
        )
        return int(result.balance)

    def reset_balance(self, user_id: str, reason: str) -> int:
        """Set the balance to exactly 0, whatever it holds now."""

        created_at = utc_now()

        def _reset(current):
            if current is None:
                current = {"balance": 0, "createdAt": created_at}
            current["balance"] = 0
            return Commit(current)

        retry_step(
            lambda: self._store.atomic_update(account_key(user_id), _reset),
            user_id=user_id,
            amount=0,
            reason=reason,
            attempts=self._retry_attempts,
            delay=self._retry_delay,
        )
        logger.info("reset balance of %s to 0 (%s)", user_id, reason)
        return 0

    def transfer(self, from_id: str, to_id: str, amount: int) -> BalanceResult:
        """
        Move `amount` from one account to another.

        The debit commits strictly before the credit. The two keys cannot be
        updated together, so the credit goes through `guaranteed_credit`.
        On success `balance` is the sender's new balance.
        """

        if not is_positive_amount(amount):
            return BalanceResult(success=False, error_kind=ErrorKind.INVALID_ARGUMENT)
        if from_id == to_id:
            return BalanceResult(success=False, error_kind=ErrorKind.SELF_TRANSFER)
        if self._store.read(account_key(to_id)) is None:
            return BalanceResult(success=False, error_kind=ErrorKind.INVALID_RECIPIENT)

        debit = self.debit(from_id, amount)
        if not debit.success:
            return debit

        self.guaranteed_credit(to_id, amount, reason=f"transfer from {from_id}")
        logger.info("transferred %d BUX from %s to %s", amount, from_id, to_id)
        return BalanceResult(success=True, balance=debit.balance)
