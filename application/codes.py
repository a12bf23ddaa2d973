from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Callable, Optional

from domain.errors import ErrorKind, StoreError
from domain.models import ValueCode, utc_now
from domain.repositories import Abort, AtomicStore, Commit, Fail, code_key

from .ledger import BalanceLedger, is_positive_amount

logger = logging.getLogger(__name__)

CODE_PREFIX = "LBX-"
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def generate_code(length: int = CODE_LENGTH) -> str:
    """Return an unpredictable code such as `LBX-7QK2M9XA`."""

    return CODE_PREFIX + "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw: str) -> str:
    return raw.strip().upper()


@dataclass
class CodeResult:
    success: bool
    error_kind: Optional[ErrorKind] = None
    code: Optional[str] = None
    amount: Optional[int] = None
    balance: Optional[int] = None


class CodeRegistry:
    """
    Issues and redeems single-use value codes.

    Issuing debits the creator before anything is written. Redeeming claims
    the code with one atomic test-and-set on its record, so among any number
    of concurrent attempts exactly one succeeds.
    """

    def __init__(
        self,
        store: AtomicStore,
        ledger: BalanceLedger,
        code_factory: Callable[[], str] = generate_code,
        max_attempts: int = 5,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._code_factory = code_factory
        self._max_attempts = max_attempts

    def issue(self, creator_id: str, amount: int) -> CodeResult:
        if not is_positive_amount(amount):
            return CodeResult(success=False, error_kind=ErrorKind.INVALID_ARGUMENT)

        debit = self._ledger.debit(creator_id, amount)
        if not debit.success:
            return CodeResult(success=False, error_kind=debit.error_kind)

        created_at = utc_now()
        for _ in range(self._max_attempts):
            code = self._code_factory()
            record = ValueCode(
                code=code,
                amount=amount,
                creator_id=creator_id,
                created_at=created_at,
            ).to_record()

            def _create(current, record=record):
                if current is not None:
                    return Abort()
                return Commit(record)

            try:
                result = self._store.atomic_update(code_key(code), _create)
            except StoreError as exc:
                logger.warning("could not store code for %s: %s", creator_id, exc)
                continue
            if result.committed:
                logger.info("%s issued code %s worth %d BUX", creator_id, code, amount)
                return CodeResult(
                    success=True,
                    code=code,
                    amount=amount,
                    balance=debit.balance,
                )
            logger.warning("code collision on %s, regenerating", code)

        # Nothing was written: give the creator their money back.
        self._ledger.guaranteed_credit(creator_id, amount, reason="refund of unissued code")
        return CodeResult(success=False, error_kind=ErrorKind.INTERNAL)

    def redeem(self, user_id: str, code: str) -> CodeResult:
        if not isinstance(code, str) or not code.strip():
            return CodeResult(success=False, error_kind=ErrorKind.INVALID_ARGUMENT)

        code = normalize_code(code)
        redeemed_at = utc_now()

        def _claim(current):
            if current is None:
                return Fail(ErrorKind.NOT_FOUND)
            if current.get("isUsed"):
                return Fail(ErrorKind.ALREADY_REDEEMED)
            if current.get("createdBy") == user_id:
                return Fail(ErrorKind.SELF_REDEEM)
            current["isUsed"] = True
            current["redeemedBy"] = user_id
            current["redeemedAt"] = redeemed_at
            return Commit(current)

        result = self._store.atomic_update(code_key(code), _claim)
        if not result.committed:
            return CodeResult(success=False, error_kind=result.error, code=code)

        amount = int(result.value["amount"])
        balance = self._ledger.guaranteed_credit(
            user_id, amount, reason=f"redemption of {code}"
        )
        logger.info("%s redeemed code %s for %d BUX", user_id, code, amount)
        return CodeResult(success=True, code=code, amount=amount, balance=balance)
