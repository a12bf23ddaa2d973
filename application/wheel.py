from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional, Tuple

from domain.errors import ErrorKind, ReconciliationError
from domain.models import BANKRUPT, OutcomeKind, WheelSegment

from .ledger import BalanceLedger, is_positive_amount

logger = logging.getLogger(__name__)

# Order matters: clients draw the wheel from the same list.
SEGMENTS: Tuple[WheelSegment, ...] = (
    WheelSegment("x3 BET", Fraction(3)),
    WheelSegment("LOSE BET", Fraction(0)),
    WheelSegment("x1.5 BET", Fraction(3, 2)),
    WheelSegment("BANKRUPT", BANKRUPT),
    WheelSegment("x2 BET", Fraction(2)),
    WheelSegment("÷3 BET", Fraction(1, 3)),
    WheelSegment("SAFE", Fraction(1)),
    WheelSegment("LOSE BET", Fraction(0)),
)


def resolve_payout(bet: int, segment: WheelSegment) -> Tuple[int, OutcomeKind]:
    """Return `(payout, outcome)` for a bet landing on `segment`."""

    if segment.is_bankrupt:
        return 0, OutcomeKind.BANKRUPT
    if segment.multiplier == 0:
        return 0, OutcomeKind.LOSS
    payout = math.floor(bet * segment.multiplier)
    if payout > bet:
        return payout, OutcomeKind.WIN
    return payout, OutcomeKind.NEUTRAL


def describe_spin(bet: int, payout: int, outcome: OutcomeKind, lost: int) -> str:
    if outcome is OutcomeKind.BANKRUPT:
        return f"BANKRUPT! You lost all {lost:,} BUX!"
    if outcome is OutcomeKind.LOSS:
        return f"You lost your bet of {bet:,} BUX."
    if outcome is OutcomeKind.WIN:
        return f"YOU WON {payout:,} BUX!"
    if payout == bet:
        return f"Safe! Your bet of {bet:,} was returned."
    return f"You got back {payout:,} BUX."


@dataclass
class SpinResult:
    success: bool
    error_kind: Optional[ErrorKind] = None
    segment_index: Optional[int] = None
    label: Optional[str] = None
    payout: int = 0
    outcome: Optional[OutcomeKind] = None
    final_balance: Optional[int] = None
    message: str = ""


class WheelGame:
    """
    Eight-segment multiplier wheel.

    The bet is debited before the segment is drawn. Two simultaneous spins
    therefore cannot both pass a single balance check.
    """

    def __init__(self, ledger: BalanceLedger, rng: Optional[random.Random] = None) -> None:
        self._ledger = ledger
        self._rng = rng or random.SystemRandom()

    def spin(self, user_id: str, bet: int) -> SpinResult:
        if not is_positive_amount(bet):
            return SpinResult(success=False, error_kind=ErrorKind.INVALID_ARGUMENT)

        debit = self._ledger.debit(user_id, bet)
        if not debit.success:
            return SpinResult(success=False, error_kind=debit.error_kind)

        try:
            index = self._rng.randrange(len(SEGMENTS))
            segment = SEGMENTS[index]
            payout, outcome = resolve_payout(bet, segment)
            if outcome is OutcomeKind.BANKRUPT:
                final_balance = self._ledger.reset_balance(user_id, reason="wheel bankrupt")
            elif payout > 0:
                final_balance = self._ledger.guaranteed_credit(
                    user_id, payout, reason="wheel payout"
                )
            else:
                final_balance = debit.balance
        except ReconciliationError:
            # Store failures of the payout were already escalated by the retry step.
            raise
        except Exception:
            logger.exception("wheel resolution failed for %s, refunding bet", user_id)
            self._ledger.guaranteed_credit(user_id, bet, reason="wheel refund")
            raise

        # The balance before this spin is what a bankrupt wipes out.
        lost = debit.balance + bet
        logger.info(
            "%s spun %s on a %d BUX bet: %s, payout %d",
            user_id,
            segment.label,
            bet,
            outcome.value,
            payout,
        )
        return SpinResult(
            success=True,
            segment_index=index,
            label=segment.label,
            payout=payout,
            outcome=outcome,
            final_balance=final_balance,
            message=describe_spin(bet, payout, outcome, lost),
        )
