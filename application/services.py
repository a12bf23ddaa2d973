from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from domain.errors import (
    DEFAULT_MESSAGES,
    ErrorKind,
    ReconciliationError,
    StoreConflictError,
    StoreError,
)

from .blackjack import BlackjackEngine
from .codes import CodeRegistry
from .heist import HeistCoordinator
from .ledger import BalanceLedger, is_positive_amount
from .wheel import WheelGame

logger = logging.getLogger(__name__)


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular channel (Telegram, Discord).

    The transport has already verified who the caller is; the application
    layer never depends on concrete SDK types and only sees this small
    context object.
    """

    provider: str
    provider_user_id: str
    display_name: str = ""

    @property
    def user_id(self) -> str:
        return user_id_for(self.provider, self.provider_user_id)


def user_id_for(provider: str, provider_user_id: str) -> str:
    return f"{provider}:{provider_user_id}"


@dataclass
class BroadcastMessage:
    """A message that should be delivered to a particular user."""

    user_id: str
    text: str


@dataclass
class OperationResult:
    """
    Generic result type for every operation.

    `error_kind` is the stable failure kind; `error_message` and any
    `message` inside `payload` are for display only.
    """

    success: bool
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    broadcasts: List[BroadcastMessage] = field(default_factory=list)


def _failure(kind: ErrorKind, message: Optional[str] = None) -> OperationResult:
    return OperationResult(
        success=False,
        error_kind=kind,
        error_message=message or DEFAULT_MESSAGES[kind],
    )


def _authenticate(external_ctx: Optional[ExternalContext]) -> Optional[OperationResult]:
    if external_ctx is None or not external_ctx.provider or not external_ctx.provider_user_id:
        return _failure(ErrorKind.UNAUTHENTICATED)
    return None


def _validate_positive_amount(amount: Any, what: str = "amount") -> Optional[OperationResult]:
    if not is_positive_amount(amount):
        return _failure(
            ErrorKind.INVALID_ARGUMENT,
            f"A valid, positive integer {what} is required.",
        )
    return None


def _guarded(description: str, action: Callable[[], OperationResult]) -> OperationResult:
    """Turn store and reconciliation failures into typed results."""

    try:
        return action()
    except StoreConflictError as exc:
        logger.warning("%s hit a store conflict: %s", description, exc)
        return _failure(ErrorKind.CONFLICT)
    except ReconciliationError:
        # Already reported at CRITICAL by the retry helper.
        return _failure(
            ErrorKind.INTERNAL,
            f"Internal server error during {description}; support has been notified.",
        )
    except StoreError as exc:
        logger.error("%s failed: %s", description, exc)
        return _failure(ErrorKind.INTERNAL)


def setup_account(
    external_ctx: ExternalContext,
    ledger: BalanceLedger,
    starting_balance: int,
) -> OperationResult:
    """Create the caller's account on first use. Calling it again is a no-op."""

    denied = _authenticate(external_ctx)
    if denied:
        return denied

    def _run() -> OperationResult:
        account = ledger.open_account(
            external_ctx.user_id,
            starting_balance=starting_balance,
            display_name=external_ctx.display_name,
        )
        return OperationResult(
            success=True,
            payload={"userId": account.id, "balance": account.balance},
        )

    return _guarded("account setup", _run)


def get_balance(external_ctx: ExternalContext, ledger: BalanceLedger) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied

    def _run() -> OperationResult:
        account = ledger.get_account(external_ctx.user_id)
        if account is None:
            return _failure(ErrorKind.NOT_FOUND, "You don't have an account yet. Use start first.")
        return OperationResult(success=True, payload={"balance": account.balance})

    return _guarded("balance lookup", _run)


def list_accounts(ledger: BalanceLedger) -> OperationResult:
    def _run() -> OperationResult:
        accounts = sorted(ledger.list_accounts(), key=lambda a: a.balance, reverse=True)
        return OperationResult(
            success=True,
            payload={
                "accounts": [
                    {"userId": a.id, "name": a.display_name or a.id, "balance": a.balance}
                    for a in accounts
                ],
                "total": sum(a.balance for a in accounts),
            },
        )

    return _guarded("account listing", _run)


TRANSFER_MESSAGES = {
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient balance.",
}


def transfer(
    external_ctx: ExternalContext,
    recipient_id: str,
    amount: Any,
    ledger: BalanceLedger,
) -> OperationResult:
    """
    Gift BUX to another player:
    - Debit the sender's balance.
    - Credit the recipient's balance.
    - Notify the recipient.
    """

    denied = _authenticate(external_ctx)
    if denied:
        return denied
    invalid = _validate_positive_amount(amount)
    if invalid:
        return invalid
    if not recipient_id:
        return _failure(ErrorKind.INVALID_ARGUMENT, "A recipient is required.")

    def _run() -> OperationResult:
        result = ledger.transfer(external_ctx.user_id, recipient_id, amount)
        if not result.success:
            return _failure(result.error_kind, TRANSFER_MESSAGES.get(result.error_kind))

        sender = external_ctx.display_name or external_ctx.user_id
        return OperationResult(
            success=True,
            payload={"amount": amount, "balance": result.balance},
            broadcasts=[
                BroadcastMessage(
                    user_id=recipient_id,
                    text=f"{sender} sent you {amount:,} BUX!",
                )
            ],
        )

    return _guarded("transfer", _run)


def issue_code(
    external_ctx: ExternalContext,
    amount: Any,
    codes: CodeRegistry,
) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied
    invalid = _validate_positive_amount(amount)
    if invalid:
        return invalid

    def _run() -> OperationResult:
        result = codes.issue(external_ctx.user_id, amount)
        if not result.success:
            return _failure(result.error_kind)
        return OperationResult(
            success=True,
            payload={
                "code": result.code,
                "amount": result.amount,
                "balance": result.balance,
                "message": f"Code {result.code} created for {result.amount:,} BUX!",
            },
        )

    return _guarded("code creation", _run)


REDEEM_MESSAGES = {
    ErrorKind.NOT_FOUND: "Code does not exist.",
}


def redeem_code(
    external_ctx: ExternalContext,
    code: Any,
    codes: CodeRegistry,
) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied
    if not isinstance(code, str) or not code.strip():
        return _failure(ErrorKind.INVALID_ARGUMENT, "Invalid code provided.")

    def _run() -> OperationResult:
        result = codes.redeem(external_ctx.user_id, code)
        if not result.success:
            return _failure(result.error_kind, REDEEM_MESSAGES.get(result.error_kind))
        return OperationResult(
            success=True,
            payload={
                "code": result.code,
                "amount": result.amount,
                "balance": result.balance,
                "message": f"Successfully redeemed {result.amount:,} BUX!",
            },
        )

    return _guarded("code redemption", _run)


BET_MESSAGES = {
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient balance for the bet.",
}


def spin_wheel(external_ctx: ExternalContext, bet: Any, wheel: WheelGame) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied
    invalid = _validate_positive_amount(bet, "bet")
    if invalid:
        return invalid

    def _run() -> OperationResult:
        result = wheel.spin(external_ctx.user_id, bet)
        if not result.success:
            return _failure(result.error_kind, BET_MESSAGES.get(result.error_kind))
        return OperationResult(
            success=True,
            payload={
                "winningIndex": result.segment_index,
                "label": result.label,
                "payout": result.payout,
                "outcome": result.outcome.value,
                "finalBalance": result.final_balance,
                "message": result.message,
            },
        )

    return _guarded("wheel spin", _run)


BLACKJACK_MESSAGES = {
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient balance.",
    ErrorKind.NOT_FOUND: "No active game found or game is over.",
    ErrorKind.ALREADY_IN_PROGRESS: "You already have an active blackjack game.",
}


def blackjack_deal(
    external_ctx: ExternalContext,
    bet: Any,
    engine: BlackjackEngine,
) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied
    invalid = _validate_positive_amount(bet, "bet")
    if invalid:
        return invalid

    def _run() -> OperationResult:
        result = engine.deal(external_ctx.user_id, bet)
        if not result.success:
            return _failure(result.error_kind, BLACKJACK_MESSAGES.get(result.error_kind))
        return OperationResult(
            success=True,
            payload={
                "playerHand": result.player_hand,
                "dealerHand": result.dealer_hand,
                "playerScore": result.player_score,
                "bet": result.bet,
                "status": result.status.value,
            },
        )

    return _guarded("blackjack deal", _run)


def blackjack_hit(external_ctx: ExternalContext, engine: BlackjackEngine) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied

    def _run() -> OperationResult:
        result = engine.hit(external_ctx.user_id)
        if not result.success:
            return _failure(result.error_kind, BLACKJACK_MESSAGES.get(result.error_kind))
        return OperationResult(
            success=True,
            payload={
                "playerHand": result.player_hand,
                "playerScore": result.player_score,
                "status": result.status.value,
                "message": result.message,
            },
        )

    return _guarded("blackjack hit", _run)


def blackjack_stand(external_ctx: ExternalContext, engine: BlackjackEngine) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied

    def _run() -> OperationResult:
        result = engine.stand(external_ctx.user_id)
        if not result.success:
            return _failure(result.error_kind, BLACKJACK_MESSAGES.get(result.error_kind))
        return OperationResult(
            success=True,
            payload={
                "status": "finished",
                "dealerHand": result.dealer_hand,
                "dealerScore": result.dealer_score,
                "playerScore": result.player_score,
                "outcome": result.outcome.value,
                "payout": result.payout,
                "message": result.message,
            },
        )

    return _guarded("blackjack stand", _run)


HEIST_MESSAGES = {
    ErrorKind.ALREADY_IN_PROGRESS: "A heist is already in progress.",
    ErrorKind.INSUFFICIENT_FUNDS: "You can't afford the heist entry cost.",
}


def heist_start(external_ctx: ExternalContext, heist: HeistCoordinator) -> OperationResult:
    denied = _authenticate(external_ctx)
    if denied:
        return denied

    def _run() -> OperationResult:
        result = heist.start(external_ctx.user_id)
        if not result.success:
            return _failure(result.error_kind, HEIST_MESSAGES.get(result.error_kind))
        return OperationResult(
            success=True,
            payload={
                "bankStatus": "in_progress",
                "entryCost": result.entry_cost,
                "balance": result.balance,
                "message": f"The heist is on! You paid {result.entry_cost:,} BUX to get in.",
            },
        )

    return _guarded("heist start", _run)


def heist_status(heist: HeistCoordinator) -> OperationResult:
    def _run() -> OperationResult:
        state = heist.status()
        return OperationResult(
            success=True,
            payload={
                "bankStatus": state.bank_status.value,
                "participants": state.participants,
            },
        )

    return _guarded("heist status", _run)


def heist_reset(heist: HeistCoordinator) -> OperationResult:
    def _run() -> OperationResult:
        heist.reset()
        return OperationResult(success=True, payload={"bankStatus": "safe"})

    return _guarded("heist reset", _run)


@dataclass
class Components:
    """Everything the transports need, wired to one store."""

    ledger: BalanceLedger
    codes: CodeRegistry
    wheel: WheelGame
    blackjack: BlackjackEngine
    heist: HeistCoordinator
    starting_balance: int = 1000


def build_components(
    store,
    starting_balance: int = 1000,
    heist_entry_cost: int = 500,
    retry_attempts: int = 5,
    retry_delay: float = 0.2,
) -> Components:
    ledger = BalanceLedger(store, retry_attempts=retry_attempts, retry_delay=retry_delay)
    return Components(
        ledger=ledger,
        codes=CodeRegistry(store, ledger),
        wheel=WheelGame(ledger),
        blackjack=BlackjackEngine(store, ledger),
        heist=HeistCoordinator(
            store,
            ledger,
            entry_cost=heist_entry_cost,
            retry_attempts=retry_attempts,
            retry_delay=retry_delay,
        ),
        starting_balance=starting_balance,
    )
