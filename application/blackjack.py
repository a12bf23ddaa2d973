from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from domain.errors import ErrorKind, StoreError
from domain.models import (
    RANKS,
    SUITS,
    BlackjackOutcome,
    BlackjackSession,
    Card,
    SessionStatus,
)
from domain.repositories import AtomicStore, Commit, Fail, blackjack_key

from .ledger import BalanceLedger, is_positive_amount

logger = logging.getLogger(__name__)

BLACKJACK = 21
DEALER_STANDS_ON = 17
HIDDEN_CARD = {"rank": "?", "suit": "?", "value": 0}

OUTCOME_MESSAGES = {
    BlackjackOutcome.PLAYER_BUST: "You Busted!",
    BlackjackOutcome.DEALER_BUST: "Dealer Busts! You Win!",
    BlackjackOutcome.PLAYER_WIN: "You Win!",
    BlackjackOutcome.DEALER_WIN: "Dealer Wins!",
    BlackjackOutcome.PUSH: "Push!",
}


def create_deck() -> List[Card]:
    """Standard 52-card deck in suit/rank order."""

    return [Card(rank=rank, suit=suit) for suit in SUITS for rank in RANKS]


def hand_score(hand: Sequence[Card]) -> int:
    """
    Sum of card values, with aces counted as 11 and then reduced to 1,
    one at a time, while the hand would otherwise bust.
    """

    score = sum(card.value for card in hand)
    aces = sum(1 for card in hand if card.rank == "A")
    while score > BLACKJACK and aces > 0:
        score -= 10
        aces -= 1
    return score


def settle_hand(player_score: int, dealer_score: int, bet: int) -> Tuple[BlackjackOutcome, int]:
    """Return `(outcome, payout)` once the dealer has finished drawing."""

    if player_score > BLACKJACK:
        return BlackjackOutcome.PLAYER_BUST, 0
    if dealer_score > BLACKJACK:
        return BlackjackOutcome.DEALER_BUST, bet * 2
    if dealer_score > player_score:
        return BlackjackOutcome.DEALER_WIN, 0
    if dealer_score < player_score:
        return BlackjackOutcome.PLAYER_WIN, bet * 2
    return BlackjackOutcome.PUSH, bet


def _cards(hand: Sequence[Card]) -> List[Dict[str, Any]]:
    return [card.to_record() for card in hand]


@dataclass
class DealResult:
    success: bool
    error_kind: Optional[ErrorKind] = None
    player_hand: List[Dict[str, Any]] = field(default_factory=list)
    dealer_hand: List[Dict[str, Any]] = field(default_factory=list)
    player_score: int = 0
    bet: int = 0
    status: Optional[SessionStatus] = None


@dataclass
class HitResult:
    success: bool
    error_kind: Optional[ErrorKind] = None
    player_hand: List[Dict[str, Any]] = field(default_factory=list)
    player_score: int = 0
    status: Optional[SessionStatus] = None
    message: str = ""


@dataclass
class StandResult:
    success: bool
    error_kind: Optional[ErrorKind] = None
    dealer_hand: List[Dict[str, Any]] = field(default_factory=list)
    dealer_score: int = 0
    player_score: int = 0
    outcome: Optional[BlackjackOutcome] = None
    payout: int = 0
    message: str = ""


class BlackjackEngine:
    """
    One-deck blackjack against a dealer who stands on 17.

    The whole session, including the undealt deck and the dealer's hole
    card, lives in the store under the player's key. Every action is an
    atomic update of that key, so a duplicated hit or stand request is
    applied at most once.
    """

    def __init__(
        self,
        store: AtomicStore,
        ledger: BalanceLedger,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._rng = rng or random.SystemRandom()

    def _shuffled_deck(self) -> List[Card]:
        deck = create_deck()
        self._rng.shuffle(deck)
        return deck

    def get_session(self, user_id: str) -> Optional[BlackjackSession]:
        record = self._store.read(blackjack_key(user_id))
        if record is None:
            return None
        return BlackjackSession.from_record(record)

    def _discard(self, user_id: str) -> None:
        try:
            self._store.delete(blackjack_key(user_id))
        except StoreError as exc:
            # The session is no longer `playing`, so a leftover record is inert.
            logger.warning("could not remove finished blackjack game of %s: %s", user_id, exc)

    def deal(self, user_id: str, bet: int) -> DealResult:
        if not is_positive_amount(bet):
            return DealResult(success=False, error_kind=ErrorKind.INVALID_ARGUMENT)

        existing = self.get_session(user_id)
        if existing is not None and existing.status is SessionStatus.PLAYING:
            return DealResult(success=False, error_kind=ErrorKind.ALREADY_IN_PROGRESS)

        debit = self._ledger.debit(user_id, bet)
        if not debit.success:
            return DealResult(success=False, error_kind=debit.error_kind)

        session = BlackjackSession(
            owner_id=user_id,
            deck=self._shuffled_deck(),
            player_hand=[],
            dealer_hand=[],
            bet=bet,
        )
        session.player_hand = [session.draw(), session.draw()]
        session.dealer_hand = [session.draw(), session.draw()]
        record = session.to_record()

        def _create(current):
            if current is not None and current.get("status") == SessionStatus.PLAYING.value:
                return Fail(ErrorKind.ALREADY_IN_PROGRESS)
            return Commit(record)

        result = self._store.atomic_update(blackjack_key(user_id), _create)
        if not result.committed:
            # Another deal won the race after our debit went through.
            self._ledger.guaranteed_credit(user_id, bet, reason="refund of duplicate blackjack deal")
            return DealResult(success=False, error_kind=result.error)

        logger.info("%s started blackjack with a %d BUX bet", user_id, bet)
        return DealResult(
            success=True,
            player_hand=_cards(session.player_hand),
            dealer_hand=[session.dealer_hand[0].to_record(), dict(HIDDEN_CARD)],
            player_score=hand_score(session.player_hand),
            bet=bet,
            status=SessionStatus.PLAYING,
        )

    def hit(self, user_id: str) -> HitResult:
        def _hit(current):
            if current is None:
                return Fail(ErrorKind.NOT_FOUND)
            session = BlackjackSession.from_record(current)
            if session.status is not SessionStatus.PLAYING:
                return Fail(ErrorKind.NOT_FOUND)
            session.player_hand.append(session.draw())
            if hand_score(session.player_hand) > BLACKJACK:
                session.status = SessionStatus.BUSTED
                session.outcome = BlackjackOutcome.PLAYER_BUST.value
            return Commit(session.to_record())

        result = self._store.atomic_update(blackjack_key(user_id), _hit)
        if not result.committed:
            return HitResult(success=False, error_kind=result.error)

        session = BlackjackSession.from_record(result.value)
        score = hand_score(session.player_hand)
        message = ""
        if session.status is SessionStatus.BUSTED:
            # The bet was taken at deal time and is forfeited.
            self._discard(user_id)
            message = OUTCOME_MESSAGES[BlackjackOutcome.PLAYER_BUST]
            logger.info("%s busted with %d and lost %d BUX", user_id, score, session.bet)

        return HitResult(
            success=True,
            player_hand=_cards(session.player_hand),
            player_score=score,
            status=session.status,
            message=message,
        )

    def stand(self, user_id: str) -> StandResult:
        def _stand(current):
            if current is None:
                return Fail(ErrorKind.NOT_FOUND)
            session = BlackjackSession.from_record(current)
            if session.status is not SessionStatus.PLAYING:
                return Fail(ErrorKind.NOT_FOUND)
            while hand_score(session.dealer_hand) < DEALER_STANDS_ON:
                session.dealer_hand.append(session.draw())
            outcome, payout = settle_hand(
                hand_score(session.player_hand),
                hand_score(session.dealer_hand),
                session.bet,
            )
            session.status = SessionStatus.FINISHED
            session.outcome = outcome.value
            session.payout = payout
            return Commit(session.to_record())

        result = self._store.atomic_update(blackjack_key(user_id), _stand)
        if not result.committed:
            return StandResult(success=False, error_kind=result.error)

        session = BlackjackSession.from_record(result.value)
        outcome = BlackjackOutcome(session.outcome)
        if session.payout > 0:
            self._ledger.guaranteed_credit(user_id, session.payout, reason="blackjack payout")
        self._discard(user_id)

        logger.info(
            "%s stood on %d: %s, payout %d",
            user_id,
            hand_score(session.player_hand),
            outcome.value,
            session.payout,
        )
        return StandResult(
            success=True,
            dealer_hand=_cards(session.dealer_hand),
            dealer_score=hand_score(session.dealer_hand),
            player_score=hand_score(session.player_hand),
            outcome=outcome,
            payout=session.payout,
            message=OUTCOME_MESSAGES[outcome],
        )
