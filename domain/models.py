from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from fractions import Fraction
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Account:
    """
    A player's BUX balance.

    The record is owned by the store; components re-read it for every
    operation instead of keeping a copy around.
    """

    id: str
    balance: int
    created_at: str
    display_name: str = ""

    def to_record(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "createdAt": self.created_at,
            "displayName": self.display_name,
        }

    @staticmethod
    def from_record(user_id: str, record: Dict[str, Any]) -> "Account":
        return Account(
            id=user_id,
            balance=int(record.get("balance", 0)),
            created_at=record.get("createdAt", ""),
            display_name=record.get("displayName", ""),
        )


@dataclass
class ValueCode:
    """A single-use code worth `amount` BUX, paid for up front by its creator."""

    code: str
    amount: int
    creator_id: str
    created_at: str
    redeemed_by: Optional[str] = None
    redeemed_at: Optional[str] = None

    @property
    def is_used(self) -> bool:
        return self.redeemed_by is not None

    def to_record(self) -> Dict[str, Any]:
        return {
            "amount": self.amount,
            "createdBy": self.creator_id,
            "createdAt": self.created_at,
            "isUsed": self.is_used,
            "redeemedBy": self.redeemed_by,
            "redeemedAt": self.redeemed_at,
        }

    @staticmethod
    def from_record(code: str, record: Dict[str, Any]) -> "ValueCode":
        return ValueCode(
            code=code,
            amount=int(record["amount"]),
            creator_id=record["createdBy"],
            created_at=record.get("createdAt", ""),
            redeemed_by=record.get("redeemedBy"),
            redeemed_at=record.get("redeemedAt"),
        )


class OutcomeKind(str, Enum):
    WIN = "win"
    NEUTRAL = "neutral"
    LOSS = "loss"
    BANKRUPT = "bankrupt"


BANKRUPT = Fraction(-1)


@dataclass(frozen=True)
class WheelSegment:
    label: str
    multiplier: Fraction

    @property
    def is_bankrupt(self) -> bool:
        return self.multiplier == BANKRUPT


RANKS = ["2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A"]
SUITS = ["♥", "♦", "♠", "♣"]


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    @property
    def value(self) -> int:
        """Nominal blackjack value; aces are reduced by the hand score."""

        if self.rank in ("J", "Q", "K"):
            return 10
        if self.rank == "A":
            return 11
        return int(self.rank)

    def to_record(self) -> Dict[str, Any]:
        return {"rank": self.rank, "suit": self.suit, "value": self.value}

    @staticmethod
    def from_record(record: Dict[str, Any]) -> "Card":
        return Card(rank=record["rank"], suit=record["suit"])


class SessionStatus(str, Enum):
    PLAYING = "playing"
    BUSTED = "busted"
    FINISHED = "finished"


class BlackjackOutcome(str, Enum):
    PLAYER_BUST = "player_bust"
    DEALER_BUST = "dealer_bust"
    PLAYER_WIN = "player_win"
    DEALER_WIN = "dealer_win"
    PUSH = "push"


@dataclass
class BlackjackSession:
    """
    Server-held blackjack state for one player.

    `deck` holds the remaining cards in draw order: `deck[0]` is the
    next card dealt.
    """

    owner_id: str
    deck: List[Card]
    player_hand: List[Card]
    dealer_hand: List[Card]
    bet: int
    status: SessionStatus = SessionStatus.PLAYING
    payout: int = 0
    outcome: Optional[str] = None

    def draw(self) -> Card:
        return self.deck.pop(0)

    def to_record(self) -> Dict[str, Any]:
        return {
            "ownerId": self.owner_id,
            "deck": [c.to_record() for c in self.deck],
            "playerHand": [c.to_record() for c in self.player_hand],
            "dealerHand": [c.to_record() for c in self.dealer_hand],
            "bet": self.bet,
            "status": self.status.value,
            "payout": self.payout,
            "outcome": self.outcome,
        }

    @staticmethod
    def from_record(record: Dict[str, Any]) -> "BlackjackSession":
        return BlackjackSession(
            owner_id=record["ownerId"],
            deck=[Card.from_record(c) for c in record.get("deck") or []],
            player_hand=[Card.from_record(c) for c in record.get("playerHand") or []],
            dealer_hand=[Card.from_record(c) for c in record.get("dealerHand") or []],
            bet=int(record["bet"]),
            status=SessionStatus(record.get("status", SessionStatus.PLAYING.value)),
            payout=int(record.get("payout", 0)),
            outcome=record.get("outcome"),
        )


class BankStatus(str, Enum):
    SAFE = "safe"
    IN_PROGRESS = "in_progress"


@dataclass
class HeistParticipant:
    user_id: str
    status: str = "playing"
    payout: int = 0

    def to_record(self) -> Dict[str, Any]:
        return {"status": self.status, "payout": self.payout}


@dataclass
class HeistState:
    bank_status: BankStatus
    participants: List[str] = field(default_factory=list)
