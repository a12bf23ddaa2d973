import unittest

from application.blackjack import (
    BlackjackEngine,
    create_deck,
    hand_score,
    settle_hand,
)
from application.ledger import BalanceLedger
from domain.errors import ErrorKind, ReconciliationError
from domain.models import BlackjackOutcome, SessionStatus
from domain.repositories import account_key, blackjack_key
from infrastructure.db.atomic_store_memory import InMemoryAtomicStore

from fakes import FlakyStore, StackedDeck, cards


class ScoringTests(unittest.TestCase):
    def test_card_values(self):
        self.assertEqual([c.value for c in cards("2♠", "10♥", "J♦", "Q♣", "K♠", "A♥")],
                         [2, 10, 10, 10, 10, 11])

    def test_soft_blackjack(self):
        self.assertEqual(hand_score(cards("A♠", "10♥")), 21)

    def test_aces_are_reduced_one_at_a_time(self):
        self.assertEqual(hand_score(cards("A♠", "A♥", "9♦")), 21)
        self.assertEqual(hand_score(cards("A♠", "A♥")), 12)
        self.assertEqual(hand_score(cards("A♠", "A♥", "A♦", "A♣")), 14)
        self.assertEqual(hand_score(cards("A♠", "9♥", "5♦")), 15)

    def test_bust(self):
        self.assertEqual(hand_score(cards("K♠", "Q♥", "2♦")), 22)

    def test_deck_has_52_unique_cards(self):
        deck = create_deck()
        self.assertEqual(len(deck), 52)
        self.assertEqual(len(set(deck)), 52)

    def test_settle_hand(self):
        self.assertEqual(settle_hand(20, 22, 10), (BlackjackOutcome.DEALER_BUST, 20))
        self.assertEqual(settle_hand(20, 18, 10), (BlackjackOutcome.PLAYER_WIN, 20))
        self.assertEqual(settle_hand(18, 20, 10), (BlackjackOutcome.DEALER_WIN, 0))
        self.assertEqual(settle_hand(19, 19, 10), (BlackjackOutcome.PUSH, 10))
        self.assertEqual(settle_hand(23, 22, 10), (BlackjackOutcome.PLAYER_BUST, 0))


class BlackjackEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryAtomicStore()
        self.ledger = BalanceLedger(self.store, retry_delay=0)
        self.ledger.open_account("player", starting_balance=100)

    def engine(self, *top):
        return BlackjackEngine(self.store, self.ledger, rng=StackedDeck(*top))

    def balance(self):
        return self.ledger.get_account("player").balance

    def test_deal_debits_bet_and_hides_hole_card(self):
        engine = self.engine("10♠", "9♥", "10♦", "7♣")
        result = engine.deal("player", 20)

        self.assertTrue(result.success)
        self.assertEqual(self.balance(), 80)
        self.assertEqual(result.player_score, 19)
        self.assertEqual(result.status, SessionStatus.PLAYING)
        self.assertEqual([c["rank"] for c in result.player_hand], ["10", "9"])
        self.assertEqual(result.dealer_hand[0]["rank"], "10")
        self.assertEqual(result.dealer_hand[1], {"rank": "?", "suit": "?", "value": 0})

        session = engine.get_session("player")
        self.assertEqual(len(session.deck), 48)
        self.assertEqual([str(c) for c in session.dealer_hand], ["10♦", "7♣"])

    def test_deal_with_insufficient_funds(self):
        result = self.engine().deal("player", 101)
        self.assertEqual(result.error_kind, ErrorKind.INSUFFICIENT_FUNDS)
        self.assertIsNone(self.store.read(blackjack_key("player")))
        self.assertEqual(self.balance(), 100)

    def test_second_deal_is_refused_without_debit(self):
        engine = self.engine("10♠", "9♥", "10♦", "7♣")
        engine.deal("player", 20)
        result = engine.deal("player", 20)
        self.assertEqual(result.error_kind, ErrorKind.ALREADY_IN_PROGRESS)
        self.assertEqual(self.balance(), 80)

    def test_stand_player_wins(self):
        engine = self.engine("10♠", "9♥", "10♦", "7♣")
        engine.deal("player", 20)
        result = engine.stand("player")

        self.assertTrue(result.success)
        self.assertEqual(result.outcome, BlackjackOutcome.PLAYER_WIN)
        self.assertEqual(result.dealer_score, 17)
        self.assertEqual(result.payout, 40)
        self.assertEqual(self.balance(), 120)
        self.assertIsNone(engine.get_session("player"))

    def test_dealer_draws_below_17_and_busts(self):
        engine = self.engine("10♠", "8♥", "10♦", "6♣", "K♠")
        engine.deal("player", 10)
        result = engine.stand("player")

        self.assertEqual(result.outcome, BlackjackOutcome.DEALER_BUST)
        self.assertEqual(len(result.dealer_hand), 3)
        self.assertEqual(result.dealer_score, 26)
        self.assertEqual(self.balance(), 110)

    def test_dealer_wins(self):
        engine = self.engine("10♠", "6♥", "10♦", "8♣")
        engine.deal("player", 10)
        result = engine.stand("player")
        self.assertEqual(result.outcome, BlackjackOutcome.DEALER_WIN)
        self.assertEqual(result.payout, 0)
        self.assertEqual(self.balance(), 90)

    def test_push_returns_bet(self):
        engine = self.engine("10♠", "7♥", "10♦", "7♣")
        engine.deal("player", 10)
        result = engine.stand("player")
        self.assertEqual(result.outcome, BlackjackOutcome.PUSH)
        self.assertEqual(result.payout, 10)
        self.assertEqual(self.balance(), 100)

    def test_hit_draws_next_card(self):
        engine = self.engine("5♠", "4♥", "10♦", "7♣", "3♦")
        engine.deal("player", 10)
        result = engine.hit("player")

        self.assertTrue(result.success)
        self.assertEqual(result.player_score, 12)
        self.assertEqual(result.status, SessionStatus.PLAYING)
        self.assertEqual(len(engine.get_session("player").player_hand), 3)

    def test_hit_bust_forfeits_bet_and_ends_session(self):
        engine = self.engine("K♠", "Q♥", "10♦", "7♣", "2♦")
        engine.deal("player", 10)
        result = engine.hit("player")

        self.assertEqual(result.status, SessionStatus.BUSTED)
        self.assertEqual(result.player_score, 22)
        self.assertIsNone(engine.get_session("player"))
        self.assertEqual(self.balance(), 90)
        self.assertEqual(engine.stand("player").error_kind, ErrorKind.NOT_FOUND)

    def test_actions_without_session(self):
        engine = self.engine()
        self.assertEqual(engine.hit("player").error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(engine.stand("player").error_kind, ErrorKind.NOT_FOUND)

    def test_duplicate_stand_pays_once(self):
        engine = self.engine("10♠", "9♥", "10♦", "7♣")
        engine.deal("player", 20)
        first = engine.stand("player")
        second = engine.stand("player")

        self.assertTrue(first.success)
        self.assertEqual(second.error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.balance(), 120)

    def test_finished_session_left_behind_does_not_block_a_new_deal(self):
        engine = self.engine("10♠", "9♥", "10♦", "7♣")
        engine.deal("player", 20)
        session = engine.get_session("player")
        session.status = SessionStatus.FINISHED
        self.store.write(blackjack_key("player"), session.to_record())

        self.assertTrue(engine.deal("player", 20).success)

    def test_default_shuffle_deals_from_a_full_deck(self):
        engine = BlackjackEngine(self.store, self.ledger)
        result = engine.deal("player", 10)
        self.assertTrue(result.success)
        session = engine.get_session("player")
        everything = session.deck + session.player_hand + session.dealer_hand
        self.assertEqual(len(set(everything)), 52)


class StandPayoutRetryTests(unittest.TestCase):
    def setUp(self) -> None:
        # Opening the account and the deal's debit go through before failures start.
        self.store = FlakyStore(key=account_key("player"), passes=2)
        self.ledger = BalanceLedger(self.store, retry_attempts=3, retry_delay=0)
        self.ledger.open_account("player", starting_balance=100)
        self.engine = BlackjackEngine(
            self.store, self.ledger, rng=StackedDeck("10♠", "9♥", "10♦", "7♣")
        )
        self.engine.deal("player", 20)

    def test_payout_is_retried(self):
        self.store.failures = 2

        with self.assertLogs("application.retry", level="WARNING"):
            result = self.engine.stand("player")

        self.assertTrue(result.success)
        self.assertEqual(result.payout, 40)
        self.assertEqual(self.store.failed_calls, 2)
        self.assertEqual(self.ledger.get_account("player").balance, 120)
        self.assertIsNone(self.engine.get_session("player"))

    def test_lost_payout_escalates_and_cannot_be_paid_twice(self):
        self.store.failures = 10

        with self.assertLogs("application.retry", level="CRITICAL"):
            with self.assertRaises(ReconciliationError) as ctx:
                self.engine.stand("player")

        self.assertEqual(ctx.exception.amount, 40)
        self.assertEqual(self.store.failed_calls, 3)
        session = self.engine.get_session("player")
        self.assertEqual(session.status, SessionStatus.FINISHED)
        self.assertEqual(session.payout, 40)

        self.store.failures = 0
        self.assertEqual(self.engine.stand("player").error_kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.ledger.get_account("player").balance, 80)


if __name__ == "__main__":
    unittest.main()
