import os
import tempfile
import threading
import unittest

from application.codes import CodeRegistry, generate_code, normalize_code
from application.ledger import BalanceLedger
from domain.errors import ErrorKind, ReconciliationError
from domain.models import ValueCode
from domain.repositories import account_key, code_key
from infrastructure.db.atomic_store_memory import InMemoryAtomicStore
from infrastructure.db.atomic_store_sqlite import SqliteAtomicStore

from fakes import FlakyStore


class CodeGenerationTests(unittest.TestCase):
    def test_generated_codes_have_expected_format(self):
        for _ in range(50):
            self.assertRegex(generate_code(), r"^LBX-[A-Z0-9]{8}$")

    def test_generated_codes_differ(self):
        self.assertEqual(len({generate_code() for _ in range(200)}), 200)

    def test_normalize_code(self):
        self.assertEqual(normalize_code("  lbx-ab12cd34 \n"), "LBX-AB12CD34")


class CodeRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryAtomicStore()
        self.ledger = BalanceLedger(self.store, retry_delay=0)
        self.registry = CodeRegistry(self.store, self.ledger)
        self.ledger.open_account("creator", starting_balance=200)
        self.ledger.open_account("other", starting_balance=0)

    def balance(self, user_id):
        return self.ledger.get_account(user_id).balance

    def stored_code(self, code):
        return ValueCode.from_record(code, self.store.read(code_key(code)))

    def test_issue_then_redeem_moves_value(self):
        issued = self.registry.issue("creator", 50)
        self.assertTrue(issued.success)
        self.assertEqual(issued.balance, 150)
        self.assertEqual(self.balance("creator"), 150)

        code = self.stored_code(issued.code)
        self.assertEqual(code.amount, 50)
        self.assertEqual(code.creator_id, "creator")
        self.assertFalse(code.is_used)

        redeemed = self.registry.redeem("other", issued.code)
        self.assertTrue(redeemed.success)
        self.assertEqual(redeemed.amount, 50)
        self.assertEqual(self.balance("other"), 50)

        code = self.stored_code(issued.code)
        self.assertTrue(code.is_used)
        self.assertEqual(code.redeemed_by, "other")
        self.assertIsNotNone(code.redeemed_at)

        again = self.registry.redeem("other", issued.code)
        self.assertEqual(again.error_kind, ErrorKind.ALREADY_REDEEMED)
        self.assertEqual(self.balance("other"), 50)

    def test_issue_with_insufficient_funds_writes_nothing(self):
        result = self.registry.issue("creator", 201)
        self.assertEqual(result.error_kind, ErrorKind.INSUFFICIENT_FUNDS)
        self.assertEqual(self.balance("creator"), 200)
        self.assertEqual(self.store.scan("codes/"), {})

    def test_creator_cannot_redeem_own_code(self):
        issued = self.registry.issue("creator", 20)
        result = self.registry.redeem("creator", issued.code)
        self.assertEqual(result.error_kind, ErrorKind.SELF_REDEEM)
        self.assertFalse(self.stored_code(issued.code).is_used)
        self.assertEqual(self.balance("creator"), 180)

    def test_unknown_code(self):
        result = self.registry.redeem("other", "LBX-NOPE0000")
        self.assertEqual(result.error_kind, ErrorKind.NOT_FOUND)

    def test_blank_code_is_invalid(self):
        self.assertEqual(self.registry.redeem("other", "   ").error_kind, ErrorKind.INVALID_ARGUMENT)

    def test_redeem_normalizes_input(self):
        issued = self.registry.issue("creator", 10)
        result = self.registry.redeem("other", f"  {issued.code.lower()} ")
        self.assertTrue(result.success)
        self.assertEqual(self.balance("other"), 10)

    def test_collision_regenerates_code(self):
        self.store.write(code_key("LBX-TAKEN000"), {"amount": 1, "createdBy": "x"})
        candidates = iter(["LBX-TAKEN000", "LBX-FRESH000"])
        registry = CodeRegistry(self.store, self.ledger, code_factory=lambda: next(candidates))

        result = registry.issue("creator", 30)
        self.assertTrue(result.success)
        self.assertEqual(result.code, "LBX-FRESH000")
        # The existing code is untouched.
        self.assertEqual(self.store.read(code_key("LBX-TAKEN000"))["amount"], 1)

    def test_refund_when_every_candidate_collides(self):
        self.store.write(code_key("LBX-TAKEN000"), {"amount": 1, "createdBy": "x"})
        registry = CodeRegistry(
            self.store, self.ledger, code_factory=lambda: "LBX-TAKEN000", max_attempts=3
        )
        result = registry.issue("creator", 30)
        self.assertEqual(result.error_kind, ErrorKind.INTERNAL)
        self.assertEqual(self.balance("creator"), 200)


class RedeemCreditRetryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = FlakyStore(key=account_key("other"), passes=1)
        self.ledger = BalanceLedger(self.store, retry_attempts=3, retry_delay=0)
        self.registry = CodeRegistry(self.store, self.ledger)
        self.ledger.open_account("creator", starting_balance=100)
        self.ledger.open_account("other", starting_balance=0)
        self.code = self.registry.issue("creator", 40).code

    def test_credit_after_claim_is_retried(self):
        self.store.failures = 2

        with self.assertLogs("application.retry", level="WARNING"):
            result = self.registry.redeem("other", self.code)

        self.assertTrue(result.success)
        self.assertEqual(result.amount, 40)
        self.assertEqual(self.store.failed_calls, 2)
        self.assertEqual(self.ledger.get_account("other").balance, 40)

    def test_lost_credit_escalates_and_code_stays_spent(self):
        self.store.failures = 10

        with self.assertLogs("application.retry", level="CRITICAL") as logs:
            with self.assertRaises(ReconciliationError) as ctx:
                self.registry.redeem("other", self.code)

        self.assertEqual(ctx.exception.user_id, "other")
        self.assertEqual(ctx.exception.amount, 40)
        self.assertTrue(any("RECONCILIATION REQUIRED" in line for line in logs.output))
        self.assertEqual(self.store.failed_calls, 3)

        record = self.store.read(code_key(self.code))
        self.assertTrue(record["isUsed"])
        self.assertEqual(record["redeemedBy"], "other")

        # Once the store is back, the claimed code cannot pay out a second time.
        self.store.failures = 0
        again = self.registry.redeem("other", self.code)
        self.assertEqual(again.error_kind, ErrorKind.ALREADY_REDEEMED)
        self.assertEqual(self.ledger.get_account("other").balance, 0)


class ConcurrentRedemptionTests(unittest.TestCase):
    workers = 12

    def make_store(self):
        return InMemoryAtomicStore()

    def test_exactly_one_concurrent_redemption_succeeds(self):
        store = self.make_store()
        ledger = BalanceLedger(store, retry_delay=0)
        registry = CodeRegistry(store, ledger)
        ledger.open_account("creator", starting_balance=100)
        code = registry.issue("creator", 100).code

        barrier = threading.Barrier(self.workers)
        results = []
        lock = threading.Lock()

        def _redeem(user_id):
            barrier.wait()
            result = registry.redeem(user_id, code)
            with lock:
                results.append(result)

        threads = [
            threading.Thread(target=_redeem, args=(f"user-{i}",)) for i in range(self.workers)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r.success]
        self.assertEqual(len(winners), 1)
        self.assertTrue(
            all(r.error_kind == ErrorKind.ALREADY_REDEEMED for r in results if not r.success)
        )

        total = sum(a.balance for a in ledger.list_accounts())
        self.assertEqual(total, 100)


class SqliteConcurrentRedemptionTests(ConcurrentRedemptionTests):
    workers = 8

    def make_store(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        return SqliteAtomicStore(os.path.join(tmp.name, "bux.db"), timeout=30.0)


if __name__ == "__main__":
    unittest.main()
