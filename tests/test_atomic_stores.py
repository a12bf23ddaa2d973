import os
import tempfile
import threading
import unittest

from domain.errors import ErrorKind
from domain.repositories import Abort, Commit, Fail
from infrastructure.db.atomic_store_memory import InMemoryAtomicStore
from infrastructure.db.atomic_store_sqlite import SqliteAtomicStore


def _increment(current):
    return Commit((current or 0) + 1)


class AtomicStoreContract:
    """Behaviour every `AtomicStore` implementation must share."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self) -> None:
        self.store = self.make_store()

    def test_commit_writes_new_value(self):
        result = self.store.atomic_update("k", lambda current: Commit({"n": 1}))
        self.assertTrue(result.committed)
        self.assertEqual(result.value, {"n": 1})
        self.assertEqual(self.store.read("k"), {"n": 1})

    def test_abort_leaves_key_untouched(self):
        self.store.write("k", {"n": 1})
        result = self.store.atomic_update("k", lambda current: Abort())
        self.assertFalse(result.committed)
        self.assertIsNone(result.error)
        self.assertEqual(result.value, {"n": 1})
        self.assertEqual(self.store.read("k"), {"n": 1})

    def test_fail_reports_error_kind(self):
        result = self.store.atomic_update("k", lambda current: Fail(ErrorKind.NOT_FOUND))
        self.assertFalse(result.committed)
        self.assertEqual(result.error, ErrorKind.NOT_FOUND)
        self.assertIsNone(self.store.read("k"))

    def test_commit_none_deletes_key(self):
        self.store.write("k", 5)
        result = self.store.atomic_update("k", lambda current: Commit(None))
        self.assertTrue(result.committed)
        self.assertIsNone(self.store.read("k"))

    def test_transform_cannot_mutate_stored_value_on_abort(self):
        self.store.write("k", {"n": 1})

        def _mutate_then_abort(current):
            current["n"] = 99
            return Abort()

        self.store.atomic_update("k", _mutate_then_abort)
        self.assertEqual(self.store.read("k"), {"n": 1})

    def test_batch_write_and_scan(self):
        self.store.write("heist/participants/old", {"status": "playing"})
        self.store.batch_write(
            {
                "heist/bank": {"status": "safe"},
                "heist/participants/a": {"status": "playing", "payout": 0},
                "heist/participants/old": None,
            }
        )
        self.assertEqual(self.store.read("heist/bank"), {"status": "safe"})
        self.assertEqual(
            self.store.scan("heist/participants/"),
            {"heist/participants/a": {"status": "playing", "payout": 0}},
        )

    def test_scan_does_not_match_other_prefixes(self):
        self.store.write("users/a", 1)
        self.store.write("usersx/b", 2)
        self.assertEqual(self.store.scan("users/"), {"users/a": 1})

    def test_concurrent_increments_are_not_lost(self):
        workers = 8
        per_worker = 25
        barrier = threading.Barrier(workers)

        def _work():
            barrier.wait()
            for _ in range(per_worker):
                self.store.atomic_update("counter", _increment)

        threads = [threading.Thread(target=_work) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(self.store.read("counter"), workers * per_worker)


class InMemoryAtomicStoreTests(AtomicStoreContract, unittest.TestCase):
    def make_store(self):
        return InMemoryAtomicStore()

    def test_read_returns_a_copy(self):
        self.store.write("k", {"n": 1})
        value = self.store.read("k")
        value["n"] = 2
        self.assertEqual(self.store.read("k"), {"n": 1})


class SqliteAtomicStoreTests(AtomicStoreContract, unittest.TestCase):
    def make_store(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        return SqliteAtomicStore(os.path.join(self._tmp.name, "bux.db"), timeout=30.0)

    def test_values_survive_a_new_store_instance(self):
        self.store.write("users/a", {"balance": 7})
        reopened = SqliteAtomicStore(os.path.join(self._tmp.name, "bux.db"))
        self.assertEqual(reopened.read("users/a"), {"balance": 7})


if __name__ == "__main__":
    unittest.main()
