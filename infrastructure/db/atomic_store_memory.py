from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Mapping, Optional

from domain.repositories import AtomicStore, Commit, Fail, Transform, UpdateResult


class InMemoryAtomicStore(AtomicStore):
    """
    Process-local implementation of `AtomicStore`.

    A single lock guards the whole dict, so every read-modify-write is
    serialised. Values are deep-copied on the way in and out so callers
    never share a mutable reference with the store.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def atomic_update(self, key: str, fn: Transform) -> UpdateResult:
        with self._lock:
            current = copy.deepcopy(self._data.get(key))
            decision = fn(copy.deepcopy(current))
            if isinstance(decision, Commit):
                if decision.value is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = copy.deepcopy(decision.value)
                return UpdateResult(committed=True, value=copy.deepcopy(decision.value))
            if isinstance(decision, Fail):
                return UpdateResult(committed=False, value=current, error=decision.kind)
            return UpdateResult(committed=False, value=current)

    def read(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._data.get(key))

    def write(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def batch_write(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            for key, value in values.items():
                if value is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = copy.deepcopy(value)

    def scan(self, prefix: str) -> Dict[str, Any]:
        with self._lock:
            return {
                key: copy.deepcopy(value)
                for key, value in self._data.items()
                if key.startswith(prefix)
            }
