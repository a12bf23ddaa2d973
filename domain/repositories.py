from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Union

from .errors import ErrorKind


@dataclass(frozen=True)
class Commit:
    """Write `value` to the key. A value of None deletes the key."""

    value: Any


@dataclass(frozen=True)
class Abort:
    """Leave the key untouched."""


@dataclass(frozen=True)
class Fail:
    """Leave the key untouched and report `kind` to the caller."""

    kind: ErrorKind


Decision = Union[Commit, Abort, Fail]
Transform = Callable[[Optional[Any]], Decision]


@dataclass
class UpdateResult:
    """
    Outcome of `AtomicStore.atomic_update`.

    `value` is the value stored under the key after the call: the new
    value when committed, the untouched current value otherwise.
    `error` is set only when the transform returned `Fail`.
    """

    committed: bool
    value: Optional[Any] = None
    error: Optional[ErrorKind] = None


class AtomicStore(Protocol):
    """
    Abstraction over a key-addressed store with per-key atomic updates.

    Values are plain JSON-compatible data (dicts, lists, str, int, None).

    Implementations are responsible for:
    - Serialising concurrent `atomic_update` calls on the same key so that
      no update is ever lost.
    - Hiding any SQL / driver details from the application layer and
      raising `StoreError` for driver failures.
    """

    def atomic_update(self, key: str, fn: Transform) -> UpdateResult:
        """
        Apply `fn` to the current value of `key` (None if absent) as one
        indivisible read-modify-write.

        `fn` may be called more than once and must not have side effects.
        """

        ...

    def read(self, key: str) -> Optional[Any]:
        """Return the current value of `key`, or None if absent."""

        ...

    def write(self, key: str, value: Any) -> None:
        """Unconditionally store `value`. Not atomic with any read."""

        ...

    def delete(self, key: str) -> None:
        ...

    def batch_write(self, values: Mapping[str, Any]) -> None:
        """
        Write several keys in one atomic step. A None value deletes the key.
        """

        ...

    def scan(self, prefix: str) -> Dict[str, Any]:
        """Return every key starting with `prefix` mapped to its value."""

        ...


def account_key(user_id: str) -> str:
    return f"users/{user_id}"


def code_key(code: str) -> str:
    return f"codes/{code}"


def blackjack_key(user_id: str) -> str:
    return f"blackjack_games/{user_id}"


HEIST_BANK_KEY = "heist/bank"
HEIST_PARTICIPANTS_PREFIX = "heist/participants/"


def heist_participant_key(user_id: str) -> str:
    return f"{HEIST_PARTICIPANTS_PREFIX}{user_id}"
