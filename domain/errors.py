from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """
    Stable, machine-checkable failure kinds returned by every operation.

    Callers may retry on `CONFLICT`. They must not retry on
    `INSUFFICIENT_FUNDS` or `INVALID_ARGUMENT` without changing input.
    """

    UNAUTHENTICATED = "unauthenticated"
    INVALID_ARGUMENT = "invalid_argument"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_FOUND = "not_found"
    ALREADY_REDEEMED = "already_redeemed"
    SELF_TRANSFER = "self_transfer"
    SELF_REDEEM = "self_redeem"
    INVALID_RECIPIENT = "invalid_recipient"
    ALREADY_IN_PROGRESS = "already_in_progress"
    CONFLICT = "conflict"
    INTERNAL = "internal"


DEFAULT_MESSAGES = {
    ErrorKind.UNAUTHENTICATED: "You need to be signed in to do that.",
    ErrorKind.INVALID_ARGUMENT: "Invalid request.",
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient balance.",
    ErrorKind.NOT_FOUND: "Not found.",
    ErrorKind.ALREADY_REDEEMED: "This code has already been redeemed.",
    ErrorKind.SELF_TRANSFER: "You cannot send BUX to yourself.",
    ErrorKind.SELF_REDEEM: "You cannot redeem your own code.",
    ErrorKind.INVALID_RECIPIENT: "Recipient does not have an account.",
    ErrorKind.ALREADY_IN_PROGRESS: "Already in progress.",
    ErrorKind.CONFLICT: "The request collided with another one, please retry.",
    ErrorKind.INTERNAL: "Internal server error.",
}


class StoreError(Exception):
    """Raised by store implementations when the backing database fails."""


class StoreConflictError(StoreError):
    """The store could not obtain its lock in time. Safe to retry."""


class ReconciliationError(Exception):
    """
    A step that must follow an already-committed mutation could not be
    completed after every retry. The ledger now needs manual repair.
    """

    def __init__(self, user_id: str, amount: int, reason: str) -> None:
        super().__init__(
            f"reconciliation required: {reason} (user={user_id}, amount={amount})"
        )
        self.user_id = user_id
        self.amount = amount
        self.reason = reason
