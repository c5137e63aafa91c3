# app/payouts/state_machine.py
from app.payouts.model import (
    PENDING,
    RECIPIENT_RESOLVING,
    TRANSFER_CREATING,
    PROCESSING,
    COMPLETED,
    FAILED,
    CANCELLED,
)


class InvalidTransition(Exception):
    pass


ALLOWED = {
    PENDING: {RECIPIENT_RESOLVING, FAILED, CANCELLED},
    RECIPIENT_RESOLVING: {TRANSFER_CREATING, FAILED, CANCELLED},
    # transfer exists at the provider once its id is attached, so a callback
    # can settle it before the engine records PROCESSING
    TRANSFER_CREATING: {PROCESSING, COMPLETED, FAILED},
    PROCESSING: {COMPLETED, FAILED},
    COMPLETED: set(),
    FAILED: set(),
    CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, nxt in ALLOWED.items() if not nxt)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def predecessors(new: str) -> frozenset[str]:
    return frozenset(old for old, nxt in ALLOWED.items() if new in nxt)


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition(f"Illegal payout transition: {old} -> {new}")


def assert_processing_invariant(new_status: str, provider_transfer_id: str | None) -> None:
    """
    Invariant: a payout in PROCESSING must point at a provider transfer.
    """
    if new_status == PROCESSING and not provider_transfer_id:
        raise ValueError("Invariant violation: status=processing requires provider_transfer_id")
