import pytest

from app.payouts.state_machine import (
    InvalidTransition,
    TERMINAL_STATUSES,
    assert_processing_invariant,
    assert_transition,
    predecessors,
)


def test_valid_transitions():
    assert_transition("pending", "recipient_resolving")
    assert_transition("recipient_resolving", "transfer_creating")
    assert_transition("transfer_creating", "processing")
    assert_transition("processing", "completed")
    assert_transition("processing", "failed")
    assert_transition("pending", "cancelled")


def test_invalid_transition_skipping_states():
    with pytest.raises(InvalidTransition):
        assert_transition("pending", "processing")
    with pytest.raises(InvalidTransition):
        assert_transition("recipient_resolving", "completed")


def test_terminal_states_cannot_transition():
    assert TERMINAL_STATUSES == {"completed", "failed", "cancelled"}
    with pytest.raises(InvalidTransition):
        assert_transition("completed", "failed")
    with pytest.raises(InvalidTransition):
        assert_transition("failed", "completed")
    with pytest.raises(InvalidTransition):
        assert_transition("cancelled", "pending")


def test_cancel_only_before_transfer_exists():
    with pytest.raises(InvalidTransition):
        assert_transition("transfer_creating", "cancelled")
    with pytest.raises(InvalidTransition):
        assert_transition("processing", "cancelled")


def test_predecessors():
    assert predecessors("completed") == {"transfer_creating", "processing"}
    assert predecessors("processing") == {"transfer_creating"}
    assert "completed" not in predecessors("failed")


def test_processing_requires_provider_transfer_id():
    with pytest.raises(ValueError):
        assert_processing_invariant("processing", None)
    assert_processing_invariant("processing", "tr-1")
    assert_processing_invariant("failed", None)
