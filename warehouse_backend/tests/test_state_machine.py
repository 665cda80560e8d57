"""
Parcel state machine validator tests.
"""

import pytest
from warehouse_backend.app.domain.lifecycle import state_machine
from warehouse_backend.app.domain.lifecycle.state_machine import TransitionRejection
from warehouse_backend.app.models.parcel_enums import ParcelState

S = ParcelState


@pytest.mark.parametrize("current,target", [
    (S.EXPECTED, S.ARRIVED),
    (S.ARRIVED, S.STORED),
    (S.STORED, S.DELIVERY_REQUESTED),
    (S.DELIVERY_REQUESTED, S.OUT_FOR_DELIVERY),
    (S.OUT_FOR_DELIVERY, S.DELIVERED),
])
def test_standard_forward_steps_are_accepted(current, target):
    decision = state_machine.validate_transition(current, target)
    assert decision.valid
    assert decision.reason is None


def test_same_state_is_rejected_before_lock():
    decision = state_machine.validate_transition(S.STORED, S.STORED, has_exception=True)
    assert not decision.valid
    assert decision.reason == TransitionRejection.ALREADY_IN_STATE
    assert "already in state" in decision.error


def test_skipping_states_is_rejected_with_expected_next_state():
    decision = state_machine.validate_transition(S.ARRIVED, S.DELIVERED)
    assert not decision.valid
    assert decision.reason == TransitionRejection.NOT_ALLOWED
    assert "STORED" in decision.error


def test_lock_rejects_even_valid_steps():
    decision = state_machine.validate_transition(S.ARRIVED, S.STORED, has_exception=True)
    assert not decision.valid
    assert decision.is_lock_rejection
    assert "unresolved exception" in decision.error


def test_admin_override_bypasses_lock():
    decision = state_machine.validate_transition(S.ARRIVED, S.STORED, has_exception=True, admin_override=True)
    assert decision.valid


@pytest.mark.parametrize("current", [S.DELIVERED, S.OUT_FOR_DELIVERY, S.DELIVERY_REQUESTED])
def test_admin_can_move_back_to_stored(current):
    assert state_machine.validate_transition(current, S.STORED, admin_override=True).valid
    assert not state_machine.validate_transition(current, S.STORED).valid


def test_admin_override_does_not_allow_arbitrary_jumps():
    decision = state_machine.validate_transition(S.ARRIVED, S.DELIVERED, admin_override=True)
    assert not decision.valid
    assert decision.reason == TransitionRejection.NOT_ALLOWED


def test_delivered_is_terminal():
    assert state_machine.get_valid_next_states(S.DELIVERED) == []
    assert state_machine.get_valid_next_states(S.DELIVERED, is_admin=True) == [S.STORED]


def test_next_states_for_admin_include_overrides():
    assert state_machine.get_valid_next_states(S.OUT_FOR_DELIVERY) == [S.DELIVERED]
    assert state_machine.get_valid_next_states(S.OUT_FOR_DELIVERY, is_admin=True) == [S.DELIVERED, S.STORED]


def test_skip_and_backwards_helpers():
    assert state_machine.is_skipping_states(S.ARRIVED, S.DELIVERY_REQUESTED)
    assert not state_machine.is_skipping_states(S.ARRIVED, S.STORED)
    assert state_machine.is_backwards_transition(S.DELIVERED, S.STORED)
    assert not state_machine.is_backwards_transition(S.STORED, S.DELIVERY_REQUESTED)


def test_exception_state_lock():
    assert state_machine.validate_exception_state_lock(S.DELIVERED, has_exception=False)
    assert state_machine.validate_exception_state_lock(S.STORED, has_exception=True)
    for target in state_machine.EXCEPTION_LOCKED_STATES:
        assert not state_machine.validate_exception_state_lock(target, has_exception=True)


def test_decision_is_immutable():
    decision = state_machine.validate_transition(S.ARRIVED, S.STORED)
    with pytest.raises(Exception):
        decision.valid = False
