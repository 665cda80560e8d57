"""
Parcel State Transition Validator.

Pure decision functions over `ParcelState`. Nothing here touches the
database; services call `validate_transition` and act on the decision.

Lifecycle:
    EXPECTED → ARRIVED → STORED → DELIVERY_REQUESTED → OUT_FOR_DELIVERY → DELIVERED

No step may be skipped and nothing moves backwards, except for the small
set of admin override transitions back to STORED.
"""

import enum
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from warehouse_backend.app.models.parcel_enums import ParcelState

STATE_ORDER: Tuple[ParcelState, ...] = (
    ParcelState.EXPECTED,
    ParcelState.ARRIVED,
    ParcelState.STORED,
    ParcelState.DELIVERY_REQUESTED,
    ParcelState.OUT_FOR_DELIVERY,
    ParcelState.DELIVERED,
)

STANDARD_TRANSITIONS: Dict[ParcelState, Tuple[ParcelState, ...]] = {
    ParcelState.EXPECTED: (ParcelState.ARRIVED,),
    ParcelState.ARRIVED: (ParcelState.STORED,),
    ParcelState.STORED: (ParcelState.DELIVERY_REQUESTED,),
    ParcelState.DELIVERY_REQUESTED: (ParcelState.OUT_FOR_DELIVERY,),
    ParcelState.OUT_FOR_DELIVERY: (ParcelState.DELIVERED,),
    ParcelState.DELIVERED: (),  # terminal
}

# Corrective moves only an admin may make
ADMIN_OVERRIDE_TRANSITIONS: Dict[ParcelState, Tuple[ParcelState, ...]] = {
    ParcelState.DELIVERED: (ParcelState.STORED,),  # incorrect delivery
    ParcelState.OUT_FOR_DELIVERY: (ParcelState.STORED,),  # delivery failed
    ParcelState.DELIVERY_REQUESTED: (ParcelState.STORED,),  # user cancellation
}

# States a parcel with an open exception may never enter
EXCEPTION_LOCKED_STATES: Tuple[ParcelState, ...] = (
    ParcelState.DELIVERY_REQUESTED,
    ParcelState.OUT_FOR_DELIVERY,
    ParcelState.DELIVERED,
)

TRANSITION_RULES: Dict[ParcelState, str] = {
    ParcelState.EXPECTED: "Expected parcels can only move to ARRIVED once physically received",
    ParcelState.ARRIVED: "Arrived parcels must be processed and moved to STORED",
    ParcelState.STORED: "Stored parcels can only move to DELIVERY_REQUESTED",
    ParcelState.DELIVERY_REQUESTED: "Delivery requested parcels move to OUT_FOR_DELIVERY when dispatched",
    ParcelState.OUT_FOR_DELIVERY: "Out for delivery parcels move to DELIVERED on completion",
    ParcelState.DELIVERED: "DELIVERED is terminal, no further transitions are allowed",
}


class TransitionRejection(str, enum.Enum):
    """Why a transition was rejected."""
    ALREADY_IN_STATE = "ALREADY_IN_STATE"
    EXCEPTION_LOCKED = "EXCEPTION_LOCKED"
    NOT_ALLOWED = "NOT_ALLOWED"


@dataclass(frozen=True)
class TransitionDecision:
    from_state: ParcelState
    to_state: ParcelState
    valid: bool
    reason: Optional[TransitionRejection] = None
    error: Optional[str] = None

    @property
    def is_lock_rejection(self) -> bool:
        return self.reason == TransitionRejection.EXCEPTION_LOCKED


def validate_transition(
    current: ParcelState,
    target: ParcelState,
    has_exception: bool = False,
    admin_override: bool = False,
) -> TransitionDecision:
    """
    Decide whether `current` → `target` is allowed.

    Rules, first match wins:
    1. Same state is rejected.
    2. A locked parcel is rejected unless this is an admin override.
    3. A target outside the standard next step is accepted only for an admin
       override listed in ADMIN_OVERRIDE_TRANSITIONS.

    Args:
        current: Current parcel state
        target: Requested state
        has_exception: Whether the parcel has an open exception
        admin_override: Whether the caller is an admin

    Returns:
        Immutable TransitionDecision
    """
    if current == target:
        return TransitionDecision(
            current, target, False,
            TransitionRejection.ALREADY_IN_STATE,
            f"Parcel is already in state {target.value}",
        )

    if has_exception and not admin_override:
        return TransitionDecision(
            current, target, False,
            TransitionRejection.EXCEPTION_LOCKED,
            "Parcel has an unresolved exception. Resolve it before changing state.",
        )

    if target not in STANDARD_TRANSITIONS[current]:
        if admin_override and target in ADMIN_OVERRIDE_TRANSITIONS.get(current, ()):
            return TransitionDecision(current, target, True)

        expected = ", ".join(s.value for s in STANDARD_TRANSITIONS[current]) or "none"
        return TransitionDecision(
            current, target, False,
            TransitionRejection.NOT_ALLOWED,
            f"Invalid transition from {current.value} to {target.value}. "
            f"Expected next state: {expected}. {TRANSITION_RULES[current]}",
        )

    return TransitionDecision(current, target, True)


def get_valid_next_states(current: ParcelState, is_admin: bool = False) -> List[ParcelState]:
    """Standard next states, plus the override targets for admins."""
    states = list(STANDARD_TRANSITIONS[current])
    if is_admin:
        for state in ADMIN_OVERRIDE_TRANSITIONS.get(current, ()):
            if state not in states:
                states.append(state)
    return states


def is_skipping_states(current: ParcelState, target: ParcelState) -> bool:
    return STATE_ORDER.index(target) - STATE_ORDER.index(current) > 1


def is_backwards_transition(current: ParcelState, target: ParcelState) -> bool:
    return STATE_ORDER.index(target) < STATE_ORDER.index(current)


def validate_exception_state_lock(target: ParcelState, has_exception: bool) -> bool:
    """
    Check a target against the exception lock.

    Returns:
        False when a locked parcel would enter one of the delivery states
    """
    if not has_exception:
        return True
    return target not in EXCEPTION_LOCKED_STATES
