"""
app/flow/states.py

Purpose: Placement confirmation lifecycle

- Enum for each confirmation status
- Single source of truth for the escalation ladder
- State transition validation
- Pure transition function driven by inbound reply events
"""

from enum import Enum
from typing import Dict, List, Optional, Union
from dataclasses import dataclass


class ConfirmationStatus(str, Enum):
    """
    Confirmation states of a placement.
    CONFIRMED and DECLINED are terminal.
    """

    UNCONFIRMED = "UNCONFIRMED"
    SOFT_CONFIRMED = "SOFT_CONFIRMED"
    LIKELY_CONFIRMED = "LIKELY_CONFIRMED"
    CONFIRMED = "CONFIRMED"
    DECLINED = "DECLINED"


class ConfirmationEvent(str, Enum):
    """
    Inputs that can drive a transition.
    """

    CONFIRM = "CONFIRM"
    DECLINE = "DECLINE"


class TransitionOutcome(str, Enum):
    ADVANCED = "ADVANCED"
    DECLINED = "DECLINED"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"
    IGNORED = "IGNORED"


@dataclass(frozen=True)
class TransitionResult:
    previous: ConfirmationStatus
    current: ConfirmationStatus
    outcome: TransitionOutcome

    @property
    def changed(self) -> bool:
        return self.previous != self.current


@dataclass
class StatusMetadata:
    """
    Display and policy metadata for each status.
    """
    name: ConfirmationStatus
    display_name: str
    ladder_step: Optional[int] = None
    is_terminal: bool = False
    accepts_reminders: bool = True
    description: str = ""


# Escalation ladder: each inbound confirmation moves one step up
ESCALATION_LADDER: List[ConfirmationStatus] = [
    ConfirmationStatus.UNCONFIRMED,
    ConfirmationStatus.SOFT_CONFIRMED,
    ConfirmationStatus.LIKELY_CONFIRMED,
    ConfirmationStatus.CONFIRMED,
]

TERMINAL_STATUSES = frozenset({ConfirmationStatus.CONFIRMED, ConfirmationStatus.DECLINED})


STATUS_METADATA: Dict[ConfirmationStatus, StatusMetadata] = {
    ConfirmationStatus.UNCONFIRMED: StatusMetadata(
        name=ConfirmationStatus.UNCONFIRMED,
        display_name="Unconfirmed",
        ladder_step=0,
        description="No reply received yet"
    ),
    ConfirmationStatus.SOFT_CONFIRMED: StatusMetadata(
        name=ConfirmationStatus.SOFT_CONFIRMED,
        display_name="Soft Confirmed",
        ladder_step=1,
        description="First confirmation reply received"
    ),
    ConfirmationStatus.LIKELY_CONFIRMED: StatusMetadata(
        name=ConfirmationStatus.LIKELY_CONFIRMED,
        display_name="Likely Confirmed",
        ladder_step=2,
        description="Second confirmation reply received"
    ),
    ConfirmationStatus.CONFIRMED: StatusMetadata(
        name=ConfirmationStatus.CONFIRMED,
        display_name="Confirmed",
        ladder_step=3,
        is_terminal=True,
        accepts_reminders=False,
        description="Associate has fully confirmed the shift"
    ),
    ConfirmationStatus.DECLINED: StatusMetadata(
        name=ConfirmationStatus.DECLINED,
        display_name="Declined",
        is_terminal=True,
        accepts_reminders=False,
        description="Associate declined the shift"
    ),
}


# Valid transitions - the graph every persisted status change must follow
STATE_TRANSITIONS: Dict[ConfirmationStatus, List[ConfirmationStatus]] = {
    ConfirmationStatus.UNCONFIRMED: [
        ConfirmationStatus.SOFT_CONFIRMED,
        ConfirmationStatus.DECLINED,
    ],
    ConfirmationStatus.SOFT_CONFIRMED: [
        ConfirmationStatus.LIKELY_CONFIRMED,
        ConfirmationStatus.DECLINED,
    ],
    ConfirmationStatus.LIKELY_CONFIRMED: [
        ConfirmationStatus.CONFIRMED,
        ConfirmationStatus.DECLINED,
    ],
    ConfirmationStatus.CONFIRMED: [],
    ConfirmationStatus.DECLINED: [],
}


# Legacy display labels found in older records
_STATUS_ALIASES: Dict[str, ConfirmationStatus] = {
    meta.display_name.lower(): status for status, meta in STATUS_METADATA.items()
}


def parse_status(value: Union[str, ConfirmationStatus, None]) -> ConfirmationStatus:
    """
    Parses a stored status. Accepts enum values and display labels.

    Raises:
        ValueError: For unknown statuses
    """
    if value is None:
        return ConfirmationStatus.UNCONFIRMED
    if isinstance(value, ConfirmationStatus):
        return value

    text = str(value).strip()
    try:
        return ConfirmationStatus(text.upper().replace(" ", "_"))
    except ValueError:
        pass

    alias = _STATUS_ALIASES.get(text.lower())
    if alias is None:
        raise ValueError(f"Unknown confirmation status: {value!r}")
    return alias


def is_terminal(status: ConfirmationStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_valid_transition(from_state: ConfirmationStatus, to_state: ConfirmationStatus) -> bool:
    """
    Checks if a status transition is valid.

    Args:
        from_state: Current status
        to_state: Target status

    Returns:
        True if transition is allowed, False otherwise
    """
    return to_state in STATE_TRANSITIONS.get(from_state, [])


def next_ladder_status(status: ConfirmationStatus) -> ConfirmationStatus:
    """
    Returns the next status up the escalation ladder.
    """
    index = ESCALATION_LADDER.index(status)
    return ESCALATION_LADDER[min(index + 1, len(ESCALATION_LADDER) - 1)]


def apply_event(
    current: ConfirmationStatus,
    event: Union[ConfirmationEvent, str, None]
) -> TransitionResult:
    """
    Applies an inbound reply event to a status.

    Policy: a confirmation advances exactly one ladder step, regardless
    of how many reminders were sent. A decline ends any non-terminal
    status. Terminal statuses never change.

    Args:
        current: Current status
        event: CONFIRM, DECLINE, or anything else (ignored)

    Returns:
        TransitionResult with previous/current status and outcome
    """
    try:
        event = ConfirmationEvent(event) if event is not None else None
    except ValueError:
        event = None

    if event is None:
        return TransitionResult(current, current, TransitionOutcome.IGNORED)

    if is_terminal(current):
        return TransitionResult(current, current, TransitionOutcome.ALREADY_TERMINAL)

    if event == ConfirmationEvent.DECLINE:
        target = ConfirmationStatus.DECLINED
        outcome = TransitionOutcome.DECLINED
    else:
        target = next_ladder_status(current)
        outcome = TransitionOutcome.ADVANCED

    # Guard against table/ladder drift
    if not is_valid_transition(current, target):
        raise ValueError(f"Invalid status transition: {current.value} -> {target.value}")

    return TransitionResult(current, target, outcome)


def get_status_metadata(status: ConfirmationStatus) -> StatusMetadata:
    """
    Retrieves metadata for a given status.
    """
    return STATUS_METADATA.get(status, StatusMetadata(
        name=status,
        display_name=status.value,
        description="Unknown status"
    ))
