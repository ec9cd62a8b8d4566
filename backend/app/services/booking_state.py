"""Booking state machine.

The transition table is the single source of truth for which status changes
are legal. ``transition`` performs no I/O: it returns the new status plus the
notification events the change implies, and the caller decides how to persist
and deliver them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List

from app.core.exceptions import InvalidStateError
from app.models import BookingStatus


class BookingEventType(str, Enum):
    BOOKING_CREATED = "booking.created"
    CHECKIN_SUBMITTED = "checkin.submitted"
    CHECKIN_COMPLETED = "checkin.completed"
    LOCK_KEY_ISSUED = "lock_key.issued"
    LOCK_KEY_ISSUANCE_FAILED = "lock_key.issuance_failed"
    LOCK_KEY_REVOKED = "lock_key.revoked"
    LOCK_KEY_REVOCATION_FAILED = "lock_key.revocation_failed"
    BOOKING_CANCELLED = "booking.cancelled"
    BOOKING_CHECKED_OUT = "booking.checked_out"
    GUEST_REMOTE_UNLOCK = "guest.remote_unlock"
    GUEST_CREDENTIAL_SENT = "guest.credential_sent"


BOOKING_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING_CHECKIN: frozenset({BookingStatus.CHECKIN_COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CHECKIN_COMPLETED: frozenset({BookingStatus.CHECKED_IN, BookingStatus.CANCELLED}),
    BookingStatus.CHECKED_IN: frozenset({BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED}),
    BookingStatus.CHECKED_OUT: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TRANSITION_EVENTS: Dict[BookingStatus, BookingEventType] = {
    BookingStatus.CHECKIN_COMPLETED: BookingEventType.CHECKIN_COMPLETED,
    BookingStatus.CANCELLED: BookingEventType.BOOKING_CANCELLED,
    BookingStatus.CHECKED_OUT: BookingEventType.BOOKING_CHECKED_OUT,
}

TERMINAL_STATUSES = frozenset(status for status, targets in BOOKING_TRANSITIONS.items() if not targets)

# Statuses that hold a room for their stay interval.
OCCUPYING_STATUSES = frozenset(
    {
        BookingStatus.PENDING_CHECKIN,
        BookingStatus.CHECKIN_COMPLETED,
        BookingStatus.CHECKED_IN,
    }
)

# Statuses from which a lock key may be (re)issued.
ISSUABLE_STATUSES = OCCUPYING_STATUSES


@dataclass
class Transition:
    previous: BookingStatus
    status: BookingStatus
    events: List[BookingEventType] = field(default_factory=list)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, frozenset())


def transition(current: BookingStatus, target: BookingStatus) -> Transition:
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Invalid booking transition: {current.value} -> {target.value}",
            details={"current": current.value, "target": target.value},
        )
    events = [TRANSITION_EVENTS[target]] if target in TRANSITION_EVENTS else []
    return Transition(previous=current, status=target, events=events)


def path_to_checked_in(current: BookingStatus) -> List[Transition]:
    """Transitions a successful lock-key issuance applies, in order."""
    if current == BookingStatus.CHECKED_IN:
        return []
    steps: List[Transition] = []
    status = current
    if status == BookingStatus.PENDING_CHECKIN:
        step = transition(status, BookingStatus.CHECKIN_COMPLETED)
        steps.append(step)
        status = step.status
    steps.append(transition(status, BookingStatus.CHECKED_IN))
    return steps
