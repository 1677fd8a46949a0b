"""
Presence state machine for attendee check-in.

Why:
    A profile stores presence as two booleans (`event_entry`, `building_entry`)
    but only three combinations are legal. Modelling them as an enum with a
    single transition function makes "in the building but not in the event"
    unrepresentable and gives every rejected scan a specific message.

Edges:
    OUTSIDE                    --EVENT_ENTER-->     INSIDE_EVENT
    INSIDE_EVENT               --EVENT_EXIT-->      OUTSIDE
    INSIDE_EVENT               --BUILDING_ENTER-->  INSIDE_EVENT_AND_BUILDING
    INSIDE_EVENT_AND_BUILDING  --BUILDING_EXIT-->   INSIDE_EVENT
    INSIDE_EVENT_AND_BUILDING  --EVENT_EXIT-->      OUTSIDE (leaves the building too)
    INSIDE_EVENT_AND_BUILDING  --SESSION_ADD-->     INSIDE_EVENT_AND_BUILDING
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple


class PresenceState(str, Enum):
    OUTSIDE = "outside"
    INSIDE_EVENT = "inside_event"
    INSIDE_EVENT_AND_BUILDING = "inside_event_and_building"

    @classmethod
    def from_flags(cls, event_entry: bool, building_entry: bool) -> "PresenceState":
        """Map stored flags to a state.

        Raises ValueError for the illegal combination (building without event);
        such a row can only come from a write that bypassed this module.
        """
        if building_entry and not event_entry:
            raise ValueError("inconsistent_presence_flags")
        if building_entry:
            return cls.INSIDE_EVENT_AND_BUILDING
        if event_entry:
            return cls.INSIDE_EVENT
        return cls.OUTSIDE

    def to_flags(self) -> Dict[str, bool]:
        return {
            "event_entry": self is not PresenceState.OUTSIDE,
            "building_entry": self is PresenceState.INSIDE_EVENT_AND_BUILDING,
        }

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    PresenceState.OUTSIDE: "Outside Event",
    PresenceState.INSIDE_EVENT: "Inside Event",
    PresenceState.INSIDE_EVENT_AND_BUILDING: "Inside Building",
}


class CheckinAction(str, Enum):
    EVENT_ENTER = "event_enter"
    EVENT_EXIT = "event_exit"
    BUILDING_ENTER = "building_enter"
    BUILDING_EXIT = "building_exit"
    SESSION_ADD = "session_add"


class InvalidTransition(Exception):
    """Transition requested from a state that does not allow it."""

    def __init__(self, state: PresenceState, action: CheckinAction, message: str):
        super().__init__(message)
        self.state = state
        self.action = action
        self.message = message
        self.code = "invalid_state"


_EDGES: Dict[Tuple[PresenceState, CheckinAction], PresenceState] = {
    (PresenceState.OUTSIDE, CheckinAction.EVENT_ENTER): PresenceState.INSIDE_EVENT,
    (PresenceState.INSIDE_EVENT, CheckinAction.EVENT_EXIT): PresenceState.OUTSIDE,
    (PresenceState.INSIDE_EVENT, CheckinAction.BUILDING_ENTER): PresenceState.INSIDE_EVENT_AND_BUILDING,
    (PresenceState.INSIDE_EVENT_AND_BUILDING, CheckinAction.BUILDING_EXIT): PresenceState.INSIDE_EVENT,
    (PresenceState.INSIDE_EVENT_AND_BUILDING, CheckinAction.EVENT_EXIT): PresenceState.OUTSIDE,
    (PresenceState.INSIDE_EVENT_AND_BUILDING, CheckinAction.SESSION_ADD): PresenceState.INSIDE_EVENT_AND_BUILDING,
}


def _rejection_message(state: PresenceState, action: CheckinAction) -> str:
    if action is CheckinAction.EVENT_ENTER:
        return "Attendee is already inside the event."
    if action is CheckinAction.EVENT_EXIT:
        return "Attendee is not inside the event."
    if action is CheckinAction.BUILDING_ENTER:
        if state is PresenceState.OUTSIDE:
            return "Attendee must enter the event before entering the building."
        return "Attendee is already inside the building."
    if action is CheckinAction.BUILDING_EXIT:
        return "Attendee is not inside the building."
    return "Attendee must be inside the building to join a session."


def transition(state: PresenceState, action: CheckinAction) -> PresenceState:
    """Return the state after `action` or raise InvalidTransition."""
    nxt = _EDGES.get((state, action))
    if nxt is None:
        raise InvalidTransition(state, action, _rejection_message(state, action))
    return nxt


def allowed_actions(state: PresenceState) -> Tuple[CheckinAction, ...]:
    return tuple(a for (s, a) in _EDGES if s is state)


__all__ = [
    "PresenceState",
    "CheckinAction",
    "InvalidTransition",
    "transition",
    "allowed_actions",
]
