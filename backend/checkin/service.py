"""
Check-in service: desk operations over the presence state machine.

Why:
    Several staff members may scan the same attendee at the same time. The
    browser copy of the presence flags is advisory; this service re-reads the
    authoritative profile, validates the transition, and commits it as one
    conditional single-row update whose preconditions are the flags it just
    read. If another desk won the race the update matches nothing and the scan
    is reported as an invalid state (the double-entry guard), never as a
    silent no-op.

Desks:
    registration desk  event enter/exit   roles: registration, admin
    building desk      building enter/exit roles: building, admin
    session desk       add to / remove from session   roles: info_desk, building, admin

Errors:
    Every outcome is a `CheckinResult`; directory exceptions do not escape.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional

from identity_access.directory import (
    CapacityError,
    ConflictError,
    DirectoryError,
    NotFoundError,
    PreconditionFailedError,
    RemoteDirectory,
    Subscription,
)
from identity_access.domain import ADMIN, ATTENDEE, BUILDING, INFO_DESK, REGISTRATION, Profile, profile_has_role

from .states import CheckinAction, InvalidTransition, PresenceState, transition

logger = logging.getLogger("eventdesk.checkin")

PERSONAL_ID_RE = re.compile(r"^\d{14}$")


@dataclass(frozen=True)
class Desk:
    name: str
    actions: FrozenSet[CheckinAction]
    roles: FrozenSet[str]


DESKS: Mapping[str, Desk] = {
    "registration": Desk(
        "registration",
        frozenset({CheckinAction.EVENT_ENTER, CheckinAction.EVENT_EXIT}),
        frozenset({REGISTRATION, ADMIN}),
    ),
    "building": Desk(
        "building",
        frozenset({CheckinAction.BUILDING_ENTER, CheckinAction.BUILDING_EXIT}),
        frozenset({BUILDING, ADMIN}),
    ),
    "session": Desk(
        "session",
        frozenset({CheckinAction.SESSION_ADD}),
        frozenset({INFO_DESK, BUILDING, ADMIN}),
    ),
}


def desk_for(action: CheckinAction) -> Desk:
    return next(d for d in DESKS.values() if action in d.actions)


def can_perform(actor: Optional[Profile], action: CheckinAction) -> bool:
    return profile_has_role(actor, desk_for(action).roles)


# Roles allowed to look attendees up at any desk.
SCANNER_ROLES = frozenset().union(*(d.roles for d in DESKS.values()))


@dataclass(frozen=True)
class CheckinResult:
    ok: bool
    profile: Optional[Profile] = None
    state: Optional[PresenceState] = None
    error: Optional[str] = None
    message: Optional[str] = None
    booking: Optional[Dict[str, Any]] = None

    @classmethod
    def failure(cls, error: str, message: str, profile: Optional[Profile] = None) -> "CheckinResult":
        state = None
        if profile is not None:
            try:
                state = PresenceState.from_flags(profile.event_entry, profile.building_entry)
            except ValueError:
                state = None
        return cls(ok=False, error=error, message=message, profile=profile, state=state)


@dataclass(frozen=True)
class RegistrationStats:
    """Headline counters shown at the registration desk."""

    total_registered: int = 0
    checked_in_today: int = 0
    inside_event: int = 0
    total_attendees: int = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RegistrationStats":
        return cls(**{name: int(data.get(name) or 0) for name in cls.__dataclass_fields__})


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class CheckinService:
    def __init__(self, directory: RemoteDirectory):
        self._directory = directory

    def _load_attendee(self, profile_id: str) -> CheckinResult:
        try:
            profile = self._directory.get_profile(profile_id)
        except NotFoundError:
            return CheckinResult.failure("not_found", "Attendee not found.")
        except DirectoryError as exc:
            logger.warning("Profile read failed during check-in: %s", exc.code)
            return CheckinResult.failure("unavailable", "Could not load attendee. Please retry.")
        return self._attendee_result(profile)

    @staticmethod
    def _attendee_result(profile: Profile) -> CheckinResult:
        if profile.role != ATTENDEE:
            return CheckinResult.failure("not_attendee", "Only attendees can be processed through this system.")
        try:
            state = PresenceState.from_flags(profile.event_entry, profile.building_entry)
        except ValueError:
            logger.error("Inconsistent presence flags on profile %s", profile.id)
            return CheckinResult.failure(
                "inconsistent_state", "Attendee presence record is inconsistent. Contact an admin."
            )
        return CheckinResult(ok=True, profile=profile, state=state)

    def lookup(self, code: str, actor: Optional[Profile] = None) -> CheckinResult:
        """Resolve a scanned QR payload (profile UUID or 14-digit personal ID)."""
        if actor is not None and not profile_has_role(actor, SCANNER_ROLES):
            return CheckinResult.failure("forbidden", "You are not allowed to scan attendees.")
        value = (code or "").strip()
        if _is_uuid(value):
            result = self._load_attendee(value)
            if result.error == "not_found":
                return CheckinResult.failure("not_found", "Invalid QR code: UUID not found in system.")
            return result
        if PERSONAL_ID_RE.match(value):
            try:
                profile = self._directory.find_profile_by_personal_id(value)
            except DirectoryError as exc:
                logger.warning("Personal ID lookup failed: %s", exc.code)
                return CheckinResult.failure("unavailable", "Could not load attendee. Please retry.")
            if profile is None:
                return CheckinResult.failure("not_found", "Invalid QR code: Personal ID not found.")
            return self._attendee_result(profile)
        return CheckinResult.failure("invalid_code", "Invalid QR code format.")

    def apply(self, profile_id: str, action: CheckinAction, actor: Optional[Profile]) -> CheckinResult:
        """Run one presence transition against the authoritative record."""
        if action is CheckinAction.SESSION_ADD:
            return CheckinResult.failure("invalid_action", "Use the session desk to add attendees to sessions.")
        if not can_perform(actor, action):
            return CheckinResult.failure("forbidden", "Your role cannot perform this check-in action.")

        current = self._load_attendee(profile_id)
        if not current.ok:
            return current
        if current.state is None or current.profile is None:
            return CheckinResult.failure("unavailable", "Could not load attendee. Please retry.")
        try:
            nxt = transition(current.state, action)
        except InvalidTransition as exc:
            return CheckinResult.failure("invalid_state", exc.message, current.profile)

        try:
            updated = self._directory.update_profile(profile_id, nxt.to_flags(), expect=current.state.to_flags())
        except PreconditionFailedError:
            return self._rejected_after_race(profile_id, action)
        except NotFoundError:
            return CheckinResult.failure("not_found", "Attendee not found.")
        except DirectoryError as exc:
            logger.warning("Check-in update failed: %s", exc.code)
            return CheckinResult.failure("unavailable", "Check-in failed. Please retry.", current.profile)

        logger.info(
            "check-in action=%s profile=%s actor=%s",
            action.value,
            profile_id,
            actor.id if actor else "-",
        )
        fresh = self._load_attendee(profile_id)
        if fresh.ok or fresh.error != "unavailable":
            return fresh
        # The write is committed; report it with the row the update returned.
        return CheckinResult(ok=True, profile=updated, state=nxt)

    def _rejected_after_race(self, profile_id: str, action: CheckinAction) -> CheckinResult:
        latest = self._load_attendee(profile_id)
        if not latest.ok or latest.state is None:
            return latest
        try:
            transition(latest.state, action)
        except InvalidTransition as exc:
            return CheckinResult.failure("invalid_state", exc.message, latest.profile)
        return CheckinResult.failure(
            "invalid_state", "Attendee status changed during the scan. Please scan again.", latest.profile
        )

    def add_to_session(self, profile_id: str, session_id: str, actor: Optional[Profile]) -> CheckinResult:
        if not can_perform(actor, CheckinAction.SESSION_ADD):
            return CheckinResult.failure("forbidden", "Your role cannot add attendees to sessions.")
        current = self._load_attendee(profile_id)
        if not current.ok or current.state is None:
            return current
        try:
            transition(current.state, CheckinAction.SESSION_ADD)
        except InvalidTransition as exc:
            return CheckinResult.failure("invalid_state", exc.message, current.profile)
        try:
            booking = self._directory.book_session(profile_id, session_id, actor.id if actor else None)
        except NotFoundError:
            return CheckinResult.failure("session_not_found", "Session not found.", current.profile)
        except CapacityError:
            return CheckinResult.failure("capacity_reached", "Session is at full capacity.", current.profile)
        except ConflictError:
            return CheckinResult.failure(
                "already_booked", "Attendee is already registered for this session.", current.profile
            )
        except DirectoryError as exc:
            logger.warning("Session booking failed: %s", exc.code)
            return CheckinResult.failure("unavailable", "Failed to add attendee to session.", current.profile)
        return CheckinResult(ok=True, profile=current.profile, state=current.state, booking=booking)

    def remove_from_session(self, profile_id: str, session_id: str, actor: Optional[Profile]) -> CheckinResult:
        """Cancel an attendee's session booking (session desk roles)."""
        if not profile_has_role(actor, DESKS["session"].roles):
            return CheckinResult.failure("forbidden", "Your role cannot remove attendees from sessions.")
        current = self._load_attendee(profile_id)
        if not current.ok:
            return current
        try:
            self._directory.cancel_session_booking(profile_id, session_id)
        except NotFoundError as exc:
            if exc.code == "booking_not_found":
                return CheckinResult.failure(
                    "not_booked", "Attendee is not registered for this session.", current.profile
                )
            return CheckinResult.failure("session_not_found", "Session not found.", current.profile)
        except DirectoryError as exc:
            logger.warning("Session booking cancel failed: %s", exc.code)
            return CheckinResult.failure("unavailable", "Failed to remove attendee from session.", current.profile)
        logger.info(
            "session removal profile=%s session=%s actor=%s", profile_id, session_id, actor.id if actor else "-"
        )
        return CheckinResult(ok=True, profile=current.profile, state=current.state)

    def registration_stats(self) -> Optional[RegistrationStats]:
        """Desk counters, or None when the directory cannot provide them."""
        try:
            return RegistrationStats.from_mapping(self._directory.registration_stats())
        except DirectoryError as exc:
            logger.warning("Registration stats unavailable: %s", exc.code)
            return None

    def watch(self, profile_id: str, callback: Callable[[Profile], None]) -> Subscription:
        """Subscribe to changes of one attendee; the caller must dispose the handle."""
        return self._directory.subscribe_profile_changes(profile_id, callback)


__all__ = [
    "Desk",
    "DESKS",
    "SCANNER_ROLES",
    "CheckinResult",
    "CheckinService",
    "RegistrationStats",
    "can_perform",
    "desk_for",
]
