"""
Check-in API routes (JSON + Server-Sent Events).

Why:
    The desk pages and the scanner app share these endpoints. Every scan is
    re-validated against the authoritative record by `CheckinService`; the
    route only maps its result codes onto HTTP statuses.

Security:
    - Only desk roles (registration, building, info desk, admin) may call
      these endpoints; each action additionally checks its own desk.
    - State-changing calls enforce same-origin (CSRF).
    - Responses are `private, no-store`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any, Dict, Optional

import anyio
from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from checkin.service import DESKS, SCANNER_ROLES, CheckinResult, CheckinService
from checkin.states import CheckinAction, PresenceState
from identity_access.domain import Profile

from guards import require_roles
from http_helpers import json_error, private_json, private_no_store
from routes.security import csrf_violation

checkin_router = APIRouter(tags=["Check-in"])
logger = logging.getLogger("eventdesk.web.checkin")

KEEPALIVE_SECONDS = 15.0

ERROR_STATUS = {
    "invalid_code": 400,
    "invalid_action": 400,
    "not_found": 404,
    "session_not_found": 404,
    "not_booked": 404,
    "not_attendee": 422,
    "forbidden": 403,
    "invalid_state": 409,
    "capacity_reached": 409,
    "already_booked": 409,
    "inconsistent_state": 409,
    "unavailable": 503,
}


def serialize_attendee(profile: Profile) -> Dict[str, Any]:
    """Attendee view used by the desks; no documents or contact details beyond email."""
    try:
        state = PresenceState.from_flags(profile.event_entry, profile.building_entry)
    except ValueError:
        state = None
    return {
        "id": profile.id,
        "name": profile.display_name,
        "email": profile.email,
        "role": profile.role,
        "personal_id": profile.personal_id,
        "university": profile.university,
        "event_entry": profile.event_entry,
        "building_entry": profile.building_entry,
        "state": state.value if state else None,
        "status": state.label if state else "Inconsistent",
    }


def _result_body(result: CheckinResult) -> Dict[str, Any]:
    body: Dict[str, Any] = {"attendee": serialize_attendee(result.profile) if result.profile else None}
    if result.booking is not None:
        body["booking"] = result.booking
    return body


def _result_response(result: CheckinResult):
    if result.ok:
        return private_json(_result_body(result))
    status = ERROR_STATUS.get(result.error or "", 400)
    response = json_error(result.error or "bad_request", result.message, status_code=status)
    if result.profile is not None:
        # Desks show the fresh state next to the rejection.
        payload = {"error": result.error, "detail": result.message, **_result_body(result)}
        response = private_json(payload, status_code=status)
    return response


def _service(request: Request) -> CheckinService:
    return CheckinService(request.app.state.directory)


@checkin_router.post("/api/checkin/lookup")
async def checkin_lookup(request: Request):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager, denied = await require_roles(request, SCANNER_ROLES)
    if denied:
        return denied
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    code = payload.get("code") if isinstance(payload, dict) else None
    if not isinstance(code, str):
        return json_error("invalid_code", "Invalid QR code format.", status_code=400)
    result = await anyio.to_thread.run_sync(_service(request).lookup, code, manager.profile)
    return _result_response(result)


@checkin_router.post("/api/checkin/{profile_id}/sessions/{session_id}")
async def checkin_add_to_session(request: Request, profile_id: str, session_id: str):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager, denied = await require_roles(request, SCANNER_ROLES)
    if denied:
        return denied
    result = await anyio.to_thread.run_sync(_service(request).add_to_session, profile_id, session_id, manager.profile)
    if result.ok:
        logger.info("session booking profile=%s session=%s actor=%s", profile_id, session_id, manager.profile.id)
    return _result_response(result)


@checkin_router.delete("/api/checkin/{profile_id}/sessions/{session_id}")
async def checkin_remove_from_session(request: Request, profile_id: str, session_id: str):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager, denied = await require_roles(request, DESKS["session"].roles)
    if denied:
        return denied
    result = await anyio.to_thread.run_sync(
        _service(request).remove_from_session, profile_id, session_id, manager.profile
    )
    return _result_response(result)


@checkin_router.get("/api/checkin/stats")
async def checkin_stats(request: Request):
    _, denied = await require_roles(request, DESKS["registration"].roles)
    if denied:
        return denied
    stats = await anyio.to_thread.run_sync(_service(request).registration_stats)
    if stats is None:
        return json_error("unavailable", "Statistics unavailable.", status_code=503)
    return private_json(asdict(stats))


@checkin_router.post("/api/checkin/{profile_id}/{action}")
async def checkin_apply(request: Request, profile_id: str, action: str):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager, denied = await require_roles(request, SCANNER_ROLES)
    if denied:
        return denied
    try:
        parsed = CheckinAction(action)
    except ValueError:
        return json_error("invalid_action", "Unknown check-in action.", status_code=400)
    result = await anyio.to_thread.run_sync(_service(request).apply, profile_id, parsed, manager.profile)
    return _result_response(result)


def _sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, separators=(',', ':'))}\n\n"


@checkin_router.get("/api/checkin/{profile_id}/events")
async def checkin_events(request: Request, profile_id: str, max_events: Optional[int] = None):
    """Live presence updates for one attendee.

    The first event is the current snapshot; every later `state` event is a
    change. `max_events` ends the stream after that many changes. The
    subscription is released whenever the stream ends, including on client
    disconnect.
    """
    manager, denied = await require_roles(request, SCANNER_ROLES)
    if denied:
        return denied
    service = _service(request)
    current = await anyio.to_thread.run_sync(service.lookup, profile_id, manager.profile)
    if not current.ok:
        return _result_response(current)

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def _on_change(profile: Profile) -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(queue.put_nowait, profile)

    subscription = service.watch(current.profile.id, _on_change)

    async def stream():
        try:
            yield _sse("state", serialize_attendee(current.profile))
            sent = 0
            while max_events is None or sent < max_events:
                try:
                    profile = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse("state", serialize_attendee(profile))
                sent += 1
        finally:
            subscription.dispose()

    headers = {**private_no_store(), "Vary": "Origin", "X-Accel-Buffering": "no"}
    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers=headers,
        background=BackgroundTask(subscription.dispose),
    )


__all__ = ["checkin_router", "serialize_attendee", "ERROR_STATUS"]
