"""
Check-in API: desk permissions, status mapping, CSRF and the live presence
stream (snapshot first, bounded by `max_events`, subscription released).
"""
from __future__ import annotations

import json

import anyio
import pytest

import main  # type: ignore

from utils.sessions import client_for, seed_participant, signed_in

pytestmark = pytest.mark.anyio("asyncio")


def _attendee(email="att@example.com", **fields):
    return seed_participant(main.app.state.directory, email, "attendee", **fields)


def _events(text: str):
    out = []
    for block in text.split("\n\n"):
        lines = block.strip().splitlines()
        if not lines or lines[0].startswith(":"):
            continue
        event = lines[0].split(": ", 1)[1]
        data = json.loads(lines[1].split(": ", 1)[1])
        out.append((event, data))
    return out


async def test_lookup_by_personal_id_and_uuid():
    att = _attendee(personal_id="29801015555555", university="Cairo University")
    _, client = signed_in(main.app, "desk@example.com", "registration")
    async with client as c:
        by_pid = await c.post("/api/checkin/lookup", json={"code": "29801015555555"})
        by_uuid = await c.post("/api/checkin/lookup", json={"code": att.id})
        junk = await c.post("/api/checkin/lookup", json={"code": "hello"})
        missing = await c.post("/api/checkin/lookup", json={"code": "00000000000000"})
    assert by_pid.status_code == 200
    attendee = by_pid.json()["attendee"]
    assert attendee["id"] == att.id
    assert attendee["state"] == "outside"
    assert attendee["status"] == "Outside Event"
    assert by_pid.headers["Cache-Control"] == "private, no-store"
    assert by_uuid.json()["attendee"]["personal_id"] == "29801015555555"
    assert junk.status_code == 400 and junk.json()["error"] == "invalid_code"
    assert missing.status_code == 404


async def test_lookup_of_volunteer_is_rejected():
    vol = seed_participant(main.app.state.directory, "v@example.com", "media")
    _, client = signed_in(main.app, "desk@example.com", "registration")
    async with client as c:
        r = await c.post("/api/checkin/lookup", json={"code": vol.id})
    assert r.status_code == 422
    assert r.json()["error"] == "not_attendee"


async def test_non_desk_roles_are_forbidden():
    att = _attendee()
    _, client = signed_in(main.app, "vol@example.com", "marketing")
    async with client as c:
        r = await c.post(f"/api/checkin/{att.id}/event_enter")
    assert r.status_code == 403


async def test_full_day_through_the_api():
    att = _attendee()
    _, reg = signed_in(main.app, "reg@example.com", "registration")
    _, bld = signed_in(main.app, "bld@example.com", "building")
    async with reg as r_client, bld as b_client:
        enter = await r_client.post(f"/api/checkin/{att.id}/event_enter")
        twice = await r_client.post(f"/api/checkin/{att.id}/event_enter")
        wrong_desk = await r_client.post(f"/api/checkin/{att.id}/building_enter")
        building = await b_client.post(f"/api/checkin/{att.id}/building_enter")
        leave_building = await b_client.post(f"/api/checkin/{att.id}/building_exit")
        leave = await r_client.post(f"/api/checkin/{att.id}/event_exit")
    assert enter.status_code == 200 and enter.json()["attendee"]["state"] == "inside_event"
    assert twice.status_code == 409
    assert twice.json()["error"] == "invalid_state"
    assert twice.json()["detail"] == "Attendee is already inside the event."
    assert twice.json()["attendee"]["state"] == "inside_event"
    assert wrong_desk.status_code == 403
    assert building.json()["attendee"]["state"] == "inside_event_and_building"
    assert leave_building.json()["attendee"]["state"] == "inside_event"
    assert leave.json()["attendee"]["state"] == "outside"


async def test_unknown_and_session_actions_are_bad_requests():
    att = _attendee()
    _, client = signed_in(main.app, "adm@example.com", "admin")
    async with client as c:
        unknown = await c.post(f"/api/checkin/{att.id}/teleport")
        session = await c.post(f"/api/checkin/{att.id}/session_add")
    assert unknown.status_code == 400 and unknown.json()["error"] == "invalid_action"
    assert session.status_code == 400


async def test_session_booking_statuses():
    directory = main.app.state.directory
    directory.add_event_session("s1", "Keynote", 1)
    inside = _attendee("in@example.com", event_entry=True, building_entry=True)
    other = _attendee("other@example.com", event_entry=True, building_entry=True)
    outside = _attendee("out@example.com")
    _, client = signed_in(main.app, "info@example.com", "info_desk")
    async with client as c:
        booked = await c.post(f"/api/checkin/{inside.id}/sessions/s1")
        again = await c.post(f"/api/checkin/{inside.id}/sessions/s1")
        full = await c.post(f"/api/checkin/{other.id}/sessions/s1")
        not_inside = await c.post(f"/api/checkin/{outside.id}/sessions/s1")
        unknown = await c.post(f"/api/checkin/{inside.id}/sessions/nope")
    assert booked.status_code == 200
    assert booked.json()["booking"]["session_id"] == "s1"
    assert again.status_code == 409 and again.json()["error"] == "already_booked"
    assert full.status_code == 409 and full.json()["error"] == "capacity_reached"
    assert not_inside.status_code == 409 and not_inside.json()["error"] == "invalid_state"
    assert unknown.status_code == 404 and unknown.json()["error"] == "session_not_found"


async def test_inconsistent_record_is_reported():
    att = _attendee()
    directory = main.app.state.directory
    # Bypass the write guard to simulate a row corrupted outside the app.
    directory._profiles[att.id] = directory._profiles[att.id].with_changes({"building_entry": True})
    _, client = signed_in(main.app, "bld@example.com", "building")
    async with client as c:
        r = await c.post(f"/api/checkin/{att.id}/building_exit")
    assert r.status_code == 409
    assert r.json()["error"] == "inconsistent_state"


async def test_state_changes_reject_cross_origin():
    att = _attendee()
    _, client = signed_in(main.app, "reg@example.com", "registration")
    async with client as c:
        r = await c.post(f"/api/checkin/{att.id}/event_enter", headers={"Origin": "https://evil.example.com"})
    assert r.status_code == 403
    assert r.json()["detail"] == "csrf_violation"
    assert main.app.state.directory.get_profile(att.id).event_entry is False


async def test_events_stream_snapshot_only():
    att = _attendee()
    _, client = signed_in(main.app, "reg@example.com", "registration")
    async with client as c:
        r = await c.get(f"/api/checkin/{att.id}/events", params={"max_events": 0})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["Cache-Control"] == "private, no-store"
    assert r.headers["X-Accel-Buffering"] == "no"
    assert [(e, d["state"]) for e, d in _events(r.text)] == [("state", "outside")]
    assert main.app.state.directory.feed.subscriber_count(att.id) == 0


async def test_events_stream_delivers_changes_and_releases_subscription():
    att = _attendee()
    directory = main.app.state.directory
    _, client = signed_in(main.app, "reg@example.com", "registration")

    async def enter_when_watched():
        with anyio.fail_after(5):
            while directory.feed.subscriber_count(att.id) == 0:
                await anyio.sleep(0.01)
        directory.update_profile(att.id, {"event_entry": True})

    async with client as c:
        async with anyio.create_task_group() as tg:
            tg.start_soon(enter_when_watched)
            r = await c.get(f"/api/checkin/{att.id}/events", params={"max_events": 1})

    assert r.status_code == 200
    states = [d["state"] for _, d in _events(r.text)]
    assert states == ["outside", "inside_event"]
    assert directory.feed.subscriber_count(att.id) == 0


async def test_events_stream_requires_desk_role_and_attendee():
    att = _attendee()
    vol = seed_participant(main.app.state.directory, "v2@example.com", "stage")
    _, desk = signed_in(main.app, "reg@example.com", "registration")
    _, attendee_client = signed_in(main.app, "self@example.com", "attendee")
    async with desk as c, attendee_client as a:
        not_attendee = await c.get(f"/api/checkin/{vol.id}/events", params={"max_events": 0})
        denied = await a.get(f"/api/checkin/{att.id}/events", params={"max_events": 0})
    async with client_for(main.app) as anon:
        anonymous = await anon.get(f"/api/checkin/{att.id}/events")
    assert not_attendee.status_code == 422
    assert denied.status_code == 403
    assert anonymous.status_code == 401


async def test_session_booking_can_be_removed():
    directory = main.app.state.directory
    directory.add_event_session("s1", "Keynote", 1)
    inside = _attendee("in@example.com", event_entry=True, building_entry=True)
    _, client = signed_in(main.app, "info@example.com", "info_desk")
    _, reg_client = signed_in(main.app, "reg@example.com", "registration")
    async with client as c:
        await c.post(f"/api/checkin/{inside.id}/sessions/s1")
        removed = await c.delete(f"/api/checkin/{inside.id}/sessions/s1")
        twice = await c.delete(f"/api/checkin/{inside.id}/sessions/s1")
        unknown = await c.delete(f"/api/checkin/{inside.id}/sessions/nope")
        cross = await c.delete(f"/api/checkin/{inside.id}/sessions/s1", headers={"Origin": "https://evil.example.com"})
    async with reg_client as c:
        wrong_desk = await c.delete(f"/api/checkin/{inside.id}/sessions/s1")
    assert removed.status_code == 200
    assert removed.json()["attendee"]["id"] == inside.id
    assert directory.get_event_session("s1")["current_bookings"] == 0
    assert twice.status_code == 404 and twice.json()["error"] == "not_booked"
    assert unknown.status_code == 404 and unknown.json()["error"] == "session_not_found"
    assert cross.status_code == 403
    assert wrong_desk.status_code == 403


async def test_registration_stats_endpoint():
    _attendee("a1@example.com", event_entry=True)
    _attendee("a2@example.com")
    _, client = signed_in(main.app, "reg@example.com", "registration")
    _, bld_client = signed_in(main.app, "bld@example.com", "building")
    async with client as c:
        r = await c.get("/api/checkin/stats")
    async with bld_client as c:
        denied = await c.get("/api/checkin/stats")
    assert r.status_code == 200
    assert r.json() == {"total_registered": 4, "checked_in_today": 0, "inside_event": 1, "total_attendees": 2}
    assert r.headers["Cache-Control"] == "private, no-store"
    assert denied.status_code == 403
