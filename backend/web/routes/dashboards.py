"""
Role landing pages, check-in desk pages and the self-service role change.

Why:
    Every participant lands on the page of their role after sign-in. Staff
    roles land on a desk: a scan form, the attendee card and one button per
    desk action. The desks post plain forms so they also work without
    JavaScript; the scanner app uses the JSON API in `routes.checkin`.
"""

from __future__ import annotations

import logging
from typing import Optional

import anyio
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from checkin.service import DESKS, CheckinResult, CheckinService, desk_for
from checkin.states import CheckinAction
from components.pages import DashboardPage, DeskPage, RoleChangePage
from identity_access.domain import ADMIN, ATTENDEE, TEAM_LEADER, VOLUNTEER

from guards import require_roles
from http_helpers import json_error, layout_response, private_no_store
from routes.checkin import ERROR_STATUS
from routes.security import csrf_violation

dashboards_router = APIRouter(tags=["Dashboards"])
logger = logging.getLogger("eventdesk.web.dashboards")

# desk page path -> (title, desk name)
DESK_PAGES = {
    "/regteam": ("Registration desk", "registration"),
    "/buildteam": ("Building desk", "building"),
    "/infodesk": ("Session desk", "session"),
}
_DESK_PATHS = {desk: path for path, (_, desk) in DESK_PAGES.items()}
SESSION_REMOVE = "session_remove"

ROLE_CHANGE_ROLES = frozenset({"marketing", TEAM_LEADER})

_UPLOAD_NOTICES = {
    "uploaded": "Document uploaded.",
    "upload_failed": "Upload failed. Please try again.",
}


async def _dashboard(request: Request, title: str, roles, upload: Optional[str]):
    manager, denied = await require_roles(request, roles)
    if denied:
        return denied
    page = DashboardPage(title, manager.profile, notice=_UPLOAD_NOTICES.get(upload or ""))
    return layout_response(request, title, page.render(), profile=manager.profile)


@dashboards_router.get("/attendee")
async def attendee_home(request: Request, upload: str | None = None):
    return await _dashboard(request, "My conference", ATTENDEE, upload)


@dashboards_router.get("/volunteer")
async def volunteer_home(request: Request, upload: str | None = None):
    return await _dashboard(request, "Volunteer dashboard", VOLUNTEER, upload)


@dashboards_router.get("/teamleader")
async def teamleader_home(request: Request, upload: str | None = None):
    return await _dashboard(request, "Team leader dashboard", TEAM_LEADER, upload)


@dashboards_router.get("/admin")
async def admin_home(request: Request, upload: str | None = None):
    return await _dashboard(request, "Admin dashboard", ADMIN, upload)


# --- Desks -----------------------------------------------------------------------

def _desk_actions(desk_name: str):
    desk = DESKS[desk_name]
    return [a for a in CheckinAction if a in desk.actions]


async def _desk_page(
    request: Request,
    path: str,
    manager,
    *,
    code: str = "",
    result: Optional[CheckinResult] = None,
    message: Optional[str] = None,
):
    title, desk_name = DESK_PAGES[path]
    show_stats = desk_name == "registration"
    stats = None
    if show_stats:
        service = CheckinService(request.app.state.directory)
        stats = await anyio.to_thread.run_sync(service.registration_stats)
    error = None
    if result is not None and not result.ok:
        error = result.message
    page = DeskPage(
        title,
        path,
        _desk_actions(desk_name),
        code=code,
        attendee=result.profile if result is not None else None,
        message=message,
        error=error,
        show_stats=show_stats,
        stats=stats,
    )
    status = 200
    if result is not None and not result.ok:
        status = ERROR_STATUS.get(result.error or "", 400)
    return layout_response(request, title, page.render(), profile=manager.profile, status_code=status)


async def _desk(request: Request, path: str, code: Optional[str]):
    _, desk_name = DESK_PAGES[path]
    manager, denied = await require_roles(request, DESKS[desk_name].roles)
    if denied:
        return denied
    value = (code or "").strip()
    if not value:
        return await _desk_page(request, path, manager)
    service = CheckinService(request.app.state.directory)
    result = await anyio.to_thread.run_sync(service.lookup, value, manager.profile)
    return await _desk_page(request, path, manager, code=value, result=result)


@dashboards_router.get("/regteam")
async def registration_desk(request: Request, code: str | None = None):
    return await _desk(request, "/regteam", code)


@dashboards_router.get("/buildteam")
async def building_desk(request: Request, code: str | None = None):
    return await _desk(request, "/buildteam", code)


@dashboards_router.get("/infodesk")
async def session_desk(request: Request, code: str | None = None):
    return await _desk(request, "/infodesk", code)


@dashboards_router.post("/desks/{profile_id}/{action}")
async def desk_action(request: Request, profile_id: str, action: str):
    if (violation := csrf_violation(request)) is not None:
        return violation
    if action == SESSION_REMOVE:
        return await _remove_from_session(request, profile_id)
    try:
        parsed = CheckinAction(action)
    except ValueError:
        return json_error("invalid_action", "Unknown check-in action.", status_code=400)
    desk = desk_for(parsed)
    manager, denied = await require_roles(request, desk.roles)
    if denied:
        return denied
    form = await request.form()
    path = str(form.get("desk") or "")
    if path not in DESK_PAGES or DESK_PAGES[path][1] != desk.name:
        path = _DESK_PATHS[desk.name]

    service = CheckinService(request.app.state.directory)
    if parsed is CheckinAction.SESSION_ADD:
        session_id = str(form.get("session_id") or "").strip()
        if not session_id:
            current = await anyio.to_thread.run_sync(service.lookup, profile_id, manager.profile)
            page_result = CheckinResult.failure("session_not_found", "Please enter a session ID.", current.profile)
            return await _desk_page(request, path, manager, code=profile_id, result=page_result)
        result = await anyio.to_thread.run_sync(service.add_to_session, profile_id, session_id, manager.profile)
        message = "Attendee added to session." if result.ok else None
    else:
        result = await anyio.to_thread.run_sync(service.apply, profile_id, parsed, manager.profile)
        message = f"Done: {result.state.label}." if result.ok and result.state else None
    return await _desk_page(request, path, manager, code=profile_id, result=result, message=message)


async def _remove_from_session(request: Request, profile_id: str):
    manager, denied = await require_roles(request, DESKS["session"].roles)
    if denied:
        return denied
    form = await request.form()
    path = str(form.get("desk") or "")
    if path not in DESK_PAGES or DESK_PAGES[path][1] != "session":
        path = _DESK_PATHS["session"]
    service = CheckinService(request.app.state.directory)
    session_id = str(form.get("session_id") or "").strip()
    if not session_id:
        current = await anyio.to_thread.run_sync(service.lookup, profile_id, manager.profile)
        page_result = CheckinResult.failure("session_not_found", "Please enter a session ID.", current.profile)
        return await _desk_page(request, path, manager, code=profile_id, result=page_result)
    result = await anyio.to_thread.run_sync(service.remove_from_session, profile_id, session_id, manager.profile)
    message = "Attendee removed from session." if result.ok else None
    return await _desk_page(request, path, manager, code=profile_id, result=result, message=message)


# --- Role change -----------------------------------------------------------------

@dashboards_router.get("/profile/role")
async def role_change_form(request: Request):
    manager, denied = await require_roles(request, ROLE_CHANGE_ROLES)
    if denied:
        return denied
    page = RoleChangePage(manager.profile)
    return layout_response(request, "Change role", page.render(), profile=manager.profile)


@dashboards_router.post("/profile/role")
async def role_change(request: Request):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager, denied = await require_roles(request, ROLE_CHANGE_ROLES)
    if denied:
        return denied
    form = await request.form()
    new_role = str(form.get("role") or "").strip()
    team = str(form.get("tl_team") or "").strip() or None
    result = await anyio.to_thread.run_sync(manager.change_role, new_role, team)
    if not result.ok:
        status = 409 if result.error == "role_changed" else 400
        profile = manager.profile
        if profile is None:
            return RedirectResponse(url="/auth/login", status_code=303, headers=private_no_store())
        page = RoleChangePage(profile, error=result.message)
        return layout_response(request, "Change role", page.render(), profile=profile, status_code=status)
    logger.info("role changed profile=%s role=%s", result.profile.id, result.profile.role)
    return RedirectResponse(url=manager.role_based_redirect_target(), status_code=303, headers=private_no_store())


__all__ = ["dashboards_router", "DESK_PAGES", "ROLE_CHANGE_ROLES"]
