"""
Registration routes: attendee and volunteer sign-up plus document uploads.

Why:
    The pipeline (validate, create credential, create profile, upload
    documents, sign in) blocks on directory calls, so it runs in the
    threadpool. The route only translates between multipart forms and the
    pipeline's outcome.

Drafts:
    Each form carries an opaque `form_id`. Text fields are cached under it on
    every submit (never passwords or files) so a failed attempt or a reload
    keeps what the participant typed.

Status codes:
    422 field errors (the section holding the first error is opened)
    503 remote failure (nothing half-created remains)
    201 registered; documents that failed to upload can be retried later
"""

from __future__ import annotations

import logging
import re
import secrets
from typing import Dict, Optional

import anyio
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse, Response
from starlette.datastructures import UploadFile

from components.pages import RegistrationDonePage, RegistrationPage
from identity_access.domain import role_based_redirect_target
from registration.drafts import Attachment, RegistrationDraft
from registration.pipeline import FAILED, INVALID, RegistrationOutcome, RegistrationPipeline
from registration.validation import ATTENDEE_FORM, VOLUNTEER_FORM
from storage.config import ATTACHMENT_KINDS, get_max_attachment_bytes

from guards import redirect_if_signed_in, require_roles
from http_helpers import json_error, layout_response, private_json, private_no_store
from routes.auth import sign_in_blocking
from routes.security import csrf_violation
from session_cookies import start_session

registration_router = APIRouter(tags=["Registration"])
logger = logging.getLogger("eventdesk.web.registration")

FORM_ID_RE = re.compile(r"^[A-Za-z0-9_-]{16,64}$")
_TITLES = {ATTENDEE_FORM: "Register", VOLUNTEER_FORM: "Volunteer registration"}


def _form_id(raw: Optional[str]) -> str:
    if raw and FORM_ID_RE.match(raw):
        return raw
    return secrets.token_urlsafe(18)


async def read_attachment(kind: str, upload) -> Optional[Attachment]:
    """Read an uploaded file into an Attachment, reading at most one byte past the limit.

    Returns None when no file was chosen. An oversized file keeps its
    truncated body; validation reports it from the size alone.
    """
    if not isinstance(upload, UploadFile) or not upload.filename:
        return None
    limit = get_max_attachment_bytes()
    body = await upload.read(limit + 1)
    await upload.close()
    return Attachment(
        kind=kind,
        filename=upload.filename,
        content_type=upload.content_type or "application/octet-stream",
        body=body,
    )


def _registration_page(
    request: Request,
    form: str,
    form_id: str,
    *,
    values: Optional[Dict[str, str]] = None,
    outcome: Optional[RegistrationOutcome] = None,
    status_code: int = 200,
) -> Response:
    page = RegistrationPage(
        form,
        form_id=form_id,
        values=values,
        errors=outcome.errors if outcome else (),
        active_section=outcome.first_error_section if outcome else None,
        message=outcome.message if outcome else None,
    )
    return layout_response(request, _TITLES[form], page.render(), status_code=status_code, show_nav=False)


async def _show_form(request: Request, form: str, form_id: Optional[str]) -> Response:
    redirect = await redirect_if_signed_in(request)
    if redirect is not None:
        return redirect
    fid = _form_id(form_id)
    values = request.app.state.drafts.load(fid)
    return _registration_page(request, form, fid, values=values)


async def _submit(request: Request, form: str) -> Response:
    if (violation := csrf_violation(request)) is not None:
        return violation
    data = await request.form()
    fid = _form_id(str(data.get("form_id") or ""))
    attachments: Dict[str, Attachment] = {}
    for kind in ATTACHMENT_KINDS:
        attachment = await read_attachment(kind, data.get(kind))
        if attachment is not None:
            attachments[kind] = attachment
    text = {k: v for k, v in data.items() if isinstance(v, str)}
    draft = RegistrationDraft.from_form(text, attachments)
    drafts = request.app.state.drafts
    drafts.save(fid, draft)

    directory = request.app.state.directory
    pipeline = RegistrationPipeline(directory, sign_in=lambda email, pw: sign_in_blocking(directory, email, pw))
    outcome = await anyio.to_thread.run_sync(pipeline.submit, draft, form)

    if outcome.status == INVALID:
        return _registration_page(request, form, fid, values=draft.cacheable(), outcome=outcome, status_code=422)
    if outcome.status == FAILED:
        return _registration_page(request, form, fid, values=draft.cacheable(), outcome=outcome, status_code=503)

    drafts.clear(fid)
    identity = outcome.auth.identity if outcome.signed_in and outcome.auth else None
    landing = "/auth/login"
    if identity is not None:
        profile = outcome.auth.profile or outcome.profile
        landing = role_based_redirect_target(profile.role if profile else None)
    page = RegistrationDonePage(
        outcome.message,
        failed_attachments=[a.kind for a in outcome.attachment_failures],
        signed_in=identity is not None,
        landing=landing,
    )
    response = layout_response(request, "Welcome", page.render(), status_code=201, show_nav=False)
    if identity is not None:
        start_session(request, response, identity)
    logger.info(
        "registration form=%s signed_in=%s failed_attachments=%d",
        form,
        outcome.signed_in,
        len(outcome.attachment_failures),
    )
    return response


@registration_router.get("/auth/register")
async def register_attendee_form(request: Request, form_id: str | None = None):
    return await _show_form(request, ATTENDEE_FORM, form_id)


@registration_router.post("/auth/register")
async def register_attendee(request: Request):
    return await _submit(request, ATTENDEE_FORM)


@registration_router.get("/auth/register/volunteer")
async def register_volunteer_form(request: Request, form_id: str | None = None):
    return await _show_form(request, VOLUNTEER_FORM, form_id)


@registration_router.post("/auth/register/volunteer")
async def register_volunteer(request: Request):
    return await _submit(request, VOLUNTEER_FORM)


# --- Document retry (signed-in participants) -----------------------------------

async def _retry_upload(request: Request, kind: str):
    """Shared body of the JSON and HTML upload endpoints; returns (report, error response)."""
    if kind not in ATTACHMENT_KINDS:
        return None, json_error("bad_request", "invalid_attachment_kind", status_code=400)
    data = await request.form()
    attachment = await read_attachment(kind, data.get("file"))
    if attachment is None:
        return None, json_error("bad_request", "missing_file", status_code=400)
    manager = request.state.identity_manager
    pipeline = RegistrationPipeline(request.app.state.directory)
    report = await anyio.to_thread.run_sync(pipeline.retry_attachment, manager.profile.id, attachment)
    return report, None


@registration_router.post("/api/profile/attachments/{kind}")
async def upload_attachment_api(request: Request, kind: str):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager, denied = await require_roles(request)
    if denied:
        return denied
    report, error = await _retry_upload(request, kind)
    if error is not None:
        return error
    if not report.ok:
        status = 503 if report.error == "upload_failed" else 400
        return json_error("upload_failed" if status == 503 else "bad_request", report.error, status_code=status)
    return private_json({"kind": report.kind, "path": report.path}, status_code=201)


@registration_router.post("/profile/attachments/{kind}")
async def upload_attachment_page(request: Request, kind: str):
    if (violation := csrf_violation(request)) is not None:
        return violation
    manager, denied = await require_roles(request)
    if denied:
        return denied
    report, error = await _retry_upload(request, kind)
    if error is not None:
        return error
    notice = "uploaded" if report.ok else "upload_failed"
    target = f"{manager.role_based_redirect_target()}?upload={notice}"
    return RedirectResponse(url=target, status_code=303, headers=private_no_store())


__all__ = ["registration_router", "read_attachment"]
