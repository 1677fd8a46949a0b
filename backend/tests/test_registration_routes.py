"""
Registration over HTTP: multipart forms, field errors with the failing section
opened, draft restore by form id and the document retry endpoints.
"""
from __future__ import annotations

import pytest

import main  # type: ignore
from auth_utils import SESSION_COOKIE_NAME  # type: ignore

from utils.sessions import client_for, signed_in

pytestmark = pytest.mark.anyio("asyncio")

FORM_ID = "draft-form-0123456789"
ID_SCAN = {"university_id": ("id.png", b"\x89PNG scan", "image/png")}


def _attendee_form(**overrides):
    data = {
        "form_id": FORM_ID,
        "first_name": "Mona",
        "last_name": "Hassan",
        "email": "mona@example.com",
        "password": "secret123",
        "confirm_password": "secret123",
        "gender": "female",
        "nationality": "Egyptian",
        "phone": "01012345678",
        "personal_id": "29801011234567",
        "university": "Cairo University",
        "faculty": "Engineering",
        "degree_level": "student",
        "program": "Computer Engineering",
        "class_year": "3",
        "how_did_hear": "linkedin",
    }
    data.update(overrides)
    return data


async def test_register_form_renders_sections():
    async with client_for(main.app) as c:
        r = await c.get("/auth/register")
        vol = await c.get("/auth/register/volunteer")
    assert r.status_code == 200
    assert "Attendee registration" in r.text
    assert 'enctype="multipart/form-data"' in r.text
    assert 'name="form_id"' in r.text
    assert r.headers["Cache-Control"] == "private, no-store"
    assert "Volunteer registration" in vol.text


async def test_successful_registration_signs_in():
    async with client_for(main.app) as c:
        r = await c.post("/auth/register", data=_attendee_form(), files=ID_SCAN)
    assert r.status_code == 201
    assert "Registration complete." in r.text
    assert 'href="/attendee"' in r.text
    assert r.headers["set-cookie"].startswith(f"{SESSION_COOKIE_NAME}=")
    directory = main.app.state.directory
    profile = directory.find_profile_by_personal_id("29801011234567")
    assert profile is not None and profile.university_id_path
    # The finished draft is gone.
    assert main.app.state.drafts.load(FORM_ID) is None


async def test_field_errors_open_first_failing_section_and_keep_draft():
    async with client_for(main.app) as c:
        r = await c.post("/auth/register", data=_attendee_form(program="", how_did_hear=""), files=ID_SCAN)
        again = await c.get("/auth/register", params={"form_id": FORM_ID})
    assert r.status_code == 422
    assert 'data-active-section="2"' in r.text
    assert "set-cookie" not in r.headers
    # Typed values survive; passwords never do.
    assert 'value="Mona"' in again.text
    assert "secret123" not in again.text
    assert main.app.state.drafts.load(FORM_ID)["email"] == "mona@example.com"


async def test_missing_id_scan_is_reported_in_documents_section():
    async with client_for(main.app) as c:
        r = await c.post("/auth/register", data=_attendee_form())
    assert r.status_code == 422
    assert 'data-active-section="3"' in r.text


async def test_volunteer_registration():
    form = {
        "form_id": FORM_ID,
        "first_name": "Omar",
        "last_name": "Ali",
        "email": "omar@example.com",
        "password": "secret123",
        "confirm_password": "secret123",
        "gender": "male",
        "phone": "01212345678",
        "personal_id": "29901011234567",
        "faculty": "Commerce",
        "role": "media",
    }
    async with client_for(main.app) as c:
        r = await c.post("/auth/register/volunteer", data=form)
    assert r.status_code == 201
    assert 'href="/volunteer"' in r.text


async def test_register_rejects_cross_origin():
    async with client_for(main.app) as c:
        r = await c.post("/auth/register", data=_attendee_form(), headers={"Origin": "https://evil.example.com"})
    assert r.status_code == 403


async def test_attachment_retry_api_links_document():
    ident, client = signed_in(main.app, "retry@example.com")
    async with client as c:
        ok = await c.post("/api/profile/attachments/university_id", files={"file": ("id.pdf", b"%PDF-1.7", "application/pdf")})
        bad_kind = await c.post("/api/profile/attachments/avatar", files={"file": ("a.png", b"x", "image/png")})
        bad_type = await c.post("/api/profile/attachments/cv", files={"file": ("cv.exe", b"x", "application/octet-stream")})
    assert ok.status_code == 201
    body = ok.json()
    assert body["kind"] == "university_id"
    assert body["path"].startswith(f"{ident.id}/") and body["path"].endswith(".pdf")
    assert main.app.state.directory.get_profile(ident.id).university_id_path == body["path"]
    assert bad_kind.status_code == 400
    assert bad_type.status_code == 400


async def test_attachment_retry_page_redirects_with_notice():
    _, client = signed_in(main.app, "page@example.com", "marketing")
    async with client as c:
        r = await c.post(
            "/profile/attachments/cv",
            files={"file": ("cv.pdf", b"%PDF-1.7", "application/pdf")},
            follow_redirects=False,
        )
    assert r.status_code == 303
    assert r.headers["location"] == "/volunteer?upload=uploaded"


async def test_attachment_retry_requires_sign_in():
    async with client_for(main.app) as c:
        r = await c.post("/api/profile/attachments/cv", files={"file": ("cv.pdf", b"x", "application/pdf")})
    assert r.status_code == 401
