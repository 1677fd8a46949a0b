"""
Registration form validation: per-field messages and section attribution.
"""
from __future__ import annotations

from dataclasses import replace

import pytest

from registration.validation import (
    ATTENDEE_FORM,
    VOLUNTEER_FORM,
    first_error_section,
    normalize_phone,
    resolved_university,
    validate_attachment,
    validate_draft,
    validate_email,
    validate_name,
    validate_new_password,
    validate_personal_id,
    validate_phone,
    validate_section,
)

from utils.drafts import attendee_draft, id_scan, volunteer_draft


def test_valid_attendee_has_no_errors():
    assert validate_draft(attendee_draft(), ATTENDEE_FORM) == []


@pytest.mark.parametrize(
    "value, message",
    [
        ("", "First name is required"),
        ("A", "First name must be at least 2 characters long"),
        ("Mona2", "First name must contain only letters and spaces"),
    ],
)
def test_name_rules(value, message):
    assert validate_name(value, "First name") == message


def test_email_phone_and_personal_id_rules():
    assert validate_email("not-an-email") == "Please enter a valid email address"
    assert validate_phone("0101234567") is not None
    assert validate_phone("013-1234-5678") is not None
    assert validate_phone("011-1234-5678") is None
    assert normalize_phone("011-1234-5678") == "01112345678"
    assert validate_personal_id("1234") == "Personal ID must be exactly 14 digits"
    assert validate_personal_id("1234567890123a") == "Personal ID must contain only numbers"


def test_password_confirmation_mismatch():
    errors = validate_draft(attendee_draft(confirm_password="other"), ATTENDEE_FORM)
    assert [(e.field, e.message) for e in errors] == [("confirm_password", "Passwords do not match")]


def test_other_university_needs_custom_value():
    errors = validate_draft(attendee_draft(university="Other"), ATTENDEE_FORM)
    assert [e.field for e in errors] == ["custom_university"]
    draft = attendee_draft(university="Other", custom_university="Alexandria University")
    assert validate_draft(draft, ATTENDEE_FORM) == []
    assert resolved_university(draft) == "Alexandria University"


def test_class_year_only_required_for_students():
    assert [e.field for e in validate_draft(attendee_draft(class_year=""), ATTENDEE_FORM)] == ["class_year"]
    assert validate_draft(attendee_draft(degree_level="graduate", class_year=""), ATTENDEE_FORM) == []


def test_attendee_requires_university_id_scan():
    errors = validate_draft(attendee_draft(attachments={}), ATTENDEE_FORM)
    assert [(e.field, e.section) for e in errors] == [("university_id", 3)]


def test_attachment_size_and_type(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MAX_ATTACHMENT_BYTES", str(1024 * 1024))
    big = id_scan(size=1024 * 1024 + 1)
    assert validate_attachment("university_id", big, required=True) == "File size must be less than 1MB"
    exe = id_scan(name="id.exe")
    assert validate_attachment("university_id", exe, required=True).startswith("File type must be one of")
    assert validate_attachment("cv", None, required=False) is None


def test_first_error_section_is_lowest():
    draft = attendee_draft(how_did_hear="", program="", first_name="")
    errors = validate_draft(draft, ATTENDEE_FORM)
    assert {e.section for e in errors} == {1, 2, 3}
    assert first_error_section(errors) == 1
    assert [e.field for e in validate_section(draft, ATTENDEE_FORM, 2)] == ["program"]
    assert first_error_section([]) is None


def test_volunteer_team_leader_needs_team():
    draft = volunteer_draft(role="team_leader")
    errors = validate_draft(draft, VOLUNTEER_FORM)
    assert [(e.field, e.section) for e in errors] == [("tl_team", 2)]
    assert validate_draft(replace(draft, tl_team="media"), VOLUNTEER_FORM) == []


def test_unknown_form_is_a_programming_error():
    with pytest.raises(ValueError):
        validate_draft(attendee_draft(), "speaker")


@pytest.mark.parametrize(
    "value, message",
    [
        ("", "Password is required"),
        ("Ab1!", "Password must be at least 8 characters long"),
        ("ABCDEFG1!", "Password must contain at least one lowercase letter"),
        ("abcdefg1!", "Password must contain at least one uppercase letter"),
        ("Abcdefgh!", "Password must contain at least one number"),
        ("Abcdefgh1", "Password must contain at least one special character (@$!%*?&)"),
        ("Abcdefg1!", None),
    ],
)
def test_reset_password_rules(value, message):
    assert validate_new_password(value) == message
