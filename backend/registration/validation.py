"""
Field validation for the multi-section registration forms.

Every field belongs to exactly one numbered section of its form. Validation
runs all sections and returns per-field errors tagged with their section, so
the form can send the visitor back to the first section that needs attention.

Forms:
    attendee   1 personal & account, 2 academic, 3 event & documents
    volunteer  1 personal & account, 2 role selection (and documents)
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from identity_access.domain import LEADABLE_TEAMS, SELECTABLE_VOLUNTEER_ROLES, TEAM_LEADER
from storage.config import ALLOWED_EXTENSIONS, CV, UNIVERSITY_ID, get_max_attachment_bytes

from .drafts import Attachment, RegistrationDraft

ATTENDEE_FORM = "attendee"
VOLUNTEER_FORM = "volunteer"
FORMS = (ATTENDEE_FORM, VOLUNTEER_FORM)

OTHER_UNIVERSITY = "Other"

GENDERS = ("male", "female")
DEGREE_LEVELS = ("student", "graduate")
CLASS_YEARS = ("1", "2", "3", "4", "5")
HOW_DID_YOU_HEAR = (
    "linkedin",
    "facebook",
    "instagram",
    "friends",
    "banners_in_street",
    "information_session_at_faculty",
    "campus_marketing",
    "other",
)

# Display choices for the forms. Validation accepts free text for these.
NATIONALITIES = ("Egyptian", "Other")
UNIVERSITIES = (
    "Ain Shams University",
    "Helwan University",
    "Canadian Ahram University",
    "Banha University",
    "Cairo University",
    OTHER_UNIVERSITY,
)
FACULTIES = (
    "Faculty of Engineering",
    "Faculty of Medicine",
    "Faculty of Commerce",
    "Faculty of Law",
    "Faculty of Arts",
    "Faculty of Science",
    "Faculty of Pharmacy",
    "Faculty of Dentistry",
    "Faculty of Veterinary Medicine",
    "Faculty of Agriculture",
    "Faculty of Education",
    "Faculty of Nursing",
    "Faculty of Computer and Information Sciences",
    "Faculty of Economics and Political Science",
    "Faculty of Mass Communication",
    "Faculty of Physical Education",
    "Faculty of Fine Arts",
    "Faculty of Music Education",
    "Faculty of Archaeology",
    "Faculty of Social Work",
    "Faculty of Tourism and Hotels",
    "Faculty of Languages",
    "Faculty of Business Administration",
    "Faculty of Applied Arts",
    "Other",
)
CLASS_YEAR_LABELS = {"1": "1st Year", "2": "2nd Year", "3": "3rd Year", "4": "4th Year", "5": "5th Year"}
HOW_DID_YOU_HEAR_LABELS = {
    "linkedin": "LinkedIn",
    "facebook": "Facebook",
    "instagram": "Instagram",
    "friends": "Friends",
    "banners_in_street": "Banners in Street",
    "information_session_at_faculty": "Information Session at Faculty",
    "campus_marketing": "Campus Marketing",
    "other": "Other",
}

NAME_RE = re.compile(r"^[A-Za-z\s]+$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^(010|011|012|015)\d{8}$")
DIGITS14_RE = re.compile(r"^\d{14}$")
MIN_PASSWORD_LENGTH = 6
# Password reset asks for a stronger password than sign-up.
MIN_RESET_PASSWORD_LENGTH = 8
PASSWORD_SPECIALS = "@$!%*?&"

SECTIONS: Mapping[str, Mapping[str, int]] = {
    ATTENDEE_FORM: {
        "first_name": 1,
        "last_name": 1,
        "gender": 1,
        "nationality": 1,
        "email": 1,
        "phone": 1,
        "personal_id": 1,
        "password": 1,
        "confirm_password": 1,
        "university": 2,
        "custom_university": 2,
        "faculty": 2,
        "degree_level": 2,
        "program": 2,
        "class_year": 2,
        "how_did_hear": 3,
        "volunteer_id": 3,
        UNIVERSITY_ID: 3,
        CV: 3,
    },
    VOLUNTEER_FORM: {
        "first_name": 1,
        "last_name": 1,
        "gender": 1,
        "email": 1,
        "phone": 1,
        "personal_id": 1,
        "faculty": 1,
        "password": 1,
        "confirm_password": 1,
        "role": 2,
        "tl_team": 2,
        UNIVERSITY_ID: 2,
        CV: 2,
    },
}

SECTION_TITLES: Mapping[str, Mapping[int, str]] = {
    ATTENDEE_FORM: {1: "Personal Information", 2: "Academic Information", 3: "Event & Documents"},
    VOLUNTEER_FORM: {1: "Personal Information", 2: "Volunteer Role"},
}


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    section: int


# --- single-field validators (return a message or None) ----------------------

def validate_name(value: str, label: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return f"{label} is required"
    if len(value) < 2:
        return f"{label} must be at least 2 characters long"
    if not NAME_RE.match(value):
        return f"{label} must contain only letters and spaces"
    return None


def validate_email(value: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return "Email is required"
    if not EMAIL_RE.match(value):
        return "Please enter a valid email address"
    return None


def normalize_phone(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def validate_phone(value: str) -> Optional[str]:
    if not (value or "").strip():
        return "Phone number is required"
    if not PHONE_RE.match(normalize_phone(value)):
        return "Please enter a valid Egyptian phone number (01X-XXXXXXXX)"
    return None


def validate_personal_id(value: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return "Personal ID is required"
    if len(value) != 14:
        return "Personal ID must be exactly 14 digits"
    if not DIGITS14_RE.match(value):
        return "Personal ID must contain only numbers"
    return None


def validate_password(value: str) -> Optional[str]:
    if not value:
        return "Password is required"
    if len(value) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
    return None


def validate_new_password(value: str) -> Optional[str]:
    """Rules for a password chosen through the reset link."""
    if not value:
        return "Password is required"
    if len(value) < MIN_RESET_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_RESET_PASSWORD_LENGTH} characters long"
    if not re.search(r"[a-z]", value):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", value):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", value):
        return "Password must contain at least one number"
    if not any(ch in PASSWORD_SPECIALS for ch in value):
        return f"Password must contain at least one special character ({PASSWORD_SPECIALS})"
    return None


def validate_confirm_password(password: str, confirm: str) -> Optional[str]:
    if not confirm:
        return "Please confirm your password"
    if password != confirm:
        return "Passwords do not match"
    return None


def validate_volunteer_id(value: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return None
    if len(value) != 14:
        return "Volunteer ID must be exactly 14 digits"
    if not DIGITS14_RE.match(value):
        return "Volunteer ID must contain only numbers"
    return None


def validate_choice(value: str, choices: Iterable[str], required: str, invalid: str) -> Optional[str]:
    value = (value or "").strip()
    if not value:
        return required
    if value not in choices:
        return invalid
    return None


def validate_attachment(kind: str, attachment: Optional[Attachment], *, required: bool) -> Optional[str]:
    label = "University ID" if kind == UNIVERSITY_ID else "CV"
    if attachment is None or attachment.size == 0:
        return f"{label} is required" if required else None
    max_bytes = get_max_attachment_bytes()
    if attachment.size > max_bytes:
        return f"File size must be less than {round(max_bytes / 1024 / 1024)}MB"
    _, ext = os.path.splitext(attachment.filename or "")
    allowed = ALLOWED_EXTENSIONS[kind]
    if ext.lower() not in allowed:
        return f"File type must be one of: {', '.join(allowed)}"
    return None


# --- form validation ---------------------------------------------------------

def _collect(form: str, messages: Dict[str, Optional[str]]) -> List[FieldError]:
    sections = SECTIONS[form]
    return [FieldError(field=f, message=m, section=sections[f]) for f, m in messages.items() if m]


def _account_messages(draft: RegistrationDraft) -> Dict[str, Optional[str]]:
    return {
        "first_name": validate_name(draft.first_name, "First name"),
        "last_name": validate_name(draft.last_name, "Last name"),
        "gender": validate_choice(draft.gender.lower(), GENDERS, "Gender is required", "Please select a valid gender"),
        "email": validate_email(draft.email),
        "phone": validate_phone(draft.phone),
        "personal_id": validate_personal_id(draft.personal_id),
        "password": validate_password(draft.password),
        "confirm_password": validate_confirm_password(draft.password, draft.confirm_password),
    }


def validate_attendee(draft: RegistrationDraft) -> List[FieldError]:
    messages = _account_messages(draft)
    messages["nationality"] = None if draft.nationality.strip() else "Nationality is required"
    messages["university"] = None if draft.university.strip() else "University is required"
    if draft.university.strip() == OTHER_UNIVERSITY and not draft.custom_university.strip():
        messages["custom_university"] = "Please specify your university"
    messages["faculty"] = None if draft.faculty.strip() else "Faculty is required"
    messages["degree_level"] = validate_choice(
        draft.degree_level, DEGREE_LEVELS, "Degree level is required", "Please select a valid degree level"
    )
    messages["program"] = None if draft.program.strip() else "Program/Major is required"
    if draft.degree_level == "student":
        messages["class_year"] = validate_choice(
            draft.class_year, CLASS_YEARS, "Class year is required for students", "Please select a valid class year"
        )
    messages["how_did_hear"] = validate_choice(
        draft.how_did_hear, HOW_DID_YOU_HEAR, "This field is required", "Please select a valid option"
    )
    messages["volunteer_id"] = validate_volunteer_id(draft.volunteer_id)
    messages[UNIVERSITY_ID] = validate_attachment(UNIVERSITY_ID, draft.attachments.get(UNIVERSITY_ID), required=True)
    messages[CV] = validate_attachment(CV, draft.attachments.get(CV), required=False)
    return _collect(ATTENDEE_FORM, messages)


def validate_volunteer(draft: RegistrationDraft) -> List[FieldError]:
    messages = _account_messages(draft)
    messages["faculty"] = None if draft.faculty.strip() else "Faculty is required"
    messages["role"] = validate_choice(
        draft.role, SELECTABLE_VOLUNTEER_ROLES, "Please select a volunteer role", "Please select a valid volunteer role"
    )
    if draft.role == TEAM_LEADER:
        messages["tl_team"] = validate_choice(
            draft.tl_team, LEADABLE_TEAMS, "Please select which team you will lead", "Please select a valid team"
        )
    messages[UNIVERSITY_ID] = validate_attachment(UNIVERSITY_ID, draft.attachments.get(UNIVERSITY_ID), required=False)
    messages[CV] = validate_attachment(CV, draft.attachments.get(CV), required=False)
    return _collect(VOLUNTEER_FORM, messages)


def validate_draft(draft: RegistrationDraft, form: str) -> List[FieldError]:
    if form == ATTENDEE_FORM:
        return validate_attendee(draft)
    if form == VOLUNTEER_FORM:
        return validate_volunteer(draft)
    raise ValueError("unknown_form")


def validate_section(draft: RegistrationDraft, form: str, section: int) -> List[FieldError]:
    """Errors of one section only (used when moving to the next section)."""
    return [e for e in validate_draft(draft, form) if e.section == section]


def first_error_section(errors: Iterable[FieldError]) -> Optional[int]:
    """Lowest section index among all failing fields, or None without errors."""
    sections = [e.section for e in errors]
    return min(sections) if sections else None


def resolved_university(draft: RegistrationDraft) -> str:
    """The university value to store: the custom entry replaces the "Other" placeholder."""
    if draft.university.strip() == OTHER_UNIVERSITY:
        return draft.custom_university.strip()
    return draft.university.strip()


__all__ = [
    "ATTENDEE_FORM",
    "VOLUNTEER_FORM",
    "FORMS",
    "OTHER_UNIVERSITY",
    "GENDERS",
    "DEGREE_LEVELS",
    "CLASS_YEARS",
    "HOW_DID_YOU_HEAR",
    "NATIONALITIES",
    "UNIVERSITIES",
    "FACULTIES",
    "CLASS_YEAR_LABELS",
    "HOW_DID_YOU_HEAR_LABELS",
    "SECTIONS",
    "SECTION_TITLES",
    "FieldError",
    "validate_name",
    "validate_email",
    "validate_phone",
    "normalize_phone",
    "validate_personal_id",
    "validate_password",
    "validate_new_password",
    "validate_confirm_password",
    "validate_volunteer_id",
    "validate_attachment",
    "validate_draft",
    "validate_section",
    "first_error_section",
    "resolved_university",
]
