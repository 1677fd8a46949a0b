"""
Multi-section registration forms (attendee and volunteer).

Why:
    The server validates all sections at once and reports the lowest failing
    section; the page opens exactly that section so the visitor lands on the
    first field that needs attention instead of scrolling for inline errors.

Behavior:
    - Every section is a `<details>` element; only the active one is open.
    - Values come from the submitted form or the draft cache. Password fields
      are never pre-filled.
    - The opaque `form_id` ties the page to its cached draft.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from registration.validation import (
    ATTENDEE_FORM,
    CLASS_YEAR_LABELS,
    FACULTIES,
    HOW_DID_YOU_HEAR_LABELS,
    NATIONALITIES,
    SECTION_TITLES,
    SECTIONS,
    UNIVERSITIES,
    FieldError,
)
from storage.config import ALLOWED_EXTENSIONS, CV, UNIVERSITY_ID

from ..base import Component
from ..forms import FileUploadField, SelectField, SubmitButton, TextInputField

ROLE_OPTIONS: Sequence[Tuple[str, str]] = (
    ("registration", "Registration Desk"),
    ("building", "Building Assistance"),
    ("info_desk", "Info Desk"),
    ("ushers", "Ushers"),
    ("marketing", "Marketing"),
    ("media", "Media"),
    ("ER", "ER Team"),
    ("BD team", "BD Team"),
    ("catering", "Catering"),
    ("feedback", "Feedback Team"),
    ("stage", "Stage Team"),
    ("team_leader", "Team Leader"),
)

TEAM_OPTIONS: Sequence[Tuple[str, str]] = (
    ("registration", "Registration Team"),
    ("building", "Building Team"),
    ("info_desk", "Info Desk Team"),
    ("ushers", "Ushers Team"),
    ("marketing", "Marketing Team"),
    ("media", "Media Team"),
    ("ER", "ER Team"),
    ("BD team", "BD Team"),
    ("catering", "Catering Team"),
    ("feedback", "Feedback Team"),
    ("stage", "Stage Team"),
)

GENDER_OPTIONS = (("male", "Male"), ("female", "Female"))
DEGREE_OPTIONS = (("student", "Student"), ("graduate", "Graduate"))


class RegistrationPage(Component):
    def __init__(
        self,
        form: str,
        *,
        form_id: str,
        values: Optional[Mapping[str, str]] = None,
        errors: Iterable[FieldError] = (),
        active_section: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.form = form
        self.form_id = form_id
        self.values: Dict[str, str] = dict(values or {})
        self.errors: Dict[str, str] = {}
        for err in errors:
            self.errors.setdefault(err.field, err.message)
        self.active_section = active_section or 1
        self.message = message

    # --- field helpers ---------------------------------------------------
    def _v(self, name: str) -> str:
        return str(self.values.get(name) or "")

    def _text(self, name: str, label: str, *, input_type: str = "text", required: bool = True, autocomplete: Optional[str] = None, help_text: Optional[str] = None) -> str:
        return TextInputField(name, label, required=required, error_text=self.errors.get(name), help_text=help_text).render(
            value=self._v(name), input_type=input_type, autocomplete=autocomplete
        )

    def _select(self, name: str, label: str, options, *, required: bool = True) -> str:
        return SelectField(name, label, required=required, error_text=self.errors.get(name)).render(
            options=options, value=self._v(name)
        )

    def _file(self, kind: str, label: str, *, required: bool) -> str:
        accept = ",".join(ALLOWED_EXTENSIONS[kind])
        help_text = f"Allowed: {', '.join(ALLOWED_EXTENSIONS[kind])}"
        return FileUploadField(kind, label, required=required, error_text=self.errors.get(kind), help_text=help_text).render(
            accept=accept
        )

    def _account_fields(self) -> List[str]:
        return [
            self._text("password", "Password", input_type="password", autocomplete="new-password", help_text="At least 6 characters"),
            self._text("confirm_password", "Confirm password", input_type="password", autocomplete="new-password"),
        ]

    # --- sections --------------------------------------------------------
    def _attendee_sections(self) -> Dict[int, List[str]]:
        return {
            1: [
                self._text("first_name", "First name", autocomplete="given-name"),
                self._text("last_name", "Last name", autocomplete="family-name"),
                self._select("gender", "Gender", GENDER_OPTIONS),
                self._select("nationality", "Nationality", NATIONALITIES),
                self._text("email", "Email", input_type="email", autocomplete="email"),
                self._text("phone", "Phone", input_type="tel", autocomplete="tel", help_text="01X-XXXXXXXX"),
                self._text("personal_id", "Personal ID", help_text="14 digits"),
                *self._account_fields(),
            ],
            2: [
                self._select("university", "University", UNIVERSITIES),
                self._text("custom_university", "University name (if Other)", required=False),
                self._select("faculty", "Faculty", FACULTIES),
                self._select("degree_level", "Degree level", DEGREE_OPTIONS),
                self._text("program", "Program / Major"),
                self._select("class_year", "Class year (students)", tuple(CLASS_YEAR_LABELS.items()), required=False),
            ],
            3: [
                self._select("how_did_hear", "How did you hear about the event?", tuple(HOW_DID_YOU_HEAR_LABELS.items())),
                self._text("volunteer_id", "Volunteer ID (optional)", required=False, help_text="Personal ID of the volunteer who referred you"),
                self._file(UNIVERSITY_ID, "University ID", required=True),
                self._file(CV, "CV (optional)", required=False),
            ],
        }

    def _volunteer_sections(self) -> Dict[int, List[str]]:
        return {
            1: [
                self._text("first_name", "First name", autocomplete="given-name"),
                self._text("last_name", "Last name", autocomplete="family-name"),
                self._select("gender", "Gender", GENDER_OPTIONS),
                self._text("email", "Email", input_type="email", autocomplete="email"),
                self._text("phone", "Phone", input_type="tel", autocomplete="tel", help_text="01X-XXXXXXXX"),
                self._text("personal_id", "Personal ID", help_text="14 digits"),
                self._select("faculty", "Faculty", FACULTIES),
                *self._account_fields(),
            ],
            2: [
                self._select("role", "Volunteer role", ROLE_OPTIONS),
                self._select("tl_team", "Team to lead (team leaders)", TEAM_OPTIONS, required=False),
                self._file(UNIVERSITY_ID, "University ID (optional)", required=False),
                self._file(CV, "CV (optional)", required=False),
            ],
        }

    def _section(self, index: int, title: str, fields_html: List[str]) -> str:
        is_active = index == self.active_section
        failing = [f for f, s in SECTIONS[self.form].items() if s == index and f in self.errors]
        badge = f' <span class="badge badge-error">{len(failing)}</span>' if failing else ""
        attrs = self.attributes(
            class_=self.classes("form-section", active=is_active, has_errors=bool(failing)),
            data_section=str(index),
            open=is_active,
        )
        return (
            f"<details {attrs}>"
            f"<summary>{index}. {self.escape(title)}{badge}</summary>"
            f"{''.join(fields_html)}"
            "</details>"
        )

    def render(self) -> str:
        if self.form == ATTENDEE_FORM:
            heading, action, sections = "Attendee registration", "/auth/register", self._attendee_sections()
        else:
            heading, action, sections = "Volunteer registration", "/auth/register/volunteer", self._volunteer_sections()
        titles = SECTION_TITLES[self.form]
        body = "".join(self._section(i, titles[i], sections[i]) for i in sorted(sections))
        alert = (
            f'<div class="alert alert-error" role="alert">{self.escape(self.message)}</div>' if self.message else ""
        )
        return (
            '<section class="registration">'
            f"<h1>{self.escape(heading)}</h1>"
            f"{alert}"
            f'<form method="post" action="{action}" enctype="multipart/form-data" class="form" '
            f'data-active-section="{self.active_section}">'
            f'<input type="hidden" name="form_id" value="{self.escape(self.form_id)}">'
            f"{body}"
            + SubmitButton("Create account").render()
            + "</form>"
            '<p>Already registered? <a href="/auth/login">Sign in</a></p>'
            "</section>"
        )


class RegistrationDonePage(Component):
    def __init__(self, message: str, *, failed_attachments: Iterable[str] = (), signed_in: bool = False, landing: str = "/auth/login"):
        self.message = message
        self.failed_attachments = list(failed_attachments)
        self.signed_in = signed_in
        self.landing = landing

    def render(self) -> str:
        retry = ""
        if self.failed_attachments:
            items = "".join(f"<li>{self.escape(kind.replace('_', ' '))}</li>" for kind in self.failed_attachments)
            retry = f'<div class="alert alert-warning"><p>Not uploaded:</p><ul>{items}</ul></div>'
        target, label = (self.landing, "Continue to dashboard") if self.signed_in else ("/auth/login", "Sign in")
        return (
            '<section class="registration-done">'
            "<h1>Welcome!</h1>"
            f"<p>{self.escape(self.message)}</p>"
            f"{retry}"
            f'<p><a class="btn btn-primary" href="{self.escape(target)}">{label}</a></p>'
            "</section>"
        )
