"""
Dashboard and desk pages.
"""

from typing import Iterable, Optional

from checkin.service import RegistrationStats
from checkin.states import CheckinAction, PresenceState, allowed_actions
from identity_access.domain import TEAM_LEADER, Profile

from ..base import Component
from ..forms import SelectField, SubmitButton, TextInputField
from ..navigation import role_label
from .registration import ROLE_OPTIONS, TEAM_OPTIONS

ACTION_LABELS = {
    CheckinAction.EVENT_ENTER: "Check in to event",
    CheckinAction.EVENT_EXIT: "Check out of event",
    CheckinAction.BUILDING_ENTER: "Enter building",
    CheckinAction.BUILDING_EXIT: "Leave building",
    CheckinAction.SESSION_ADD: "Add to session",
}

STAT_LABELS = (
    ("total_registered", "Total registered"),
    ("total_attendees", "Attendees"),
    ("inside_event", "Inside the event"),
    ("checked_in_today", "Checked in today"),
)


def _presence(profile: Profile) -> Optional[PresenceState]:
    try:
        return PresenceState.from_flags(profile.event_entry, profile.building_entry)
    except ValueError:
        return None


class ProfileCard(Component):
    def __init__(self, profile: Profile, *, show_documents: bool = False):
        self.profile = profile
        self.show_documents = show_documents

    def render(self) -> str:
        p = self.profile
        state = _presence(p)
        rows = [
            ("Name", p.display_name),
            ("Role", role_label(p.role)),
            ("Email", p.email),
            ("Personal ID", p.personal_id or "-"),
            ("Status", state.label if state else "Inconsistent"),
        ]
        if p.university:
            rows.append(("University", p.university))
        if p.role == TEAM_LEADER and p.tl_team:
            rows.append(("Leads", p.tl_team))
        if self.show_documents:
            rows.append(("University ID", "uploaded" if p.university_id_path else "missing"))
            rows.append(("CV", "uploaded" if p.cv_path else "missing"))
        items = "".join(f"<dt>{self.escape(k)}</dt><dd>{self.escape(v)}</dd>" for k, v in rows)
        return f'<article class="card profile-card" data-profile-id="{self.escape(p.id)}"><dl>{items}</dl></article>'


class DashboardPage(Component):
    """Landing page of one role; attendees also see their QR payload and documents."""

    def __init__(self, title: str, profile: Profile, *, notice: Optional[str] = None):
        self.title = title
        self.profile = profile
        self.notice = notice

    def _documents(self) -> str:
        missing = []
        if not self.profile.university_id_path:
            missing.append(("university_id", "University ID"))
        if not self.profile.cv_path:
            missing.append(("cv", "CV"))
        if not missing:
            return ""
        forms = "".join(
            f'<form method="post" action="/profile/attachments/{kind}" enctype="multipart/form-data" class="form-inline">'
            f'<label for="upload-{kind}">{self.escape(label)}</label>'
            f'<input id="upload-{kind}" type="file" name="file" required>'
            + SubmitButton("Upload", variant="secondary").render()
            + "</form>"
            for kind, label in missing
        )
        return f'<section class="documents"><h2>Documents</h2>{forms}</section>'

    def render(self) -> str:
        notice = f'<div class="alert alert-info" role="status">{self.escape(self.notice)}</div>' if self.notice else ""
        return (
            '<section class="dashboard">'
            f"<h1>{self.escape(self.title)}</h1>"
            f"{notice}"
            f"{ProfileCard(self.profile, show_documents=True).render()}"
            f'<p class="qr-payload">Your check-in code: <code>{self.escape(self.profile.id)}</code></p>'
            f"{self._documents()}"
            "</section>"
        )


class DeskPage(Component):
    """Staff desk: look up an attendee by scanned code and run the desk's actions."""

    def __init__(
        self,
        title: str,
        desk_path: str,
        actions: Iterable[CheckinAction],
        *,
        code: str = "",
        attendee: Optional[Profile] = None,
        message: Optional[str] = None,
        error: Optional[str] = None,
        show_stats: bool = False,
        stats: Optional[RegistrationStats] = None,
    ):
        self.title = title
        self.desk_path = desk_path
        self.show_stats = show_stats
        self.stats = stats
        self.actions = list(actions)
        self.code = code
        self.attendee = attendee
        self.message = message
        self.error = error

    def _action_forms(self) -> str:
        if self.attendee is None:
            return ""
        state = _presence(self.attendee)
        possible = allowed_actions(state) if state else frozenset()
        forms = []
        for action in self.actions:
            if action is CheckinAction.SESSION_ADD:
                continue
            disabled = action not in possible
            forms.append(
                f'<form method="post" action="/desks/{self.escape(self.attendee.id)}/{action.value}" class="form-inline">'
                f'<input type="hidden" name="desk" value="{self.escape(self.desk_path)}">'
                f'<button type="submit" class="btn btn-primary"{" disabled" if disabled else ""}>'
                f"{self.escape(ACTION_LABELS[action])}</button>"
                "</form>"
            )
        if CheckinAction.SESSION_ADD in self.actions:
            forms.append(
                f'<form method="post" action="/desks/{self.escape(self.attendee.id)}/session_add" class="form-inline">'
                f'<input type="hidden" name="desk" value="{self.escape(self.desk_path)}">'
                + TextInputField("session_id", "Session ID", required=True).render()
                + SubmitButton(ACTION_LABELS[CheckinAction.SESSION_ADD]).render()
                + SubmitButton(
                    "Remove from session",
                    variant="secondary",
                    formaction=f"/desks/{self.attendee.id}/session_remove",
                ).render()
                + "</form>"
            )
        return "".join(forms)

    def _stats(self) -> str:
        if not self.show_stats:
            return ""
        if self.stats is None:
            body = '<p class="muted">Statistics unavailable.</p>'
        else:
            items = "".join(
                f"<dt>{self.escape(label)}</dt><dd>{getattr(self.stats, name)}</dd>" for name, label in STAT_LABELS
            )
            body = f"<dl>{items}</dl>"
        return f'<section class="desk-stats" aria-label="Registration statistics">{body}</section>'

    def render(self) -> str:
        parts = [
            '<section class="desk">',
            f"<h1>{self.escape(self.title)}</h1>",
            self._stats(),
            f'<form method="get" action="{self.escape(self.desk_path)}" class="form-inline">',
            '<label for="code">Scanned code</label>',
            f'<input id="code" name="code" value="{self.escape(self.code)}" autocomplete="off" autofocus>',
            SubmitButton("Look up").render(),
            "</form>",
        ]
        if self.message:
            parts.append(f'<div class="alert alert-success" role="status">{self.escape(self.message)}</div>')
        if self.error:
            parts.append(f'<div class="alert alert-error" role="alert">{self.escape(self.error)}</div>')
        if self.attendee is not None:
            parts.append(ProfileCard(self.attendee).render())
            parts.append(f'<div class="desk-actions">{self._action_forms()}</div>')
        parts.append("</section>")
        return "".join(parts)


class RoleChangePage(Component):
    def __init__(self, profile: Profile, *, error: Optional[str] = None, notice: Optional[str] = None):
        self.profile = profile
        self.error = error
        self.notice = notice

    def render(self) -> str:
        alerts = ""
        if self.error:
            alerts += f'<div class="alert alert-error" role="alert">{self.escape(self.error)}</div>'
        if self.notice:
            alerts += f'<div class="alert alert-success" role="status">{self.escape(self.notice)}</div>'
        return (
            '<section class="role-change">'
            "<h1>Change role</h1>"
            f"<p>Current role: <strong>{self.escape(role_label(self.profile.role))}</strong></p>"
            f"{alerts}"
            '<form method="post" action="/profile/role" class="form">'
            + SelectField("role", "New role", required=True).render(options=ROLE_OPTIONS, value=self.profile.role)
            + SelectField("tl_team", "Team to lead (team leaders)").render(
                options=TEAM_OPTIONS, value=self.profile.tl_team or ""
            )
            + SubmitButton("Update role").render()
            + "</form>"
            "</section>"
        )
