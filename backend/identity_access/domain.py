"""
Identity domain constants, records and pure role helpers.

Why:
- Centralize the role vocabulary so the web guards, the check-in desks and the
  registration pipeline cannot drift apart.
- Keep role → landing route mapping pure (no I/O) so it can be unit tested and
  reused by both the protected and the public route guards.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Iterable, Mapping, Optional

ATTENDEE = "attendee"
VOLUNTEER = "volunteer"
REGISTRATION = "registration"
BUILDING = "building"
INFO_DESK = "info_desk"
TEAM_LEADER = "team_leader"
ADMIN = "admin"

# Specialised volunteer teams. Stored verbatim in the profiles table.
VOLUNTEER_SUBROLES = frozenset(
    {"ushers", "marketing", "media", "ER", "BD team", "catering", "feedback", "stage"}
)

STAFF_ROLES = frozenset({REGISTRATION, BUILDING, INFO_DESK})

# Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset(
    {ATTENDEE, VOLUNTEER, TEAM_LEADER, ADMIN} | STAFF_ROLES | VOLUNTEER_SUBROLES
)

# Roles a volunteer may pick during registration or a self-service role change.
SELECTABLE_VOLUNTEER_ROLES = frozenset(STAFF_ROLES | VOLUNTEER_SUBROLES | {TEAM_LEADER})

# Teams a team leader can be assigned to lead.
LEADABLE_TEAMS = frozenset(STAFF_ROLES | VOLUNTEER_SUBROLES)

# Least privileged landing route; used for unknown or missing roles.
DEFAULT_LANDING_ROUTE = "/attendee"

LANDING_ROUTES: Mapping[str, str] = {
    ATTENDEE: "/attendee",
    VOLUNTEER: "/volunteer",
    REGISTRATION: "/regteam",
    BUILDING: "/buildteam",
    INFO_DESK: "/infodesk",
    TEAM_LEADER: "/teamleader",
    ADMIN: "/admin",
    **{sub: "/volunteer" for sub in VOLUNTEER_SUBROLES},
}


@dataclass(frozen=True)
class Identity:
    """Authenticated principal as returned by the remote directory."""

    id: str
    email: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    email_confirmed: bool = False


@dataclass(frozen=True)
class Profile:
    """Application record for a registered participant (one per identity)."""

    id: str
    role: str = ATTENDEE
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    gender: Optional[str] = None
    nationality: Optional[str] = None
    phone: Optional[str] = None
    personal_id: Optional[str] = None
    university: Optional[str] = None
    faculty: Optional[str] = None
    degree_level: Optional[str] = None
    program: Optional[str] = None
    class_year: Optional[str] = None
    how_did_hear: Optional[str] = None
    volunteer_id: Optional[str] = None
    tl_team: Optional[str] = None
    score: int = 0
    event_entry: bool = False
    building_entry: bool = False
    university_id_path: Optional[str] = None
    cv_path: Optional[str] = None
    profile_complete: bool = False
    extra: dict = field(default_factory=dict, compare=False, repr=False)

    @property
    def display_name(self) -> str:
        name = " ".join(p for p in (self.first_name.strip(), self.last_name.strip()) if p)
        return name or self.email or self.id

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        """Build a Profile from a table row, keeping unknown columns in `extra`.

        The remote table stores the class year in a column named `class` and
        the referral source in `how_did_hear_about_event`; both are mapped here.
        """
        data = dict(row)
        if "class" in data and "class_year" not in data:
            data["class_year"] = data.pop("class")
        if "how_did_hear_about_event" in data and "how_did_hear" not in data:
            data["how_did_hear"] = data.pop("how_did_hear_about_event")
        if "reg_id" in data and "volunteer_id" not in data:
            data["volunteer_id"] = data.pop("reg_id")
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["id"] = str(kwargs.get("id") or "")
        kwargs["score"] = int(kwargs.get("score") or 0)
        kwargs["event_entry"] = bool(kwargs.get("event_entry"))
        kwargs["building_entry"] = bool(kwargs.get("building_entry"))
        kwargs["profile_complete"] = bool(kwargs.get("profile_complete"))
        for key in ("role", "first_name", "last_name", "email"):
            if kwargs.get(key) is None:
                kwargs.pop(key, None)
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs, extra=extra)

    def with_changes(self, changes: Mapping[str, Any]) -> "Profile":
        known = {f.name for f in fields(self)} - {"id", "extra"}
        return replace(self, **{k: v for k, v in changes.items() if k in known})


def normalize_roles(role_or_roles: str | Iterable[str] | None) -> frozenset[str]:
    if role_or_roles is None:
        return frozenset()
    if isinstance(role_or_roles, str):
        return frozenset({role_or_roles})
    return frozenset(r for r in role_or_roles if isinstance(r, str))


def is_volunteer_family(role: str | None) -> bool:
    return role == VOLUNTEER or role in VOLUNTEER_SUBROLES


def profile_has_role(profile: Profile | None, role_or_roles: str | Iterable[str] | None) -> bool:
    """Return True when the profile's role is one of the given roles.

    A missing profile never matches (returns False, not an error). The
    `volunteer` requirement also admits the specialised volunteer teams.
    """
    if profile is None:
        return False
    wanted = normalize_roles(role_or_roles)
    if not wanted:
        return False
    if profile.role in wanted:
        return True
    return VOLUNTEER in wanted and profile.role in VOLUNTEER_SUBROLES


def role_based_redirect_target(role: str | None) -> str:
    """Map a role to its canonical landing route.

    Unknown or missing roles map to the least privileged route, never to an
    elevated one.
    """
    if not isinstance(role, str):
        return DEFAULT_LANDING_ROUTE
    return LANDING_ROUTES.get(role, DEFAULT_LANDING_ROUTE)


__all__ = [
    "ATTENDEE",
    "VOLUNTEER",
    "REGISTRATION",
    "BUILDING",
    "INFO_DESK",
    "TEAM_LEADER",
    "ADMIN",
    "VOLUNTEER_SUBROLES",
    "STAFF_ROLES",
    "ALLOWED_ROLES",
    "SELECTABLE_VOLUNTEER_ROLES",
    "LEADABLE_TEAMS",
    "DEFAULT_LANDING_ROUTE",
    "LANDING_ROUTES",
    "Identity",
    "Profile",
    "normalize_roles",
    "is_volunteer_family",
    "profile_has_role",
    "role_based_redirect_target",
]
