"""
Navigation Component for EventDesk

Role-based navigation that adapts to the signed-in participant's role. The
menu only mirrors what the route guard allows; visibility never grants access.
"""

from typing import Optional, List, Tuple

from identity_access.domain import (
    ADMIN,
    BUILDING,
    INFO_DESK,
    REGISTRATION,
    TEAM_LEADER,
    Profile,
    is_volunteer_family,
    role_based_redirect_target,
)

from .base import Component

NavItem = Tuple[str, str]

ROLE_LABELS = {
    "attendee": "Attendee",
    "volunteer": "Volunteer",
    REGISTRATION: "Registration Team",
    BUILDING: "Building Team",
    INFO_DESK: "Info Desk",
    TEAM_LEADER: "Team Leader",
    ADMIN: "Administrator",
}


def role_label(role: Optional[str]) -> str:
    if role in ROLE_LABELS:
        return ROLE_LABELS[role]
    if is_volunteer_family(role):
        return f"Volunteer ({role})"
    return "Participant"


class Navigation(Component):
    """Top navigation with role-based menu items"""

    def __init__(self, profile: Optional[Profile] = None, current_path: str = "/"):
        self.profile = profile
        self.current_path = current_path

    def _items(self) -> List[NavItem]:
        if self.profile is None:
            return [
                ("/auth/login", "Sign in"),
                ("/auth/register", "Register"),
                ("/auth/register/volunteer", "Volunteer"),
            ]
        role = self.profile.role
        items: List[NavItem] = [(role_based_redirect_target(role), "Dashboard")]
        if role in (REGISTRATION, ADMIN):
            items.append(("/regteam", "Registration desk"))
        if role in (BUILDING, ADMIN):
            items.append(("/buildteam", "Building desk"))
        if role in (INFO_DESK, BUILDING, ADMIN):
            items.append(("/infodesk", "Session desk"))
        if role in ("marketing", TEAM_LEADER):
            items.append(("/profile/role", "Change role"))
        # Keep order but drop duplicates (e.g. the dashboard is also a desk).
        seen = set()
        unique: List[NavItem] = []
        for href, text in items:
            if href in seen:
                continue
            seen.add(href)
            unique.append((href, text))
        return unique

    def _link(self, href: str, text: str) -> str:
        active = self.current_path == href
        attrs = self.attributes(
            href=href,
            class_=self.classes("nav-link", active=active),
            aria_current="page" if active else None,
        )
        return f"<a {attrs}>{self.escape(text)}</a>"

    def render(self) -> str:
        links = "".join(self._link(href, text) for href, text in self._items())
        if self.profile is None:
            user_html = ""
        else:
            # Logout changes server state, so it is a POST form, not a link.
            user_html = (
                '<div class="nav-user">'
                f'<span class="user-name">{self.escape(self.profile.display_name)}</span> '
                f'<span class="user-role">{self.escape(role_label(self.profile.role))}</span>'
                '<form method="post" action="/auth/logout" class="nav-logout">'
                '<button type="submit" class="btn btn-link">Sign out</button>'
                "</form>"
                "</div>"
            )
        return (
            '<nav class="topnav" role="navigation" aria-label="Main navigation">'
            '<span class="brand">EventDesk</span>'
            f'<div class="nav-items">{links}</div>'
            f"{user_html}"
            "</nav>"
        )
