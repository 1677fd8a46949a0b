"""
Layout Component for EventDesk

Main layout wrapper that combines navigation and page content into a complete
HTML document.
"""

from typing import Optional

from identity_access.domain import Profile

from .base import Component
from .navigation import Navigation


class Layout(Component):
    """Main layout component that assembles the complete page"""

    def __init__(
        self,
        title: str,
        content: str,
        profile: Optional[Profile] = None,
        show_nav: bool = True,
        current_path: str = "/",
        refresh_seconds: Optional[int] = None,
    ):
        """
        Args:
            title: Page title (will be escaped)
            content: Main content HTML (pre-rendered components)
            profile: Signed-in participant (optional)
            show_nav: Whether to show navigation (default: True)
            current_path: Current URL path for active navigation highlighting
            refresh_seconds: Emit a meta refresh (loading/retry pages)
        """
        self.title = title
        self.content = content
        self.profile = profile
        self.show_nav = show_nav
        self.current_path = current_path
        self.refresh_seconds = refresh_seconds

    def render(self) -> str:
        """Render the complete HTML document including navigation."""
        nav_html = Navigation(self.profile, self.current_path).render() if self.show_nav else ""
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
    {self._render_head()}
</head>
<body>
    <a href="#main-content" class="skip-link">Skip to main content</a>
    {nav_html}
    <div id="live-region" class="sr-only" role="status" aria-live="polite" aria-atomic="true"></div>
    <main id="main-content" class="main-content" role="main">
        {self._render_main_inner()}
    </main>
</body>
</html>"""

    def render_fragment(self) -> str:
        """Return only the children of <main> for HTMX swaps."""
        return self._render_main_inner()

    def _render_head(self) -> str:
        refresh = (
            f'<meta http-equiv="refresh" content="{int(self.refresh_seconds)}">'
            if self.refresh_seconds
            else ""
        )
        return f"""
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="description" content="EventDesk - conference registration and check-in">
    {refresh}
    <title>{self.escape(self.title)} - EventDesk</title>
    <link rel="stylesheet" href="/static/css/eventdesk.css?v=1">
    """

    def _render_main_inner(self) -> str:
        return f"""
        {self.content}
        <footer class="content-footer" role="contentinfo">
            <p class="text-center text-muted">EventDesk</p>
        </footer>
        """
