"""
Response helpers shared by the app and its routers.

Why:
    Personalised pages and JSON payloads must never be cached by browsers or
    proxies; keeping the header policy and the error payload shape in one
    place stops routes from drifting apart.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import HTMLResponse, JSONResponse

from components import Layout
from identity_access.domain import Profile


def private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


def private_json(body, *, status_code: int = 200, headers: dict[str, str] | None = None) -> JSONResponse:
    merged = private_no_store()
    if headers:
        merged.update(headers)
    return JSONResponse(body, status_code=status_code, headers=merged)


def json_error(error: str, detail: Optional[str] = None, *, status_code: int, headers: dict[str, str] | None = None) -> JSONResponse:
    """Stable error payload: `{"error": code}` plus an optional human-readable detail."""
    body = {"error": error}
    if detail:
        body["detail"] = detail
    return private_json(body, status_code=status_code, headers=headers)


def layout_response(
    request: Request,
    title: str,
    content: str,
    *,
    profile: Optional[Profile] = None,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
    refresh_seconds: Optional[int] = None,
    show_nav: bool = True,
) -> HTMLResponse:
    """Render Layout with HTMX-aware semantics and return an HTMLResponse.

    Behavior:
        - Returns the `<main>` fragment only when `HX-Request` is present.
        - Otherwise renders the complete document including navigation.
        - Pages are private: `Cache-Control: private, no-store` unless the
          caller overrides it.
    Permissions:
        None. Route handlers must run the route guard before calling this.
    """
    layout = Layout(
        title=title,
        content=content,
        profile=profile,
        show_nav=show_nav,
        current_path=request.url.path,
        refresh_seconds=refresh_seconds,
    )
    body = layout.render_fragment() if request.headers.get("HX-Request") else layout.render()
    response = HTMLResponse(content=body, status_code=status_code)
    response.headers["Cache-Control"] = "private, no-store"
    if headers:
        for key, value in headers.items():
            response.headers[key] = value
    return response


__all__ = ["private_no_store", "private_json", "json_error", "layout_response"]
