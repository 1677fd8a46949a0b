"""
Shared web security helpers for routes.

Contains the CSRF same-origin check used by every state-changing route
(sign-in, registration, check-in actions, role change). Keeping a single
implementation avoids security drift.
"""
from __future__ import annotations

import os
from typing import Optional
from urllib.parse import urlparse

from fastapi import Request
from fastapi.responses import Response

from http_helpers import json_error


def _parse_origin(url: str) -> tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    host = p.hostname.lower()
    port = p.port if p.port is not None else (443 if scheme == "https" else 80)
    return scheme, host, int(port)


def _parse_server(req: Request) -> tuple[str, str, int]:
    trust_proxy = (os.getenv("EVENTDESK_TRUST_PROXY", "false") or "").lower() == "true"
    if trust_proxy:
        xf_proto = (req.headers.get("x-forwarded-proto") or req.url.scheme or "").split(",")[0].strip()
        xf_host = (req.headers.get("x-forwarded-host") or req.headers.get("host") or "").split(",")[0].strip()
        scheme = (xf_proto or req.url.scheme or "http").lower()
        default_port = 443 if scheme == "https" else 80
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            host = host_only.lower()
            port = int(port_str) if port_str.isdigit() else default_port
        else:
            host = (xf_host or (req.url.hostname or "")).lower()
            port = int(req.url.port) if req.url.port else default_port
        xf_port = (req.headers.get("x-forwarded-port") or "").split(",")[0].strip()
        if xf_port:
            port = int(xf_port) if xf_port.isdigit() else default_port
        return scheme, host, port
    scheme = (req.url.scheme or "http").lower()
    host = (req.url.hostname or "").lower()
    port = int(req.url.port) if req.url.port else (443 if scheme == "https" else 80)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser clients.
    Proxy awareness: Only trust X-Forwarded-* when EVENTDESK_TRUST_PROXY=true.
    """
    try:
        server = _parse_server(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def csrf_violation(request: Request) -> Optional[Response]:
    """403 response for cross-origin state changes, else None."""
    if _is_same_origin(request):
        return None
    return json_error("forbidden", "csrf_violation", status_code=403)
