"""
Helpers to generate storage paths for registration attachments.

Why:
    Keep path shapes consistent between the registration pipeline and the
    retry-upload route and provide simple, testable sanitization that avoids
    path traversal and exotic characters.

Conventions:
    - Attachments: {user_id}/{epoch_ms}-{token}.{ext}

Security:
    - Sanitization removes characters outside [A-Za-z0-9._-] from segments.
    - Filename extensions are lowercased and filtered to alphanumeric + dot.
"""
from __future__ import annotations

import os
import re
import unicodedata

_SEGMENT_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _sanitize_segment(value: str, *, fallback: str = "x") -> str:
    value = value or ""
    normalized = unicodedata.normalize("NFKD", value)
    ascii_value = normalized.encode("ascii", "ignore").decode("ascii")
    sanitized = _SEGMENT_RE.sub("-", ascii_value).strip("-_.")
    return sanitized or fallback


def _sanitize_ext_from_filename(filename: str | None, default_ext: str = "") -> str:
    if not filename:
        ext = default_ext
    else:
        _, ext = os.path.splitext(os.path.basename(filename))
    ext = (ext or default_ext or "").lower()
    ext = "".join(ch for ch in ext if ch.isalnum() or ch == ".")
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext


def make_attachment_key(*, user_id: str, filename: str | None, epoch_ms: int, token: str) -> str:
    """Build a storage key for a registration attachment.

    Returns: {user}/{epoch_ms}-{token}.{ext}
    """
    u = _sanitize_segment(user_id, fallback="user")
    t = _sanitize_segment(token, fallback="file")
    ext = _sanitize_ext_from_filename(filename, default_ext=".bin")
    return f"{u}/{int(epoch_ms)}-{t}{ext}"


__all__ = ["make_attachment_key"]
