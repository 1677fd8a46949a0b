"""
Centralized storage configuration for attachment buckets and limits.

Intent:
    Provide a single source of truth for the bucket names used by the
    registration attachments (university ID scans and volunteer CVs) and their
    environment-variable overrides. Prevents drift between the registration
    pipeline and the retry-upload route.

Behavior:
    - UNIVERSITY_IDS_BUCKET_DEFAULT and CVS_BUCKET_DEFAULT define canonical
      defaults ("university-ids" / "cvs").
    - get_bucket_for_kind() maps an attachment kind to its bucket.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os


UNIVERSITY_IDS_BUCKET_DEFAULT = "university-ids"
CVS_BUCKET_DEFAULT = "cvs"

# Attachment kinds accepted by the registration flow.
UNIVERSITY_ID = "university_id"
CV = "cv"
ATTACHMENT_KINDS = (UNIVERSITY_ID, CV)

# Profile column that stores the uploaded path for each kind.
PATH_COLUMNS = {UNIVERSITY_ID: "university_id_path", CV: "cv_path"}

# Accepted filename extensions per kind.
ALLOWED_EXTENSIONS = {
    UNIVERSITY_ID: (".jpg", ".jpeg", ".png", ".pdf"),
    CV: (".pdf", ".doc", ".docx"),
}


def get_university_ids_bucket() -> str:
    """Return the configured bucket for university ID scans.

    Env:
        UNIVERSITY_IDS_BUCKET – optional override.
    """
    return (os.getenv("UNIVERSITY_IDS_BUCKET") or UNIVERSITY_IDS_BUCKET_DEFAULT).strip()


def get_cvs_bucket() -> str:
    """Return the configured bucket for volunteer CVs.

    Env:
        CVS_BUCKET – optional override.
    """
    return (os.getenv("CVS_BUCKET") or CVS_BUCKET_DEFAULT).strip()


def get_bucket_for_kind(kind: str) -> str:
    if kind == UNIVERSITY_ID:
        return get_university_ids_bucket()
    if kind == CV:
        return get_cvs_bucket()
    raise ValueError("invalid_attachment_kind")


# --- Size limits --------------------------------------------------------------

def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_max_attachment_bytes() -> int:
    """Maximum upload size for registration attachments (default/clamped 10 MiB)."""
    contract_max = 10 * 1024 * 1024
    return _parse_int_env("MAX_ATTACHMENT_BYTES", contract_max, contract_max=contract_max)


__all__ = [
    "UNIVERSITY_IDS_BUCKET_DEFAULT",
    "CVS_BUCKET_DEFAULT",
    "UNIVERSITY_ID",
    "CV",
    "ATTACHMENT_KINDS",
    "PATH_COLUMNS",
    "ALLOWED_EXTENSIONS",
    "get_university_ids_bucket",
    "get_cvs_bucket",
    "get_bucket_for_kind",
    "get_max_attachment_bytes",
]
