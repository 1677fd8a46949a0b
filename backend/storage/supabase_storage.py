"""
Supabase-backed object storage adapter.

The client is duck-typed to avoid a hard dependency during testing. It is
expected to expose `.storage.from_(bucket)` (supabase-py) or `.from_(bucket)`
(storage3) returning a bucket proxy with `upload(path, body, options)`.

Security:
- The caller must ensure the client is initialized with the Service Role key.
- Attachment buckets should be private.
"""
from __future__ import annotations

from typing import Any

from .ports import BinaryWriteStorage


class SupabaseObjectStorage(BinaryWriteStorage):
    """Write-only storage adapter using a supabase client."""

    def __init__(self, client: Any):
        self._client = client

    def _bucket(self, bucket: str) -> Any:
        """Return a bucket proxy from either supabase client or storage3 client."""
        c = self._client
        storage = getattr(c, "storage", None)
        if storage is not None and hasattr(storage, "from_"):
            return storage.from_(bucket)
        if hasattr(c, "from_"):
            return c.from_(bucket)  # type: ignore[attr-defined]
        raise RuntimeError("invalid_supabase_client")

    def put_object(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:
        """Upload a binary object to Supabase Storage.

        Behavior:
            - Normalizes the key by stripping a leading slash and a redundant
              bucket prefix.
            - Passes content-type via options to be compatible across client versions
              (supports both "content-type" and "contentType" keys).

        Raises:
            Propagates client exceptions. No return value on success.
        """
        b = self._bucket(bucket)
        norm_key = key.lstrip("/")
        prefix = f"{bucket}/"
        if norm_key.startswith(prefix):
            norm_key = norm_key[len(prefix):]
        opts = {"content-type": content_type, "contentType": content_type, "upsert": "false"}
        b.upload(norm_key, body, opts)


__all__ = ["SupabaseObjectStorage"]
