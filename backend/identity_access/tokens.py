"""
Access-token verification helpers for the identity_access bounded context.

Why: Keep cryptographic validation of Supabase access tokens outside the web
adapter so we can unit test it independently and avoid one auth round-trip per
request when re-resolving a cached session.

Security: Validates the token signature either with the project's HS256 JWT
secret or with the project's JWKS (asymmetric signing keys), and enforces
issuer, audience and expiry. When neither is configured the caller must fall
back to asking the auth service (`auth.get_user`).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import os
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError


class AccessTokenVerificationError(Exception):
    """Raised when the access token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class TokenConfig:
    supabase_url: str
    jwt_secret: Optional[str] = None
    audience: str = "authenticated"

    @property
    def issuer(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/auth/v1"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"


def load_token_config() -> TokenConfig:
    return TokenConfig(
        supabase_url=(os.getenv("SUPABASE_URL") or "").strip(),
        jwt_secret=(os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None,
    )


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Very small in-memory cache for JWKS responses."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[Tuple[str], _CacheEntry] = {}

    def get(self, cfg: TokenConfig) -> Dict[str, object]:
        key = (cfg.jwks_url,)
        now = time.time()
        entry = self._entries.get(key)
        if entry and entry.expires_at > now:
            return entry.jwks

        jwks = self._fetch(cfg)
        self._entries[key] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, cfg: TokenConfig) -> Dict[str, object]:
        try:
            resp = requests.get(cfg.jwks_url, timeout=5)
        except requests.RequestException as exc:
            raise AccessTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise AccessTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise AccessTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise AccessTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()

MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers

# Signing algorithms accepted for JWKS-verified tokens.
ASYMMETRIC_ALGORITHMS = frozenset({"RS256", "ES256"})

_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_aud": True,
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "verify_at_hash": False,
}


def verify_access_token(
    *,
    access_token: str,
    cfg: TokenConfig,
    cache: JWKSCache | None = None,
) -> Dict[str, object]:
    """Validate a Supabase access token and return its claims.

    Parameters
    ----------
    access_token:
        The raw JWT string issued by Supabase Auth.
    cfg:
        Project URL and, for legacy projects, the HS256 JWT secret.
    cache:
        Optional JWKS cache (defaults to module-level cache).

    Raises
    ------
    AccessTokenVerificationError:
        When the token is invalid (signature, issuer, audience, expiry, kid).
    """
    if not access_token:
        raise AccessTokenVerificationError("missing_token")
    try:
        header = jwt.get_unverified_header(access_token)
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_access_token") from exc

    alg = header.get("alg")
    if alg == "HS256":
        if not cfg.jwt_secret:
            raise AccessTokenVerificationError("no_verification_key")
        key: object = cfg.jwt_secret
        algorithms = ["HS256"]
    else:
        jwks = (cache or JWKS_CACHE).get(cfg)
        kid = header.get("kid")
        if not kid:
            raise AccessTokenVerificationError("missing_kid")
        key_dict = _find_key(jwks, kid)
        if not key_dict:
            raise AccessTokenVerificationError("unknown_kid")
        chosen = str(key_dict.get("alg") or alg or "RS256")
        if chosen not in ASYMMETRIC_ALGORITHMS:
            raise AccessTokenVerificationError("unsupported_alg")
        key = key_dict
        algorithms = [chosen]

    try:
        claims = jwt.decode(
            access_token,
            key,
            algorithms=algorithms,
            audience=cfg.audience,
            issuer=cfg.issuer,
            options=_DECODE_OPTIONS,
        )
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_access_token") from exc

    _validate_temporal_claims(claims)
    if not isinstance(claims.get("sub"), str) or not claims.get("sub"):
        raise AccessTokenVerificationError("invalid_access_token")
    return claims


def _find_key(jwks: Dict[str, object], kid: str) -> Dict[str, object] | None:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise AccessTokenVerificationError("invalid_access_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise AccessTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)):
        if iat - MAX_CLOCK_SKEW_SECONDS > now:
            raise AccessTokenVerificationError("invalid_access_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_access_token")
