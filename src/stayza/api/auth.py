"""Guest authentication: OIDC bearer JWT -> CurrentUser.

Tokens are RS256 JWTs from the identity provider configured via
OIDC_ISSUER / OIDC_AUDIENCE / OIDC_JWKS_URL. The verified ``sub`` claim
is resolved to a row in ``users``; its id is what reservations store as
the owner.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Any

import jwt
import requests
from fastapi import Depends, HTTPException, Request

from stayza.infra.db import fetchone, txn

_JWKS_TTL_SECONDS = 600

_jwks_lock = threading.Lock()
_jwks: dict[str, Any] | None = None
_jwks_fetched_at: float = 0


@dataclass
class CurrentUser:
    """Authenticated guest."""

    id: str
    external_subject: str
    email: str | None
    name: str | None


def _oidc_settings() -> dict[str, Any]:
    parties = [p.strip() for p in os.environ.get("OIDC_AUTHORIZED_PARTIES", "").split(",")]
    return {
        "issuer": os.environ.get("OIDC_ISSUER"),
        "audience": os.environ.get("OIDC_AUDIENCE"),
        "jwks_url": os.environ.get("OIDC_JWKS_URL"),
        "authorized_parties": [p for p in parties if p] or None,
    }


def _fetch_jwks(jwks_url: str) -> dict[str, Any]:
    resp = requests.get(jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def _load_jwks(jwks_url: str, *, refresh: bool = False) -> dict[str, Any]:
    """Cached JWKS; refresh=True bypasses the TTL (key rotation)."""
    global _jwks, _jwks_fetched_at

    with _jwks_lock:
        now = time.time()
        if not refresh and _jwks is not None and now - _jwks_fetched_at < _JWKS_TTL_SECONDS:
            return _jwks
        try:
            _jwks = _fetch_jwks(jwks_url)
        except requests.RequestException:
            raise HTTPException(status_code=503, detail="Auth temporarily unavailable")
        _jwks_fetched_at = now
        return _jwks


def reset_jwks_cache() -> None:
    """Drop the cached key set."""
    global _jwks, _jwks_fetched_at
    with _jwks_lock:
        _jwks = None
        _jwks_fetched_at = 0


def _signing_key(jwks_url: str, kid: str, *, refresh: bool = False) -> Any:
    for key in _load_jwks(jwks_url, refresh=refresh).get("keys", []):
        if key.get("kid") == kid:
            try:
                return jwt.algorithms.RSAAlgorithm.from_jwk(key)
            except Exception:
                raise HTTPException(status_code=401, detail="Invalid token")
    return None


def verify_token(token: str) -> str:
    """Validate a bearer JWT and return its subject.

    Raises:
        HTTPException: 401 for any invalid, expired or unverifiable token;
            503 if the key set cannot be fetched.
    """
    settings = _oidc_settings()
    issuer, audience, jwks_url = settings["issuer"], settings["audience"], settings["jwks_url"]
    if not issuer or not audience or not jwks_url:
        raise HTTPException(status_code=401, detail="OIDC not configured")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
    except jwt.exceptions.DecodeError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not kid:
        raise HTTPException(status_code=401, detail="Invalid token")

    def _decode(key: Any) -> dict[str, Any]:
        return jwt.decode(
            token,
            key,
            algorithms=["RS256"],
            issuer=issuer,
            audience=audience,
            options={"require": ["exp", "iss", "aud", "sub"]},
        )

    key = _signing_key(jwks_url, kid) or _signing_key(jwks_url, kid, refresh=True)
    if key is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        try:
            claims = _decode(key)
        except jwt.InvalidSignatureError:
            # Stale key material; retry once against a fresh key set
            key = _signing_key(jwks_url, kid, refresh=True)
            if key is None:
                raise HTTPException(status_code=401, detail="Invalid token")
            claims = _decode(key)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    parties = settings["authorized_parties"]
    if parties and "azp" in claims and claims["azp"] not in parties:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not claims.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token")
    return claims["sub"]


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization")
    if not header:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization header")
    return parts[1]


def _get_user_from_db(external_subject: str) -> CurrentUser | None:
    with txn() as cur:
        row = fetchone(
            cur,
            "SELECT id, external_subject, email, name FROM users WHERE external_subject = %s",
            (external_subject,),
        )
    if row is None:
        return None
    return CurrentUser(id=str(row[0]), external_subject=row[1], email=row[2], name=row[3])


def get_current_user(request: Request) -> CurrentUser:
    """FastAPI dependency: the authenticated guest.

    Raises:
        HTTPException: 401 if the token is missing or invalid, 403 if the
            subject has no user record.
    """
    sub = verify_token(_bearer_token(request))
    user = _get_user_from_db(sub)
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    return user


CurrentUserDep = Depends(get_current_user)
