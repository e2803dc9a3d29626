"""
auth/tokens.py -- Local-mode identity token minting.

In production Pulse never issues tokens: the external identity provider does,
and auth/verifier.py only checks them. With IDENTITY_PROVIDER=local the
service stands in for the provider so developers and the test-suite can
authenticate without one. Tokens are HS256 JWTs signed with SECRET_KEY and
carry the same claims an OIDC id_token would (sub, email, email_verified,
name, iat, exp).

Layer rule: no imports from api/, teams/, access/, or cache/. Import from
core/ is allowed.
"""

from __future__ import annotations

import time

from jose import jwt

from auth.verifier import LOCAL_ALGORITHM
from core.config import get_settings


def create_identity_token(
    subject: str,
    email: str | None = None,
    display_name: str | None = None,
    expire_seconds: int = 3600,
    issued_at: int | None = None,
    secret_key: str | None = None,
) -> str:
    """Encode a signed identity token for the given provider subject.

    Args:
        subject:        Stable provider user id (the sub claim).
        email:          Optional verified email.
        display_name:   Optional human-readable name (the name claim).
        expire_seconds: Lifetime from issued_at. Negative values mint an
                        already-expired token, which tests rely on.
        issued_at:      iat override (epoch seconds). Defaults to now.
        secret_key:     Signing key override. Defaults to Settings.secret_key.
    """
    iat = int(time.time()) if issued_at is None else issued_at
    payload: dict = {"sub": subject, "iat": iat, "exp": iat + expire_seconds}
    if email:
        payload["email"] = email
        payload["email_verified"] = True
    if display_name:
        payload["name"] = display_name
    return jwt.encode(payload, secret_key or get_settings().secret_key, algorithm=LOCAL_ALGORITHM)
