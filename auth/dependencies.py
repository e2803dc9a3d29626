"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The only accepted credential is the Authorization: Bearer <token> header.
There is no cookie or API-key fallback: every caller holds a token issued
by the identity provider.

get_current_user() hands the raw credential to the IdentityResolver stored
on app.state and returns the resolved User. Failures propagate as
core.errors exceptions; api/main.py maps them to 401 / 503 responses.

The resolved User is passed explicitly into every service call by the route
handlers. Nothing here stores it in request-global state.

Layer rule: no imports from api/, teams/, access/, or cache/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import User
from auth.resolver import IdentityResolver


def bearer_credential(request: Request) -> str | None:
    """Extract the token from an Authorization: Bearer header, or None."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    resolver: IdentityResolver = request.app.state.resolver
    return resolver.resolve_identity(bearer_credential(request))
