"""
api/routes/v1/auth.py -- Identity endpoints.

Routes:
  GET  /api/v1/auth/me      -- the local account the bearer token resolves to
  POST /api/v1/auth/revoke  -- reject every token issued to the caller so far

Sign-up, sign-in and password reset happen at the identity provider; Pulse
only ever sees the resulting tokens. Resolving a token for the first time
provisions (or links) the local account, so GET /me doubles as the
"complete sign-in" call for clients.

Revocation:
  The cut-off is the current second. Tokens whose iat is earlier are rejected
  with token_revoked; a token minted after the call keeps working.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import MeResponse, RevokeResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.verifier import RevocationList

logger = logging.getLogger("pulse.api")

# Auth policy:
# - GET  /api/v1/auth/me:      requires auth (get_current_user)
# - POST /api/v1/auth/revoke:  requires auth (get_current_user)
router = APIRouter()


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the account the caller's token resolves to."""
    return MeResponse.from_user(current_user)


@router.post("/auth/revoke", response_model=RevokeResponse)
def revoke(request: Request, current_user: User = Depends(get_current_user)) -> RevokeResponse:
    """Revoke all of the caller's outstanding tokens."""
    revocations: RevocationList = request.app.state.revocations
    cutoff = revocations.revoke(current_user.subject)
    logger.info("User %d revoked tokens issued before %d", current_user.id, cutoff)
    return RevokeResponse(revoked_before=cutoff)
