"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in teams/models.py -- dataclasses own domain shape; stores, the verifier and
the resolver do the work.

Layer rule: no imports from api/, teams/, access/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A local account, durable across identity-provider sessions.

    subject is the identity provider's stable user id. It is None for accounts
    that were registered before they ever presented a provider token; the
    resolver binds it on the first verified request carrying a matching email.

    email is unique once set. Provider identities without an email get a
    per-subject placeholder so the uniqueness constraint still holds.
    """

    email: str
    id: int | None = None
    subject: str | None = None
    display_name: str | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class VerifiedClaims:
    """Facts the identity provider asserts about the credential holder.

    issued_at is the token's iat (epoch seconds) and is used only for
    revocation checks.
    """

    subject: str
    email: str | None = None
    display_name: str | None = None
    issued_at: int | None = None
