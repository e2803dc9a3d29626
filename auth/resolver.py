"""
auth/resolver.py -- Map a bearer credential to exactly one local User.

Resolution order for verified claims:
  1. Subject already linked          -> return that user, no write.
  2. Email matches an unlinked user  -> bind the subject to it (reconciliation).
     Email matches a user linked to
     a different subject            -> IdentityConflictError, nothing written.
     No user has the email          -> create one with email, name, subject.
  3. No email in the claims          -> create one with a per-subject placeholder email.

Concurrency:
  Two first-time requests for the same subject can both miss in step 1. The
  users table has UNIQUE(subject) and UNIQUE(email), so the slower insert (or
  bind) fails; the resolver then re-reads by subject and returns the row the
  faster request wrote. At most one row per subject is ever created. Without
  those constraints the store cannot give this guarantee.

Failure mapping (verification happens before any write is attempted):
  VERIFICATION_UNAVAILABLE -> UpstreamUnavailableError (retry later)
  every other FailureKind  -> UnauthenticatedError(reason)

Layer rule: no imports from api/, teams/, access/, or cache/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import User, VerifiedClaims
from auth.store import UserStore
from auth.verifier import ClaimsVerifier, VerificationFailure
from core.errors import FailureKind, IdentityConflictError, UnauthenticatedError, UpstreamUnavailableError

logger = logging.getLogger("pulse.auth.resolver")

# One optimistic attempt plus one retry after losing a race.
_MAX_ATTEMPTS = 2


class _LostRace(Exception):
    """A concurrent request linked or created the account first."""


class IdentityResolver:
    def __init__(
        self,
        verifier: ClaimsVerifier,
        store: UserStore,
        placeholder_email_domain: str = "unknown.invalid",
    ) -> None:
        self.verifier = verifier
        self.store = store
        self.placeholder_email_domain = placeholder_email_domain

    def resolve_identity(self, credential: str | None) -> User:
        """Verify a raw bearer credential and return the local account for it."""
        if not credential:
            raise UnauthenticatedError(FailureKind.MISSING_CREDENTIAL)
        try:
            claims = self.verifier.verify(credential)
        except VerificationFailure as exc:
            logger.info("Credential rejected: %s", exc.kind.value)
            if exc.kind is FailureKind.VERIFICATION_UNAVAILABLE:
                raise UpstreamUnavailableError() from exc
            raise UnauthenticatedError(exc.kind) from exc
        return self.resolve(claims)

    def resolve(self, claims: VerifiedClaims) -> User:
        """Return the User for already-verified claims, provisioning if needed."""
        for attempt in range(_MAX_ATTEMPTS):
            user = self.store.get_by_subject(claims.subject)
            if user is not None:
                return user
            try:
                return self._provision(claims)
            except (IntegrityError, _LostRace):
                logger.info(
                    "Concurrent provisioning for subject %s (attempt %d); re-resolving",
                    claims.subject,
                    attempt + 1,
                )

        user = self.store.get_by_subject(claims.subject)
        if user is None:
            # Still unlinked after losing twice: the email belongs to a
            # different subject that was linked in the meantime.
            raise IdentityConflictError()
        return user

    def _provision(self, claims: VerifiedClaims) -> User:
        if claims.email:
            existing = self.store.get_by_email(claims.email)
            if existing is not None:
                return self._reconcile(existing, claims)
            email = claims.email
        else:
            email = self.placeholder_email(claims.subject)

        user_id = self.store.create_user(User(email=email, display_name=claims.display_name, subject=claims.subject))
        logger.info("Provisioned user %d for subject %s", user_id, claims.subject)
        return self._reload(user_id)

    def _reconcile(self, existing: User, claims: VerifiedClaims) -> User:
        if existing.subject == claims.subject:
            # A concurrent request for this subject created the row between
            # our subject lookup and our email lookup.
            return existing
        if existing.subject is not None:
            logger.warning(
                "Email for subject %s is already linked to user %d; refusing to relink",
                claims.subject,
                existing.id,
            )
            raise IdentityConflictError()
        if not self.store.bind_subject(existing.id, claims.subject, claims.display_name):
            raise _LostRace()
        logger.info("Linked subject %s to existing user %d", claims.subject, existing.id)
        return self._reload(existing.id)

    def _reload(self, user_id: int) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise _LostRace()
        return user

    def placeholder_email(self, subject: str) -> str:
        """Per-subject stand-in address; keeps UNIQUE(email) satisfiable."""
        return f"{subject}@{self.placeholder_email_domain}"
