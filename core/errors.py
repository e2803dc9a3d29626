"""
core/errors.py -- Structured failure taxonomy for the access-control layer.

Every failure the identity, authorization, and de-duplication code can produce
is one of the classes below. Each carries an enumerated kind plus a stable
machine code, so the HTTP layer maps failures to responses by looking the kind
up in a table -- never by inspecting message text.

  UnauthenticatedError     -- no / malformed / expired / revoked / forged credential
  UpstreamUnavailableError -- identity provider unreachable or timed out
  NotFoundError            -- resource id does not exist
  AccessDeniedError        -- resource exists, identity is not a member
  ValidationError          -- well-formed request, invalid business state

Messages are safe to show to clients: they never include provider error text
and never name other users' memberships.

Layer rule: core/ is the kernel. No imports from api/, auth/, teams/, access/,
or cache/.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    VALIDATION = "validation"


class FailureKind(str, Enum):
    """Why a bearer credential could not be turned into verified claims."""

    MISSING_CREDENTIAL = "missing_credential"
    TOKEN_MALFORMED = "token_malformed"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    TOKEN_INVALID_SIGNATURE = "token_invalid_signature"
    VERIFICATION_UNAVAILABLE = "verification_unavailable"

    @property
    def requires_reauthentication(self) -> bool:
        """True when the client should obtain a fresh token and retry."""
        return self in (FailureKind.TOKEN_EXPIRED, FailureKind.TOKEN_REVOKED)


_FAILURE_MESSAGES: dict[FailureKind, str] = {
    FailureKind.MISSING_CREDENTIAL: "Authentication required.",
    FailureKind.TOKEN_MALFORMED: "Credential is not a valid identity token.",
    FailureKind.TOKEN_EXPIRED: "Token expired. Please sign in again.",
    FailureKind.TOKEN_REVOKED: "Token revoked. Please sign in again.",
    FailureKind.TOKEN_INVALID_SIGNATURE: "Credential could not be verified.",
    FailureKind.VERIFICATION_UNAVAILABLE: "Identity provider unavailable. Retry later.",
}


class AccessControlError(Exception):
    """Base class. Subclasses fix `kind`; `code` refines it for clients."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class UnauthenticatedError(AccessControlError):
    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, reason: FailureKind) -> None:
        super().__init__(reason.value, _FAILURE_MESSAGES[reason])
        self.reason = reason


class UpstreamUnavailableError(AccessControlError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self) -> None:
        reason = FailureKind.VERIFICATION_UNAVAILABLE
        super().__init__(reason.value, _FAILURE_MESSAGES[reason])
        self.reason = reason


class NotFoundError(AccessControlError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, resource_id: int) -> None:
        super().__init__(f"{resource}_not_found", f"{resource.capitalize()} not found.")
        self.resource = resource
        self.resource_id = resource_id


class AccessDeniedError(AccessControlError):
    kind = ErrorKind.ACCESS_DENIED

    def __init__(self, resource: str) -> None:
        super().__init__("access_denied", "Access denied.")
        self.resource = resource


class ValidationError(AccessControlError):
    kind = ErrorKind.VALIDATION


class NoTeamMembershipError(ValidationError):
    """Task creation without a team by someone who belongs to no team."""

    def __init__(self) -> None:
        super().__init__(
            "no_team_membership",
            "You are not a member of any team. Create or join a team first.",
        )


class IdentityConflictError(ValidationError):
    """The claimed email already belongs to a different provider identity."""

    def __init__(self) -> None:
        super().__init__(
            "identity_conflict",
            "This email is already linked to another account.",
        )


class AlreadyMemberError(ValidationError):
    def __init__(self) -> None:
        super().__init__("already_member", "User is already a member of this team.")
