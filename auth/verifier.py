"""
auth/verifier.py -- Bearer credential verification against the identity provider.

The provider is a black box to the rest of Pulse: it takes an opaque token and
either returns VerifiedClaims or raises VerificationFailure carrying one
FailureKind. Nothing downstream ever sees provider error text.

Implementations:
  JwksClaimsVerifier  -- RS256/ES256 JWTs from an OIDC provider. The JWKS
                         document is fetched with requests (bounded timeout)
                         and cached; an unknown kid triggers a refetch so
                         key rotation does not cause an outage. Forced
                         refetches are spaced at least refetch_interval
                         seconds apart, so a stream of made-up kids cannot
                         turn every request into a provider round trip.
  LocalClaimsVerifier -- HS256 JWTs signed with SECRET_KEY, for local
                         development and the test-suite.

Failure classification:
  not three dot-separated segments, unreadable header or payload,
  payload not a JSON object, sub missing or not a string    -> TOKEN_MALFORMED
  ExpiredSignatureError                                     -> TOKEN_EXPIRED
  subject revoked after the token was issued                -> TOKEN_REVOKED
  bad signature, unknown key, wrong issuer or audience      -> TOKEN_INVALID_SIGNATURE
  JWKS fetch error, timeout, unusable JWKS document         -> VERIFICATION_UNAVAILABLE

Email verification: when the provider explicitly says email_verified=false
the email is dropped from the claims. An unverified address could belong to
someone else, and the resolver links pre-existing accounts by email.

Layer rule: no imports from api/, teams/, access/, or cache/. Import from
core/ is allowed.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Protocol

import requests
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

from auth.models import VerifiedClaims
from core.config import Settings
from core.errors import FailureKind

logger = logging.getLogger("pulse.auth.verifier")

LOCAL_ALGORITHM = "HS256"


class VerificationFailure(Exception):
    """Raised by a ClaimsVerifier. Only the kind crosses the boundary."""

    def __init__(self, kind: FailureKind) -> None:
        super().__init__(kind.value)
        self.kind = kind


class ClaimsVerifier(Protocol):
    def verify(self, token: str) -> VerifiedClaims: ...


# ---------------------------------------------------------------------------
# Revocation
# ---------------------------------------------------------------------------


class RevocationList:
    """Per-subject "tokens issued before T are no longer valid" markers.

    Seconds granularity, matching the iat claim. A token with no iat cannot
    prove it was issued after the cut-off and is treated as revoked once the
    subject has a marker.
    """

    def __init__(self) -> None:
        self._valid_after: dict[str, int] = {}
        self._lock = threading.Lock()

    def revoke(self, subject: str, at: float | None = None) -> int:
        """Revoke every token issued to subject before `at` (default now)."""
        cutoff = int(time.time() if at is None else at)
        with self._lock:
            self._valid_after[subject] = max(cutoff, self._valid_after.get(subject, 0))
            return self._valid_after[subject]

    def is_revoked(self, claims: VerifiedClaims) -> bool:
        with self._lock:
            cutoff = self._valid_after.get(claims.subject)
        if cutoff is None:
            return False
        return claims.issued_at is None or claims.issued_at < cutoff


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _unverified_header(token: str) -> dict:
    """Structural checks before any key is looked up. Returns the header."""
    if not token or token.count(".") != 2:
        raise VerificationFailure(FailureKind.TOKEN_MALFORMED)
    try:
        header = jwt.get_unverified_header(token)
        # Raises unless the payload decodes to a JSON object.
        jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise VerificationFailure(FailureKind.TOKEN_MALFORMED) from exc
    return header


def _decode(token: str, key: Any, algorithms: list[str], issuer: str = "", audience: str = "") -> dict:
    # sub is classified by _claims_from_payload, not by jose.
    options = {"verify_aud": bool(audience), "verify_iss": bool(issuer), "verify_sub": False}
    try:
        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=audience or None,
            issuer=issuer or None,
            options=options,
        )
    except ExpiredSignatureError as exc:
        raise VerificationFailure(FailureKind.TOKEN_EXPIRED) from exc
    except JWTClaimsError as exc:
        raise VerificationFailure(FailureKind.TOKEN_INVALID_SIGNATURE) from exc
    except JWTError as exc:
        raise VerificationFailure(FailureKind.TOKEN_INVALID_SIGNATURE) from exc


def _claims_from_payload(payload: dict) -> VerifiedClaims:
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise VerificationFailure(FailureKind.TOKEN_MALFORMED)

    email = payload.get("email")
    if not isinstance(email, str) or not email or payload.get("email_verified") is False:
        email = None
    name = payload.get("name")
    if not isinstance(name, str) or not name:
        name = None
    issued_at = payload.get("iat")
    if not isinstance(issued_at, int):
        issued_at = None
    return VerifiedClaims(subject=subject, email=email, display_name=name, issued_at=issued_at)


def _check_revocation(claims: VerifiedClaims, revocations: RevocationList | None) -> VerifiedClaims:
    if revocations is not None and revocations.is_revoked(claims):
        raise VerificationFailure(FailureKind.TOKEN_REVOKED)
    return claims


# ---------------------------------------------------------------------------
# JWKS (external OIDC provider)
# ---------------------------------------------------------------------------


class JwksClaimsVerifier:
    """Verify provider-signed JWTs against the provider's published key set.

    Usage:
        verifier = JwksClaimsVerifier("https://idp.example.com/.well-known/jwks.json",
                                      issuer="https://idp.example.com/", audience="pulse")
        claims = verifier.verify(raw_token)
    """

    def __init__(
        self,
        jwks_url: str,
        issuer: str = "",
        audience: str = "",
        algorithms: list[str] | None = None,
        timeout: float = 5.0,
        cache_seconds: int = 3600,
        refetch_interval: float = 60.0,
        revocations: RevocationList | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.jwks_url = jwks_url
        self.issuer = issuer
        self.audience = audience
        self.algorithms = algorithms or ["RS256"]
        self.timeout = timeout
        self.cache_seconds = cache_seconds
        self.refetch_interval = refetch_interval
        self.revocations = revocations
        self._session = session or requests.Session()
        self._session.max_redirects = 3
        self._keys: dict[str, dict] = {}
        self._fetched_at = 0.0
        self._forced_at: float | None = None
        self._lock = threading.Lock()

    def verify(self, token: str) -> VerifiedClaims:
        header = _unverified_header(token)
        kid = header.get("kid")
        if not kid:
            raise VerificationFailure(FailureKind.TOKEN_MALFORMED)
        key = self._key_for(kid)
        payload = _decode(token, key, self.algorithms, self.issuer, self.audience)
        return _check_revocation(_claims_from_payload(payload), self.revocations)

    def _key_for(self, kid: str) -> dict:
        keys = self._cached_keys(force=False)
        if kid not in keys:
            # Provider may have rotated keys since the last fetch.
            keys = self._cached_keys(force=True)
        if kid not in keys:
            raise VerificationFailure(FailureKind.TOKEN_INVALID_SIGNATURE)
        return keys[kid]

    def _cached_keys(self, force: bool) -> dict[str, dict]:
        with self._lock:
            now = time.monotonic()
            fresh = now - self._fetched_at < self.cache_seconds
            if self._keys and fresh and not force:
                return self._keys
            if force and self._forced_at is not None and now - self._forced_at < self.refetch_interval:
                return self._keys
            if force:
                self._forced_at = now
            self._keys = self._fetch_keys()
            self._fetched_at = time.monotonic()
            return self._keys

    def _fetch_keys(self) -> dict[str, dict]:
        try:
            resp = self._session.get(self.jwks_url, timeout=self.timeout)
            resp.raise_for_status()
            document = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("JWKS fetch failed: %s", type(exc).__name__)
            raise VerificationFailure(FailureKind.VERIFICATION_UNAVAILABLE) from exc
        keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(keys, list):
            logger.warning("JWKS document from %s has no key list", self.jwks_url)
            raise VerificationFailure(FailureKind.VERIFICATION_UNAVAILABLE)
        return {k["kid"]: k for k in keys if isinstance(k, dict) and isinstance(k.get("kid"), str)}


# ---------------------------------------------------------------------------
# Local (HS256, development and tests)
# ---------------------------------------------------------------------------


class LocalClaimsVerifier:
    def __init__(self, secret_key: str, revocations: RevocationList | None = None) -> None:
        self._secret_key = secret_key
        self.revocations = revocations

    def verify(self, token: str) -> VerifiedClaims:
        _unverified_header(token)
        payload = _decode(token, self._secret_key, [LOCAL_ALGORITHM])
        return _check_revocation(_claims_from_payload(payload), self.revocations)


def verifier_from_settings(settings: Settings, revocations: RevocationList | None = None) -> ClaimsVerifier:
    """Build the verifier IDENTITY_PROVIDER selects."""
    if settings.identity_provider == "jwks":
        return JwksClaimsVerifier(
            settings.jwks_url,
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            algorithms=settings.token_algorithms,
            timeout=settings.verification_timeout_seconds,
            cache_seconds=settings.jwks_cache_seconds,
            refetch_interval=settings.jwks_refetch_interval_seconds,
            revocations=revocations,
        )
    return LocalClaimsVerifier(settings.secret_key, revocations)
