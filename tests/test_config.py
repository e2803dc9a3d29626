"""
tests/test_config.py -- Settings validation.

Settings is instantiated directly (not via get_settings) so each test sees
exactly the values it passes.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

KEY = "k" * 40


def test_defaults_are_valid() -> None:
    s = Settings(secret_key=KEY)
    assert s.identity_provider == "local"
    assert s.dedup_suppression_seconds < s.dedup_eviction_seconds


def test_debug_generates_secret_key() -> None:
    s = Settings(debug=True, secret_key="")
    assert len(s.secret_key) >= 32


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32"):
        Settings(secret_key="short")


def test_jwks_requires_url() -> None:
    with pytest.raises(ValidationError, match="JWKS_URL"):
        Settings(secret_key=KEY, identity_provider="jwks")
    assert Settings(secret_key=KEY, identity_provider="jwks", jwks_url="https://idp.test/jwks").jwks_url


def test_unknown_identity_provider_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=KEY, identity_provider="ldap")


@pytest.mark.parametrize("suppression,eviction", [(5.0, 5.0), (6.0, 5.0), (0.0, 5.0)])
def test_dedup_horizons_must_be_ordered(suppression: float, eviction: float) -> None:
    with pytest.raises(ValidationError):
        Settings(secret_key=KEY, dedup_suppression_seconds=suppression, dedup_eviction_seconds=eviction)


def test_dedup_backend_choices() -> None:
    assert Settings(secret_key=KEY, dedup_backend="sqlite").dedup_backend == "sqlite"
    with pytest.raises(ValidationError):
        Settings(secret_key=KEY, dedup_backend="redis")
