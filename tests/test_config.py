"""Unit tests for core/config.py -- Settings validation and derived values.

Settings are built directly with keyword arguments (which take precedence
over the test environment) and _env_file=None so a developer's .env file
cannot leak in.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

SECRET = "s" * 32


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_production_requires_jwt_secret():
    with pytest.raises(ValidationError, match="JWT_SECRET is required"):
        _settings(debug=False, jwt_secret="")


def test_debug_generates_jwt_secret():
    settings = _settings(debug=True, jwt_secret="")
    assert len(settings.jwt_secret) == 64


def test_short_jwt_secret_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        _settings(jwt_secret="short")


def test_short_refresh_secret_rejected():
    with pytest.raises(ValidationError, match="JWT_REFRESH_SECRET"):
        _settings(jwt_secret=SECRET, jwt_refresh_secret="short")


def test_refresh_secret_falls_back():
    assert _settings(jwt_secret=SECRET, jwt_refresh_secret="").refresh_secret == SECRET
    other = "r" * 40
    assert _settings(jwt_secret=SECRET, jwt_refresh_secret=other).refresh_secret == other


@pytest.mark.parametrize("rounds", [3, 32])
def test_bcrypt_rounds_bounds(rounds):
    with pytest.raises(ValidationError, match="BCRYPT_ROUNDS"):
        _settings(jwt_secret=SECRET, bcrypt_rounds=rounds)


def test_defaults():
    settings = _settings(jwt_secret=SECRET, environment="production")
    assert settings.access_token_expire_seconds == 3600
    assert settings.refresh_token_expire_seconds == 30 * 24 * 3600
    assert settings.reset_token_expire_seconds == 3600
    assert settings.invite_expire_days == 7
    assert settings.is_development is False


def test_csv_fields():
    settings = _settings(
        jwt_secret=SECRET,
        admin_emails=" Boss@Example.com, ,ops@example.com ",
        cors_origins="http://a.test, http://b.test",
        allowed_hosts="",
    )
    assert settings.admin_email_set == frozenset({"boss@example.com", "ops@example.com"})
    assert settings.cors_origin_list == ["http://a.test", "http://b.test"]
    assert settings.allowed_host_list == ["*"]


def test_unknown_environment_rejected():
    with pytest.raises(ValidationError):
        _settings(jwt_secret=SECRET, environment="staging")
