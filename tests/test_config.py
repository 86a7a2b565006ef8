"""Tests for settings loading and rate limit rule resolution."""

import pytest
from pydantic import ValidationError

from trustgate.config import (
    ROUTE_CLASS_TIERS,
    RateLimitRule,
    RateLimitTier,
    Settings,
    get_settings,
    reset_settings_cache,
)


class TestDefaults:
    def test_defaults(self):
        settings = Settings()
        assert settings.session_ttl_seconds == 7 * 24 * 60 * 60
        assert settings.max_active_sessions == 5
        assert settings.max_failed_attempts == 5
        assert settings.session_cookie_name == "access_token"
        assert settings.session_cookie_max_age_seconds == 3 * 60 * 60

    def test_rate_limit_rules_cover_every_route_class(self):
        rules = Settings().rate_limit_rules()

        assert set(rules) == set(ROUTE_CLASS_TIERS)
        assert rules["login"] == RateLimitRule(900_000, 6)
        assert rules["me"] == RateLimitRule(60_000, 20)
        for route, tier in ROUTE_CLASS_TIERS.items():
            expected = 6 if tier is RateLimitTier.STRICT else 20
            assert rules[route].max_requests == expected

    def test_only_served_route_classes_are_registered(self):
        assert set(ROUTE_CLASS_TIERS) == {
            "register",
            "login",
            "logout",
            "me",
            "csrf-token",
            "sessions",
        }


class TestValidation:
    @pytest.mark.parametrize(
        "field", ["session_ttl_seconds", "max_active_sessions", "lock_duration_seconds"]
    )
    def test_non_positive_values_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_samesite_is_normalized(self):
        assert Settings(session_cookie_samesite="Lax").session_cookie_samesite == "lax"
        with pytest.raises(ValidationError):
            Settings(session_cookie_samesite="sometimes")

    def test_cors_origins_accept_comma_string(self):
        settings = Settings(cors_allow_origins="https://a.example, https://b.example")
        assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]


class TestFromEnv:
    def test_env_overrides_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("MAX_ACTIVE_SESSIONS", "3")
        monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "10")
        monkeypatch.setenv("SESSION_COOKIE_SECURE", "false")

        settings = Settings.from_env()

        assert settings.max_active_sessions == 3
        assert settings.rate_limit_rules()["login"].max_requests == 10
        assert settings.session_cookie_secure is False

    def test_dotenv_file_is_read(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("KEY_NAMESPACE", raising=False)
        (tmp_path / ".env").write_text("KEY_NAMESPACE=staging:\n")

        assert Settings.from_env().key_namespace == "staging:"

    def test_get_settings_is_cached_until_reset(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("LOCK_DURATION_SECONDS", "60")
        first = get_settings()
        monkeypatch.setenv("LOCK_DURATION_SECONDS", "120")

        assert get_settings() is first
        reset_settings_cache()
        assert get_settings().lock_duration_seconds == 120
