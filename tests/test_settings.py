"""Tests for configuration loading and the startup check."""

import pytest
from pydantic import ValidationError

from ledger_sync.config import (
    RemoteSettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSections:
    """Tests for the individual settings sections."""

    def test_remote_from_env(self, monkeypatch):
        monkeypatch.setenv("LEDGER_REMOTE_BASE_URL", "https://remote.test/")
        monkeypatch.setenv("LEDGER_REMOTE_PAGE_LIMIT", "25")

        remote = Settings().remote

        assert remote.base_url == "https://remote.test"
        assert remote.page_limit == 25
        assert remote.full_fetch_timeout_seconds == 20.0

    def test_remote_rejects_other_schemes(self):
        with pytest.raises(ValidationError):
            RemoteSettings(base_url="ftp://remote.test")

    def test_remote_rejects_unknown_mock_mode(self):
        with pytest.raises(ValidationError):
            RemoteSettings(base_url="https://remote.test", mock_mode="flaky")

    def test_sync_defaults(self):
        sync = SyncSettings()
        assert sync.push_retry_attempts == 3
        assert sync.audit_enabled is True

    def test_app_section(self, monkeypatch):
        monkeypatch.setenv("APP_ENVIRONMENT", "production")
        monkeypatch.setenv("DEBUG_MODE", "true")

        app = Settings().app

        assert app.app_environment == "production"
        assert app.debug_mode is True


class TestStartupCheck:
    """Tests for validate_all_settings."""

    def test_all_sections_valid(self, monkeypatch):
        monkeypatch.setenv("LEDGER_REMOTE_BASE_URL", "https://remote.test")

        results = validate_all_settings()

        assert results == {"remote": True, "local_store": True, "sync": True, "app": True}

    def test_missing_remote_url_is_reported(self, monkeypatch):
        monkeypatch.delenv("LEDGER_REMOTE_BASE_URL", raising=False)

        results = validate_all_settings()

        assert results["remote"] is False
        assert "base_url" in results["remote_error"]
        assert results["local_store"] is True

    def test_bad_value_is_reported_not_raised(self, monkeypatch):
        monkeypatch.setenv("LEDGER_REMOTE_BASE_URL", "https://remote.test")
        monkeypatch.setenv("LEDGER_SYNC_PUSH_RETRY_ATTEMPTS", "0")

        results = validate_all_settings()

        assert results["sync"] is False
        assert "sync_error" in results
        assert results["remote"] is True
