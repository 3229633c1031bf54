"""Unit tests for configuration."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from feedcursor.core.config import (
    FeedSettings,
    LogLevel,
    Settings,
    configure_settings,
    get_settings,
)


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Test default settings."""
        settings = Settings()
        assert settings.environment == "test"
        assert settings.feed.partition_key_path == "/deviceId"
        assert settings.feed.max_concurrency == 4
        assert settings.retry.max_attempts == 3
        assert settings.observability.log_level == LogLevel.INFO

    def test_nested_env_override(self, monkeypatch):
        """Test nested values come from FEEDCURSOR_ variables."""
        monkeypatch.setenv("FEEDCURSOR_FEED__MAX_CONCURRENCY", "8")
        monkeypatch.setenv("FEEDCURSOR_FEED__COLLECTION_ID", "telemetry")

        settings = Settings()

        assert settings.feed.max_concurrency == 8
        assert settings.feed.collection_id == "telemetry"

    def test_partition_key_path_validated(self):
        """Test the partition key path must be absolute."""
        with pytest.raises(ValidationError):
            FeedSettings(partition_key_path="deviceId")
        with pytest.raises(ValidationError):
            FeedSettings(partition_key_path="/")

    def test_concurrency_must_be_positive(self):
        """Test the concurrency limit lower bound."""
        with pytest.raises(ValidationError):
            FeedSettings(max_concurrency=0)

    def test_uri_is_secret(self):
        """Test the MongoDB URI is not shown in reprs."""
        settings = Settings()
        assert "localhost" not in repr(settings.mongodb.uri)

    def test_configure_settings(self, test_settings):
        """Test installing and resetting global settings."""
        assert get_settings() is test_settings

        custom = Settings(debug=True)
        configure_settings(custom)
        assert get_settings() is custom

        configure_settings(None)
        assert get_settings() is not custom
