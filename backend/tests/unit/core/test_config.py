"""
Unit tests for Settings.
"""

import logging

import pytest
from pydantic import ValidationError

from mailbridge.core.config import Settings


def make_settings(**overrides) -> Settings:
    values = {"APP_SECRET_KEY": "admin", "WIDGET_API_KEY": "widget"}
    values.update(overrides)
    return Settings(**values)


class TestAllowedOrigins:
    def test_comma_separated(self):
        settings = make_settings(ALLOWED_ORIGINS="https://a.example.com, https://b.example.com")
        assert settings.allowed_origins == ["https://a.example.com", "https://b.example.com"]
        assert not settings.allows_any_origin

    def test_json_list(self):
        settings = make_settings(ALLOWED_ORIGINS='["https://a.example.com", "https://b.example.com"]')
        assert settings.allowed_origins == ["https://a.example.com", "https://b.example.com"]

    @pytest.mark.parametrize("value", ["*", "", " , "])
    def test_any_origin(self, value):
        assert make_settings(ALLOWED_ORIGINS=value).allows_any_origin


def test_shared_keys_logged(caplog):
    with caplog.at_level(logging.CRITICAL, logger="mailbridge.core.config"):
        make_settings(WIDGET_API_KEY="admin")

    assert "grant admin access" in caplog.text


def test_comment_placeholder_cannot_be_empty():
    with pytest.raises(ValidationError):
        make_settings(QUOTE_COMMENT_PLACEHOLDER="")
