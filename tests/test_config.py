"""Tests for environment-driven configuration."""

import pytest

from scraper_config import DEFAULT_RENDER_ENDPOINT, ScraperConfig
from scraper_errors import ConfigurationError


class TestFromEnv:

    def test_defaults(self):
        config = ScraperConfig.from_env({})
        assert config == ScraperConfig()
        assert config.render_endpoint == DEFAULT_RENDER_ENDPOINT
        assert not config.has_render_credentials

    def test_overrides(self):
        config = ScraperConfig.from_env({
            "JINA_API_KEY": " key-123 ",
            "BROWSER_WS_ENDPOINT": "wss://browser.example.com",
            "FETCH_CONCURRENCY": "8",
            "MAX_PAGES": "12",
        })
        assert config.render_api_key == "key-123"
        assert config.has_render_credentials
        assert config.browser_ws_endpoint == "wss://browser.example.com"
        assert config.fetch_concurrency == 8
        assert config.max_pages == 12

    def test_render_key_takes_precedence_over_alias(self):
        config = ScraperConfig.from_env({"RENDER_API_KEY": "primary", "JINA_API_KEY": "alias"})
        assert config.render_api_key == "primary"

    @pytest.mark.parametrize("value", ["abc", "0", "-3"])
    def test_invalid_integers(self, value):
        with pytest.raises(ConfigurationError):
            ScraperConfig.from_env({"FETCH_CONCURRENCY": value})

    def test_config_is_immutable(self):
        with pytest.raises(Exception):
            ScraperConfig().max_pages = 3
