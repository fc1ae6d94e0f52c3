"""
Scraper configuration

All heuristic thresholds, crawl limits, retry policy and per-tier timeouts
live in one immutable value. Build it once (usually with ``from_env``) and
hand it to every component explicitly.
"""

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from scraper_errors import ConfigurationError


DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (compatible; BlogPostExtractor/1.0)'
)

DEFAULT_RENDER_ENDPOINT = 'https://r.jina.ai/'


@dataclass(frozen=True)
class ScraperConfig:
    """Static thresholds controlling discovery, validation and fetching"""

    # Content heuristics
    min_word_count: int = 300            # long-form threshold for main content
    min_title_length: int = 10           # titles taken from page text
    min_slug_title_length: int = 5       # titles derived from the URL slug

    # Crawl limits
    max_pages: int = 50                  # pagination pages per crawl
    max_child_sitemaps: int = 25         # children followed from a sitemap index
    default_target: int = 100            # candidate target when no max_posts is given
    overcollect_factor: int = 2          # candidates gathered per requested post
    raw_fallback_threshold: int = 20     # raw HTML fallback runs below this count
    browser_fallback_threshold: int = 5  # headless fallback outside library context
    min_feed_results: int = 5            # feeds are probed when sitemaps gave fewer
    empty_page_limit: int = 2            # consecutive pages with no new candidates

    # Headless browser scrolling
    max_scroll_iterations: int = 15
    stable_height_iterations: int = 3
    scroll_wait_ms: int = 1500

    # Concurrency and retry policy
    fetch_concurrency: int = 5
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0

    # Timeouts in seconds, per tier
    http_timeout: float = 15.0
    sitemap_timeout: float = 10.0
    render_timeout: float = 60.0
    browser_timeout: float = 90.0

    # Rendering service circuit breaker
    breaker_threshold: int = 3
    breaker_reset_seconds: float = 60.0

    # External services
    render_endpoint: str = DEFAULT_RENDER_ENDPOINT
    render_api_key: Optional[str] = None
    browser_ws_endpoint: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ScraperConfig':
        """Build a config from environment variables, keeping defaults for anything unset"""
        env = os.environ if environ is None else environ
        config = cls()

        overrides = {}
        api_key = env.get('RENDER_API_KEY') or env.get('JINA_API_KEY')
        if api_key:
            overrides['render_api_key'] = api_key.strip()
        if env.get('RENDER_ENDPOINT'):
            overrides['render_endpoint'] = env['RENDER_ENDPOINT'].strip()
        if env.get('BROWSER_WS_ENDPOINT'):
            overrides['browser_ws_endpoint'] = env['BROWSER_WS_ENDPOINT'].strip()
        if env.get('SCRAPER_USER_AGENT'):
            overrides['user_agent'] = env['SCRAPER_USER_AGENT'].strip()

        for name, field_name in [('FETCH_CONCURRENCY', 'fetch_concurrency'),
                                 ('MAX_PAGES', 'max_pages')]:
            raw = env.get(name)
            if raw is None or not raw.strip():
                continue
            try:
                value = int(raw)
            except ValueError:
                raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
            if value < 1:
                raise ConfigurationError(f"{name} must be at least 1, got {value}")
            overrides[field_name] = value

        return replace(config, **overrides) if overrides else config

    @property
    def has_render_credentials(self) -> bool:
        return bool(self.render_api_key)
