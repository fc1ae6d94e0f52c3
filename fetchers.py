"""
Fetch tiers used by discovery and validation

- HttpFetcher: plain GET through a requests.Session
- RenderingClient: remote rendering service (JSON envelope or raw body)
- HeadlessBrowser: Playwright page driven through scroll / "load more" cycles

Every call carries its tier's timeout. Transient failures (timeouts,
connection errors, 429, 5xx) are retried with tenacity's exponential backoff
through ``with_retry``; anything else fails the call straight away.
"""

import json
import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar

import requests
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from scraper_config import ScraperConfig
from scraper_errors import BrowserError, ConfigurationError, FetchError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, FetchError) and error.retryable


async def with_retry(operation: Callable[[], Awaitable[T]], config: ScraperConfig,
                     description: str = "request",
                     sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> T:
    """Run ``operation`` until it succeeds, retrying retryable FetchErrors with backoff"""
    def log_retry(state: RetryCallState):
        logger.warning(f"{description} failed (attempt {state.attempt_number}/{config.max_attempts}): "
                       f"{state.outcome.exception()}; retrying in {state.next_action.sleep:.1f}s")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(multiplier=config.retry_base_delay, max=config.retry_max_delay),
        retry=retry_if_exception(is_retryable),
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)


def raise_for_response(url: str, response: requests.Response):
    """Translate a non-2xx response into the matching FetchError"""
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 429:
        raise RateLimitError(url)
    raise FetchError(url, f"HTTP {status}", status_code=status, retryable=status >= 500)


def build_session(config: ScraperConfig) -> requests.Session:
    session = requests.Session()
    session.headers.update({
        'User-Agent': config.user_agent,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.5',
    })
    return session


class HttpFetcher:
    """Raw HTTP GET with a descriptive User-Agent and a fixed timeout"""

    def __init__(self, config: ScraperConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or build_session(config)

    async def fetch(self, url: str, timeout: Optional[float] = None) -> str:
        """Body of ``url``; raises FetchError once retries are exhausted"""
        timeout = timeout or self.config.http_timeout
        return await with_retry(lambda: asyncio.to_thread(self._get, url, timeout),
                                self.config, f"GET {url}")

    def _get(self, url: str, timeout: float) -> str:
        try:
            response = self.session.get(url, timeout=timeout, allow_redirects=True)
        except requests.Timeout:
            raise FetchError(url, f"Timed out after {timeout}s", retryable=True)
        except requests.ConnectionError as e:
            raise FetchError(url, f"Connection error: {e}", retryable=True)
        except requests.RequestException as e:
            raise FetchError(url, f"Request failed: {e}")
        raise_for_response(url, response)
        return response.text


class CircuitBreaker:
    """Refuses calls for a cool-down period after repeated consecutive failures"""

    def __init__(self, threshold: int, reset_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.threshold = threshold
        self.reset_seconds = reset_seconds
        self.clock = clock
        self.failures = 0
        self.opened_at: Optional[float] = None

    @property
    def is_open(self) -> bool:
        if self.opened_at is None:
            return False
        if self.clock() - self.opened_at >= self.reset_seconds:
            logger.info("Rendering circuit breaker reset after cool-down")
            self.failures = 0
            self.opened_at = None
            return False
        return True

    def record_success(self):
        if self.failures:
            logger.info("Rendering circuit breaker closed after a successful call")
        self.failures = 0
        self.opened_at = None

    def record_failure(self):
        self.failures += 1
        if self.failures >= self.threshold and self.opened_at is None:
            self.opened_at = self.clock()
            logger.warning(f"Rendering circuit breaker opened after {self.failures} failures")


@dataclass
class RenderedPage:
    """What the rendering service returned for one URL"""
    url: str
    content: str
    links: List[Tuple[str, str]] = field(default_factory=list)  # (title, url)
    title: Optional[str] = None


REMOVE_SELECTORS = "footer,.cookie-banner,.popup,.modal,.newsletter,.subscribe,.social-share"


class RenderingClient:
    """Client for a remote page-rendering service (r.jina.ai compatible)"""

    def __init__(self, config: ScraperConfig, session: Optional[requests.Session] = None,
                 breaker: Optional[CircuitBreaker] = None):
        self.config = config
        self.session = session or build_session(config)
        self.breaker = breaker or CircuitBreaker(config.breaker_threshold, config.breaker_reset_seconds)

    async def render(self, url: str, output_format: str = "html", with_links: bool = True) -> RenderedPage:
        """Rendered content of ``url`` in ``output_format`` (html or markdown)"""
        if not self.config.render_api_key:
            raise ConfigurationError("RENDER_API_KEY is not set; the rendering service is unavailable")
        if self.breaker.is_open:
            raise FetchError(url, "Rendering service circuit breaker is open")

        try:
            page = await with_retry(
                lambda: asyncio.to_thread(self._post, url, output_format, with_links),
                self.config, f"render {url}")
        except FetchError:
            self.breaker.record_failure()
            raise
        self.breaker.record_success()
        return page

    def _headers(self, output_format: str, with_links: bool) -> dict:
        headers = {
            'Authorization': f'Bearer {self.config.render_api_key}',
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'X-Return-Format': output_format,
            'X-Remove-Selector': REMOVE_SELECTORS,
            'X-Timeout': str(int(self.config.render_timeout)),
        }
        if with_links:
            headers['X-With-Links-Summary'] = 'true'
        return headers

    def _post(self, url: str, output_format: str, with_links: bool) -> RenderedPage:
        timeout = self.config.render_timeout
        try:
            response = self.session.post(self.config.render_endpoint, json={'url': url},
                                         headers=self._headers(output_format, with_links),
                                         timeout=timeout)
        except requests.Timeout:
            raise FetchError(url, f"Rendering timed out after {timeout}s", retryable=True)
        except requests.ConnectionError as e:
            raise FetchError(url, f"Rendering connection error: {e}", retryable=True)
        except requests.RequestException as e:
            raise FetchError(url, f"Rendering request failed: {e}")

        if response.status_code == 429:
            raise RateLimitError(url, "Rendering service rate limited")
        if not 200 <= response.status_code < 300:
            # Only 429 is retried for the rendering tier
            raise FetchError(url, f"Rendering service returned HTTP {response.status_code}",
                             status_code=response.status_code)
        return parse_render_response(url, response.text)


def _normalize_links(raw: Any) -> List[Tuple[str, str]]:
    """Links summary as (title, url) pairs; accepts a {title: url} map or a list"""
    links: List[Tuple[str, str]] = []
    if isinstance(raw, dict):
        for title, href in raw.items():
            if isinstance(href, str):
                links.append((str(title), href))
    elif isinstance(raw, list):
        for item in raw:
            if isinstance(item, (list, tuple)) and len(item) == 2:
                links.append((str(item[0]), str(item[1])))
            elif isinstance(item, dict) and item.get('url'):
                links.append((str(item.get('title') or item.get('text') or ''), item['url']))
            elif isinstance(item, str):
                links.append(('', item))
    return links


def parse_render_response(url: str, body: str) -> RenderedPage:
    """Accept either a JSON envelope {content, links?, title?} (possibly under "data") or a raw body"""
    stripped = (body or '').lstrip()
    if stripped.startswith('{'):
        try:
            payload = json.loads(stripped)
        except ValueError:
            logger.debug(f"Rendering response for {url} is not JSON, using raw body")
        else:
            envelope = payload.get('data') if isinstance(payload.get('data'), dict) else payload
            content = envelope.get('content') or envelope.get('html') or envelope.get('text') or ''
            return RenderedPage(url=url, content=content,
                                links=_normalize_links(envelope.get('links')),
                                title=envelope.get('title'))
    return RenderedPage(url=url, content=body or '')


# Clicks the first visible "load more" style control; returns whether it clicked
LOAD_MORE_SCRIPT = """
() => {
  const pattern = /(load|show|view|see)\\s+more|more\\s+(posts|articles|resources|results)|older posts/i;
  const attrPattern = /load[-_]?more|show[-_]?more|view[-_]?more/i;
  const controls = document.querySelectorAll('button, a, [role="button"], input[type="button"]');
  for (const el of controls) {
    const text = (el.innerText || el.value || '').trim();
    const label = el.getAttribute('aria-label') || '';
    const attrs = (el.className && el.className.toString ? el.className.toString() : '') + ' ' + (el.id || '');
    if (!(pattern.test(text) || pattern.test(label) || attrPattern.test(attrs))) continue;
    const rect = el.getBoundingClientRect();
    if (rect.width === 0 || rect.height === 0 || el.disabled) continue;
    el.click();
    return true;
  }
  return false;
}
"""

BROWSER_ARGS = [
    '--no-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--disable-features=VizDisplayCompositor',
]


class HeadlessBrowser:
    """Loads a listing in headless Chromium and expands it by clicking and scrolling"""

    def __init__(self, config: ScraperConfig):
        self.config = config

    async def scroll_and_collect(self, url: str) -> str:
        """Fully expanded HTML of ``url``"""
        try:
            from playwright.async_api import async_playwright, Error as PlaywrightError
        except ImportError:
            raise ConfigurationError("playwright is not installed; run `pip install playwright` "
                                     "and `playwright install chromium`")

        try:
            async with async_playwright() as p:
                if self.config.browser_ws_endpoint:
                    logger.info("Connecting to remote browser...")
                    browser = await p.chromium.connect_over_cdp(self.config.browser_ws_endpoint)
                else:
                    browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
                try:
                    page = await browser.new_page()
                    logger.info(f"🔍 Infinite scroll: loading {url}")
                    await page.goto(url, wait_until='networkidle',
                                    timeout=self.config.browser_timeout * 1000)
                    await self._expand(page)
                    return await page.content()
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise BrowserError(url, f"Headless browser failed: {e}")

    async def _expand(self, page):
        """Click "load more" controls and scroll until the page height stops changing"""
        previous_height = await page.evaluate("document.body.scrollHeight")
        stable = 0
        for iteration in range(1, self.config.max_scroll_iterations + 1):
            clicked = await page.evaluate(LOAD_MORE_SCRIPT)
            await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            await page.wait_for_timeout(self.config.scroll_wait_ms)

            height = await page.evaluate("document.body.scrollHeight")
            if height == previous_height and not clicked:
                stable += 1
                if stable >= self.config.stable_height_iterations:
                    logger.info(f"📜 Page height stable after {iteration} iterations")
                    return
            else:
                stable = 0
            previous_height = height
        logger.info(f"📜 Stopped scrolling after {self.config.max_scroll_iterations} iterations")


@dataclass
class Fetchers:
    """The fetch tiers one pipeline run uses"""
    http: HttpFetcher
    renderer: RenderingClient
    browser: HeadlessBrowser

    @classmethod
    def from_config(cls, config: ScraperConfig) -> 'Fetchers':
        session = build_session(config)
        return cls(http=HttpFetcher(config, session),
                   renderer=RenderingClient(config, session),
                   browser=HeadlessBrowser(config))
