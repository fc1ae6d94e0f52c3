"""
Discovery strategy cascade

Strategies run in priority order (sitemap/RSS, rendered pagination crawl,
raw HTML fallback, headless infinite scroll). Each one only runs while the
collector is short of its target, and a failing strategy never stops the
ones after it.
"""

import re
import logging
from collections import deque
from datetime import date
from typing import Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

import feedparser
from bs4 import BeautifulSoup

from scraper_config import ScraperConfig
from scraper_errors import ConfigurationError, FetchError, ScraperError
from scraper_models import Candidate, CrawlContext, StrategyOutcome
from content_extractors import date_from_url, derive_title_from_url, parse_date_string
from fetchers import Fetchers, HeadlessBrowser, HttpFetcher, RenderingClient
from link_extractor import (CandidateLinkExtractor, detect_page_pattern,
                            extract_pagination_links, synthesize_next_page)
from url_filter import exclusion_reason
from url_utils import canonical_key, detect_context, detect_language, normalize, path_segments, site_root

logger = logging.getLogger(__name__)


def in_date_range(published: Optional[date], start: Optional[date], end: Optional[date]) -> bool:
    """Undated candidates are always in range; the end date is inclusive"""
    if published is None:
        return True
    if start and published < start:
        return False
    if end and published > end:
        return False
    return True


class CandidateCollector:
    """Running, deduplicated candidate set for one crawl"""

    def __init__(self, seed_url: str, context: CrawlContext, limit: int,
                 date_range_start: Optional[date] = None, date_range_end: Optional[date] = None,
                 languages: Optional[Iterable[str]] = None, include_undetected: bool = True):
        self.seed_url = seed_url
        self.context = context
        self.limit = limit
        self.date_range_start = date_range_start
        self.date_range_end = date_range_end
        self.languages = {lang.lower() for lang in languages} if languages else None
        self.include_undetected = include_undetected
        self.candidates: List[Candidate] = []
        self._seen: Set[str] = set()

    def __len__(self) -> int:
        return len(self.candidates)

    @property
    def satisfied(self) -> bool:
        return len(self.candidates) >= self.limit

    def language_allowed(self, url: str) -> bool:
        """Without a language filter every URL passes; undetected ones follow ``include_undetected``"""
        if not self.languages:
            return True
        language = detect_language(url)
        if language is None:
            return self.include_undetected
        return language in self.languages

    def add(self, candidate: Candidate, source: str = "") -> bool:
        """Keep the candidate if it is eligible, new, in range and under the limit"""
        if self.satisfied:
            return False
        candidate.url = normalize(candidate.url)
        key = canonical_key(candidate.url)
        if key in self._seen:
            return False

        reason = exclusion_reason(candidate.url, self.seed_url, self.context)
        if reason:
            logger.debug(f"Excluded {candidate.url} ({reason})")
            return False
        if not self.language_allowed(candidate.url):
            logger.debug(f"Language filtered: {candidate.url}")
            return False
        if not in_date_range(candidate.published_date, self.date_range_start, self.date_range_end):
            logger.debug(f"Out of date range: {candidate.url} ({candidate.published_date})")
            return False

        self._seen.add(key)
        if source and not candidate.source:
            candidate.source = source
        self.candidates.append(candidate)
        return True

    def add_all(self, candidates: Iterable[Candidate], source: str = "") -> int:
        return sum(1 for candidate in candidates if self.add(candidate, source))


class DiscoveryStrategy:
    """One way of finding candidates for a seed URL"""

    name = "strategy"

    def should_run(self, collector: CandidateCollector) -> bool:
        return not collector.satisfied

    async def discover(self, seed_url: str, collector: CandidateCollector):
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Sitemap / RSS
# ---------------------------------------------------------------------------

GENERAL_SITEMAP_PATHS = [
    '/sitemap.xml', '/sitemap_index.xml', '/sitemap-index.xml', '/wp-sitemap.xml',
    '/wp-sitemap-posts-post-1.xml', '/post-sitemap.xml', '/sitemap-posts.xml',
    '/sitemap-blog.xml', '/news-sitemap.xml', '/articles-sitemap.xml', '/page-sitemap.xml',
]

GENERAL_FEED_PATHS = ['/feed', '/rss', '/rss.xml', '/feed.xml', '/atom.xml', '/index.xml']

CONTENT_SITEMAP_WORDS = ['post', 'blog', 'article', 'news', 'insight', 'resource', 'stor', 'guide', 'case']
LOW_VALUE_SITEMAP_WORDS = ['product', 'category', 'tag', 'author', 'image', 'video', 'page', 'location']

ROBOTS_SITEMAP_RE = re.compile(r'^\s*Sitemap:\s*(\S+)\s*$', re.IGNORECASE | re.MULTILINE)


class SitemapStrategy(DiscoveryStrategy):
    """Reads sitemaps (robots.txt hints, section paths, then site-wide paths) and feeds"""

    name = "sitemap"

    def __init__(self, config: ScraperConfig, http: HttpFetcher):
        self.config = config
        self.http = http
        self._reachable = False

    async def discover(self, seed_url: str, collector: CandidateCollector):
        self._reachable = False
        root = site_root(seed_url)
        section = self._section(seed_url)

        added = 0
        for location in await self.sitemap_locations(seed_url):
            before = len(collector)
            listed = await self._read_sitemap(location, seed_url, collector, depth=0, visited=set())
            if not listed:
                continue
            added = len(collector) - before
            logger.info(f"🗺️  Sitemap {location} listed {listed} URLs, {added} kept")
            break

        if added < self.config.min_feed_results and not collector.satisfied:
            added += await self._read_feeds(root, section, collector)

        if not self._reachable and added == 0:
            raise FetchError(root, "Site root unreachable: no sitemap, robots.txt or feed responded")
        logger.info(f"Sitemap/RSS added {added} candidates")

    @staticmethod
    def _section(seed_url: str) -> Optional[str]:
        segments = path_segments(seed_url)
        return segments[0] if segments else None

    async def sitemap_locations(self, seed_url: str) -> List[str]:
        """Probe order: robots.txt hints, section-specific paths, site-wide paths"""
        root = site_root(seed_url)
        locations = await self._robots_sitemaps(root)

        section = self._section(seed_url)
        if section:
            locations += [
                f'{root}/sitemap-{section}.xml',
                f'{root}/{section}-sitemap.xml',
                f'{root}/sitemap_{section}.xml',
                f'{root}/{section}/sitemap.xml',
                f'{root}/wp-sitemap-posts-{section}-1.xml',
            ]
        locations += [root + path for path in GENERAL_SITEMAP_PATHS]

        unique: List[str] = []
        for location in locations:
            if location not in unique:
                unique.append(location)
        return unique

    async def _get(self, url: str) -> Optional[str]:
        """Body of ``url`` or None; any HTTP answer marks the site as reachable"""
        try:
            body = await self.http.fetch(url, timeout=self.config.sitemap_timeout)
        except FetchError as e:
            if e.status_code is not None:
                self._reachable = True
            logger.debug(f"Probe {url} failed: {e}")
            return None
        self._reachable = True
        return body

    async def _robots_sitemaps(self, root: str) -> List[str]:
        body = await self._get(f'{root}/robots.txt')
        if not body:
            return []
        hints = ROBOTS_SITEMAP_RE.findall(body)
        if hints:
            logger.info(f"Found {len(hints)} sitemap(s) in robots.txt")
        return hints

    async def _read_sitemap(self, url: str, seed_url: str, collector: CandidateCollector,
                            depth: int, visited: Set[str]) -> int:
        """Feed a sitemap's entries to the collector, following a sitemap index; returns how many were listed"""
        if url in visited or depth > 2:
            return 0
        visited.add(url)
        body = await self._get(url)
        if not body:
            return 0

        soup = BeautifulSoup(body, 'xml')
        if soup.find('sitemapindex'):
            children = [sitemap.find('loc').get_text(strip=True)
                        for sitemap in soup.find_all('sitemap') if sitemap.find('loc')]
            children = self.prioritize_child_sitemaps(children)[:self.config.max_child_sitemaps]
            logger.info(f"Sitemap index {url} -> up to {len(children)} child sitemaps")
            listed = 0
            for child in children:
                if collector.satisfied:
                    logger.info(f"Candidate target reached; skipping the rest of {url}")
                    break
                listed += await self._read_sitemap(child, seed_url, collector, depth + 1, visited)
            return listed

        entries = self._parse_urlset(url, soup)
        collector.add_all(self._order_by_seed(entries, seed_url), self.name)
        return len(entries)

    @staticmethod
    def _parse_urlset(url: str, soup: BeautifulSoup) -> List[Tuple[str, Optional[date]]]:
        """(loc, lastmod) entries of a plain sitemap"""
        if not soup.find('urlset'):
            logger.warning(f"Skipping malformed sitemap {url}")
            return []

        entries = []
        for node in soup.find_all('url'):
            loc = node.find('loc')
            if not loc or not loc.get_text(strip=True):
                continue
            lastmod = node.find('lastmod')
            entries.append((loc.get_text(strip=True),
                            parse_date_string(lastmod.get_text(strip=True)) if lastmod else None))
        return entries

    @staticmethod
    def prioritize_child_sitemaps(children: List[str]) -> List[str]:
        """Content-sounding sitemaps first, product/taxonomy ones last, stable otherwise"""
        def score(url: str) -> int:
            name = urlparse(url).path.lower()
            if any(word in name for word in CONTENT_SITEMAP_WORDS):
                return 0
            if any(word in name for word in LOW_VALUE_SITEMAP_WORDS):
                return 2
            return 1
        return sorted(children, key=score)

    @staticmethod
    def _order_by_seed(entries: List[Tuple[str, Optional[date]]], seed_url: str) -> List[Candidate]:
        """Entries under the seed's path come first"""
        seed_path = urlparse(seed_url).path.rstrip('/')
        inside, outside = [], []
        for loc, lastmod in entries:
            candidate = Candidate(url=loc, title=derive_title_from_url(loc),
                                  published_date=lastmod or date_from_url(loc))
            path = urlparse(loc).path
            (inside if seed_path and path.startswith(seed_path + '/') else outside).append(candidate)
        return inside + outside

    def feed_locations(self, root: str, section: Optional[str]) -> List[str]:
        locations = []
        if section:
            locations += [f'{root}/{section}/feed', f'{root}/{section}/rss',
                          f'{root}/{section}/feed.xml', f'{root}/{section}/rss.xml',
                          f'{root}/feed/{section}']
        locations += [root + path for path in GENERAL_FEED_PATHS]
        return locations

    async def _read_feeds(self, root: str, section: Optional[str], collector: CandidateCollector) -> int:
        """Entries of the first RSS/Atom feed that has any"""
        for location in self.feed_locations(root, section):
            body = await self._get(location)
            if not body:
                continue
            parsed = feedparser.parse(body)
            if parsed.get('bozo') and not parsed.entries:
                logger.warning(f"Skipping malformed feed {location}: {parsed.get('bozo_exception')}")
                continue
            candidates = []
            for entry in parsed.entries:
                link = entry.get('link') or (entry.get('id') if str(entry.get('id', '')).startswith('http') else None)
                if not link:
                    continue
                candidates.append(Candidate(
                    url=link,
                    title=(entry.get('title') or '').strip() or derive_title_from_url(link),
                    published_date=parse_date_string(entry.get('published') or entry.get('updated'))
                    or date_from_url(link),
                ))
            if candidates:
                added = collector.add_all(candidates, 'rss')
                logger.info(f"📰 Feed {location} listed {len(candidates)} entries, {added} new")
                return added
        return 0


# ---------------------------------------------------------------------------
# Rendered pagination crawl
# ---------------------------------------------------------------------------

class PaginationCrawlStrategy(DiscoveryStrategy):
    """Breadth-first crawl of listing pages through the rendering service"""

    name = "rendered-pagination"

    def __init__(self, config: ScraperConfig, renderer: RenderingClient, extractor: CandidateLinkExtractor):
        self.config = config
        self.renderer = renderer
        self.extractor = extractor

    async def discover(self, seed_url: str, collector: CandidateCollector):
        queue = deque([seed_url])
        visited = {canonical_key(seed_url)}
        pattern = detect_page_pattern([seed_url])
        pages = 0
        empty_streak = 0

        while queue and pages < self.config.max_pages and not collector.satisfied:
            url = queue.popleft()
            pages += 1
            try:
                page = await self.renderer.render(url, output_format='html')
            except (FetchError, ConfigurationError) as e:
                if pages == 1:
                    raise
                logger.warning(f"Listing page {url} failed: {e}")
                empty_streak += 1
                if empty_streak >= self.config.empty_page_limit:
                    break
                continue

            candidates = self.extractor.extract(page.content, url)
            if not candidates and page.links:
                candidates = self.extractor.extract_from_links(page.links, url)
            added = collector.add_all(candidates, self.name)
            logger.info(f"📄 Page {pages} ({url}): {len(candidates)} links, {added} new")

            links = extract_pagination_links(page.content, url)
            pattern = pattern or detect_page_pattern(links)
            for link in links:
                key = canonical_key(link)
                if key not in visited:
                    visited.add(key)
                    queue.append(link)

            if added == 0:
                empty_streak += 1
                if empty_streak >= self.config.empty_page_limit:
                    logger.info(f"Stopping pagination after {empty_streak} pages with no new candidates")
                    break
                continue
            empty_streak = 0

            if not queue:
                next_url = synthesize_next_page(url, pattern)
                if next_url and canonical_key(next_url) not in visited:
                    visited.add(canonical_key(next_url))
                    queue.append(next_url)


# ---------------------------------------------------------------------------
# Raw HTML and headless browser fallbacks
# ---------------------------------------------------------------------------

class RawHtmlStrategy(DiscoveryStrategy):
    """Plain HTTP fetch of the seed page"""

    name = "raw-html"

    def __init__(self, config: ScraperConfig, http: HttpFetcher, extractor: CandidateLinkExtractor):
        self.config = config
        self.http = http
        self.extractor = extractor

    def should_run(self, collector: CandidateCollector) -> bool:
        return not collector.satisfied and len(collector) < self.config.raw_fallback_threshold

    async def discover(self, seed_url: str, collector: CandidateCollector):
        html = await self.http.fetch(seed_url)
        added = collector.add_all(self.extractor.extract(html, seed_url), self.name)
        logger.info(f"Raw HTML fallback added {added} candidates")


class InfiniteScrollStrategy(DiscoveryStrategy):
    """Headless browser with scrolling and "load more" clicks"""

    name = "infinite-scroll"

    def __init__(self, config: ScraperConfig, browser: HeadlessBrowser, extractor: CandidateLinkExtractor):
        self.config = config
        self.browser = browser
        self.extractor = extractor

    def should_run(self, collector: CandidateCollector) -> bool:
        if collector.satisfied:
            return False
        return (collector.context == CrawlContext.LIBRARY
                or len(collector) < self.config.browser_fallback_threshold)

    async def discover(self, seed_url: str, collector: CandidateCollector):
        html = await self.browser.scroll_and_collect(seed_url)
        added = collector.add_all(self.extractor.extract(html, seed_url), self.name)
        logger.info(f"Infinite scroll added {added} candidates")


# ---------------------------------------------------------------------------

class DiscoveryCascade:
    """Runs strategies in order until the collector is satisfied"""

    def __init__(self, strategies: List[DiscoveryStrategy]):
        self.strategies = strategies

    @classmethod
    def default(cls, seed_url: str, config: ScraperConfig, fetchers: Fetchers,
                context: Optional[CrawlContext] = None) -> 'DiscoveryCascade':
        extractor = CandidateLinkExtractor(seed_url, config, context)
        return cls([
            SitemapStrategy(config, fetchers.http),
            PaginationCrawlStrategy(config, fetchers.renderer, extractor),
            RawHtmlStrategy(config, fetchers.http, extractor),
            InfiniteScrollStrategy(config, fetchers.browser, extractor),
        ])

    async def run(self, seed_url: str, collector: CandidateCollector) -> List[StrategyOutcome]:
        outcomes = []
        for strategy in self.strategies:
            outcome = StrategyOutcome(name=strategy.name)
            outcomes.append(outcome)
            if not strategy.should_run(collector):
                outcome.skipped = True
                logger.debug(f"Skipping {strategy.name} ({len(collector)} candidates)")
                continue

            logger.info(f"🔎 Trying {strategy.name} discovery ({len(collector)} candidates so far)")
            before = len(collector)
            try:
                await strategy.discover(seed_url, collector)
            except ScraperError as e:
                outcome.error = str(e)
                logger.warning(f"{strategy.name} discovery failed: {e}")
            except Exception as e:
                outcome.error = f"{type(e).__name__}: {e}"
                logger.error(f"{strategy.name} discovery crashed: {e}", exc_info=True)
            outcome.added = len(collector) - before
        return outcomes


async def discover(seed_url: str, max_posts: Optional[int] = None,
                   date_range_start: Optional[date] = None, date_range_end: Optional[date] = None,
                   config: Optional[ScraperConfig] = None,
                   fetchers: Optional[Fetchers] = None,
                   languages: Optional[Iterable[str]] = None,
                   include_undetected: bool = True) -> List[Candidate]:
    """Candidates for a seed URL, before validation"""
    config = config or ScraperConfig.from_env()
    fetchers = fetchers or Fetchers.from_config(config)
    seed_url = normalize(seed_url)
    context = detect_context(seed_url)
    collector = CandidateCollector(seed_url, context, max_posts or config.default_target,
                                   date_range_start, date_range_end, languages, include_undetected)
    await DiscoveryCascade.default(seed_url, config, fetchers, context).run(seed_url, collector)
    return collector.candidates
