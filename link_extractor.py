"""
Candidate link extraction

Turns a listing page (HTML, or Markdown from a rendering service) into a
list of candidates, and finds the pagination links that lead to the next
listing page.
"""

import re
import logging
from datetime import date
from typing import Callable, Iterable, List, Optional, Set, Tuple, Union
from urllib.parse import urlparse, parse_qsl, urlencode, urlunparse

from bs4 import BeautifulSoup, NavigableString, Tag

from scraper_config import ScraperConfig
from scraper_models import Candidate, CrawlContext
from content_extractors import (clean_title, date_from_text, date_from_url,
                                derive_title_from_url, is_generic_title, parse_date_string)
from url_filter import exclusion_reason
from url_utils import canonical_key, detect_context, domain, resolve, strip_fragment

logger = logging.getLogger(__name__)


# Link containers in priority order; the catch-all comes last
LINK_SELECTORS = [
    'article a[href]',
    'h1 a[href]', 'h2 a[href]', 'h3 a[href]', 'h4 a[href]',
    '.post a[href]', '.blog-post a[href]', '.entry-title a[href]', '.post-title a[href]',
    '[class*="card"] a[href]', '[class*="post"] a[href]',
    '[class*="article"] a[href]', '[class*="blog"] a[href]',
    'a[href*="/blog/"]', 'a[href*="/post"]', 'a[href*="/article"]',
    'a[href]',
]

CONTAINER_CLASS_RE = re.compile(r'post|card|article|blog|entry|item|teaser|tile', re.IGNORECASE)
CONTAINER_DEPTH = 5

GENERIC_LINK_TEXT = {
    'read more', 'learn more', 'continue reading', 'read article', 'read post',
    'read the post', 'read the article', 'read full article', 'read story', 'more',
    'view', 'view more', 'see more', 'details', 'click here', 'here', 'download',
    'download now', 'watch now', 'watch', 'listen', 'register', 'register now',
    'get the guide', 'get the report', 'read now', 'view post', 'view article',
}

HEADING_TAGS = ['h1', 'h2', 'h3', 'h4', 'h5']
INLINE_TAGS = {'strong', 'b', 'em', 'i', 'span', 'code', 'mark', 'small'}

MARKDOWN_IMAGE_LINK_RE = re.compile(r'\[!\[([^\]]*)\]\([^)]*\)\]\((\S+?)(?:\s+"[^"]*")?\)')
MARKDOWN_LINK_RE = re.compile(r'(?<!!)\[([^\]]+)\]\((\S+?)(?:\s+"[^"]*")?\)')
BARE_URL_RE = re.compile(r'https?://[^\s<>"\'()\[\]]+')
MARKDOWN_HEADING_RE = re.compile(r'^#{1,6}\s+(.+?)\s*#*$', re.MULTILINE)
MARKDOWN_BOLD_RE = re.compile(r'\*\*([^*\n]+)\*\*|__([^_\n]+)__')

PAGE_QUERY_RE = re.compile(r'[?&](page|paged)=(\d+)', re.IGNORECASE)
PAGE_PATH_RE = re.compile(r'/page/(\d+)/?$', re.IGNORECASE)

PAGINATION_CONTAINERS = [
    '.pagination', '.pager', '.page-numbers', '.nav-links', '[class*="pagination"]',
    'nav[aria-label*="agination"]', '[role="navigation"]',
]
NEXT_LINK_TEXT = {'next', 'next page', 'older posts', 'older', 'more posts', '›', '»', '→', 'next ›', 'next »'}


class CandidateLinkExtractor:
    """Extracts candidate links from listing pages for one crawl"""

    def __init__(self, seed_url: str, config: Optional[ScraperConfig] = None,
                 context: Optional[CrawlContext] = None):
        self.seed_url = seed_url
        self.config = config or ScraperConfig()
        self.context = context or detect_context(seed_url)

        # Title sources in order: (name, source, minimum length)
        self.title_sources: List[Tuple[str, Callable[[Tag, str], str], int]] = [
            ('anchor-text', self._anchor_text, self.config.min_title_length),
            ('image-alt', self._image_alt, self.config.min_title_length),
            ('container-heading', self._container_heading, self.config.min_title_length),
            ('preceding-text', self._preceding_text, self.config.min_title_length),
            ('slug', lambda anchor, url: derive_title_from_url(url), self.config.min_slug_title_length),
        ]

    def extract(self, content: Union[str, BeautifulSoup], page_url: Optional[str] = None) -> List[Candidate]:
        """Candidates from a page, trying structured HTML, then Markdown links, then bare URLs"""
        page_url = page_url or self.seed_url
        if isinstance(content, BeautifulSoup):
            soup, text = content, None
        else:
            text = content or ''
            soup = BeautifulSoup(text, 'html.parser')

        candidates = self._from_html(soup, page_url)
        if candidates or text is None:
            return candidates

        candidates = self._from_markdown(text, page_url)
        if candidates:
            logger.debug(f"Markdown links yielded {len(candidates)} candidates on {page_url}")
            return candidates

        candidates = self._from_bare_urls(text, page_url)
        if candidates:
            logger.debug(f"Bare URL scan yielded {len(candidates)} candidates on {page_url}")
        return candidates

    def extract_from_links(self, links: Iterable[Tuple[str, str]], page_url: Optional[str] = None) -> List[Candidate]:
        """Candidates from (title, url) pairs such as a rendering service's links summary"""
        page_url = page_url or self.seed_url
        collected = _PageCollector(self)
        for title, href in links:
            url = self._absolute(href, page_url)
            if url:
                collected.add(url, self._text_or_slug(title, url))
        return collected.candidates

    # ------------------------------------------------------------------
    # Structured HTML
    # ------------------------------------------------------------------

    def _from_html(self, soup: BeautifulSoup, page_url: str) -> List[Candidate]:
        collected = _PageCollector(self)
        for selector in LINK_SELECTORS:
            for anchor in soup.select(selector):
                href = anchor.get('href')
                if not href or href.startswith(('#', 'mailto:', 'tel:', 'javascript:')):
                    continue
                url = self._absolute(href, page_url)
                if not url or collected.has(url) or self.is_excluded(url):
                    continue

                title = self.resolve_title(anchor, url)
                if not title:
                    logger.debug(f"No usable title for {url}")
                    continue
                collected.add(url, title, self._candidate_date(anchor, url))
        return collected.candidates

    def resolve_title(self, anchor: Tag, url: str) -> Optional[str]:
        """First title source whose text is long enough and not generic"""
        for name, source, min_length in self.title_sources:
            title = clean_title(source(anchor, url))
            if title and len(title) >= min_length and not is_generic_title(title):
                return title
        return None

    def _anchor_text(self, anchor: Tag, url: str) -> str:
        heading = anchor.find(HEADING_TAGS)
        if heading:
            return heading.get_text(' ', strip=True)
        text = anchor.get_text(' ', strip=True)
        if clean_title(text).lower().rstrip(' .→›»') in GENERIC_LINK_TEXT:
            return self._container_heading(anchor, url)
        return text

    def _image_alt(self, anchor: Tag, url: str) -> str:
        image = anchor.find('img', alt=True)
        return image['alt'] if image else ''

    def _container_heading(self, anchor: Tag, url: str) -> str:
        container = self._container(anchor)
        if container is None:
            return ''
        heading = container.find(HEADING_TAGS) or container.select_one('.title, .entry-title, .post-title, [class*="title"]')
        return heading.get_text(' ', strip=True) if heading else ''

    def _preceding_text(self, anchor: Tag, url: str) -> str:
        """The sentence fragment written just before the link"""
        previous = anchor.previous_sibling
        parts = []
        while previous is not None and len(' '.join(parts)) < 200:
            if isinstance(previous, Tag):
                if previous.name not in INLINE_TAGS:
                    break  # another link or a block belongs to something else
                parts.insert(0, previous.get_text(' '))
            elif isinstance(previous, NavigableString):
                parts.insert(0, str(previous))
            previous = previous.previous_sibling
        text = ' '.join(parts).strip().rstrip(':-–— ')
        fragments = [f.strip() for f in re.split(r'[.!?]\s+', text) if f.strip()]
        return fragments[-1][:150] if fragments else ''

    @staticmethod
    def _container(anchor: Tag) -> Optional[Tag]:
        """Nearest ancestor that looks like an article/post/card wrapper"""
        depth = 0
        for parent in anchor.parents:
            if depth >= CONTAINER_DEPTH or parent.name in ('body', 'html', '[document]'):
                break
            if parent.name in ('article', 'li'):
                return parent
            classes = ' '.join(parent.get('class') or [])
            if classes and CONTAINER_CLASS_RE.search(classes):
                return parent
            depth += 1
        return None

    def _candidate_date(self, anchor: Tag, url: str) -> Optional[date]:
        found = date_from_url(url)
        if found:
            return found
        container = self._container(anchor)
        if container is None:
            return None
        time_tag = container.find('time')
        if time_tag:
            found = parse_date_string(time_tag.get('datetime')) or date_from_text(time_tag.get_text(' ', strip=True))
            if found:
                return found
        return date_from_text(container.get_text(' ', strip=True)[:400])

    # ------------------------------------------------------------------
    # Markdown and plain text
    # ------------------------------------------------------------------

    def _from_markdown(self, text: str, page_url: str) -> List[Candidate]:
        collected = _PageCollector(self)

        # [![alt](image)](url) first, so the image URL is never taken as the target
        for match in MARKDOWN_IMAGE_LINK_RE.finditer(text):
            url = self._absolute(match.group(2), page_url)
            if url:
                collected.add(url, self._text_or_slug(match.group(1), url), date_from_url(url))
        text = MARKDOWN_IMAGE_LINK_RE.sub(' ', text)

        for match in MARKDOWN_LINK_RE.finditer(text):
            label = match.group(1)
            if label.startswith('!'):
                continue
            url = self._absolute(match.group(2), page_url)
            if url:
                label = re.sub(r'[*_`#]+', '', label)
                collected.add(url, self._text_or_slug(label, url), date_from_url(url))
        return collected.candidates

    def _from_bare_urls(self, text: str, page_url: str) -> List[Candidate]:
        collected = _PageCollector(self)
        for match in BARE_URL_RE.finditer(text):
            url = self._absolute(match.group(0).rstrip('.,;:'), page_url)
            if not url:
                continue
            preceding = text[max(0, match.start() - 300):match.start()]
            collected.add(url, self._text_or_slug(self._nearby_label(preceding), url), date_from_url(url))
        return collected.candidates

    @staticmethod
    def _nearby_label(preceding: str) -> str:
        headings = MARKDOWN_HEADING_RE.findall(preceding)
        if headings:
            return headings[-1]
        bold = MARKDOWN_BOLD_RE.findall(preceding)
        if bold:
            return next(part for part in bold[-1] if part)
        return ''

    def _text_or_slug(self, text: str, url: str) -> str:
        title = clean_title(text)
        if len(title) >= self.config.min_title_length and not is_generic_title(title) \
                and title.lower() not in GENERIC_LINK_TEXT:
            return title
        slug_title = derive_title_from_url(url)
        return slug_title if len(slug_title) >= self.config.min_slug_title_length else ''

    # ------------------------------------------------------------------

    def _absolute(self, href: str, page_url: str) -> Optional[str]:
        url = strip_fragment(resolve(page_url, href))
        return url if url.startswith(('http://', 'https://')) else None

    def is_excluded(self, url: str) -> bool:
        reason = exclusion_reason(url, self.seed_url, self.context)
        if reason:
            logger.debug(f"Excluded {url} ({reason})")
        return reason is not None


class _PageCollector:
    """Per-page dedup of candidates in discovery order"""

    def __init__(self, extractor: CandidateLinkExtractor):
        self.extractor = extractor
        self.seen: Set[str] = set()
        self.candidates: List[Candidate] = []

    def has(self, url: str) -> bool:
        return canonical_key(url) in self.seen

    def add(self, url: str, title: str, published_date: Optional[date] = None):
        if not title or self.has(url) or self.extractor.is_excluded(url):
            return
        self.seen.add(canonical_key(url))
        self.candidates.append(Candidate(url=url, title=title, published_date=published_date))


def extract_candidates(page_content: Union[str, BeautifulSoup], base_url: str,
                       config: Optional[ScraperConfig] = None) -> List[Candidate]:
    """Candidates linked from a listing page, filtered against ``base_url``"""
    return CandidateLinkExtractor(base_url, config).extract(page_content, base_url)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

def _is_page_url(url: str) -> bool:
    return bool(PAGE_QUERY_RE.search(url) or PAGE_PATH_RE.search(urlparse(url).path))


def extract_pagination_links(content: Union[str, BeautifulSoup], page_url: str) -> List[str]:
    """Same-site links to further listing pages: rel=next, ?page=N, /page/N, numbered pagers"""
    soup = content if isinstance(content, BeautifulSoup) else BeautifulSoup(content or '', 'html.parser')
    site = domain(page_url)
    current = canonical_key(page_url)
    found: List[str] = []
    seen: Set[str] = set()

    def add(href: Optional[str]):
        if not href:
            return
        url = strip_fragment(resolve(page_url, href))
        key = canonical_key(url)
        if domain(url) != site or key == current or key in seen:
            return
        seen.add(key)
        found.append(url)

    for element in soup.select('link[rel~="next"], a[rel~="next"]'):
        add(element.get('href'))

    for anchor in soup.select('a[href]'):
        href = anchor['href']
        if _is_page_url(resolve(page_url, href)):
            add(href)

    for container in soup.select(', '.join(PAGINATION_CONTAINERS)):
        for anchor in container.select('a[href]'):
            text = anchor.get_text(' ', strip=True).lower()
            if text.isdigit() or text in NEXT_LINK_TEXT or 'next' in (anchor.get('aria-label') or '').lower():
                add(anchor['href'])

    if not found and not isinstance(content, BeautifulSoup) and content:
        # Markdown from a rendering service
        for match in BARE_URL_RE.finditer(content):
            url = match.group(0).rstrip('.,;:)')
            if _is_page_url(url):
                add(url)
    return found


def detect_page_pattern(urls: Iterable[str]) -> Optional[Tuple[str, str]]:
    """('query', param) or ('path', '') for the first URL carrying a page number"""
    for url in urls:
        match = PAGE_QUERY_RE.search(url)
        if match:
            return ('query', match.group(1).lower())
        if PAGE_PATH_RE.search(urlparse(url).path):
            return ('path', '')
    return None


def current_page_number(url: str) -> Optional[int]:
    match = PAGE_QUERY_RE.search(url)
    if match:
        return int(match.group(2))
    match = PAGE_PATH_RE.search(urlparse(url).path)
    if match:
        return int(match.group(1))
    return None


def synthesize_next_page(url: str, pattern: Optional[Tuple[str, str]] = None) -> Optional[str]:
    """Next listing page URL by incrementing the page number, or None when no pattern is known"""
    pattern = detect_page_pattern([url]) or pattern
    if pattern is None:
        return None
    kind, param = pattern
    next_number = (current_page_number(url) or 1) + 1
    parsed = urlparse(url)

    if kind == 'query':
        query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k.lower() != param]
        query.append((param, str(next_number)))
        return urlunparse(parsed._replace(query=urlencode(query), fragment=''))

    path = parsed.path
    if PAGE_PATH_RE.search(path):
        path = PAGE_PATH_RE.sub(f'/page/{next_number}/', path)
    else:
        path = path.rstrip('/') + f'/page/{next_number}/'
    return urlunparse(parsed._replace(path=path, fragment=''))
