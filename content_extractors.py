"""
Date and title extraction

Layered heuristics that pull a publish date, a human title, structured-data
types and the main content out of a URL, raw HTML or plain text.
"""

import re
import json
import logging
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Set, Tuple, Union
from urllib.parse import urlparse, unquote

from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser
from markdownify import markdownify

logger = logging.getLogger(__name__)


MIN_YEAR = 1990

MONTHS = r'(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)'

# Text date forms, each with the dayfirst flag used when parsing the match
TEXT_DATE_PATTERNS: List[Tuple[re.Pattern, bool]] = [
    (re.compile(rf'\b{MONTHS}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b', re.IGNORECASE), False),
    (re.compile(rf'\b\d{{1,2}}(?:st|nd|rd|th)?\s+{MONTHS}\.?,?\s+\d{{4}}\b', re.IGNORECASE), True),
    (re.compile(r'\b\d{4}-\d{1,2}-\d{1,2}\b'), False),
    (re.compile(r'\b\d{4}/\d{1,2}/\d{1,2}\b'), False),
    (re.compile(r'\b\d{1,2}[/.-]\d{1,2}[/.-]\d{4}\b'), False),
]

PUBLISHED_TIME_RE = re.compile(r'^\s*Published Time:\s*(.+?)\s*$', re.IGNORECASE | re.MULTILINE)

URL_DATE_PATTERNS = [
    re.compile(r'/(\d{4})/(\d{1,2})/(\d{1,2})(?:/|$)'),
    re.compile(r'/(\d{4})-(\d{1,2})-(\d{1,2})(?:[-/]|$)'),
]

# Meta tags carrying a publish date, most specific first
META_DATE_SELECTORS = [
    'meta[property="article:published_time"]',
    'meta[property="og:published_time"]',
    'meta[property="og:article:published_time"]',
    'meta[name="article:published_time"]',
    'meta[itemprop="datePublished"]',
    'meta[name="DC.date.issued"]',
    'meta[name="DC.date"]',
    'meta[name="dc.date"]',
    'meta[name="pubdate"]',
    'meta[name="publishdate"]',
    'meta[name="publish-date"]',
    'meta[name="parsely-pub-date"]',
    'meta[name="sailthru.date"]',
    'meta[name="date"]',
]

# JSON-LD keys holding dates, in order of preference
JSON_LD_DATE_KEYS = [
    'datePublished', 'dateCreated', 'uploadDate', 'publishDate',
    'published', 'pubDate', 'dateModified',
]

BYLINE_SELECTORS = [
    'header', '.byline', '.post-meta', '.entry-meta', '.article-meta', '.meta',
    '.post-date', '.entry-date', '.published', '.date',
    '[class*="byline"]', '[class*="date"]', '[class*="meta"]',
]

OPENING_TEXT_CHARS = 1500

TITLE_SUFFIX_SEPARATORS = [' | ', ' - ', ' – ', ' — ', ' · ', ' :: ']

GENERIC_TITLES = {
    'blog', 'home', 'index', 'main', 'page', 'article', 'post', 'posts',
    'news', 'updates', 'content', 'site', 'website', 'resources', 'untitled',
}

SLUG_EXTENSION_RE = re.compile(r'\.(html?|php|aspx?|jsp)$', re.IGNORECASE)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def _accept(value: Optional[date]) -> Optional[date]:
    """Reject future dates and implausibly old ones"""
    if value is None:
        return None
    if value.year < MIN_YEAR or value > date.today():
        return None
    return value


def parse_date_string(value: Any, dayfirst: bool = False) -> Optional[date]:
    """Parse a date-ish string into a calendar date, or None"""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if not re.search(r'\d{4}', value):
        return None
    try:
        parsed = date_parser.parse(value, dayfirst=dayfirst, fuzzy=False)
    except (ValueError, OverflowError, TypeError):
        return None
    return _accept(parsed.date() if isinstance(parsed, datetime) else parsed)


def date_from_url(url: str) -> Optional[date]:
    """Year/month/day embedded in the URL path"""
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    for pattern in URL_DATE_PATTERNS:
        match = pattern.search(path)
        if match:
            year, month, day = (int(part) for part in match.groups())
            try:
                return _accept(date(year, month, day))
            except ValueError:
                continue
    return None


def date_from_text(text: str) -> Optional[date]:
    """Earliest date mention in free text, honouring a 'Published Time:' field first"""
    if not text:
        return None

    labelled = PUBLISHED_TIME_RE.search(text)
    if labelled:
        found = parse_date_string(labelled.group(1))
        if found:
            return found

    matches = []
    for pattern, dayfirst in TEXT_DATE_PATTERNS:
        for match in pattern.finditer(text):
            matches.append((match.start(), match.group(0), dayfirst))
    matches.sort(key=lambda m: m[0])

    for _, raw, dayfirst in matches:
        parsed = _parse_text_match(raw, dayfirst)
        if parsed:
            return parsed
    return None


def _parse_text_match(raw: str, dayfirst: bool) -> Optional[date]:
    raw = re.sub(r'(\d)(st|nd|rd|th)\b', r'\1', raw)
    numeric = re.match(r'^(\d{1,2})[/.-](\d{1,2})[/.-](\d{4})$', raw)
    if numeric:
        # US order unless the first number cannot be a month
        dayfirst = int(numeric.group(1)) > 12
    return parse_date_string(raw, dayfirst=dayfirst)


def date_from_meta(soup: BeautifulSoup) -> Optional[date]:
    """Open Graph / Dublin Core / itemprop meta tags, then <time datetime>"""
    for selector in META_DATE_SELECTORS:
        for element in soup.select(selector):
            found = parse_date_string(element.get('content'))
            if found:
                return found

    for element in soup.select('time[datetime]'):
        found = parse_date_string(element.get('datetime'))
        if found:
            return found
    return None


def iter_json_ld(soup: BeautifulSoup) -> Iterable[Any]:
    """Decoded JSON-LD blocks; malformed blocks are logged and skipped"""
    for script in soup.find_all('script', attrs={'type': re.compile(r'ld\+json', re.I)}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            yield json.loads(raw)
        except ValueError as e:
            logger.warning(f"Skipping malformed JSON-LD block: {e}")


def _collect_keys(node: Any, keys: Set[str], found: dict):
    """Recursively gather the first value seen for each wanted key"""
    if isinstance(node, dict):
        for key, value in node.items():
            if key in keys and key not in found and isinstance(value, str):
                found[key] = value
            _collect_keys(value, keys, found)
    elif isinstance(node, list):
        for item in node:
            _collect_keys(item, keys, found)


def date_from_json_ld(soup: BeautifulSoup) -> Optional[date]:
    """Known date fields anywhere inside JSON-LD structured data"""
    wanted = set(JSON_LD_DATE_KEYS)
    for block in iter_json_ld(soup):
        found = {}
        _collect_keys(block, wanted, found)
        for key in JSON_LD_DATE_KEYS:
            parsed = parse_date_string(found.get(key))
            if parsed:
                return parsed
    return None


def date_from_page_text(soup: BeautifulSoup) -> Optional[date]:
    """Dates written in header/byline regions, then in the opening of the main content"""
    for selector in BYLINE_SELECTORS:
        for element in soup.select(selector)[:5]:
            found = date_from_text(element.get_text(' ', strip=True)[:500])
            if found:
                return found

    main = soup.select_one('article') or soup.select_one('main') or soup.select_one('[role="main"]')
    if main:
        found = date_from_text(main.get_text(' ', strip=True)[:OPENING_TEXT_CHARS])
        if found:
            return found
    return None


def _as_soup(html: Union[str, BeautifulSoup, None]) -> Optional[BeautifulSoup]:
    if html is None:
        return None
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html, 'html.parser')


def extract_page_date(html: Union[str, BeautifulSoup, None], text: Optional[str] = None) -> Optional[date]:
    """Publish date from the page itself: meta, JSON-LD, byline text, then plain text"""
    soup = _as_soup(html)
    if soup is not None:
        for strategy in (date_from_meta, date_from_json_ld, date_from_page_text):
            found = strategy(soup)
            if found:
                return found
    if text:
        return date_from_text(text)
    return None


def extract_date(url: str, html: Union[str, BeautifulSoup, None] = None,
                 text: Optional[str] = None) -> Optional[date]:
    """Publish date from the URL first, then from the page content"""
    return date_from_url(url) or extract_page_date(html, text)


# ---------------------------------------------------------------------------
# Structured data
# ---------------------------------------------------------------------------

def _collect_types(node: Any, types: Set[str]):
    if isinstance(node, dict):
        value = node.get('@type')
        if isinstance(value, str):
            types.add(value.lower())
        elif isinstance(value, list):
            types.update(v.lower() for v in value if isinstance(v, str))
        for child in node.values():
            _collect_types(child, types)
    elif isinstance(node, list):
        for item in node:
            _collect_types(item, types)


def extract_schema_types(soup: BeautifulSoup) -> Set[str]:
    """Lower-cased schema.org type names from JSON-LD and microdata"""
    types: Set[str] = set()
    for block in iter_json_ld(soup):
        _collect_types(block, types)
    for element in soup.find_all(attrs={'itemtype': True}):
        for itemtype in element.get('itemtype', '').split():
            name = itemtype.rstrip('/').rsplit('/', 1)[-1]
            if name:
                types.add(name.lower())
    return types


# ---------------------------------------------------------------------------
# Titles
# ---------------------------------------------------------------------------

def derive_title_from_url(url: str) -> str:
    """Human title from the last path segment; empty when the slug is numeric or a date"""
    try:
        segments = [s for s in urlparse(url).path.split('/') if s]
    except ValueError:
        return ""
    if not segments:
        return ""

    slug = SLUG_EXTENSION_RE.sub('', unquote(segments[-1])).strip()
    if not slug or re.fullmatch(r'[\d\W_]+', slug):
        return ""  # numeric id or bare date
    if re.fullmatch(r'\d{4}[-_]\d{1,2}([-_]\d{1,2})?', slug):
        return ""

    words = [w for w in re.split(r'[-_+\s.]+', slug) if w]
    return ' '.join(word[:1].upper() + word[1:] for word in words)


def is_generic_title(title: str) -> bool:
    """Check if title is too generic to be useful"""
    return title.lower().strip() in GENERIC_TITLES


def clean_title(title: str) -> str:
    return re.sub(r'\s+', ' ', title or '').strip()


def strip_site_suffix(title: str) -> str:
    """'Post Title | Brand' -> 'Post Title'"""
    for separator in TITLE_SUFFIX_SEPARATORS:
        if separator in title:
            head = title.rsplit(separator, 1)[0].strip()
            if len(head) >= 3:
                return head
    return title


def extract_page_title(soup: BeautifulSoup) -> Optional[str]:
    """Article title from og:title, the main heading, or <title>"""
    og_title = soup.find('meta', attrs={'property': 'og:title'})
    if og_title and og_title.get('content'):
        title = strip_site_suffix(clean_title(og_title['content']))
        if title and not is_generic_title(title):
            return title

    heading = soup.select_one('main h1, article h1, [role="main"] h1') or soup.find('h1')
    if heading:
        title = clean_title(heading.get_text(' ', strip=True))
        if title and not is_generic_title(title):
            return title

    title_tag = soup.find('title')
    if title_tag:
        title = strip_site_suffix(clean_title(title_tag.get_text()))
        if title and not is_generic_title(title):
            return title
    return None


# ---------------------------------------------------------------------------
# Main content
# ---------------------------------------------------------------------------

def word_count(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(re.findall(r'\w+', text))


class MainContentExtractor:
    """Finds the main content block of a page and converts it to Markdown"""

    CONTENT_CLASSES = [
        '.post-content', '.entry-content', '.article-content', '.article-body',
        '.post-body', '.entry-body', '.main-content', '.content',
    ]

    NOISE_SELECTORS = [
        'script', 'style', 'noscript', 'nav', 'footer', 'form',
        '.ad', '.advertisement', '.social', '.share', '.related', '.comments',
        '.newsletter', '.subscribe', '.cookie-banner',
    ]

    def extract(self, soup: BeautifulSoup) -> str:
        """Extract main content using the first strategy that finds enough text"""
        strategies = [
            self._extract_by_semantic_tags,
            self._extract_by_common_classes,
            self._extract_by_content_density,
        ]
        for strategy in strategies:
            content = strategy(soup)
            if content and self._is_quality_content(content):
                return content

        body = soup.body or soup
        return self._element_to_markdown(body)

    def _extract_by_semantic_tags(self, soup: BeautifulSoup) -> Optional[str]:
        """Extract using semantic HTML tags"""
        for selector in ['article', 'main', '[role="main"]']:
            element = soup.select_one(selector)
            if element:
                return self._element_to_markdown(element)
        return None

    def _extract_by_common_classes(self, soup: BeautifulSoup) -> Optional[str]:
        """Extract using common content class patterns"""
        for selector in self.CONTENT_CLASSES:
            element = soup.select_one(selector)
            if element:
                return self._element_to_markdown(element)
        return None

    def _extract_by_content_density(self, soup: BeautifulSoup) -> Optional[str]:
        """Find element with the most text that is not mostly markup"""
        candidates = []
        for element in soup.find_all(['div', 'section']):
            text_length = len(element.get_text(strip=True))
            html_length = len(str(element))
            if text_length < 200:
                continue
            # Skip if too much HTML vs text (likely navigation/ads)
            if html_length and text_length / html_length < 0.1:
                continue
            candidates.append((element, text_length))

        if candidates:
            best_element = max(candidates, key=lambda x: x[1])[0]
            return self._element_to_markdown(best_element)
        return None

    def _element_to_markdown(self, element: Tag) -> str:
        """Convert HTML element to clean markdown"""
        # Work on a copy so the caller's soup keeps its byline and time elements
        element = BeautifulSoup(str(element), 'html.parser')
        for selector in self.NOISE_SELECTORS:
            for noise in element.select(selector):
                noise.decompose()
        markdown = markdownify(str(element), heading_style="ATX")
        return self._clean_markdown(markdown)

    @staticmethod
    def _clean_markdown(markdown: str) -> str:
        markdown = re.sub(r'\n\s*\n\s*\n', '\n\n', markdown)
        markdown = re.sub(r'\[\]\([^)]*\)', '', markdown)  # empty links
        return markdown.strip()

    @staticmethod
    def _is_quality_content(content: str) -> bool:
        """At least some prose, and mostly text rather than markup"""
        if not content or len(content.strip()) < 100:
            return False
        text_content = re.sub(r'[#*\[\]()_`-]', '', content)
        return len(text_content) / len(content) > 0.5
