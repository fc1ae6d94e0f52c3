"""
Exclusion filter

Decides whether a discovered URL is eligible as a content candidate. The
rules are pure functions applied in order; the first one that matches
excludes the URL. Any URL that fails to parse is excluded.
"""

import re
import logging
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse, parse_qsl, ParseResult

from scraper_models import CrawlContext
from url_utils import canonical_key, detect_context, domain, locale_prefix

logger = logging.getLogger(__name__)


MEDIA_EXTENSIONS = {
    # images
    'jpg', 'jpeg', 'png', 'gif', 'webp', 'svg', 'ico', 'bmp', 'tif', 'tiff', 'avif',
    # audio / video
    'mp3', 'mp4', 'm4a', 'wav', 'avi', 'mov', 'wmv', 'webm', 'mkv',
    # archives / executables
    'zip', 'rar', '7z', 'tar', 'gz', 'tgz', 'exe', 'dmg', 'msi', 'apk', 'bin',
    # office documents and web assets
    'doc', 'docx', 'xls', 'xlsx', 'ppt', 'pptx', 'csv',
    'css', 'js', 'json', 'xml', 'txt', 'woff', 'woff2', 'ttf', 'eot',
}

ASSET_SUBDOMAINS = ('cdn', 'static', 'assets', 'images', 'img', 'media')

LISTING_PARAMS = {'category', 'tag', 'author', 'search', 's', 'q', 'sort', 'orderby', 'order', 'filter'}
PAGE_PARAMS = {'page', 'paged'}

# Path segments excluded in every context
ALWAYS_DENY_SEGMENTS = {
    'wp-admin', 'wp-content', 'wp-includes', 'wp-json', 'wp-login.php', 'admin', 'api', '.well-known',
    'login', 'logout', 'signin', 'sign-in', 'signout', 'signup', 'sign-up', 'register', 'account',
    'profile', 'cart', 'checkout',
    'privacy', 'privacy-policy', 'terms', 'terms-of-service', 'terms-of-use', 'terms-and-conditions',
    'legal', 'cookie-policy', 'cookies', 'gdpr', 'imprint', 'impressum', 'disclaimer',
    'feed', 'feeds', 'rss', 'atom', 'sitemap',
    'category', 'categories', 'tag', 'tags', 'topic', 'topics', 'author', 'authors',
    'archive', 'archives', 'search',
    'contact', 'contact-us', 'about', 'about-us', 'subscribe', 'newsletter', 'unsubscribe',
}

# Path segments excluded only when crawling a blog; they are real content in a library.
# A segment that is part of the seed path itself (a blog living under /news) is not excluded.
BLOG_ONLY_DENY_SEGMENTS = {
    'product', 'products', 'solution', 'solutions', 'service', 'services',
    'industry', 'industries', 'platform', 'features', 'integrations', 'partners',
    'pricing', 'prices', 'plans', 'demo', 'demos', 'request-demo', 'company', 'team',
    'career', 'careers', 'job', 'jobs',
    'resource', 'resources', 'library', 'download', 'downloads',
    'whitepaper', 'whitepapers', 'ebook', 'ebooks', 'webinar', 'webinars',
    'video', 'videos', 'event', 'events', 'brochure', 'brochures',
    'publication', 'publications', 'case-study', 'case-studies',
    'customer-story', 'customer-stories', 'page', 'pages', 'news',
}

FEED_OR_SITEMAP_RE = re.compile(r'^(sitemap[\w-]*|feed|rss|atom)\.(xml|rss|atom|gz)$', re.IGNORECASE)
DATE_ARCHIVE_RE = re.compile(r'^/\d{4}(/\d{1,2})?/?$')
NUMERIC_SLUG_RE = re.compile(r'^\d+$')

SHORT_SEGMENT_LENGTH = 10


class _Subject:
    """A candidate URL parsed once and shared by every rule"""

    def __init__(self, url: str, base_url: str, context: CrawlContext):
        self.url = url
        self.base_url = base_url
        self.context = context
        self.parsed: ParseResult = urlparse(url)
        self.base: ParseResult = urlparse(base_url)
        self.path = self.parsed.path.lower()
        self.segments = [s for s in self.path.split('/') if s]
        self.host = (self.parsed.hostname or '').lower()

    @property
    def is_blog(self) -> bool:
        return self.context == CrawlContext.BLOG


def _not_http(s: _Subject) -> bool:
    return s.parsed.scheme not in ('http', 'https') or not s.host


def _same_as_base(s: _Subject) -> bool:
    key = canonical_key(s.url)
    root = f"{s.base.scheme}://{s.base.netloc}/"
    return key == canonical_key(s.base_url) or key == canonical_key(root)


def _cross_domain(s: _Subject) -> bool:
    return domain(s.url) != domain(s.base_url)


def _locale_mismatch(s: _Subject) -> bool:
    candidate_locale = locale_prefix(s.url)
    if candidate_locale is None:
        return False
    return candidate_locale != locale_prefix(s.base_url)


def _media_file(s: _Subject) -> bool:
    if not s.segments or '.' not in s.segments[-1]:
        return False
    extension = s.segments[-1].rsplit('.', 1)[-1]
    if extension == 'pdf':
        return s.is_blog
    return extension in MEDIA_EXTENSIONS


def _asset_subdomain(s: _Subject) -> bool:
    labels = s.host.split('.')
    return len(labels) > 2 and labels[0] in ASSET_SUBDOMAINS


def _listing_query(s: _Subject) -> bool:
    keys = {k.lower() for k, _ in parse_qsl(s.parsed.query, keep_blank_values=True)}
    if keys & LISTING_PARAMS:
        return True
    return s.is_blog and bool(keys & PAGE_PARAMS)


def _always_denied_path(s: _Subject) -> bool:
    for segment in s.segments:
        if segment in ALWAYS_DENY_SEGMENTS or FEED_OR_SITEMAP_RE.match(segment):
            return True
    return False


def _blog_denied_path(s: _Subject) -> bool:
    if not s.is_blog:
        return False
    seed_segments = {seg for seg in s.base.path.lower().split('/') if seg}
    return any(segment in BLOG_ONLY_DENY_SEGMENTS and segment not in seed_segments
               for segment in s.segments)


def _numeric_slug(s: _Subject) -> bool:
    return bool(s.segments) and bool(NUMERIC_SLUG_RE.match(s.segments[-1]))


def _date_archive(s: _Subject) -> bool:
    return bool(DATE_ARCHIVE_RE.match(s.path))


def _short_navigation_page(s: _Subject) -> bool:
    return s.is_blog and len(s.segments) == 1 and len(s.segments[0]) < SHORT_SEGMENT_LENGTH


# First match wins
EXCLUSION_RULES: List[Tuple[str, Callable[[_Subject], bool]]] = [
    ('not-http', _not_http),
    ('same-as-base', _same_as_base),
    ('cross-domain', _cross_domain),
    ('locale-mismatch', _locale_mismatch),
    ('media-file', _media_file),
    ('asset-subdomain', _asset_subdomain),
    ('listing-query', _listing_query),
    ('denied-path', _always_denied_path),
    ('blog-denied-path', _blog_denied_path),
    ('numeric-slug', _numeric_slug),
    ('date-archive', _date_archive),
    ('short-navigation-page', _short_navigation_page),
]


def exclusion_reason(candidate_url: str, base_url: str,
                     context: Optional[CrawlContext] = None) -> Optional[str]:
    """Name of the first rule that excludes the URL, or None when it is eligible"""
    try:
        subject = _Subject(candidate_url, base_url, context or detect_context(base_url))
        for name, rule in EXCLUSION_RULES:
            if rule(subject):
                return name
    except (ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Could not parse {candidate_url!r}: {e}")
        return 'unparseable'
    return None


def is_excluded(candidate_url: str, base_url: str, context: Optional[CrawlContext] = None) -> bool:
    """True when the URL is not eligible as a content candidate"""
    return exclusion_reason(candidate_url, base_url, context) is not None
