"""
URL helpers: normalization, resolution, domain extraction, dedup keys and
language/section detection
"""

import re
import logging
from typing import List, Optional
from urllib.parse import urljoin, urlparse, urlunparse, parse_qsl, urlencode

from scraper_models import CrawlContext

logger = logging.getLogger(__name__)


# ISO 639-1 codes recognised as locale prefixes (/de/, /pt-br/, de.example.com)
SUPPORTED_LANGUAGES = {
    'en', 'de', 'es', 'fr', 'it', 'pt', 'nl', 'ja', 'zh', 'ko', 'ru',
    'pl', 'sv', 'no', 'da', 'fi', 'ar', 'he', 'tr', 'cs', 'hu',
}

LOCALE_SEGMENT_RE = re.compile(r'^([a-z]{2})(?:[-_](?:[a-z]{2}|hans|hant))?$', re.IGNORECASE)

# Path words that mark a broad resource center rather than a pure blog
LIBRARY_PATH_MARKERS = [
    'resources', 'resource-center', 'library', 'content-hub', 'learning-center',
    'knowledge-center', 'whitepapers', 'ebooks', 'webinars', 'downloads',
]

CONTENT_SECTIONS = {
    # blog / news
    'blog', 'blogs', 'article', 'articles', 'post', 'posts', 'news', 'newsroom',
    'press', 'press-releases', 'announcements', 'updates', 'insights', 'stories',
    # case studies
    'case-study', 'case-studies', 'customer-stories', 'success-stories', 'use-cases',
    # docs / learning
    'guides', 'guide', 'tutorials', 'learn', 'learning', 'knowledge-base', 'help-center',
    # resources
    'resources', 'resource', 'whitepapers', 'whitepaper', 'ebooks', 'reports', 'research',
    'library', 'downloads',
    # events / media
    'events', 'webinars', 'webinar', 'podcasts', 'podcast', 'videos',
    # localized
    'actualites', 'noticias', 'nachrichten', 'ressources', 'ressourcen',
}

TRACKING_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'utm_id', 'gclid', 'fbclid', 'mc_cid', 'mc_eid', 'ref', 'ref_src',
}


def normalize(url: str) -> str:
    """Trim whitespace and prepend https:// when no scheme is present"""
    url = (url or '').strip()
    if not url:
        return url
    if url.startswith('//'):
        return 'https:' + url
    if not re.match(r'^[a-zA-Z][a-zA-Z0-9+.-]*://', url):
        return 'https://' + url
    return url


def resolve(base: str, relative: str) -> str:
    """Resolve ``relative`` against ``base``; returns the input unchanged on failure"""
    try:
        return urljoin(base, relative.strip())
    except (ValueError, AttributeError):
        return relative


def domain(url: str) -> str:
    """Hostname with any leading www. stripped"""
    try:
        host = urlparse(url).hostname or ''
    except ValueError:
        return ''
    return host[4:] if host.startswith('www.') else host


def site_root(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def path_segments(url: str) -> List[str]:
    return [segment for segment in urlparse(url).path.split('/') if segment]


def strip_fragment(url: str) -> str:
    return url.split('#', 1)[0]


def canonical_key(url: str) -> str:
    """Dedup key: lower-cased host without www, no fragment, no trailing slash, no trackers"""
    parsed = urlparse(url.strip())
    host = (parsed.hostname or '').lower()
    if host.startswith('www.'):
        host = host[4:]
    path = parsed.path.rstrip('/') or '/'
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
             if k.lower() not in TRACKING_PARAMS]
    return urlunparse(('', host, path, '', urlencode(query), ''))


def locale_prefix(url: str) -> Optional[str]:
    """Language code from the first path segment, or None"""
    segments = path_segments(url)
    if not segments:
        return None
    match = LOCALE_SEGMENT_RE.match(segments[0])
    if match and match.group(1).lower() in SUPPORTED_LANGUAGES:
        return match.group(1).lower()
    return None


def detect_language(url: str) -> Optional[str]:
    """ISO 639-1 code from a path prefix, subdomain or lang/locale/hl query parameter"""
    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    prefix = locale_prefix(url)
    if prefix:
        return prefix

    host = (parsed.hostname or '').lower()
    first_label = host.split('.')[0] if host.count('.') >= 2 else ''
    if first_label in SUPPORTED_LANGUAGES:
        return first_label

    for key, value in parse_qsl(parsed.query):
        if key.lower() in ('lang', 'language', 'locale', 'hl'):
            code = value[:2].lower()
            if code in SUPPORTED_LANGUAGES:
                return code
    return None


def detect_content_section(path: str) -> Optional[str]:
    """Name of the content section a path lives under (blog, news, resources...)"""
    segments = [s for s in path.lower().split('/') if s]
    for index, segment in enumerate(segments):
        normalized = re.sub(r'[-_]?\d+$', '', segment)
        if normalized in CONTENT_SECTIONS:
            return normalized
        # "blog-archive" counts as a section only when it is not the final slug
        for section in CONTENT_SECTIONS:
            if segment.startswith(section + '-') and index < len(segments) - 1:
                return section
    return None


def detect_context(seed_url: str) -> CrawlContext:
    """Library context when the seed path looks like a resource center"""
    path = urlparse(seed_url).path.lower()
    segments = [s for s in path.split('/') if s]
    for marker in LIBRARY_PATH_MARKERS:
        if marker in segments or f'/{marker}/' in path + '/':
            return CrawlContext.LIBRARY
    return CrawlContext.BLOG


def is_listing_seed(seed_url: str) -> bool:
    """The seed is itself a blog listing (path contains /blog)"""
    return '/blog' in urlparse(seed_url).path.lower()
