"""Unit tests for the exclusion filter."""

import pytest

from scraper_models import CrawlContext
from url_filter import EXCLUSION_RULES, exclusion_reason, is_excluded

BLOG = "https://example.com/blog"
LIBRARY = "https://example.com/resources"


class TestExclusionTable:
    """Each row: candidate, base, context, expected exclusion"""

    @pytest.mark.parametrize("url,base,context,excluded", [
        # taxonomy, listing and navigation pages
        ("https://example.com/category/seo", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/blog/tag/python", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/blog/some-post?category=news", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/blog/some-post?page=2", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/resources/guides?page=2", LIBRARY, CrawlContext.LIBRARY, False),
        ("https://example.com/roadmap", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/roadmap", LIBRARY, CrawlContext.LIBRARY, False),
        ("https://example.com/2024/01/", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/blog/12345", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/wp-admin/options", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/privacy-policy", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/post-sitemap.xml", BLOG, CrawlContext.BLOG, True),
        # context-dependent sections
        ("https://example.com/resources/whitepaper-x", LIBRARY, CrawlContext.LIBRARY, False),
        ("https://example.com/webinars/scaling-teams-live", LIBRARY, CrawlContext.LIBRARY, False),
        ("https://example.com/webinars/scaling-teams-live", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/pricing/enterprise-plan", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/news/quarterly-company-update", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/news/quarterly-company-update", "https://example.com/news",
         CrawlContext.BLOG, False),
        # files
        ("https://example.com/blog/report.pdf", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/resources/annual-report.pdf", LIBRARY, CrawlContext.LIBRARY, False),
        ("https://example.com/blog/photo.jpg", BLOG, CrawlContext.BLOG, True),
        ("https://cdn.example.com/blog/hero-image-post", BLOG, CrawlContext.BLOG, True),
        # domain and locale
        ("https://other.com/blog/some-post-title", BLOG, CrawlContext.BLOG, True),
        ("https://www.example.com/blog/some-post-title", BLOG, CrawlContext.BLOG, False),
        ("https://example.com/de/blog/post", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/de/blog/ein-beitrag-titel", "https://example.com/de/blog",
         CrawlContext.BLOG, False),
        ("https://example.com/fr/blog/un-article-titre", "https://example.com/de/blog",
         CrawlContext.BLOG, True),
        # an unprefixed candidate under a prefixed seed is the site's default-language page
        ("https://example.com/blog/unprefixed-post-title", "https://example.com/de/blog",
         CrawlContext.BLOG, False),
        # the seed itself and non-http links
        ("https://example.com/blog/", BLOG, CrawlContext.BLOG, True),
        ("https://example.com/", BLOG, CrawlContext.BLOG, True),
        ("mailto:someone@example.com", BLOG, CrawlContext.BLOG, True),
        # a real post
        ("https://example.com/blog/a-real-post-title", BLOG, CrawlContext.BLOG, False),
        ("https://example.com/?p=123", BLOG, CrawlContext.BLOG, False),
    ])
    def test_exclusion(self, url, base, context, excluded):
        assert is_excluded(url, base, context) is excluded


class TestExclusionReason:

    def test_reports_first_matching_rule(self):
        assert exclusion_reason("https://other.com/category/x", BLOG, CrawlContext.BLOG) == "cross-domain"
        assert exclusion_reason("https://example.com/category/seo", BLOG, CrawlContext.BLOG) == "denied-path"

    def test_eligible_url_has_no_reason(self):
        assert exclusion_reason("https://example.com/blog/how-we-ship", BLOG, CrawlContext.BLOG) is None

    def test_unparseable_url_is_excluded(self):
        assert exclusion_reason("http://[invalid", BLOG, CrawlContext.BLOG) == "unparseable"

    def test_context_defaults_from_base(self):
        assert not is_excluded("https://example.com/resources/whitepaper-x", LIBRARY)
        assert is_excluded("https://example.com/resources/whitepaper-x", BLOG)

    def test_rules_have_unique_names(self):
        names = [name for name, _ in EXCLUSION_RULES]
        assert len(names) == len(set(names))
