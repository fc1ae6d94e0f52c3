"""Tests for the discovery strategies and the cascade around them."""

from datetime import date

import pytest

from scraper_models import Candidate, CrawlContext
from scraper_errors import FetchError
from discovery import (CandidateCollector, DiscoveryCascade, DiscoveryStrategy, SitemapStrategy,
                       discover, in_date_range)

from conftest import FakeBrowser, FakeHttp, FakeRenderer, make_fetchers, sitemap_xml

ROOT = "https://example.com"


def listing_html(*slugs):
    cards = "".join(
        f'<article><h2><a href="/blog/{slug}">{slug.replace("-", " ").title()} explained</a></h2></article>'
        for slug in slugs)
    return f"<html><body><main>{cards}</main></body></html>"


class TestCandidateCollector:
    """Tests for dedup, exclusion, date range and the hard cap"""

    def test_dedups_on_canonical_key(self):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=10)
        assert collector.add(Candidate(f"{ROOT}/blog/post-one"))
        assert not collector.add(Candidate("https://www.example.com/blog/post-one/"))
        assert not collector.add(Candidate(f"{ROOT}/blog/post-one?utm_source=x"))
        assert len(collector) == 1

    def test_excluded_and_out_of_range(self):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=10,
                                       date_range_start=date(2024, 1, 1))
        assert not collector.add(Candidate(f"{ROOT}/category/seo"))
        assert not collector.add(Candidate(f"{ROOT}/blog/old-post", published_date=date(2023, 5, 1)))
        assert collector.add(Candidate(f"{ROOT}/blog/undated-post"))

    def test_hard_cap(self):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=2)
        added = collector.add_all(Candidate(f"{ROOT}/blog/post-{n}-title") for n in range(5))
        assert added == 2
        assert collector.satisfied

    def test_language_filter(self):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=10, languages=["EN"])
        assert collector.add(Candidate(f"{ROOT}/blog/english-post?lang=en"))
        assert not collector.add(Candidate(f"{ROOT}/blog/german-post?hl=de"))
        assert collector.add(Candidate(f"{ROOT}/blog/unmarked-post"))

        strict = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=10,
                                    languages=["en"], include_undetected=False)
        assert not strict.add(Candidate(f"{ROOT}/blog/unmarked-post"))

    def test_in_date_range_end_is_inclusive(self):
        assert in_date_range(date(2024, 3, 31), date(2024, 1, 1), date(2024, 3, 31))
        assert not in_date_range(date(2024, 4, 1), None, date(2024, 3, 31))
        assert in_date_range(None, date(2024, 1, 1), date(2024, 3, 31))


class TestSitemapDiscovery:
    """Tests for sitemap and feed discovery"""

    @pytest.mark.asyncio
    async def test_sitemap_with_exclusions_and_duplicates(self, config):
        posts = [f"{ROOT}/blog/post-number-{n}-guide" for n in range(22)]
        excluded = [f"{ROOT}/about", f"{ROOT}/privacy-policy", f"{ROOT}/blog/category/seo",
                    f"{ROOT}/blog/tag/python", f"{ROOT}/products/widget-pro"]
        duplicates = [f"{ROOT}/blog/post-number-0-guide/",
                      "https://www.example.com/blog/post-number-1-guide",
                      f"{ROOT}/blog/post-number-2-guide?utm_source=newsletter"]
        http = FakeHttp({f"{ROOT}/sitemap.xml": sitemap_xml(posts + excluded + duplicates)})
        renderer, browser = FakeRenderer(), FakeBrowser()

        found = await discover(f"{ROOT}/blog", config=config,
                               fetchers=make_fetchers(http, renderer, browser))

        assert [c.url for c in found] == posts
        assert all(c.source == "sitemap" for c in found)
        # 22 >= both fallback thresholds; only the rendered crawl was attempted
        assert renderer.calls == [f"{ROOT}/blog"]
        assert browser.calls == []
        assert f"{ROOT}/blog" not in http.calls

    @pytest.mark.asyncio
    async def test_robots_hint_and_sitemap_index(self, config):
        index = ('<?xml version="1.0"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
                 f'<sitemap><loc>{ROOT}/product-sitemap.xml</loc></sitemap>'
                 f'<sitemap><loc>{ROOT}/post-sitemap.xml</loc></sitemap>'
                 '</sitemapindex>')
        http = FakeHttp({
            f"{ROOT}/robots.txt": f"User-agent: *\nDisallow: /admin\nSitemap: {ROOT}/custom-index.xml\n",
            f"{ROOT}/custom-index.xml": index,
            f"{ROOT}/post-sitemap.xml": sitemap_xml([(f"{ROOT}/blog/first-post-title", "2024-02-10"),
                                                     f"{ROOT}/blog/second-post-title"]),
            f"{ROOT}/product-sitemap.xml": sitemap_xml([f"{ROOT}/blog/third-post-title"]),
        })
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=2)
        await SitemapStrategy(config, http).discover(f"{ROOT}/blog", collector)

        assert [c.url for c in collector.candidates] == [f"{ROOT}/blog/first-post-title",
                                                         f"{ROOT}/blog/second-post-title"]
        assert collector.candidates[0].published_date == date(2024, 2, 10)
        # the content sitemap filled the target, so the product one is never fetched
        assert f"{ROOT}/post-sitemap.xml" in http.calls
        assert f"{ROOT}/product-sitemap.xml" not in http.calls

    @pytest.mark.asyncio
    async def test_index_children_read_until_target_reached(self, config):
        children = [f"{ROOT}/post-sitemap{n}.xml" for n in range(1, 6)]
        index = ('<?xml version="1.0"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
                 + "".join(f"<sitemap><loc>{child}</loc></sitemap>" for child in children)
                 + '</sitemapindex>')
        pages = {child: sitemap_xml([f"{ROOT}/blog/batch-{n}-post-{i}-title" for i in range(10)])
                 for n, child in enumerate(children, start=1)}
        http = FakeHttp({f"{ROOT}/sitemap.xml": index, **pages})
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=2)

        await SitemapStrategy(config, http).discover(f"{ROOT}/blog", collector)

        assert len(collector) == 2
        assert [call for call in http.calls if call in pages] == [children[0]]

    @pytest.mark.asyncio
    async def test_index_children_accumulate_across_sitemaps(self, config):
        children = [f"{ROOT}/post-sitemap{n}.xml" for n in range(1, 4)]
        index = ('<?xml version="1.0"?><sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
                 + "".join(f"<sitemap><loc>{child}</loc></sitemap>" for child in children)
                 + '</sitemapindex>')
        pages = {child: sitemap_xml([f"{ROOT}/blog/batch-{n}-post-{i}-title" for i in range(3)])
                 for n, child in enumerate(children, start=1)}
        http = FakeHttp({f"{ROOT}/sitemap.xml": index, **pages})
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=5)

        await SitemapStrategy(config, http).discover(f"{ROOT}/blog", collector)

        assert len(collector) == 5
        assert [call for call in http.calls if call in pages] == children[:2]

    def test_child_sitemap_priority(self, config):
        strategy = SitemapStrategy(config, FakeHttp())
        children = [f"{ROOT}/tag-sitemap.xml", f"{ROOT}/misc.xml", f"{ROOT}/post-sitemap.xml"]
        assert strategy.prioritize_child_sitemaps(children) == [
            f"{ROOT}/post-sitemap.xml", f"{ROOT}/misc.xml", f"{ROOT}/tag-sitemap.xml"]

    @pytest.mark.asyncio
    async def test_section_sitemaps_probed_before_general(self, config):
        http = FakeHttp()
        locations = await SitemapStrategy(config, http).sitemap_locations(f"{ROOT}/insights")
        assert locations.index(f"{ROOT}/sitemap-insights.xml") < locations.index(f"{ROOT}/sitemap.xml")
        assert http.calls == [f"{ROOT}/robots.txt"]

    @pytest.mark.asyncio
    async def test_feed_used_when_sitemaps_are_thin(self, config):
        feed = f"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Example</title>
<item><title>Feed post one</title><link>{ROOT}/blog/feed-post-one</link>
<pubDate>Tue, 05 Mar 2024 10:00:00 GMT</pubDate></item>
<item><title>Feed post two</title><link>{ROOT}/blog/feed-post-two</link></item>
</channel></rss>"""
        http = FakeHttp({f"{ROOT}/blog/feed": feed})
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=50)
        await SitemapStrategy(config, http).discover(f"{ROOT}/blog", collector)

        assert [(c.url, c.title, c.source) for c in collector.candidates] == [
            (f"{ROOT}/blog/feed-post-one", "Feed post one", "rss"),
            (f"{ROOT}/blog/feed-post-two", "Feed post two", "rss"),
        ]
        assert collector.candidates[0].published_date == date(2024, 3, 5)

    @pytest.mark.asyncio
    async def test_unreachable_site_raises(self, config):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=50)
        with pytest.raises(FetchError, match="unreachable"):
            await SitemapStrategy(config, FakeHttp(unreachable=True)).discover(f"{ROOT}/blog", collector)

    @pytest.mark.asyncio
    async def test_reachable_site_without_sitemaps_is_not_an_error(self, config):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=50)
        await SitemapStrategy(config, FakeHttp()).discover(f"{ROOT}/blog", collector)
        assert len(collector) == 0


class TestPaginationCrawl:
    """Tests for the rendered pagination crawl"""

    @pytest.mark.asyncio
    async def test_synthesized_pages_until_nothing_new(self, config):
        renderer = FakeRenderer({
            f"{ROOT}/blog?page=1": listing_html("alpha-one", "alpha-two", "alpha-three"),
            f"{ROOT}/blog?page=2": listing_html("beta-one", "beta-two", "beta-three"),
            f"{ROOT}/blog?page=3": listing_html("gamma-one", "gamma-two", "gamma-three"),
            f"{ROOT}/blog?page=4": listing_html("alpha-one", "alpha-two", "alpha-three"),
            f"{ROOT}/blog?page=5": listing_html("delta-one", "delta-two", "delta-three"),
        })
        found = await discover(f"{ROOT}/blog?page=1", config=config,
                               fetchers=make_fetchers(FakeHttp(), renderer, FakeBrowser()))

        assert renderer.calls == [f"{ROOT}/blog?page={n}" for n in range(1, 5)]
        assert len(found) == 9
        assert {c.source for c in found} == {"rendered-pagination"}
        assert not any("delta" in c.url for c in found)

    @pytest.mark.asyncio
    async def test_explicit_pagination_links_followed(self, config):
        page_one = listing_html("first-post-title") + '<a href="/blog/page/2/">Next</a>'
        renderer = FakeRenderer({
            f"{ROOT}/blog": page_one,
            f"{ROOT}/blog/page/2/": listing_html("second-post-title"),
        })
        found = await discover(f"{ROOT}/blog", config=config,
                               fetchers=make_fetchers(FakeHttp(), renderer, FakeBrowser()))
        assert [c.url for c in found] == [f"{ROOT}/blog/first-post-title", f"{ROOT}/blog/second-post-title"]
        assert renderer.calls[:3] == [f"{ROOT}/blog", f"{ROOT}/blog/page/2/", f"{ROOT}/blog/page/3/"]


class TestFallbacks:

    @pytest.mark.asyncio
    async def test_raw_html_then_browser_for_thin_results(self, config):
        http = FakeHttp({f"{ROOT}/blog": listing_html("raw-post-one")})
        browser = FakeBrowser(listing_html("raw-post-one", "scrolled-post-two"))
        found = await discover(f"{ROOT}/blog", config=config,
                               fetchers=make_fetchers(http, FakeRenderer(), browser))
        assert [(c.url, c.source) for c in found] == [
            (f"{ROOT}/blog/raw-post-one", "raw-html"),
            (f"{ROOT}/blog/scrolled-post-two", "infinite-scroll"),
        ]
        assert browser.calls == [f"{ROOT}/blog"]

    @pytest.mark.asyncio
    async def test_library_context_always_scrolls(self, config):
        posts = [f"{ROOT}/resources/guide-number-{n}" for n in range(25)]
        http = FakeHttp({f"{ROOT}/sitemap.xml": sitemap_xml(posts)})
        browser = FakeBrowser("<html></html>")
        await discover(f"{ROOT}/resources", config=config,
                       fetchers=make_fetchers(http, FakeRenderer(), browser))
        assert browser.calls == [f"{ROOT}/resources"]

    @pytest.mark.asyncio
    async def test_date_range_applied_during_discovery(self, config):
        entries = [
            (f"{ROOT}/blog/in-range-post", "2024-02-10"),
            (f"{ROOT}/blog/too-early-post", "2023-12-31"),
            (f"{ROOT}/blog/last-day-post", "2024-03-31"),
            (f"{ROOT}/blog/too-late-post", "2024-04-01"),
            f"{ROOT}/blog/undated-post-one",
            f"{ROOT}/blog/undated-post-two",
        ]
        http = FakeHttp({f"{ROOT}/sitemap.xml": sitemap_xml(entries)})
        found = await discover(f"{ROOT}/blog", date_range_start=date(2024, 1, 1),
                               date_range_end=date(2024, 3, 31), config=config,
                               fetchers=make_fetchers(http, FakeRenderer(), FakeBrowser()))
        assert [c.url.rsplit('/', 1)[-1] for c in found] == [
            "in-range-post", "last-day-post", "undated-post-one", "undated-post-two"]


class ExplodingStrategy(DiscoveryStrategy):
    name = "exploding"

    async def discover(self, seed_url, collector):
        raise RuntimeError("boom")


class StaticStrategy(DiscoveryStrategy):
    name = "static"

    def __init__(self, urls):
        self.urls = urls

    async def discover(self, seed_url, collector):
        collector.add_all(Candidate(url) for url in self.urls)


class TestCascade:

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_strategies(self):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=10)
        cascade = DiscoveryCascade([ExplodingStrategy(), StaticStrategy([f"{ROOT}/blog/a-post-title"])])
        outcomes = await cascade.run(f"{ROOT}/blog", collector)
        assert [o.failed for o in outcomes] == [True, False]
        assert "RuntimeError" in outcomes[0].error
        assert outcomes[1].added == 1

    @pytest.mark.asyncio
    async def test_satisfied_collector_skips_the_rest(self):
        collector = CandidateCollector(f"{ROOT}/blog", CrawlContext.BLOG, limit=1)
        cascade = DiscoveryCascade([StaticStrategy([f"{ROOT}/blog/a-post-title"]), ExplodingStrategy()])
        outcomes = await cascade.run(f"{ROOT}/blog", collector)
        assert outcomes[1].skipped
        assert not outcomes[1].failed
