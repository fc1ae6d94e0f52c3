#!/usr/bin/env python3
"""
Blog Post Extractor

Given one blog or resource listing URL, discovers the content pages it links
to, keeps the genuine long-form articles, and returns deduplicated
``{url, title, publishedDate}`` records.

Pipeline: discovery cascade -> exclusion filter + dedup -> page validation
(bounded worker pool) -> date range and max_posts limits.
"""

import json
import asyncio
import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union
from urllib.parse import urlparse

from scraper_config import ScraperConfig
from scraper_errors import DiscoveryError
from scraper_models import Candidate, ExtractionReport, ValidationResult
from discovery import CandidateCollector, DiscoveryCascade, in_date_range
from fetch_pool import run_bounded
from fetchers import Fetchers
from page_validator import PageValidator, merge
from url_filter import is_excluded
from url_utils import (canonical_key, detect_content_section, detect_context, detect_language,
                       is_listing_seed, normalize)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


def parse_date_arg(value: Union[str, date, None]) -> Optional[date]:
    """Accept a date, an ISO 'YYYY-MM-DD' string, or nothing"""
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValueError(f"Invalid date {value!r}; expected YYYY-MM-DD")


def parse_languages(value: Union[str, Iterable[str], None]) -> Optional[List[str]]:
    """ISO 639-1 codes from a comma separated string or a list; None means no language filter"""
    if value is None or value == '':
        return None
    items = value.split(',') if isinstance(value, str) else list(value)
    codes = []
    for item in items:
        code = str(item).strip().lower()
        if not code:
            continue
        if len(code) != 2 or not code.isalpha():
            raise ValueError(f"Invalid language code {item!r}; expected ISO 639-1 such as 'en'")
        if code not in codes:
            codes.append(code)
    return codes or None


class BlogPostExtractor:
    """Runs discovery, filtering, validation and limits for one seed URL at a time"""

    def __init__(self, config: Optional[ScraperConfig] = None, fetchers: Optional[Fetchers] = None,
                 cascade_factory: Optional[Callable[..., DiscoveryCascade]] = None,
                 progress_callback: Optional[ProgressCallback] = None):
        self.config = config or ScraperConfig.from_env()
        self.fetchers = fetchers or Fetchers.from_config(self.config)
        self.cascade_factory = cascade_factory or DiscoveryCascade.default
        self.validator = PageValidator(self.config, self.fetchers.http)
        self.progress_callback = progress_callback

    def _progress(self, done: int, total: int, message: str):
        if self.progress_callback:
            self.progress_callback(done, total, message)

    async def run(self, seed_url: str, max_posts: Optional[int] = None,
                  date_range_start: Optional[date] = None,
                  date_range_end: Optional[date] = None,
                  languages: Optional[Iterable[str]] = None,
                  include_undetected: bool = True) -> ExtractionReport:
        """Full pipeline run with a report of what each stage did"""
        seed_url = normalize(seed_url)
        parsed = urlparse(seed_url)
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise DiscoveryError(f"Invalid seed URL: {seed_url!r}")
        if max_posts is not None and max_posts < 1:
            raise ValueError("max_posts must be at least 1")

        context = detect_context(seed_url)
        report = ExtractionReport(seed_url=seed_url, context=context)
        logger.info(f"Starting extraction for {seed_url} ({context.value} context)")

        # Discovery gathers spare candidates so that rejected pages can be replaced
        target = max_posts * self.config.overcollect_factor if max_posts else self.config.default_target
        collector = CandidateCollector(seed_url, context, target, date_range_start, date_range_end,
                                       languages, include_undetected)
        cascade = self.cascade_factory(seed_url, self.config, self.fetchers, context)
        report.strategies = await cascade.run(seed_url, collector)
        self._progress(0, len(collector), f"Discovered {len(collector)} candidate URLs")

        attempted = [o for o in report.strategies if not o.skipped]
        if not collector.candidates and attempted and all(o.failed for o in attempted):
            details = '; '.join(f"{o.name}: {o.error}" for o in attempted)
            raise DiscoveryError(f"Every discovery strategy failed for {seed_url}: {details}")

        candidates = self._filter_and_dedup(collector.candidates, seed_url, context)
        report.discovered = len(candidates)
        logger.info(f"Discovered {len(candidates)} unique candidates")

        def in_range(post: Candidate) -> bool:
            return in_date_range(post.published_date, date_range_start, date_range_end)

        # Validation
        if not candidates:
            posts = []
        elif is_listing_seed(seed_url):
            logger.info("Seed is a blog listing; skipping validation and enriching missing dates")
            posts = await self._enrich_dates(candidates)
        else:
            report.validated = True
            posts, report.rejected = await self._validate(candidates, max_posts, in_range)

        # Limits
        posts = [p for p in posts if in_range(p)]
        if max_posts is not None:
            posts = posts[:max_posts]

        report.posts = posts
        report.languages = sorted({lang for lang in (detect_language(p.url) for p in posts) if lang})
        report.sections = sorted({s for s in (detect_content_section(urlparse(p.url).path) for p in posts) if s})
        logger.info(f"✅ Extraction complete: {len(posts)} posts from {seed_url}")
        return report

    async def extract(self, seed_url: str, max_posts: Optional[int] = None,
                      date_range_start: Optional[date] = None,
                      date_range_end: Optional[date] = None,
                      languages: Optional[Iterable[str]] = None,
                      include_undetected: bool = True) -> List[Dict[str, Any]]:
        report = await self.run(seed_url, max_posts, date_range_start, date_range_end,
                                languages, include_undetected)
        return [post.to_dict() for post in report.posts]

    @staticmethod
    def _filter_and_dedup(candidates: List[Candidate], seed_url: str, context) -> List[Candidate]:
        """Final exclusion and dedup pass, keeping discovery order"""
        seen: Set[str] = set()
        kept = []
        for candidate in candidates:
            key = canonical_key(candidate.url)
            if key in seen or is_excluded(candidate.url, seed_url, context):
                continue
            seen.add(key)
            kept.append(candidate)
        return kept

    async def _validate(self, candidates: List[Candidate], max_posts: Optional[int],
                        keep: Callable[[Candidate], bool]) -> Tuple[List[Candidate], int]:
        """Validate in discovery order until ``max_posts`` articles pass; returns (posts, rejected)

        Each batch is as large as the remaining shortfall, so pages beyond the
        ones needed are never fetched.
        """
        total = len(candidates)
        posts: List[Candidate] = []
        rejected = 0
        checked = 0
        while checked < total and (max_posts is None or len(posts) < max_posts):
            size = total - checked if max_posts is None else max_posts - len(posts)
            batch = candidates[checked:checked + size]
            offset = checked
            results: List[ValidationResult] = await run_bounded(
                batch, self.validator.validate, self.config.fetch_concurrency,
                on_result=lambda done, _: self._progress(offset + done, total,
                                                         f"Validated {offset + done}/{total} pages"))
            checked += len(batch)

            for candidate, result in zip(batch, results):
                if result.fetched and not result.is_article:
                    logger.info(f"Dropping {candidate.url} ({result.rule})")
                    rejected += 1
                    continue
                post = merge(candidate, result, self.config.min_title_length)
                if keep(post):
                    posts.append(post)
        return posts, rejected

    async def _enrich_dates(self, candidates: List[Candidate]) -> List[Candidate]:
        missing = [c for c in candidates if c.published_date is None]
        if not missing:
            return candidates
        total = len(missing)
        results = await run_bounded(
            missing, self.validator.enrich_date, self.config.fetch_concurrency,
            on_result=lambda done, _: self._progress(done, total, f"Checked dates on {done}/{total} pages"))
        for candidate, result in zip(missing, results):
            merge(candidate, result, self.config.min_title_length, fill_missing_only=True)
        return candidates


async def extract_blog_post_urls(seed_url: str, max_posts: Optional[int] = None,
                                 date_range_start: Union[str, date, None] = None,
                                 date_range_end: Union[str, date, None] = None,
                                 config: Optional[ScraperConfig] = None,
                                 languages: Union[str, Iterable[str], None] = None,
                                 include_undetected: bool = True) -> List[Dict[str, Any]]:
    """Public entry point: ``[{url, title, publishedDate}, ...]`` for a listing URL

    ``languages`` restricts results to ISO 639-1 codes detected in the URL;
    URLs with no detectable language are kept unless ``include_undetected`` is False.
    """
    extractor = BlogPostExtractor(config)
    return await extractor.extract(seed_url, max_posts,
                                   parse_date_arg(date_range_start), parse_date_arg(date_range_end),
                                   parse_languages(languages), include_undetected)


def extract_blog_post_urls_sync(seed_url: str, **kwargs) -> List[Dict[str, Any]]:
    """Blocking wrapper around extract_blog_post_urls"""
    return asyncio.run(extract_blog_post_urls(seed_url, **kwargs))


def main():
    """CLI interface"""
    import argparse

    parser = argparse.ArgumentParser(description='Discover blog post URLs from a listing page')
    parser.add_argument('seed_url', help='Blog or resource listing URL')
    parser.add_argument('--max-posts', type=int, default=None, help='Maximum number of posts to return')
    parser.add_argument('--start', default=None, help='Earliest publish date (YYYY-MM-DD)')
    parser.add_argument('--end', default=None, help='Latest publish date (YYYY-MM-DD), inclusive')
    parser.add_argument('--languages', default=None,
                        help='Comma separated ISO 639-1 codes to keep, e.g. en,de')
    parser.add_argument('--exclude-undetected', action='store_true',
                        help='With --languages, drop URLs whose language cannot be detected')
    parser.add_argument('-o', '--output', default=None, help='Write JSON results to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        start, end = parse_date_arg(args.start), parse_date_arg(args.end)
        languages = parse_languages(args.languages)
    except ValueError as e:
        parser.error(str(e))

    extractor = BlogPostExtractor()
    try:
        report = asyncio.run(extractor.run(args.seed_url, args.max_posts, start, end,
                                           languages, not args.exclude_undetected))
    except DiscoveryError as e:
        logger.error(f"❌ {e}")
        raise SystemExit(1)

    data = report.to_dict()
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        logger.info(f"Saved {len(report.posts)} posts to {args.output}")
    else:
        print(json.dumps(data['posts'], indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
