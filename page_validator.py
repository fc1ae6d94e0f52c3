"""
Page validator

Fetches one candidate and classifies it as article or not. The decision is
an ordered list of named rules over the page's signals; the first rule that
matches decides. A fetch or parse failure is inconclusive and never rejects
the candidate.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, FrozenSet, List, Optional

from bs4 import BeautifulSoup

from scraper_config import ScraperConfig
from scraper_errors import FetchError
from scraper_models import Candidate, ValidationResult
from content_extractors import (MainContentExtractor, extract_page_date, extract_page_title,
                                extract_schema_types, word_count)
from fetchers import HttpFetcher
from url_utils import path_segments

logger = logging.getLogger(__name__)


ARTICLE_TYPES = frozenset({'blogposting', 'article', 'newsarticle', 'report', 'techarticle',
                           'scholarlyarticle', 'socialmediaposting', 'analysisnewsarticle'})

NON_ARTICLE_TYPES = frozenset({'product', 'service', 'webpage', 'faqpage', 'collectionpage',
                               'contactpage', 'aboutpage', 'softwareapplication', 'itemlist',
                               'searchresultspage', 'offer', 'organization'})


@dataclass(frozen=True)
class PageSignals:
    """Everything the classification rules look at"""
    url: str
    schema_types: FrozenSet[str]
    published_date: Optional[date]
    has_time_element: bool
    word_count: int
    min_word_count: int

    @property
    def is_long_form(self) -> bool:
        return self.word_count >= self.min_word_count

    @property
    def has_slug(self) -> bool:
        segments = path_segments(self.url)
        return bool(segments) and '-' in segments[-1]


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    matches: Callable[[PageSignals], bool]
    is_article: bool


# First match wins; anything unmatched is not an article
CLASSIFICATION_RULES: List[ClassificationRule] = [
    ClassificationRule('article-schema', lambda s: bool(s.schema_types & ARTICLE_TYPES), True),
    ClassificationRule('non-article-schema',
                       lambda s: bool(s.schema_types & NON_ARTICLE_TYPES) and not s.is_long_form, False),
    ClassificationRule('has-publish-date', lambda s: s.published_date is not None, True),
    ClassificationRule('has-time-element', lambda s: s.has_time_element, True),
    ClassificationRule('long-form-content', lambda s: s.is_long_form, True),
    ClassificationRule('slug-url', lambda s: s.has_slug, True),
]


def classify(signals: PageSignals, rules: Optional[List[ClassificationRule]] = None) -> ClassificationRule:
    """The first rule matching the signals, or a catch-all rejection"""
    for rule in rules or CLASSIFICATION_RULES:
        if rule.matches(signals):
            return rule
    return ClassificationRule('no-article-signal', lambda s: True, False)


class PageValidator:
    """One raw fetch per candidate, classified by CLASSIFICATION_RULES"""

    def __init__(self, config: ScraperConfig, http: HttpFetcher,
                 rules: Optional[List[ClassificationRule]] = None):
        self.config = config
        self.http = http
        self.rules = rules or CLASSIFICATION_RULES
        self.content_extractor = MainContentExtractor()

    async def validate(self, candidate: Candidate) -> ValidationResult:
        """Classify a candidate; failures come back inconclusive"""
        try:
            html = await self.http.fetch(candidate.url)
        except FetchError as e:
            logger.warning(f"Validation fetch failed for {candidate.url}: {e}")
            return ValidationResult.inconclusive(str(e))

        try:
            return self.classify_html(candidate.url, html)
        except Exception as e:
            logger.warning(f"Could not parse {candidate.url}: {e}")
            return ValidationResult.inconclusive(f"parse error: {e}")

    def signals(self, url: str, soup: BeautifulSoup) -> PageSignals:
        content = self.content_extractor.extract(soup)
        return PageSignals(
            url=url,
            schema_types=frozenset(extract_schema_types(soup)),
            published_date=extract_page_date(soup),
            has_time_element=soup.find('time') is not None,
            word_count=word_count(content),
            min_word_count=self.config.min_word_count,
        )

    def classify_html(self, url: str, html: str) -> ValidationResult:
        soup = BeautifulSoup(html, 'html.parser')
        signals = self.signals(url, soup)
        rule = classify(signals, self.rules)
        logger.debug(f"{url}: {rule.name} -> {'article' if rule.is_article else 'not article'}")
        return ValidationResult(
            is_article=rule.is_article,
            schema_types=signals.schema_types,
            published_date=signals.published_date,
            title=extract_page_title(soup),
            rule=rule.name,
        )

    async def enrich_date(self, candidate: Candidate) -> ValidationResult:
        """Fetch only to find a missing publish date; never rejects"""
        try:
            html = await self.http.fetch(candidate.url)
        except FetchError as e:
            logger.debug(f"Date enrichment fetch failed for {candidate.url}: {e}")
            return ValidationResult.inconclusive(str(e))

        try:
            soup = BeautifulSoup(html, 'html.parser')
            return ValidationResult(is_article=True, published_date=extract_page_date(soup),
                                    title=extract_page_title(soup), rule='date-enrichment')
        except Exception as e:
            logger.warning(f"Could not parse {candidate.url}: {e}")
            return ValidationResult.inconclusive(f"parse error: {e}")


def merge(candidate: Candidate, result: ValidationResult, min_title_length: int,
          fill_missing_only: bool = False) -> Candidate:
    """Page-derived date and title win over link-derived ones; with ``fill_missing_only`` they only fill gaps"""
    if not result.fetched:
        return candidate
    if result.published_date and not (fill_missing_only and candidate.published_date):
        candidate.published_date = result.published_date
    if result.title and len(result.title) >= min_title_length:
        if not fill_missing_only or len(candidate.title or '') < min_title_length:
            candidate.title = result.title
    return candidate
