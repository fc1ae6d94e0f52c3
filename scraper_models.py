"""
Data model for the blog post extraction pipeline
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


class CrawlContext(Enum):
    """What kind of listing the seed URL points at"""
    BLOG = "blog"
    LIBRARY = "library"


@dataclass
class Candidate:
    """A discovered link before validation"""
    url: str
    title: str = ""
    published_date: Optional[date] = None
    source: str = ""  # strategy that found it

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the public output record"""
        return {
            "url": self.url,
            "title": self.title,
            "publishedDate": self.published_date.isoformat() if self.published_date else None,
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of fetching and classifying one candidate"""
    is_article: bool
    schema_types: FrozenSet[str] = frozenset()
    published_date: Optional[date] = None
    title: Optional[str] = None
    fetched: bool = True
    rule: str = ""  # name of the classification rule that decided

    @classmethod
    def inconclusive(cls, reason: str = "fetch failed") -> 'ValidationResult':
        """A failed fetch: keep the candidate as it is"""
        return cls(is_article=True, fetched=False, rule=reason)


@dataclass
class StrategyOutcome:
    """What one discovery strategy did during a run"""
    name: str
    added: int = 0
    skipped: bool = False
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "added": self.added,
            "skipped": self.skipped,
            "error": self.error,
        }


@dataclass
class ExtractionReport:
    """Everything one pipeline run produced"""
    seed_url: str
    context: CrawlContext
    posts: List[Candidate] = field(default_factory=list)
    strategies: List[StrategyOutcome] = field(default_factory=list)
    discovered: int = 0
    validated: bool = False
    rejected: int = 0
    languages: List[str] = field(default_factory=list)
    sections: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed_url": self.seed_url,
            "context": self.context.value,
            "posts": [post.to_dict() for post in self.posts],
            "total": len(self.posts),
            "discovered": self.discovered,
            "validated": self.validated,
            "rejected": self.rejected,
            "strategies": [outcome.to_dict() for outcome in self.strategies],
            "languages": self.languages,
            "sections": self.sections,
        }
