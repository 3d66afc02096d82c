"""
Data models for the Grant Discovery engine.

Configuration objects (sources, taxonomy, run limits) are frozen once built,
pipeline records (candidates, tracked items, run reports) are plain pydantic
models serialised to JSON by the store.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SourceType = Literal["scrape", "rss", "api"]
SourceStrategy = Literal["links", "page", "both"]
CandidateStatus = Literal["new", "reviewed", "added", "rejected", "expired"]
RunStatus = Literal["pending", "running", "completed", "completed_with_errors", "failed"]


# Configuration
class Source(BaseModel):
    """A configured origin to crawl."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    region: str = "int"
    type: SourceType = "scrape"
    pages: List[str] = Field(default_factory=list)
    feed_url: Optional[str] = None
    api_url: Optional[str] = None
    enabled: bool = True
    strategy: SourceStrategy = "both"

    @field_validator("id")
    @classmethod
    def validate_id(cls, v):
        if not v.strip():
            raise ValueError("Source id must not be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_endpoint(self):
        """Each source type needs the URL it is fetched from."""
        if self.type == "scrape" and not self.pages:
            raise ValueError(f"Scrape source '{self.id}' has no pages")
        if self.type == "rss" and not self.feed_url:
            raise ValueError(f"RSS source '{self.id}' has no feed_url")
        if self.type == "api" and not self.api_url:
            raise ValueError(f"API source '{self.id}' has no api_url")
        return self

    @property
    def urls(self) -> List[str]:
        """URLs fetched for this source, in order."""
        if self.type == "rss":
            return [self.feed_url]
        if self.type == "api":
            return [self.api_url]
        return list(self.pages)


class TaxonomyCategory(BaseModel):
    model_config = ConfigDict(frozen=True)

    weight: float
    terms: List[str] = Field(default_factory=list)


class KeywordTaxonomy(BaseModel):
    """Ordered mapping of category name to weight and terms."""
    model_config = ConfigDict(frozen=True)

    categories: Dict[str, TaxonomyCategory]
    primary: List[str] = Field(default_factory=list)
    secondary: List[str] = Field(default_factory=list)

    @classmethod
    def from_config(
        cls,
        taxonomy: Dict[str, Dict[str, Any]],
        primary: Optional[List[str]] = None,
        secondary: Optional[List[str]] = None,
    ) -> "KeywordTaxonomy":
        return cls(
            categories={name: TaxonomyCategory(**values) for name, values in taxonomy.items()},
            primary=list(primary or []),
            secondary=list(secondary or []),
        )

    def terms_for(self, names: List[str]) -> List[str]:
        terms: List[str] = []
        for name in names:
            category = self.categories.get(name)
            if category:
                terms.extend(category.terms)
        return terms


class DiscoveryConfig(BaseModel):
    """Limits and thresholds for one discovery run."""
    model_config = ConfigDict(frozen=True)

    max_sources: int = Field(default=50, ge=1)
    max_candidates_per_source: int = Field(default=30, ge=1)
    max_candidates: int = Field(default=0, ge=0)
    concurrency: int = Field(default=3, ge=1)
    timeout_seconds: float = Field(default=15.0, gt=0)
    min_relevance_score: float = Field(default=4.0, ge=0)
    batch_delay_seconds: float = Field(default=1.0, ge=0)
    run_timeout_seconds: float = Field(default=300.0, gt=0)
    deep_scrape_limit: int = Field(default=15, ge=0)
    error_warning_threshold: int = Field(default=10, ge=0)


# Extraction and scoring results
class ExtractedFields(BaseModel):
    deadline: Optional[str] = None
    amount: Optional[str] = None
    eligibility: Optional[str] = None
    is_closed: bool = False


class RelevanceResult(BaseModel):
    score: float = Field(default=0.0, ge=0)
    matched_terms: Dict[str, List[str]] = Field(default_factory=dict)
    is_relevant: bool = False

    @property
    def all_terms(self) -> List[str]:
        return [term for terms in self.matched_terms.values() for term in terms]


# Crawl results
class FetchResult(BaseModel):
    """Outcome of one HTTP fetch. Failures carry an error instead of raising."""
    url: str
    ok: bool
    status: Optional[int] = None
    body: str = ""
    content_type: str = ""
    error: Optional[str] = None


class ClassifiedLink(BaseModel):
    url: str
    text: str
    score: float


class SourceItem(BaseModel):
    """One item produced by a crawl, whatever payload type it came from."""
    title: str
    url: str
    source_id: str
    source_name: str
    region: str
    text: str = ""
    link_score: Optional[float] = None

    @property
    def from_link(self) -> bool:
        return self.link_score is not None


class SourceError(BaseModel):
    source_id: str
    url: Optional[str] = None
    error: str


class SourceResult(BaseModel):
    source_id: str
    ok: bool
    items: List[SourceItem] = Field(default_factory=list)
    errors: List[SourceError] = Field(default_factory=list)
    pages_fetched: int = 0


class PageDetails(BaseModel):
    """Text and fields extracted from a single candidate page."""
    url: str
    ok: bool = True
    title: Optional[str] = None
    text: str = ""
    description: Optional[str] = None
    fields: ExtractedFields = Field(default_factory=ExtractedFields)
    error: Optional[str] = None


# Pipeline records
class Candidate(BaseModel):
    """A discovered grant-like item awaiting review."""
    id: str
    title: str
    url: str
    source_id: str
    source_name: str
    region: str
    score: float
    matched_terms: Dict[str, List[str]] = Field(default_factory=dict)
    excerpt: str = ""
    deadline: Optional[str] = None
    amount: Optional[str] = None
    eligibility: Optional[str] = None
    discovered_at: datetime = Field(default_factory=datetime.now)
    status: CandidateStatus = "new"

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class ItemSnapshot(BaseModel):
    """Fields extracted from a tracked item's page at one point in time."""
    content_hash: str
    deadline: Optional[str] = None
    amount: Optional[str] = None
    is_closed: bool = False
    text_length: int = 0
    scraped_at: datetime = Field(default_factory=datetime.now)

    @property
    def status(self) -> str:
        return "closed" if self.is_closed else "open"


class TrackedItem(BaseModel):
    """A previously accepted grant under change monitoring."""
    id: str
    url: str
    title: Optional[str] = None
    last_hash: Optional[str] = None
    last_checked: Optional[datetime] = None
    last_changed: Optional[datetime] = None
    snapshot: Optional[ItemSnapshot] = None
    status: str = "open"


class ChangeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    detected_at: datetime = Field(default_factory=datetime.now)


class ChangeDetectionResult(BaseModel):
    is_new: bool
    changes: List[ChangeRecord] = Field(default_factory=list)


class RunReport(BaseModel):
    """Summary of one discovery run."""
    run_id: str
    status: RunStatus = "pending"
    sources_attempted: int = 0
    sources_succeeded: int = 0
    candidates_found: int = 0
    candidates_above_threshold: int = 0
    new_candidates: int = 0
    errors: List[SourceError] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    stopped_early: bool = False

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class SourceHealth(BaseModel):
    successes: int = 0
    failures: int = 0
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None
    last_candidates: int = 0

    @property
    def success_rate(self) -> float:
        total = self.successes + self.failures
        return self.successes / total if total else 0.0


class DiscoveryResult(BaseModel):
    candidates: List[Candidate] = Field(default_factory=list)
    report: RunReport
