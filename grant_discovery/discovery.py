"""
Grant Discovery orchestrator.

Drives the crawl across all enabled sources in bounded, sequential batches,
scores and deduplicates what the sources yield, deep-scrapes the most
promising links, persists the surviving candidates and records a run report.
"""

import asyncio
import json
import logging
import time
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from grant_discovery.config import (
    DATA_DIR, DISCOVERY_CONFIG, FEED_MAX_AGE_DAYS, GRANT_SOURCES, KEYWORD_TAXONOMY,
    PRIMARY_CATEGORIES, SECONDARY_CATEGORIES
)
from grant_discovery.exceptions import ConfigurationError, PersistenceError
from grant_discovery.models import (
    Candidate, DiscoveryConfig, DiscoveryResult, ExtractedFields, KeywordTaxonomy,
    RelevanceResult, RunReport, Source, SourceError, SourceHealth, SourceItem, SourceResult,
    TrackedItem
)
from grant_discovery.storage import DiscoveryStore, JsonFileStore
from grant_discovery.utils.analyzer import extract_description, extract_fields
from grant_discovery.utils.change_detector import check_for_changes
from grant_discovery.utils.crawler import SourceCrawler
from grant_discovery.utils.deduplicator import Deduplicator, generate_candidate_id
from grant_discovery.utils.scoring import KeywordRelevanceScorer, RelevanceScorer, parse_deadline

# Configure logger
logger = logging.getLogger("discovery")

EXCERPT_CHARS = 300
# Link items scoring at least this share of the threshold are worth a detail fetch
LINK_PRESCREEN_RATIO = 0.5


# Configuration loading
def build_discovery_config(overrides: Optional[Dict[str, Any]] = None) -> DiscoveryConfig:
    """DiscoveryConfig from the defaults in config.py plus overrides (None values ignored)."""
    values = dict(DISCOVERY_CONFIG)
    values.update({key: value for key, value in (overrides or {}).items() if value is not None})
    try:
        return DiscoveryConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid discovery configuration: {str(e)}") from e


def build_taxonomy(taxonomy: Optional[Dict[str, Dict[str, Any]]] = None) -> KeywordTaxonomy:
    try:
        return KeywordTaxonomy.from_config(
            taxonomy or KEYWORD_TAXONOMY, PRIMARY_CATEGORIES, SECONDARY_CATEGORIES
        )
    except (ValidationError, TypeError) as e:
        raise ConfigurationError(f"Invalid keyword taxonomy: {str(e)}") from e


def load_sources(raw_sources: Iterable[Dict[str, Any]]) -> List[Source]:
    """Validate source definitions. Any malformed entry fails the whole load."""
    sources: List[Source] = []
    seen = set()
    for index, raw in enumerate(raw_sources):
        try:
            source = Source(**raw)
        except (ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid source #{index} ({raw.get('id', '?')}): {str(e)}") from e
        if source.id in seen:
            raise ConfigurationError(f"Duplicate source id: {source.id}")
        seen.add(source.id)
        sources.append(source)
    return sources


def load_sources_file(path: Union[str, Path]) -> List[Source]:
    """Load source definitions from a JSON file holding a list of sources."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not load sources from {path}: {str(e)}") from e

    if isinstance(raw, dict):
        raw = raw.get("sources", [])
    if not isinstance(raw, list):
        raise ConfigurationError(f"Sources file {path} must contain a list of sources")
    return load_sources(raw)


class GrantDiscovery:
    """
    One discovery run over a set of sources.

    Sources are crawled in sequential batches of `config.concurrency`; a
    source that fails or raises is recorded in the run report and the batch
    carries on. Candidates are only ever emitted with a score at or above
    `config.min_relevance_score`.
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        sources: List[Source],
        scorer: RelevanceScorer,
        store: DiscoveryStore,
        crawler: SourceCrawler,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.sources = sources
        self.scorer = scorer
        self.store = store
        self.crawler = crawler
        self._clock = clock
        self.status = "pending"
        self._deadline = 0.0

    def _time_left(self, pending_delay: float = 0.0) -> bool:
        return self._clock() + pending_delay < self._deadline

    async def _load_known_ids(self) -> Deduplicator:
        try:
            known_ids = await self.store.list_known_ids()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Could not load known identifiers: {str(e)}") from e
        logger.info(f"Loaded {len(known_ids)} known identifiers")
        return Deduplicator(known_ids)

    async def _crawl_sources(
        self, sources: List[Source], report: RunReport
    ) -> Tuple[List[SourceResult], Dict[str, Tuple[bool, Optional[str]]]]:
        """Crawl sources batch by batch; returns successful results and per-source outcome."""
        batch_size = self.config.concurrency
        results: List[SourceResult] = []
        outcomes: Dict[str, Tuple[bool, Optional[str]]] = {}

        for start in range(0, len(sources), batch_size):
            if start:
                if not self._time_left(self.config.batch_delay_seconds):
                    remaining = len(sources) - start
                    logger.warning(f"Run deadline reached, {remaining} sources not attempted")
                    report.stopped_early = True
                    break
                await asyncio.sleep(self.config.batch_delay_seconds)

            batch = sources[start:start + batch_size]
            report.sources_attempted += len(batch)
            logger.info(f"Batch {start // batch_size + 1}: {', '.join(s.id for s in batch)}")

            settled = await asyncio.gather(
                *(self.crawler.crawl_source(source) for source in batch),
                return_exceptions=True,
            )

            # Fan-in: only touched once the whole batch has settled
            for source, outcome in zip(batch, settled):
                if isinstance(outcome, Exception):
                    message = f"{type(outcome).__name__}: {str(outcome)}"
                    logger.warning(f"[{source.id}] Crawl failed: {message}")
                    report.errors.append(SourceError(
                        source_id=source.id, url=next(iter(source.urls), None), error=message
                    ))
                    outcomes[source.id] = (False, message)
                    continue
                if isinstance(outcome, BaseException):
                    raise outcome

                report.errors.extend(outcome.errors)
                if outcome.ok:
                    report.sources_succeeded += 1
                    results.append(outcome)
                    outcomes[source.id] = (True, None)
                else:
                    last_error = outcome.errors[-1].error if outcome.errors else "No pages fetched"
                    outcomes[source.id] = (False, last_error)

        return results, outcomes

    def _make_candidate(
        self,
        item: SourceItem,
        relevance: RelevanceResult,
        fields: ExtractedFields,
        excerpt: Optional[str] = None,
        discovered_at: Optional[datetime] = None,
    ) -> Candidate:
        return Candidate(
            id=generate_candidate_id(item.source_id, item.title, item.url),
            title=item.title,
            url=item.url,
            source_id=item.source_id,
            source_name=item.source_name,
            region=item.region,
            score=relevance.score,
            matched_terms=relevance.matched_terms,
            excerpt=(excerpt or extract_description(item.text) or item.text)[:EXCERPT_CHARS],
            deadline=fields.deadline,
            amount=fields.amount,
            eligibility=fields.eligibility,
            discovered_at=discovered_at or datetime.now(),
        )

    async def _score_items(
        self, results: List[SourceResult], dedup: Deduplicator, report: RunReport
    ) -> Tuple[List[Candidate], List[Tuple[SourceItem, RelevanceResult, ExtractedFields]]]:
        """Score every item; split into direct candidates and links queued for a detail fetch."""
        min_score = self.config.min_relevance_score
        prescreen = min_score * LINK_PRESCREEN_RATIO
        candidates: List[Candidate] = []
        link_queue: List[Tuple[SourceItem, RelevanceResult, ExtractedFields]] = []

        for result in results:
            for item in result.items:
                report.candidates_found += 1
                fields = extract_fields(item.text)
                relevance = await self.scorer.evaluate(item.text, fields)

                if item.from_link and self.config.deep_scrape_limit and relevance.score >= prescreen:
                    if dedup.is_known(generate_candidate_id(item.source_id, item.title, item.url)):
                        dedup.duplicates_skipped += 1
                        continue
                    link_queue.append((item, relevance, fields))
                    continue

                if relevance.score < min_score:
                    logger.debug(f"Below threshold ({relevance.score:.1f}): {item.title}")
                    continue
                candidates.append(self._make_candidate(item, relevance, fields))

        link_queue.sort(key=lambda entry: (entry[0].link_score or 0) + entry[1].score, reverse=True)
        deep_queue = link_queue[:self.config.deep_scrape_limit]

        # Links beyond the detail-fetch budget must pass on their own text
        for item, relevance, fields in link_queue[self.config.deep_scrape_limit:]:
            if relevance.score >= min_score:
                candidates.append(self._make_candidate(item, relevance, fields))

        return candidates, deep_queue

    async def _deep_scrape(
        self,
        queue: List[Tuple[SourceItem, RelevanceResult, ExtractedFields]],
        report: RunReport,
    ) -> List[Candidate]:
        """Fetch detail pages for queued links and re-score them on the full text."""
        min_score = self.config.min_relevance_score
        batch_size = self.config.concurrency
        candidates: List[Candidate] = []

        for start in range(0, len(queue), batch_size):
            if start:
                if not self._time_left(self.config.batch_delay_seconds):
                    logger.warning(f"Run deadline reached, {len(queue) - start} detail pages skipped")
                    report.stopped_early = True
                    break
                await asyncio.sleep(self.config.batch_delay_seconds)

            batch = queue[start:start + batch_size]
            settled = await asyncio.gather(
                *(self.crawler.fetch_details(item.url) for item, _, _ in batch),
                return_exceptions=True,
            )

            for (item, listing_relevance, listing_fields), details in zip(batch, settled):
                if isinstance(details, BaseException) and not isinstance(details, Exception):
                    raise details
                error = None
                if isinstance(details, Exception):
                    error = f"{type(details).__name__}: {str(details)}"
                elif not details.ok:
                    error = details.error or "Fetch failed"

                if error is not None:
                    logger.warning(f"[{item.source_id}] Detail fetch failed for {item.url}: {error}")
                    report.errors.append(SourceError(source_id=item.source_id, url=item.url, error=error))
                    if listing_relevance.score >= min_score:
                        candidates.append(self._make_candidate(item, listing_relevance, listing_fields))
                    continue

                text = f"{item.title} {details.text}"
                relevance = await self.scorer.evaluate(text, details.fields)
                if relevance.score < min_score:
                    logger.debug(f"Detail page below threshold ({relevance.score:.1f}): {item.url}")
                    continue

                logger.info(f"Relevant grant: {item.title} (score: {relevance.score:.1f})")
                candidates.append(self._make_candidate(
                    item, relevance, details.fields, excerpt=details.description or details.text
                ))

        return candidates

    def _cap_per_source(self, candidates: List[Candidate]) -> List[Candidate]:
        """Keep at most max_candidates_per_source per source; expects highest score first."""
        kept: List[Candidate] = []
        per_source: Dict[str, int] = {}
        for candidate in candidates:
            count = per_source.get(candidate.source_id, 0)
            if count >= self.config.max_candidates_per_source:
                continue
            per_source[candidate.source_id] = count + 1
            kept.append(candidate)

        if len(kept) < len(candidates):
            logger.info(f"Per-source cap dropped {len(candidates) - len(kept)} candidates")
        return kept

    async def _update_source_health(
        self, outcomes: Dict[str, Tuple[bool, Optional[str]]], candidates: List[Candidate]
    ) -> None:
        per_source: Dict[str, int] = {}
        for candidate in candidates:
            per_source[candidate.source_id] = per_source.get(candidate.source_id, 0) + 1

        try:
            health = await self.store.load_source_health()
            now = datetime.now()
            for source_id, (ok, error) in outcomes.items():
                entry = health.get(source_id) or SourceHealth()
                if ok:
                    entry.successes += 1
                    entry.last_success = now
                    entry.last_candidates = per_source.get(source_id, 0)
                else:
                    entry.failures += 1
                    entry.last_error = error
                health[source_id] = entry
            await self.store.save_source_health(health)
        except Exception as e:
            logger.error(f"Could not update source health: {str(e)}")

    async def run(self) -> DiscoveryResult:
        """
        Execute one discovery run.

        Raises:
            PersistenceError: known identifiers could not be loaded (before
                any source is attempted), candidates could not be stored, or
                the run report could not be written
        """
        report = RunReport(
            run_id=f"run-{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}",
            status="running",
        )
        self.status = "running"
        self._deadline = self._clock() + self.config.run_timeout_seconds

        dedup = await self._load_known_ids()

        selected = [source for source in self.sources if source.enabled][:self.config.max_sources]
        logger.info(f"Starting discovery run {report.run_id} over {len(selected)} sources")

        results, outcomes = await self._crawl_sources(selected, report)

        candidates, deep_queue = await self._score_items(results, dedup, report)
        if deep_queue:
            if self._time_left():
                logger.info(f"Deep scraping {len(deep_queue)} candidate pages")
                candidates.extend(await self._deep_scrape(deep_queue, report))
            else:
                report.stopped_early = True
                min_score = self.config.min_relevance_score
                candidates.extend(
                    self._make_candidate(item, relevance, fields)
                    for item, relevance, fields in deep_queue if relevance.score >= min_score
                )

        report.candidates_above_threshold = len(candidates)
        # Highest score first, so the best-scoring copy of a duplicate survives
        candidates.sort(key=lambda candidate: candidate.score, reverse=True)
        fresh = self._cap_per_source(dedup.filter_new(candidates))
        if self.config.max_candidates:
            fresh = fresh[:self.config.max_candidates]
        report.new_candidates = len(fresh)
        logger.info(
            f"{report.candidates_found} items, {report.candidates_above_threshold} above threshold, "
            f"{len(fresh)} new ({dedup.duplicates_skipped} duplicates skipped)"
        )

        persistence_error: Optional[Exception] = None
        try:
            await self.store.upsert_candidates(fresh)
        except Exception as e:
            logger.error(f"Failed to store {len(fresh)} candidates: {str(e)}")
            persistence_error = e

        if persistence_error is not None:
            report.status = "failed"
        else:
            report.status = "completed_with_errors" if report.errors else "completed"
        report.completed_at = datetime.now()

        await self._update_source_health(outcomes, fresh)

        try:
            await self.store.append_run_report(report)
        except Exception as e:
            logger.error(f"Failed to write run report {report.run_id}: {str(e)}")
            self.status = "failed"
            raise PersistenceError(f"Could not write run report: {str(e)}") from e

        self.status = report.status
        if persistence_error is not None:
            raise PersistenceError(f"Could not store candidates: {str(persistence_error)}") from persistence_error

        logger.info(
            f"Run {report.run_id} {report.status}: {report.sources_succeeded}/{report.sources_attempted} "
            f"sources, {report.new_candidates} new candidates, {len(report.errors)} errors"
        )
        return DiscoveryResult(candidates=fresh, report=report)


async def run_discovery(
    config: Union[DiscoveryConfig, Dict[str, Any], None] = None,
    sources: Optional[List[Source]] = None,
    store: Optional[DiscoveryStore] = None,
    scorer: Optional[RelevanceScorer] = None,
    crawler: Optional[SourceCrawler] = None,
) -> DiscoveryResult:
    """
    Run discovery with defaults filled in from config.py.

    Args:
        config: DiscoveryConfig, or a dict of overrides for the defaults
        sources: Sources to crawl (defaults to GRANT_SOURCES)
        store: Persistence collaborator (defaults to a JsonFileStore under DATA_DIR)
        scorer: Relevance scorer (defaults to the keyword scorer)
        crawler: Source crawler (created and closed here when omitted)
    """
    if not isinstance(config, DiscoveryConfig):
        config = build_discovery_config(config)
    if sources is None:
        sources = load_sources(GRANT_SOURCES)

    taxonomy = build_taxonomy()
    scorer = scorer or KeywordRelevanceScorer(taxonomy, config.min_relevance_score)
    store = store or JsonFileStore(DATA_DIR)

    owns_crawler = crawler is None
    crawler = crawler or SourceCrawler(taxonomy, timeout=config.timeout_seconds)
    try:
        return await GrantDiscovery(config, sources, scorer, store, crawler).run()
    finally:
        if owns_crawler:
            await crawler.close()


async def run_change_check(
    store: DiscoveryStore,
    crawler: Optional[SourceCrawler] = None,
    config: Optional[DiscoveryConfig] = None,
    tracked_items: Optional[List[TrackedItem]] = None,
):
    """Check every tracked item (or the given ones) for changes."""
    config = config or build_discovery_config()
    items = tracked_items if tracked_items is not None else await store.list_tracked_items()

    owns_crawler = crawler is None
    crawler = crawler or SourceCrawler(build_taxonomy(), timeout=config.timeout_seconds)
    try:
        return await check_for_changes(
            items, crawler, store,
            concurrency=config.concurrency,
            batch_delay=config.batch_delay_seconds,
        )
    finally:
        if owns_crawler:
            await crawler.close()


# Lifecycle maintenance
async def expire_candidates(store: DiscoveryStore, today: Optional[date] = None) -> List[Candidate]:
    """Mark open candidates whose deadline has passed as expired."""
    today = today or date.today()
    expired = []
    for candidate in await store.list_candidates():
        if candidate.status not in ("new", "reviewed"):
            continue
        deadline = parse_deadline(candidate.deadline)
        if deadline is None or deadline >= today:
            continue
        expired.append(candidate.model_copy(update={"status": "expired"}))
        logger.info(f"Expired: {candidate.title} (deadline {candidate.deadline})")
    await store.upsert_candidates(expired)
    return expired


async def prune_stale_candidates(
    store: DiscoveryStore,
    max_age_days: int = FEED_MAX_AGE_DAYS,
    now: Optional[datetime] = None,
) -> int:
    """Delete unreviewed candidates discovered more than max_age_days ago."""
    cutoff = (now or datetime.now()) - timedelta(days=max_age_days)
    removed = 0
    for candidate in await store.list_candidates(status="new"):
        if candidate.discovered_at.replace(tzinfo=None) < cutoff.replace(tzinfo=None):
            await store.delete_candidate(candidate.id)
            removed += 1
    logger.info(f"Pruned {removed} candidates older than {max_age_days} days")
    return removed
