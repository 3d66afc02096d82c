"""
Candidate deduplication using content hashing.

Candidate identifiers are a pure function of (source id, title, URL), so
re-crawling an unchanged page yields the same identifier and the candidate
is suppressed on later runs.
"""

import hashlib
import logging
import re
from typing import Iterable, List, Set

from grant_discovery.models import Candidate

# Configure logger
logger = logging.getLogger("deduplicator")

ID_PREFIX = "discovered"
HASH_LENGTH = 12


def normalize_title(title: str) -> str:
    """Lowercase, punctuation stripped, whitespace collapsed."""
    title = re.sub(r'[^\w\s]', ' ', (title or '').lower())
    return re.sub(r'\s+', ' ', title).strip()


def normalize_url(url: str) -> str:
    """Lowercase, without fragment or trailing slash."""
    url = (url or '').strip().lower().split('#', 1)[0]
    return url.rstrip('/')


def slugify(value: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', (value or '').lower()).strip('-')
    return slug or "source"


def generate_candidate_id(source_id: str, title: str, url: str) -> str:
    """
    Stable identifier for a discovered item.

    Args:
        source_id: Source identifier (e.g., "creative-europe")
        title: Item title as scraped
        url: Item URL as scraped

    Returns:
        str: "discovered-<source-slug>-<first 12 hex chars of sha256>"
    """
    content = f"{source_id}|{normalize_title(title)}|{normalize_url(url)}"
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    return f"{ID_PREFIX}-{slugify(source_id)}-{digest}"


class Deduplicator:
    """
    Tracks identifiers already known to the store.

    The known set is loaded once before a run and only touched from the
    single-threaded fan-in step.
    """

    def __init__(self, known_ids: Iterable[str] = ()):
        self.known_ids: Set[str] = set(known_ids)
        self.duplicates_skipped = 0

    def is_known(self, candidate_id: str) -> bool:
        return candidate_id in self.known_ids

    def mark_known(self, candidate_id: str) -> None:
        self.known_ids.add(candidate_id)

    def filter_new(self, candidates: Iterable[Candidate]) -> List[Candidate]:
        """Drop known candidates; accepted ones become known for the rest of the run."""
        fresh = []
        for candidate in candidates:
            if self.is_known(candidate.id):
                self.duplicates_skipped += 1
                logger.debug(f"Duplicate candidate skipped: {candidate.id} ({candidate.title})")
                continue
            self.mark_known(candidate.id)
            fresh.append(candidate)
        return fresh

    def __len__(self) -> int:
        return len(self.known_ids)
