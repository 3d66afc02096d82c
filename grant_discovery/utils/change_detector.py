"""
Change detection for tracked grants.

A tracked grant's page is re-scraped, reduced to an ItemSnapshot and compared
with the snapshot stored on the previous cycle. Each differing field becomes
one ChangeRecord.
"""

import asyncio
import hashlib
import logging
from datetime import datetime
from typing import List, Optional

from grant_discovery.config import DISCOVERY_CONFIG
from grant_discovery.models import (
    ChangeDetectionResult, ChangeRecord, ExtractedFields, ItemSnapshot, TrackedItem
)
from grant_discovery.storage import DiscoveryStore

# Configure logger
logger = logging.getLogger("change_detector")


def hash_content(text: str) -> str:
    """SHA-256 hex digest of page text."""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()


def build_snapshot(text: str, fields: ExtractedFields, scraped_at: Optional[datetime] = None) -> ItemSnapshot:
    return ItemSnapshot(
        content_hash=hash_content(text),
        deadline=fields.deadline,
        amount=fields.amount,
        is_closed=fields.is_closed,
        text_length=len(text or ""),
        scraped_at=scraped_at or datetime.now(),
    )


def detect_changes(
    fresh: ItemSnapshot,
    cached: Optional[ItemSnapshot],
    item_id: str = "",
) -> ChangeDetectionResult:
    """
    Compare a fresh snapshot with the cached one.

    A first-seen item (no cached snapshot) is new, not changed. Deadline and
    amount only count as changed when the fresh value is non-empty.
    """
    if cached is None:
        return ChangeDetectionResult(is_new=True, changes=[])

    detected_at = fresh.scraped_at
    changes: List[ChangeRecord] = []

    def record(field: str, old_value: Optional[str], new_value: Optional[str]) -> None:
        changes.append(ChangeRecord(
            item_id=item_id,
            field=field,
            old_value=old_value,
            new_value=new_value,
            detected_at=detected_at,
        ))

    if fresh.content_hash != cached.content_hash:
        record("page_content", cached.content_hash, fresh.content_hash)

    if fresh.deadline and fresh.deadline != cached.deadline:
        record("deadline", cached.deadline, fresh.deadline)

    if fresh.amount and fresh.amount != cached.amount:
        record("amount", cached.amount, fresh.amount)

    if fresh.is_closed != cached.is_closed:
        record("status", cached.status, fresh.status)

    return ChangeDetectionResult(is_new=False, changes=changes)


async def check_for_changes(
    tracked_items: List[TrackedItem],
    crawler,
    store: DiscoveryStore,
    concurrency: int = DISCOVERY_CONFIG["concurrency"],
    batch_delay: float = DISCOVERY_CONFIG["batch_delay_seconds"],
) -> List[ChangeRecord]:
    """
    Re-scrape tracked items and persist their deltas.

    Items are fetched in sequential batches of `concurrency`. An item whose
    page cannot be fetched is left as it was. `last_changed` only moves when
    at least one change was recorded for the item.

    Returns:
        List[ChangeRecord]: All changes recorded in this cycle
    """
    all_changes: List[ChangeRecord] = []
    batch_size = max(1, concurrency)

    for start in range(0, len(tracked_items), batch_size):
        if start and batch_delay:
            await asyncio.sleep(batch_delay)

        batch = tracked_items[start:start + batch_size]
        results = await asyncio.gather(
            *(crawler.fetch_details(item.url) for item in batch),
            return_exceptions=True,
        )

        for item, details in zip(batch, results):
            if isinstance(details, BaseException) and not isinstance(details, Exception):
                raise details
            if isinstance(details, Exception):
                logger.warning(f"[{item.id}] Change check failed: {type(details).__name__}: {str(details)}")
                continue
            if not details.ok:
                logger.warning(f"[{item.id}] Could not fetch {item.url}: {details.error}")
                continue

            now = datetime.now()
            snapshot = build_snapshot(details.text, details.fields, scraped_at=now)
            result = detect_changes(snapshot, item.snapshot, item_id=item.id)

            for change in result.changes:
                await store.append_change_record(change)
                logger.info(f"[{item.id}] {change.field} changed: {change.old_value} -> {change.new_value}")

            await store.upsert_tracked_item(item.model_copy(update={
                "last_hash": snapshot.content_hash,
                "last_checked": now,
                "last_changed": now if result.changes else item.last_changed,
                "snapshot": snapshot,
                "status": snapshot.status,
            }))
            all_changes.extend(result.changes)

    logger.info(f"Change check complete: {len(tracked_items)} items, {len(all_changes)} changes")
    return all_changes
