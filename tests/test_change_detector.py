"""Tests for tracked-item change detection."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from grant_discovery.models import ExtractedFields, ItemSnapshot, PageDetails, TrackedItem
from grant_discovery.utils.change_detector import (
    build_snapshot, check_for_changes, detect_changes, hash_content
)

PAGE = "Sacred cacao fund. Deadline: 1 May 2026. Up to €20,000."


def _snapshot(text=PAGE, deadline="1 May 2026", amount="up to €20,000", is_closed=False):
    return build_snapshot(
        text,
        ExtractedFields(deadline=deadline, amount=amount, is_closed=is_closed),
        scraped_at=datetime(2026, 1, 1, 12, 0),
    )


class TestDetectChanges:
    """Tests for snapshot comparison."""

    def test_first_sight_is_new_not_changed(self):
        result = detect_changes(_snapshot(), None, item_id="g1")
        assert result.is_new
        assert result.changes == []

    def test_identical_snapshots(self):
        result = detect_changes(_snapshot(), _snapshot(), item_id="g1")
        assert not result.is_new
        assert result.changes == []

    def test_content_change_only(self):
        fresh = _snapshot(text=PAGE + " Updated FAQ.")
        result = detect_changes(fresh, _snapshot(), item_id="g1")

        assert [c.field for c in result.changes] == ["page_content"]
        assert result.changes[0].old_value == hash_content(PAGE)
        assert result.changes[0].new_value == fresh.content_hash

    def test_deadline_change(self):
        fresh = _snapshot(text="new text", deadline="1 June 2026")
        result = detect_changes(fresh, _snapshot(), item_id="g1")

        deadline = [c for c in result.changes if c.field == "deadline"]
        assert len(deadline) == 1
        assert deadline[0].old_value == "1 May 2026"
        assert deadline[0].new_value == "1 June 2026"
        assert deadline[0].item_id == "g1"
        assert deadline[0].detected_at == fresh.scraped_at

    def test_vanished_deadline_is_not_a_change(self):
        result = detect_changes(_snapshot(deadline=None), _snapshot(), item_id="g1")
        assert [c.field for c in result.changes] == []

    def test_amount_change(self):
        result = detect_changes(_snapshot(amount="€30,000"), _snapshot(), item_id="g1")
        assert [(c.field, c.old_value, c.new_value) for c in result.changes] == [
            ("amount", "up to €20,000", "€30,000")
        ]

    def test_status_change(self):
        result = detect_changes(_snapshot(is_closed=True), _snapshot(), item_id="g1")
        assert [(c.field, c.old_value, c.new_value) for c in result.changes] == [("status", "open", "closed")]


class TestCheckForChanges:
    """Tests for a full change-check cycle."""

    def _crawler(self, details_by_url):
        crawler = AsyncMock()

        async def fetch_details(url):
            details = details_by_url[url]
            if isinstance(details, BaseException):
                raise details
            return details

        crawler.fetch_details.side_effect = fetch_details
        return crawler

    def _details(self, url, text):
        return PageDetails(url=url, text=text, fields=ExtractedFields(deadline="1 June 2026"))

    @pytest.mark.asyncio
    async def test_first_check_stores_baseline(self, store):
        item = TrackedItem(id="g1", url="https://example.org/g1")
        crawler = self._crawler({item.url: self._details(item.url, "text")})

        changes = await check_for_changes([item], crawler, store, concurrency=2, batch_delay=0)

        assert changes == []
        stored = (await store.list_tracked_items())[0]
        assert stored.snapshot.deadline == "1 June 2026"
        assert stored.last_hash == hash_content("text")
        assert stored.last_checked is not None
        assert stored.last_changed is None

    @pytest.mark.asyncio
    async def test_changes_recorded_and_last_changed_moves(self, store):
        baseline = ItemSnapshot(content_hash=hash_content("old"), deadline="1 May 2026")
        changed = TrackedItem(id="g1", url="https://example.org/g1", snapshot=baseline)
        unchanged = TrackedItem(
            id="g2", url="https://example.org/g2",
            snapshot=ItemSnapshot(content_hash=hash_content("same"), deadline="1 June 2026"),
        )
        crawler = self._crawler({
            changed.url: self._details(changed.url, "new"),
            unchanged.url: self._details(unchanged.url, "same"),
        })

        changes = await check_for_changes([changed, unchanged], crawler, store, concurrency=1, batch_delay=0)

        assert {(c.item_id, c.field) for c in changes} == {("g1", "page_content"), ("g1", "deadline")}
        assert len(await store.list_change_records()) == 2
        stored = {item.id: item for item in await store.list_tracked_items()}
        assert stored["g1"].last_changed is not None
        assert stored["g1"].snapshot.deadline == "1 June 2026"
        assert stored["g2"].last_changed is None
        assert stored["g2"].last_checked is not None

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_item_untouched(self, store):
        broken = TrackedItem(id="g1", url="https://example.org/g1")
        failing = TrackedItem(id="g2", url="https://example.org/g2")
        crawler = self._crawler({
            broken.url: PageDetails(url=broken.url, ok=False, error="HTTP 404"),
            failing.url: RuntimeError("boom"),
        })

        changes = await check_for_changes([broken, failing], crawler, store, concurrency=2, batch_delay=0)

        assert changes == []
        assert await store.list_tracked_items() == []
        assert await store.list_change_records() == []

    @pytest.mark.asyncio
    async def test_cancelled_fetch_propagates(self, store):
        cancelled = TrackedItem(id="g1", url="https://example.org/g1")
        fine = TrackedItem(id="g2", url="https://example.org/g2")
        crawler = self._crawler({
            cancelled.url: asyncio.CancelledError(),
            fine.url: self._details(fine.url, "text"),
        })

        with pytest.raises(asyncio.CancelledError):
            await check_for_changes([cancelled, fine], crawler, store, concurrency=2, batch_delay=0)

        assert await store.list_tracked_items() == []
