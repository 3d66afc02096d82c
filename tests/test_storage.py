"""Tests for the JSON file store."""

import asyncio
import json

import pytest

from grant_discovery.exceptions import PersistenceError
from grant_discovery.models import Candidate, ChangeRecord, RunReport, SourceHealth, TrackedItem
from grant_discovery.storage import JsonFileStore


def _candidate(candidate_id, status="new", **overrides):
    values = dict(
        id=candidate_id,
        title=f"Grant {candidate_id}",
        url=f"https://example.org/{candidate_id}",
        source_id="src",
        source_name="Source",
        region="nl",
        score=6.5,
        status=status,
    )
    values.update(overrides)
    return Candidate(**values)


class TestCandidates:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store):
        candidate = _candidate("a")
        await store.upsert_candidate(candidate)
        await store.upsert_candidate(candidate)

        stored = await store.list_candidates()
        assert len(stored) == 1
        assert stored[0] == candidate

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(self, store):
        await store.upsert_candidate(_candidate("a"))
        await store.upsert_candidate(_candidate("a", status="reviewed"))

        assert [c.status for c in await store.list_candidates()] == ["reviewed"]
        assert await store.list_candidates(status="new") == []

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.upsert_candidate(_candidate("a"))
        await store.upsert_candidate(_candidate("b"))
        await store.delete_candidate("a")
        await store.delete_candidate("missing")

        assert [c.id for c in await store.list_candidates()] == ["b"]

    @pytest.mark.asyncio
    async def test_known_ids_include_tracked_items(self, store):
        await store.upsert_candidate(_candidate("a"))
        await store.upsert_tracked_item(TrackedItem(id="t", url="https://example.org/t"))

        assert await store.list_known_ids() == {"a", "t"}

    @pytest.mark.asyncio
    async def test_batch_upsert_writes_once(self, store, monkeypatch):
        await store.upsert_candidate(_candidate("existing"))
        writes = []
        original_write = store._write

        def counting_write(name, data):
            writes.append(name)
            original_write(name, data)

        monkeypatch.setattr(store, "_write", counting_write)

        await store.upsert_candidates([_candidate(f"c{i}") for i in range(5)])
        await store.upsert_candidates([])

        assert writes == [JsonFileStore.CANDIDATES_FILE]
        assert sorted(c.id for c in await store.list_candidates()) == [
            "c0", "c1", "c2", "c3", "c4", "existing"
        ]

    @pytest.mark.asyncio
    async def test_concurrent_upserts_keep_every_record(self, store):
        await asyncio.gather(*(store.upsert_candidate(_candidate(f"c{i}")) for i in range(10)))

        assert len(await store.list_candidates()) == 10

    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        assert await store.list_known_ids() == set()
        assert await store.list_candidates() == []
        assert await store.list_run_reports() == []
        assert await store.load_source_health() == {}


class TestRunLog:
    @pytest.mark.asyncio
    async def test_capped_to_limit(self, tmp_path):
        store = JsonFileStore(tmp_path, run_log_limit=3)
        for i in range(5):
            await store.append_run_report(RunReport(run_id=f"run-{i}", status="completed"))

        assert [r.run_id for r in await store.list_run_reports()] == ["run-2", "run-3", "run-4"]

    @pytest.mark.asyncio
    async def test_same_run_written_once(self, store):
        report = RunReport(run_id="run-1", status="completed")
        await store.append_run_report(report)
        await store.append_run_report(report)

        assert len(await store.list_run_reports()) == 1


class TestChangeHistory:
    @pytest.mark.asyncio
    async def test_records_appended_once(self, store):
        record = ChangeRecord(item_id="t", field="deadline", old_value="1 May 2026", new_value="1 June 2026")
        await store.append_change_record(record)
        await store.append_change_record(record)

        assert await store.list_change_records() == [record]


class TestSourceHealth:
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        health = {"src": SourceHealth(successes=3, failures=1, last_error="HTTP 500")}
        await store.save_source_health(health)

        loaded = await store.load_source_health()
        assert loaded["src"].success_rate == 0.75
        assert loaded["src"].last_error == "HTTP 500"


class TestFailures:
    """Unreadable data surfaces as PersistenceError."""

    @pytest.mark.asyncio
    async def test_corrupt_json(self, tmp_path):
        (tmp_path / JsonFileStore.CANDIDATES_FILE).write_text("{not json", encoding="utf-8")
        store = JsonFileStore(tmp_path)

        with pytest.raises(PersistenceError):
            await store.list_known_ids()

    @pytest.mark.asyncio
    async def test_invalid_records(self, tmp_path):
        (tmp_path / JsonFileStore.CANDIDATES_FILE).write_text(
            json.dumps({"x": {"id": "x"}}), encoding="utf-8"
        )
        store = JsonFileStore(tmp_path)

        with pytest.raises(PersistenceError):
            await store.list_candidates()

    @pytest.mark.asyncio
    async def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory", encoding="utf-8")
        store = JsonFileStore(blocker / "data")

        with pytest.raises(PersistenceError):
            await store.upsert_candidate(_candidate("a"))
