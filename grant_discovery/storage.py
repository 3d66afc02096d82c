"""
Persistence for the Grant Discovery engine.

DiscoveryStore is the collaborator interface the pipeline reads known
identifiers from and writes candidates, run reports, tracked-item snapshots
and change records to. Every upsert is keyed by a stable identifier, so
repeating a write is harmless. JsonFileStore keeps each collection in a JSON
file under a data directory and does its file I/O in a worker thread.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError

from grant_discovery.config import RUN_LOG_LIMIT
from grant_discovery.exceptions import PersistenceError
from grant_discovery.models import (
    Candidate, CandidateStatus, ChangeRecord, RunReport, SourceHealth, TrackedItem
)

# Configure logger
logger = logging.getLogger("storage")


class DiscoveryStore(ABC):
    """Read/write operations the discovery pipeline needs from persistence."""

    @abstractmethod
    async def list_known_ids(self) -> Set[str]:
        """Identifiers of stored candidates and tracked items."""

    @abstractmethod
    async def upsert_candidate(self, candidate: Candidate) -> None: ...

    async def upsert_candidates(self, candidates: List[Candidate]) -> None:
        for candidate in candidates:
            await self.upsert_candidate(candidate)

    @abstractmethod
    async def list_candidates(self, status: Optional[CandidateStatus] = None) -> List[Candidate]: ...

    @abstractmethod
    async def delete_candidate(self, candidate_id: str) -> None: ...

    @abstractmethod
    async def append_run_report(self, report: RunReport) -> None: ...

    @abstractmethod
    async def list_run_reports(self) -> List[RunReport]: ...

    @abstractmethod
    async def list_tracked_items(self) -> List[TrackedItem]: ...

    @abstractmethod
    async def upsert_tracked_item(self, item: TrackedItem) -> None: ...

    @abstractmethod
    async def append_change_record(self, record: ChangeRecord) -> None: ...

    @abstractmethod
    async def load_source_health(self) -> Dict[str, SourceHealth]: ...

    @abstractmethod
    async def save_source_health(self, health: Dict[str, SourceHealth]) -> None: ...


class JsonFileStore(DiscoveryStore):
    """Stores each collection as a JSON document in a data directory."""

    CANDIDATES_FILE = "candidates.json"
    TRACKED_FILE = "tracked_items.json"
    RUNS_FILE = "discovery_runs.json"
    CHANGES_FILE = "change_history.json"
    HEALTH_FILE = "source_health.json"

    def __init__(self, data_dir: Path, run_log_limit: int = RUN_LOG_LIMIT):
        self.data_dir = Path(data_dir)
        self.run_log_limit = run_log_limit
        self._lock: Optional[asyncio.Lock] = None

    def _read(self, name: str, default: Any) -> Any:
        path = self.data_dir / name
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {path}: {str(e)}") from e

    def _write(self, name: str, data: Any) -> None:
        path = self.data_dir / name
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            # Write to a temp file first so a crash never leaves half a document
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False, default=str)
                os.replace(tmp_path, path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write {path}: {str(e)}") from e

    def _load_models(self, name: str, model, default):
        raw = self._read(name, default)
        try:
            if isinstance(raw, dict):
                return {key: model.model_validate(value) for key, value in raw.items()}
            return [model.model_validate(value) for value in raw]
        except ValidationError as e:
            raise PersistenceError(f"Corrupt records in {self.data_dir / name}: {str(e)}") from e

    async def _run(self, func, *args):
        # One file operation at a time, off the event loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    def _upsert(self, name: str, records: Dict[str, Dict[str, Any]]) -> None:
        stored = self._read(name, {})
        stored.update(records)
        self._write(name, stored)

    # Candidates
    def _known_ids(self) -> Set[str]:
        return set(self._read(self.CANDIDATES_FILE, {})) | set(self._read(self.TRACKED_FILE, {}))

    async def list_known_ids(self) -> Set[str]:
        return await self._run(self._known_ids)

    async def upsert_candidate(self, candidate: Candidate) -> None:
        await self.upsert_candidates([candidate])

    async def upsert_candidates(self, candidates: List[Candidate]) -> None:
        """Store a batch of candidates with a single write."""
        if not candidates:
            return
        records = {candidate.id: candidate.to_dict() for candidate in candidates}
        await self._run(self._upsert, self.CANDIDATES_FILE, records)

    async def list_candidates(self, status: Optional[CandidateStatus] = None) -> List[Candidate]:
        candidates = await self._run(self._load_models, self.CANDIDATES_FILE, Candidate, {})
        return [c for c in candidates.values() if status is None or c.status == status]

    def _delete_candidate(self, candidate_id: str) -> None:
        candidates = self._read(self.CANDIDATES_FILE, {})
        if candidates.pop(candidate_id, None) is not None:
            self._write(self.CANDIDATES_FILE, candidates)

    async def delete_candidate(self, candidate_id: str) -> None:
        await self._run(self._delete_candidate, candidate_id)

    # Run log
    def _append_run_report(self, entry: Dict[str, Any]) -> None:
        runs = [run for run in self._read(self.RUNS_FILE, []) if run.get("run_id") != entry["run_id"]]
        runs.append(entry)
        self._write(self.RUNS_FILE, runs[-self.run_log_limit:])

    async def append_run_report(self, report: RunReport) -> None:
        await self._run(self._append_run_report, report.model_dump(mode="json"))

    async def list_run_reports(self) -> List[RunReport]:
        return await self._run(self._load_models, self.RUNS_FILE, RunReport, [])

    # Change monitoring
    async def list_tracked_items(self) -> List[TrackedItem]:
        tracked = await self._run(self._load_models, self.TRACKED_FILE, TrackedItem, {})
        return list(tracked.values())

    async def upsert_tracked_item(self, item: TrackedItem) -> None:
        await self._run(self._upsert, self.TRACKED_FILE, {item.id: item.model_dump(mode="json")})

    def _append_change_record(self, entry: Dict[str, Any]) -> None:
        changes = self._read(self.CHANGES_FILE, [])
        if entry not in changes:
            changes.append(entry)
            self._write(self.CHANGES_FILE, changes)

    async def append_change_record(self, record: ChangeRecord) -> None:
        await self._run(self._append_change_record, record.model_dump(mode="json"))

    async def list_change_records(self) -> List[ChangeRecord]:
        return await self._run(self._load_models, self.CHANGES_FILE, ChangeRecord, [])

    # Source health
    async def load_source_health(self) -> Dict[str, SourceHealth]:
        return await self._run(self._load_models, self.HEALTH_FILE, SourceHealth, {})

    async def save_source_health(self, health: Dict[str, SourceHealth]) -> None:
        data = {key: value.model_dump(mode="json") for key, value in health.items()}
        await self._run(self._write, self.HEALTH_FILE, data)
