"""Session grouping over ingested and persisted history records.

Live records arrive through ingest(); bulk views are rebuilt from the
LogStore so they reflect what is on disk, including entries written by
other processes. The in-memory session view is rebuilt whenever the store
removes files, so it never outlives retention.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from history_monitor.models.record import (
    RawHistoryRecord,
    Session,
    SessionSummary,
    StoredRecord,
)
from history_monitor.services.event_bus import NEW_RECORD, EventBus
from history_monitor.services.log_store import LogStore, stored_record_from_dict
from history_monitor.services.paste_cache import expand_pasted_contents

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 1000


@dataclass
class IngestResult:
    """Result of ingesting one record."""

    success: bool
    session_id: str
    duplicate: bool = False
    persisted: bool = False
    error: str | None = None


@dataclass
class DeleteResult:
    """Result of a delete-one-record request."""

    success: bool
    error: str | None = None


@dataclass
class _SessionIndex:
    sessions: dict[str, Session] = field(default_factory=dict)
    keys: set[tuple[str, int, str, str]] = field(default_factory=set)

    def add(self, record: StoredRecord) -> bool:
        key = record.dedup_key()
        if key in self.keys:
            return False
        self.keys.add(key)
        session = self.sessions.get(record.session_id)
        if session is None:
            session = Session(session_id=record.session_id, project=record.project)
            self.sessions[record.session_id] = session
        session.add(record)
        return True

    def ordered(self) -> list[Session]:
        return sorted(self.sessions.values(), key=lambda s: s.latest_timestamp, reverse=True)


class SessionAggregator:
    """Groups records into sessions and serves the read APIs.

    Sessions are keyed by the record's session id, or ``single-<ms>`` when
    the tool did not record one. Two id-less records with bit-identical
    timestamps share a key and therefore a session.
    """

    def __init__(
        self,
        store: LogStore,
        event_bus: EventBus | None = None,
        claude_dir: str | Path | None = None,
    ):
        """Initialize the aggregator.

        Args:
            store: Persistence for normalized entries.
            event_bus: Receives a new-record event per ingested record.
            claude_dir: Claude Code directory for paste-cache expansion.
        """
        self.store = store
        self.event_bus = event_bus
        self.claude_dir = Path(claude_dir) if claude_dir else None
        self._index = _SessionIndex()
        self._lock = threading.RLock()
        store.add_removal_listener(self._on_files_removed)

    def _expand(self, pasted: dict) -> dict:
        if self.claude_dir is None or not pasted:
            return pasted
        return expand_pasted_contents(pasted, self.claude_dir)

    def ingest(self, record: RawHistoryRecord) -> IngestResult:
        """Add a parsed record to its session, persist it and notify the UI.

        new-record is only emitted for entries actually written. Re-delivery of an identical (session, timestamp, project, prompt)
        tuple, as happens when a restart re-reads part of the tail, is a
        no-op.
        """
        entry = record.to_log_entry()
        entry.pasted_contents = self._expand(entry.pasted_contents)
        stored = stored_record_from_dict(entry.to_json_dict())
        if stored is None:
            return IngestResult(success=False, session_id=record.session_key, error="unusable record")

        with self._lock:
            if not self._index.add(stored):
                return IngestResult(success=True, session_id=stored.session_id, duplicate=True)
            persisted = self.store.append(entry)

        if not persisted:
            logger.debug(f"Entry for {stored.session_id} not persisted (duplicate on disk or write error)")
        elif self.event_bus:
            self.event_bus.emit(NEW_RECORD, entry.to_json_dict())

        return IngestResult(success=True, session_id=stored.session_id, persisted=persisted)

    def rebuild(self) -> int:
        """Rebuild the in-memory view from the store.

        Returns:
            Number of sessions after the rebuild.
        """
        with self._lock:
            index = _SessionIndex()
            for record in self.store.iter_records():
                index.add(record)
            self._index = index
            return len(index.sessions)

    def _on_files_removed(self, file_names: list[str]) -> None:
        sessions = self.rebuild()
        logger.info(f"{len(file_names)} history file(s) removed, {sessions} session(s) remain")

    def list_sessions(self) -> list[Session]:
        """Sessions currently held in memory, most recent first."""
        with self._lock:
            return self._index.ordered()

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._index.sessions.get(session_id)

    def list_metadata_only(self, max_records: int = DEFAULT_MAX_RECORDS) -> list[SessionSummary]:
        """Summaries of persisted sessions without prompt bodies.

        Files are read in sorted order and reading stops after
        ``max_records`` records, so the result is always drawn from the same
        prefix of the store.
        """
        index = _SessionIndex()
        for record in self.store.read_records(limit=max_records):
            index.add(record)
        return [s.summary() for s in index.ordered()]

    def read_history(self, max_records: int = DEFAULT_MAX_RECORDS) -> list[StoredRecord]:
        """Persisted records in file order, at most ``max_records``."""
        records = self.store.read_records(limit=max_records)
        for record in records:
            record.pasted_contents = self._expand(record.pasted_contents)
        return records

    def read_session_details(self, session_id: str) -> list[StoredRecord]:
        """All persisted records of one session, newest first."""
        records = [r for r in self.store.iter_records() if r.session_id == session_id]
        for record in records:
            record.pasted_contents = self._expand(record.pasted_contents)
        records.sort(key=lambda r: r.timestamp, reverse=True)
        return records

    def delete_record(self, session_id: str, timestamp_ms: int) -> DeleteResult:
        """Delete one record from disk and from the in-memory view."""
        try:
            found = self.store.delete_record(session_id, timestamp_ms)
        except OSError as e:
            logger.error(f"Failed to delete record {session_id}@{timestamp_ms}: {e}")
            return DeleteResult(success=False, error=str(e))

        if not found:
            return DeleteResult(success=False, error="Record not found")

        with self._lock:
            session = self._index.sessions.get(session_id)
            if session is not None:
                remaining = [r for r in session.records if r.timestamp != timestamp_ms]
                self._index.keys = {
                    k for k in self._index.keys if not (k[0] == session_id and k[1] == timestamp_ms)
                }
                if remaining:
                    rebuilt = Session(session_id=session_id, project=session.project)
                    for r in remaining:
                        rebuilt.add(r)
                    self._index.sessions[session_id] = rebuilt
                else:
                    del self._index.sessions[session_id]

        return DeleteResult(success=True)
