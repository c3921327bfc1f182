"""Persistence of normalized history entries.

Entries are appended to one JSONL file per (project basename, UTC day) in
the save directory. Files are shared with other processes, so nothing is
locked on disk; in-process writers serialize through a single RLock.
Retention only ever deletes whole files.
"""

import json
import logging
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

from history_monitor.models.record import (
    NormalizedLogEntry,
    StoredRecord,
    synthesize_session_key,
    to_epoch_ms,
)
from history_monitor.models.retention import CleanupResult
from history_monitor.services.record_parser import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_SAVE_PATH = Path("data") / "history"

RemovalListener = Callable[[list[str]], None]


def stored_record_from_dict(data: Any) -> StoredRecord | None:
    """Build a StoredRecord from a persisted JSON object.

    Returns None for entries without a finite timestamp or a project.
    """
    if not isinstance(data, dict):
        return None
    timestamp = parse_timestamp(data.get("timestamp"))
    project = data.get("project")
    if timestamp is None or not isinstance(project, str) or not project:
        return None

    timestamp_ms = to_epoch_ms(timestamp)
    session_id = data.get("sessionId") or synthesize_session_key(timestamp_ms)
    pasted = data.get("pastedContents")
    prompt = data.get("prompt")
    return StoredRecord(
        timestamp=timestamp_ms,
        project=project,
        session_id=str(session_id),
        display=prompt if isinstance(prompt, str) else "",
        pasted_contents=pasted if isinstance(pasted, dict) else {},
    )


class LogStore:
    """Append/read/delete access to the per-project-per-day JSONL files.

    Handles:
    - Appending entries, skipping exact duplicates already in the file
    - Reading entries across files in a stable (sorted) order
    - Deleting a single record
    - Age-based deletion at file granularity
    """

    def __init__(self, save_path: str | Path | None = None):
        """Initialize the store.

        Args:
            save_path: Directory holding the JSONL files. Defaults to data/history.
        """
        self.save_path = Path(save_path) if save_path else DEFAULT_SAVE_PATH
        self._lock = threading.RLock()
        # file name -> dedup keys of the records it holds
        self._key_index: dict[str, set[tuple[str, int, str, str]]] = {}
        self._removal_listeners: list[RemovalListener] = []

    def add_removal_listener(self, callback: RemovalListener) -> None:
        """Register a callback for bulk file removal.

        Called with the deleted file names after delete_older_than() or
        clear_all() removed at least one file. Single-record deletes do not
        notify.
        """
        self._removal_listeners.append(callback)

    def _notify_removed(self, file_names: list[str]) -> None:
        if not file_names:
            return
        for callback in self._removal_listeners:
            try:
                callback(list(file_names))
            except Exception:
                logger.exception("Error in removal listener")

    def ensure_directory(self) -> None:
        """Ensure the save directory exists."""
        self.save_path.mkdir(parents=True, exist_ok=True)

    def list_files(self) -> list[Path]:
        """JSONL files in the save directory, sorted by name."""
        if not self.save_path.is_dir():
            return []
        return sorted(
            (p for p in self.save_path.iterdir() if p.is_file() and p.suffix == ".jsonl"),
            key=lambda p: p.name,
        )

    def _read_lines(self, path: Path) -> list[str]:
        with open(path, encoding="utf-8") as f:
            return [line.rstrip("\n") for line in f if line.strip()]

    def _read_file(self, path: Path) -> list[tuple[str, StoredRecord | None]]:
        """Read one file as (raw line, record or None) pairs."""
        rows = []
        for line in self._read_lines(path):
            try:
                record = stored_record_from_dict(json.loads(line))
            except json.JSONDecodeError:
                record = None
            rows.append((line, record))
        return rows

    def _keys_for(self, path: Path) -> set[tuple[str, int, str, str]]:
        keys = self._key_index.get(path.name)
        if keys is None:
            keys = set()
            if path.exists():
                try:
                    keys = {r.dedup_key() for _, r in self._read_file(path) if r is not None}
                except OSError as e:
                    logger.warning(f"Error indexing {path.name}: {e}")
            self._key_index[path.name] = keys
        return keys

    def append(self, entry: NormalizedLogEntry) -> bool:
        """Append an entry to its (project, day) file.

        Args:
            entry: Normalized entry to persist.

        Returns:
            True if written, False if an identical entry already exists or
            the write failed.
        """
        record = stored_record_from_dict(entry.to_json_dict())
        if record is None:
            logger.warning(f"Refusing to persist unusable entry: {entry!r}")
            return False

        with self._lock:
            self.ensure_directory()
            path = self.save_path / entry.file_name()
            keys = self._keys_for(path)
            key = record.dedup_key()
            if key in keys:
                logger.debug(f"Duplicate entry for session {record.session_id} skipped")
                return False
            try:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry.to_json_dict(), ensure_ascii=False) + "\n")
            except OSError as e:
                logger.error(f"Error writing entry to {path.name}: {e}")
                return False
            keys.add(key)
            return True

    def iter_records(self) -> Iterator[StoredRecord]:
        """Yield usable records across all files in sorted file order.

        Unreadable files and corrupt lines are skipped.
        """
        for path in self.list_files():
            try:
                rows = self._read_file(path)
            except OSError as e:
                logger.warning(f"Error reading {path.name}: {e}")
                continue
            for _, record in rows:
                if record is not None:
                    yield record

    def read_records(self, limit: int | None = None) -> list[StoredRecord]:
        """Read records in file order, stopping after ``limit`` records."""
        records = []
        for record in self.iter_records():
            if limit is not None and len(records) >= limit:
                break
            records.append(record)
        return records

    def delete_record(self, session_id: str, timestamp_ms: int) -> bool:
        """Delete every entry matching (session key, timestamp).

        Files left empty are removed.

        Returns:
            True if at least one entry was removed.
        """
        found = False
        with self._lock:
            for path in self.list_files():
                try:
                    rows = self._read_file(path)
                except OSError as e:
                    logger.warning(f"Error reading {path.name}: {e}")
                    continue

                kept = [
                    line
                    for line, record in rows
                    if record is None
                    or not (record.session_id == session_id and record.timestamp == timestamp_ms)
                ]
                if len(kept) == len(rows):
                    continue

                found = True
                self._key_index.pop(path.name, None)
                if kept:
                    path.write_text("\n".join(kept) + "\n", encoding="utf-8")
                else:
                    path.unlink()
        return found

    def _newest_timestamp(self, path: Path) -> tuple[int, int]:
        """Return (newest entry timestamp in ms, usable entry count) for a file.

        Files without any usable entry fall back to their mtime. Corrupt
        lines are not counted.
        """
        timestamps = [r.timestamp for _, r in self._read_file(path) if r is not None]
        if timestamps:
            return max(timestamps), len(timestamps)
        return int(path.stat().st_mtime * 1000), 0

    def delete_older_than(self, cutoff_ms: int) -> CleanupResult:
        """Delete every file whose newest entry is older than the cutoff.

        Deletion is whole-file only, so concurrent appends to a current
        day's file are never lost. Files that fail to delete are reported
        and the remaining files are still processed.

        Args:
            cutoff_ms: Epoch ms; entries strictly older are expired.

        Returns:
            CleanupResult with the number of entries in deleted files.
        """
        result = CleanupResult()
        with self._lock:
            for path in self.list_files():
                try:
                    newest, count = self._newest_timestamp(path)
                    if newest >= cutoff_ms:
                        continue
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Failed to delete expired file {path.name}: {e}")
                    result.failed_files.append(path.name)
                    continue
                self._key_index.pop(path.name, None)
                result.deleted_files.append(path.name)
                result.deleted_count += count

        if result.failed_files:
            result.error = f"Failed to delete {len(result.failed_files)} file(s)"
        logger.info(
            f"Retention pass removed {result.deleted_count} entries "
            f"in {len(result.deleted_files)} file(s)"
        )
        self._notify_removed(result.deleted_files)
        return result

    def clear_all(self) -> int:
        """Delete every JSONL file in the save directory.

        Returns:
            Number of files deleted.
        """
        deleted: list[str] = []
        with self._lock:
            for path in self.list_files():
                try:
                    path.unlink()
                    deleted.append(path.name)
                except OSError as e:
                    logger.warning(f"Failed to delete {path.name}: {e}")
            self._key_index.clear()
        self._notify_removed(deleted)
        return len(deleted)
