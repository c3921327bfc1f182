"""Live ingestion of the Claude Code history file.

Wires FileTailer -> RecordParser -> SessionAggregator. Lines from one tail
notification are parsed and ingested in file order on the notifying
thread.
"""

import logging
import threading
from pathlib import Path

from history_monitor.services.file_tailer import FileTailer, TailHandle
from history_monitor.services.record_parser import ParseError, RecordParser
from history_monitor.services.session_aggregator import SessionAggregator

logger = logging.getLogger(__name__)


class IngestionService:
    """Tails one history file and feeds new records to the aggregator."""

    def __init__(
        self,
        history_path: str | Path,
        aggregator: SessionAggregator,
        tailer: FileTailer | None = None,
        parser: RecordParser | None = None,
    ):
        self.history_path = Path(history_path)
        self.aggregator = aggregator
        self.tailer = tailer or FileTailer()
        self.parser = parser or RecordParser()
        self._handle: TailHandle | None = None
        self._lock = threading.Lock()
        self.ingested_count = 0
        self.duplicate_count = 0

    @property
    def is_running(self) -> bool:
        return self._handle is not None and self._handle.is_attached

    def start(self, watch: bool = True) -> TailHandle:
        """Attach to the history file from its current end.

        Args:
            watch: Register for file events; without it callers drive
                handle.poll() themselves.
        """
        with self._lock:
            if self._handle is not None and self._handle.is_attached:
                return self._handle
            self._handle = self.tailer.attach(self.history_path, self.handle_lines, watch=watch)
            return self._handle

    def stop(self) -> None:
        """Detach from the history file and stop the observer."""
        with self._lock:
            handle = self._handle
            self._handle = None
        if handle is not None:
            handle.detach()
        self.tailer.stop()

    def handle_lines(self, handle: TailHandle, lines: list[str]) -> None:
        """Parse and ingest a batch of lines, skipping unusable ones."""
        for line in lines:
            record = self.parser.parse(line)
            if isinstance(record, ParseError):
                continue
            result = self.aggregator.ingest(record)
            if result.duplicate:
                self.duplicate_count += 1
            elif result.success:
                self.ingested_count += 1
            else:
                logger.warning(f"Failed to ingest record from {handle.path.name}: {result.error}")

    def stats(self) -> dict[str, int | bool]:
        return {
            "running": self.is_running,
            "ingested": self.ingested_count,
            "duplicates": self.duplicate_count,
            **self.parser.stats(),
        }
