"""History record models for Claude History Monitor.

Pydantic models for prompt records read from history.jsonl, the normalized
entries persisted per project and day, and the session groupings built
from them.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    return int(round(value.timestamp() * 1000))


def synthesize_session_key(timestamp_ms: int) -> str:
    """Build the grouping key for a record that has no session id."""
    return f"single-{timestamp_ms}"


class RawHistoryRecord(BaseModel):
    """One usable line of the watched history file.

    Attributes:
        timestamp: Normalized, timezone-aware UTC instant.
        project: Absolute project path (never empty).
        session_id: Session identifier, when the tool recorded one.
        prompt_text: The prompt as displayed (``display`` or ``prompt``).
        pasted_contents: Mapping of paste label to opaque content.
    """

    timestamp: datetime
    project: str = Field(min_length=1)
    session_id: str | None = None
    prompt_text: str = ""
    pasted_contents: dict[str, Any] = Field(default_factory=dict)

    @property
    def timestamp_ms(self) -> int:
        return to_epoch_ms(self.timestamp)

    @property
    def session_key(self) -> str:
        return self.session_id or synthesize_session_key(self.timestamp_ms)

    def to_log_entry(self) -> "NormalizedLogEntry":
        """Convert to the shape persisted on disk."""
        return NormalizedLogEntry(
            timestamp=self.timestamp.astimezone(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            project=self.project,
            session_id=self.session_id,
            prompt=self.prompt_text,
            pasted_contents=dict(self.pasted_contents),
        )


class NormalizedLogEntry(BaseModel):
    """Durable entry written to ``<project>_<YYYY-MM-DD>.jsonl``.

    Serialized with camelCase keys so files stay readable by the desktop
    viewer that shares the save directory.
    """

    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    project: str
    session_id: str | None = Field(default=None, alias="sessionId")
    prompt: str = ""
    pasted_contents: dict[str, Any] = Field(default_factory=dict, alias="pastedContents")

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def file_name(self) -> str:
        """File name fully determined by (project basename, UTC day)."""
        project_name = Path(self.project).name or "unknown"
        day = self.timestamp.split("T", 1)[0]
        return f"{project_name}_{day}.jsonl"


class StoredRecord(BaseModel):
    """A persisted entry as returned to callers of the read APIs.

    Attributes:
        timestamp: Epoch milliseconds.
        session_id: Real session id or the synthesized ``single-<ms>`` key.
        display: Prompt text.
    """

    timestamp: int
    project: str
    session_id: str
    display: str = ""
    pasted_contents: dict[str, Any] = Field(default_factory=dict)

    def dedup_key(self) -> tuple[str, int, str, str]:
        return (self.session_id, self.timestamp, self.project, self.display)


class Session(BaseModel):
    """Records sharing one session key, in arrival order."""

    session_id: str
    project: str
    records: list[StoredRecord] = Field(default_factory=list)
    first_timestamp: int = 0
    latest_timestamp: int = 0

    @property
    def record_count(self) -> int:
        return len(self.records)

    def add(self, record: StoredRecord) -> None:
        if not self.records:
            self.first_timestamp = record.timestamp
            self.latest_timestamp = record.timestamp
        else:
            self.first_timestamp = min(self.first_timestamp, record.timestamp)
            self.latest_timestamp = max(self.latest_timestamp, record.timestamp)
        self.records.append(record)

    def summary(self) -> "SessionSummary":
        return SessionSummary(
            session_id=self.session_id,
            project=self.project,
            first_timestamp=self.first_timestamp,
            latest_timestamp=self.latest_timestamp,
            record_count=self.record_count,
        )


class SessionSummary(BaseModel):
    """Metadata-only projection of a session (no prompt bodies)."""

    session_id: str
    project: str
    first_timestamp: int
    latest_timestamp: int
    record_count: int = 0
