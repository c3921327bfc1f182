"""Retention (auto-cleanup) models."""

from enum import Enum

from pydantic import BaseModel, Field

DAY_MS = 24 * 60 * 60 * 1000


class RetentionStatus(str, Enum):
    """Retention scheduler states.

    State transitions:
    - DISABLED → ARMED (enable)
    - ARMED → RUNNING (interval elapsed or manual trigger)
    - RUNNING → ARMED (cleanup finished or failed, re-armed from "now")
    - ARMED/RUNNING → DISABLED (disable)
    """

    DISABLED = "disabled"
    """No timers pending."""

    ARMED = "armed"
    """Exactly one cleanup timer pending for next_cleanup_time."""

    RUNNING = "running"
    """Cleanup in progress; overlapping triggers are rejected."""


class RetentionConfig(BaseModel):
    """Retention parameters supplied by the UI boundary."""

    enabled: bool = Field(default=False, description="Whether auto-cleanup is enabled")
    interval_ms: int = Field(
        default=DAY_MS,
        ge=1000,
        description="Milliseconds between cleanup runs",
    )
    retain_ms: int = Field(
        default=DAY_MS // 2,
        ge=0,
        description="Entries older than now - retain_ms are deleted",
    )


class RetentionState(BaseModel):
    """Live scheduler state, reported with auto-cleanup-config-updated."""

    enabled: bool = False
    interval_ms: int = DAY_MS
    retain_ms: int = DAY_MS // 2
    last_cleanup_time: int | None = None
    next_cleanup_time: int | None = None
    status: RetentionStatus = RetentionStatus.DISABLED

    def to_event(self) -> dict:
        return {
            "enabled": self.enabled,
            "intervalMs": self.interval_ms,
            "retainMs": self.retain_ms,
            "lastCleanupTime": self.last_cleanup_time,
            "nextCleanupTime": self.next_cleanup_time,
            "status": self.status.value,
        }


class CleanupResult(BaseModel):
    """Outcome of one retention pass over the save directory.

    Attributes:
        deleted_count: Entries contained in the files that were deleted.
        deleted_files: Names of deleted files.
        failed_files: Names of files that could not be deleted.
        next_cleanup_time: Set by the scheduler after re-arming.
    """

    success: bool = True
    deleted_count: int = 0
    deleted_files: list[str] = Field(default_factory=list)
    failed_files: list[str] = Field(default_factory=list)
    next_cleanup_time: int | None = None
    error: str | None = None
