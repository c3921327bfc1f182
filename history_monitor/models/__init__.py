"""Domain models for Claude History Monitor."""

from history_monitor.models.config import ApiLimitsConfig, AppConfig, TailerConfig
from history_monitor.models.record import (
    NormalizedLogEntry,
    RawHistoryRecord,
    Session,
    SessionSummary,
    StoredRecord,
    synthesize_session_key,
    to_epoch_ms,
)
from history_monitor.models.retention import (
    CleanupResult,
    RetentionConfig,
    RetentionState,
    RetentionStatus,
)
from history_monitor.models.stats import (
    Conversation,
    ConversationMessage,
    ProjectStatistics,
    SessionMetadata,
    TokenPricing,
)

__all__ = [
    # Config
    "ApiLimitsConfig",
    "AppConfig",
    "TailerConfig",
    # Records
    "NormalizedLogEntry",
    "RawHistoryRecord",
    "Session",
    "SessionSummary",
    "StoredRecord",
    "synthesize_session_key",
    "to_epoch_ms",
    # Retention
    "CleanupResult",
    "RetentionConfig",
    "RetentionState",
    "RetentionStatus",
    # Statistics
    "Conversation",
    "ConversationMessage",
    "ProjectStatistics",
    "SessionMetadata",
    "TokenPricing",
]
