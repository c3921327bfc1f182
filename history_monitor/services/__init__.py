"""Services for Claude History Monitor."""

from history_monitor.services.config_service import (
    ConfigService,
    get_config_service,
    reset_config_service,
)
from history_monitor.services.event_bus import Event, EventBus, get_event_bus, reset_event_bus
from history_monitor.services.file_tailer import FileTailer, TailHandle
from history_monitor.services.ingestion_service import IngestionService
from history_monitor.services.line_buffer import LineBuffer
from history_monitor.services.log_store import LogStore
from history_monitor.services.paste_cache import expand_pasted_contents, read_session_pastes
from history_monitor.services.record_parser import ParseError, RecordParser, parse_record
from history_monitor.services.retention_scheduler import RetentionScheduler, SchedulerResult
from history_monitor.services.session_aggregator import (
    DeleteResult,
    IngestResult,
    SessionAggregator,
)
from history_monitor.services.stats_extractor import ConversationStatsExtractor

__all__ = [
    # Config
    "ConfigService",
    "get_config_service",
    "reset_config_service",
    # Events
    "Event",
    "EventBus",
    "get_event_bus",
    "reset_event_bus",
    # Ingestion
    "FileTailer",
    "IngestionService",
    "LineBuffer",
    "ParseError",
    "RecordParser",
    "TailHandle",
    "parse_record",
    # Sessions and storage
    "DeleteResult",
    "IngestResult",
    "LogStore",
    "SessionAggregator",
    "expand_pasted_contents",
    "read_session_pastes",
    # Statistics
    "ConversationStatsExtractor",
    # Retention
    "RetentionScheduler",
    "SchedulerResult",
]
