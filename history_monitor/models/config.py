"""Application configuration models with Pydantic validation."""

from pathlib import Path

from pydantic import BaseModel, Field

from history_monitor.models.retention import RetentionConfig
from history_monitor.models.stats import TokenPricing

DEFAULT_CLAUDE_DIR = str(Path.home() / ".claude")


class TailerConfig(BaseModel):
    """History file watching configuration."""

    use_polling: bool = Field(
        default=False,
        description="Use a polling observer instead of native file events",
    )
    poll_interval: float = Field(
        default=1.0,
        ge=0.1,
        le=60.0,
        description="Seconds between polls when use_polling is set",
    )


class ApiLimitsConfig(BaseModel):
    """Bounds on responses crossing the UI boundary."""

    max_history_records: int = Field(
        default=1000,
        ge=10,
        le=100000,
        description="Maximum records returned by history endpoints",
    )


class AppConfig(BaseModel):
    """Root application configuration.

    Loaded from config.yaml and validated with Pydantic.
    """

    claude_dir: str = Field(
        default=DEFAULT_CLAUDE_DIR,
        description="Claude Code configuration directory",
    )
    history_file: str | None = Field(
        default=None,
        description="Watched history file (defaults to <claude_dir>/history.jsonl)",
    )
    record_enabled: bool = Field(
        default=True,
        description="Tail the history file and persist new records",
    )
    save_path: str = Field(
        default="data/history",
        description="Directory for per-project-per-day JSONL files",
    )
    retention: RetentionConfig = Field(
        default_factory=RetentionConfig,
        description="Auto-cleanup configuration",
    )
    token_pricing: TokenPricing = Field(
        default_factory=TokenPricing,
        description="Per-million-token prices used when transcripts omit cost",
    )
    tailer: TailerConfig = Field(
        default_factory=TailerConfig,
        description="History file watching settings",
    )
    api_limits: ApiLimitsConfig = Field(
        default_factory=ApiLimitsConfig,
        description="API bounds configuration",
    )
    port: int = Field(
        default=5050,
        ge=1024,
        le=65535,
        description="Port for the Flask server",
    )
    debug: bool = Field(
        default=False,
        description="Enable Flask debug mode",
    )

    @property
    def claude_path(self) -> Path:
        return Path(self.claude_dir).expanduser()

    @property
    def history_path(self) -> Path:
        if self.history_file:
            return Path(self.history_file).expanduser()
        return self.claude_path / "history.jsonl"

    @property
    def projects_path(self) -> Path:
        return self.claude_path / "projects"
