"""Conversation statistics models."""

from typing import Any

from pydantic import BaseModel, Field


class TokenPricing(BaseModel):
    """Fallback pricing in USD per million tokens.

    Used when a transcript turn carries no explicit cost.
    """

    input_price: float = Field(default=3.0, ge=0)
    output_price: float = Field(default=15.0, ge=0)
    cache_write_price: float = Field(default=3.75, ge=0)
    cache_read_price: float = Field(default=0.3, ge=0)

    def cost(
        self,
        input_tokens: int,
        output_tokens: int,
        cache_creation_tokens: int = 0,
        cache_read_tokens: int = 0,
    ) -> float:
        return (
            input_tokens * self.input_price
            + output_tokens * self.output_price
            + cache_creation_tokens * self.cache_write_price
            + cache_read_tokens * self.cache_read_price
        ) / 1_000_000


class SessionMetadata(BaseModel):
    """Usage, cost and tool statistics for one session transcript.

    Attributes:
        first_timestamp: Epoch ms of the first transcript entry (0 if none).
        last_timestamp: Epoch ms of the last transcript entry (0 if none).
        record_count: Number of parsed transcript entries.
        total_tokens: Sum of input, output and cache tokens.
        total_cost_usd: Reported cost, or cost computed from token pricing.
        tool_usage: Tool name -> invocation count.
        tool_errors: Tool name -> number of results flagged as errors.
        tool_avg_duration: Tool name -> mean duration in milliseconds, only
            for tools with at least one timed result.
        tool_duration_samples: Tool name -> number of timed results behind
            tool_avg_duration.
    """

    session_id: str
    project: str
    first_timestamp: int = 0
    last_timestamp: int = 0
    record_count: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_cost_usd: float = 0.0
    has_tool_use: bool = False
    has_errors: bool = False
    tool_use_count: int = 0
    tool_usage: dict[str, int] = Field(default_factory=dict)
    tool_errors: dict[str, int] = Field(default_factory=dict)
    tool_avg_duration: dict[str, float] = Field(default_factory=dict)
    tool_duration_samples: dict[str, int] = Field(default_factory=dict)


class ProjectStatistics(BaseModel):
    """Statistics summed over every transcript of one project.

    tool_avg_duration is weighted by the number of timed results each
    session contributed, not averaged per session.
    """

    project: str
    session_count: int = 0
    first_timestamp: int = 0
    last_timestamp: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_cost_usd: float = 0.0
    tool_use_count: int = 0
    error_count: int = 0
    tool_usage: dict[str, int] = Field(default_factory=dict)
    tool_errors: dict[str, int] = Field(default_factory=dict)
    tool_avg_duration: dict[str, float] = Field(default_factory=dict)
    sessions: list[SessionMetadata] = Field(default_factory=list)


class ConversationMessage(BaseModel):
    """One user or assistant turn of a transcript.

    Attributes:
        uuid: Transcript entry uuid (first entry when streamed).
        role: "user" or "assistant".
        timestamp: Epoch ms, 0 when the entry carried none.
        content: Content blocks (text, tool_use, tool_result, ...). Plain
            string content is wrapped in a single text block.
        usage: Token usage of an assistant turn.
        cost_usd: Reported cost of the turn, when present.
    """

    uuid: str | None = None
    role: str
    timestamp: int = 0
    model: str | None = None
    content: list[dict[str, Any]] = Field(default_factory=list)
    usage: dict[str, Any] | None = None
    cost_usd: float | None = None


class Conversation(BaseModel):
    """Ordered messages of one session transcript."""

    session_id: str
    project: str
    found: bool = False
    messages: list[ConversationMessage] = Field(default_factory=list)
