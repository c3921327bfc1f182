"""Usage, cost and tool statistics from Claude Code session transcripts.

Transcripts live in ~/.claude/projects/<encoded-project>/<session>.jsonl and
are owned by Claude Code; this module only reads them. Statistics are
recomputed from scratch on every request.
"""

import json
import logging
from collections.abc import Generator
from pathlib import Path
from typing import Any

from history_monitor.models.record import to_epoch_ms
from history_monitor.models.stats import (
    Conversation,
    ConversationMessage,
    ProjectStatistics,
    SessionMetadata,
    TokenPricing,
)
from history_monitor.services.record_parser import parse_timestamp

logger = logging.getLogger(__name__)

CLAUDE_PROJECTS_DIR = Path.home() / ".claude" / "projects"


def encode_project_path(project_path: str) -> str:
    """Encode a project path to Claude Code's directory format.

    Args:
        project_path: Absolute path to the project (e.g., /Users/sam/app)

    Returns:
        Encoded directory name (e.g., -Users-sam-app)
    """
    return project_path.replace("/", "-")


def candidate_encodings(project_path: str) -> list[str]:
    """Directory names Claude Code may have used for a project.

    Newer releases also replace underscores and dots with hyphens.
    """
    encodings = [encode_project_path(project_path)]
    legacy = encodings[0].replace("_", "-").replace(".", "-")
    if legacy not in encodings:
        encodings.append(legacy)
    return encodings


def parse_jsonl_stream(log_file: Path) -> Generator[dict, None, None]:
    """Yield the JSON objects of a transcript, skipping corrupt lines."""
    with open(log_file, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                parsed = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict):
                yield parsed


def _int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _content_blocks(entry: dict) -> list[dict]:
    message = entry.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _entry_cost(entry: dict) -> float | None:
    message = entry.get("message") if isinstance(entry.get("message"), dict) else {}
    for value in (entry.get("costUSD"), entry.get("cost_usd"), message.get("cost_usd")):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


class _TurnUsage:
    __slots__ = ("input", "output", "cache_creation", "cache_read", "cost")

    def __init__(self, usage: dict, cost: float | None):
        self.input = _int(usage.get("input_tokens"))
        self.output = _int(usage.get("output_tokens"))
        self.cache_creation = _int(usage.get("cache_creation_input_tokens"))
        self.cache_read = _int(usage.get("cache_read_input_tokens"))
        self.cost = cost


class ConversationStatsExtractor:
    """Computes SessionMetadata from session transcripts and reads their turns.

    A missing, unreadable or empty transcript produces zeroed statistics;
    nothing here raises to the caller.
    """

    def __init__(
        self,
        projects_dir: str | Path | None = None,
        pricing: TokenPricing | None = None,
    ):
        """Initialize the extractor.

        Args:
            projects_dir: Claude Code projects directory. Defaults to
                ~/.claude/projects.
            pricing: Fallback pricing for turns that carry no cost.
        """
        self.projects_dir = Path(projects_dir) if projects_dir else CLAUDE_PROJECTS_DIR
        self.pricing = pricing or TokenPricing()

    def find_transcript(self, project: str, session_id: str) -> Path | None:
        """Locate the transcript of a session, trying each known encoding."""
        for encoded in candidate_encodings(project):
            candidate = self.projects_dir / encoded / f"{session_id}.jsonl"
            if candidate.is_file():
                return candidate
        return None

    def session_files(self, project: str) -> dict[str, Path]:
        """Transcripts of a project keyed by session id, sorted by id.

        A session present under more than one encoding is taken from the
        first encoding that has it.
        """
        found: dict[str, Path] = {}
        for encoded in candidate_encodings(project):
            directory = self.projects_dir / encoded
            if not directory.is_dir():
                continue
            for path in directory.glob("*.jsonl"):
                if path.is_file():
                    found.setdefault(path.stem, path)
        return dict(sorted(found.items()))

    def _read_entries(self, transcript: Path) -> list[dict] | None:
        try:
            return list(parse_jsonl_stream(transcript))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Error reading transcript {transcript}: {e}")
            return None

    def extract(self, session_id: str, project: str) -> SessionMetadata:
        """Compute statistics for one session.

        Args:
            session_id: Session UUID (transcript file stem).
            project: Absolute project path the session ran in.

        Returns:
            SessionMetadata; every numeric field is zero when no transcript
            could be read.
        """
        transcript = self.find_transcript(project, session_id)
        if transcript is None:
            logger.debug(f"No transcript for session {session_id} in {project}")
            return SessionMetadata(session_id=session_id, project=project)
        return self._extract_file(session_id, project, transcript)

    def _extract_file(self, session_id: str, project: str, transcript: Path) -> SessionMetadata:
        metadata = SessionMetadata(session_id=session_id, project=project)
        entries = self._read_entries(transcript)
        if entries is not None:
            self._accumulate(metadata, entries)
        return metadata

    def extract_project(self, project: str, session_ids: list[str]) -> list[SessionMetadata]:
        """Compute statistics for several sessions of one project."""
        return [self.extract(session_id, project) for session_id in session_ids]

    def project_statistics(self, project: str) -> ProjectStatistics:
        """Sum the statistics of every transcript found for a project.

        Sessions are discovered from the project's transcript directory.
        A project without transcripts yields zeroed statistics.
        """
        sessions = [
            self._extract_file(session_id, project, path)
            for session_id, path in self.session_files(project).items()
        ]
        stats = ProjectStatistics(project=project, session_count=len(sessions), sessions=sessions)

        duration_sum: dict[str, float] = {}
        duration_count: dict[str, int] = {}
        for metadata in sessions:
            stats.total_tokens += metadata.total_tokens
            stats.input_tokens += metadata.input_tokens
            stats.output_tokens += metadata.output_tokens
            stats.cache_creation_tokens += metadata.cache_creation_tokens
            stats.cache_read_tokens += metadata.cache_read_tokens
            stats.total_cost_usd += metadata.total_cost_usd
            stats.tool_use_count += metadata.tool_use_count

            for name, count in metadata.tool_usage.items():
                stats.tool_usage[name] = stats.tool_usage.get(name, 0) + count
            for name, count in metadata.tool_errors.items():
                stats.tool_errors[name] = stats.tool_errors.get(name, 0) + count
            for name, avg in metadata.tool_avg_duration.items():
                samples = metadata.tool_duration_samples.get(name, 1)
                duration_sum[name] = duration_sum.get(name, 0.0) + avg * samples
                duration_count[name] = duration_count.get(name, 0) + samples

            if metadata.first_timestamp and (
                not stats.first_timestamp or metadata.first_timestamp < stats.first_timestamp
            ):
                stats.first_timestamp = metadata.first_timestamp
            stats.last_timestamp = max(stats.last_timestamp, metadata.last_timestamp)

        stats.error_count = sum(stats.tool_errors.values())
        stats.tool_avg_duration = {
            name: duration_sum[name] / count for name, count in duration_count.items() if count > 0
        }
        logger.debug(f"Project statistics for {project}: {stats.session_count} session(s)")
        return stats

    def read_conversation(self, session_id: str, project: str) -> Conversation:
        """Read the user and assistant turns of a session transcript.

        Streamed assistant entries sharing a message id are merged into one
        message: content blocks are concatenated in file order and the last
        usage block wins. Entries of other types (summaries, system notes,
        snapshots) are skipped. A missing transcript yields an empty
        conversation with ``found`` False.
        """
        conversation = Conversation(session_id=session_id, project=project)
        transcript = self.find_transcript(project, session_id)
        if transcript is None:
            return conversation
        entries = self._read_entries(transcript)
        if entries is None:
            return conversation

        conversation.found = True
        by_message_id: dict[str, ConversationMessage] = {}
        for entry in entries:
            entry_type = entry.get("type")
            message = entry.get("message")
            if entry_type not in ("user", "assistant") or not isinstance(message, dict):
                continue

            role = message.get("role")
            if role not in ("user", "assistant"):
                role = entry_type
            content = message.get("content")
            if isinstance(content, str):
                blocks = [{"type": "text", "text": content}]
            else:
                blocks = _content_blocks(entry)
            usage = message.get("usage") if isinstance(message.get("usage"), dict) else None
            cost = _entry_cost(entry)

            message_id = message.get("id")
            if role == "assistant" and isinstance(message_id, str) and message_id:
                merged = by_message_id.get(message_id)
                if merged is not None:
                    merged.content.extend(blocks)
                    if usage is not None:
                        merged.usage = usage
                    if cost is not None:
                        merged.cost_usd = cost
                    continue

            parsed_ts = parse_timestamp(entry.get("timestamp"))
            model = message.get("model")
            uuid = entry.get("uuid")
            turn = ConversationMessage(
                uuid=uuid if isinstance(uuid, str) else None,
                role=role,
                timestamp=to_epoch_ms(parsed_ts) if parsed_ts else 0,
                model=model if isinstance(model, str) else None,
                content=blocks,
                usage=usage,
                cost_usd=cost,
            )
            if role == "assistant" and isinstance(message_id, str) and message_id:
                by_message_id[message_id] = turn
            conversation.messages.append(turn)

        return conversation

    def _accumulate(self, metadata: SessionMetadata, entries: list[dict]) -> None:
        # Streaming writes the same assistant message several times; the
        # last usage block per message id wins.
        turns: dict[str, _TurnUsage] = {}
        anonymous_turns: list[_TurnUsage] = []

        tool_names: dict[str, str] = {}
        tool_started: dict[str, int] = {}
        duration_sum: dict[str, float] = {}
        duration_count: dict[str, int] = {}

        timestamps: list[int] = []

        for entry in entries:
            parsed_ts = parse_timestamp(entry.get("timestamp"))
            entry_ms = to_epoch_ms(parsed_ts) if parsed_ts else None
            if entry_ms is not None:
                timestamps.append(entry_ms)

            message = entry.get("message")
            if entry.get("type") == "assistant" and isinstance(message, dict):
                usage = message.get("usage")
                if isinstance(usage, dict):
                    turn = _TurnUsage(usage, _entry_cost(entry))
                    message_id = message.get("id")
                    if isinstance(message_id, str) and message_id:
                        turns[message_id] = turn
                    else:
                        anonymous_turns.append(turn)

            for block in _content_blocks(entry):
                block_type = block.get("type")
                if block_type == "tool_use":
                    name = block.get("name")
                    if not isinstance(name, str) or not name:
                        name = "unknown"
                    metadata.tool_usage[name] = metadata.tool_usage.get(name, 0) + 1
                    tool_id = block.get("id")
                    if isinstance(tool_id, str) and tool_id:
                        tool_names[tool_id] = name
                        if entry_ms is not None:
                            tool_started[tool_id] = entry_ms

                elif block_type == "tool_result":
                    tool_id = block.get("tool_use_id")
                    name = tool_names.get(tool_id) if isinstance(tool_id, str) else None
                    if name is None:
                        continue
                    if block.get("is_error"):
                        metadata.tool_errors[name] = metadata.tool_errors.get(name, 0) + 1

                    duration = self._tool_duration(entry, tool_started.get(tool_id), entry_ms)
                    if duration is not None:
                        duration_sum[name] = duration_sum.get(name, 0.0) + duration
                        duration_count[name] = duration_count.get(name, 0) + 1

        for turn in [*turns.values(), *anonymous_turns]:
            metadata.input_tokens += turn.input
            metadata.output_tokens += turn.output
            metadata.cache_creation_tokens += turn.cache_creation
            metadata.cache_read_tokens += turn.cache_read
            if turn.cost is not None:
                metadata.total_cost_usd += turn.cost
            else:
                metadata.total_cost_usd += self.pricing.cost(
                    turn.input, turn.output, turn.cache_creation, turn.cache_read
                )

        metadata.total_tokens = (
            metadata.input_tokens
            + metadata.output_tokens
            + metadata.cache_creation_tokens
            + metadata.cache_read_tokens
        )
        metadata.record_count = len(entries)
        if timestamps:
            metadata.first_timestamp = min(timestamps)
            metadata.last_timestamp = max(timestamps)

        metadata.tool_use_count = sum(metadata.tool_usage.values())
        metadata.has_tool_use = metadata.tool_use_count > 0
        metadata.has_errors = any(metadata.tool_errors.values())
        metadata.tool_avg_duration = {
            name: duration_sum[name] / count
            for name, count in duration_count.items()
            if count > 0
        }
        metadata.tool_duration_samples = {
            name: count for name, count in duration_count.items() if count > 0
        }

    @staticmethod
    def _tool_duration(entry: dict, started_ms: int | None, result_ms: int | None) -> float | None:
        tool_result = entry.get("toolUseResult")
        if isinstance(tool_result, dict):
            reported = tool_result.get("durationMs")
            if isinstance(reported, (int, float)) and not isinstance(reported, bool):
                return float(reported)
        if started_ms is not None and result_ms is not None and result_ms >= started_ms:
            return float(result_ms - started_ms)
        return None
