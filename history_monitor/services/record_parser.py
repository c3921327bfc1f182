"""Parsing of history.jsonl lines into typed records.

Every call site gets the same discriminated result: a RawHistoryRecord, or
a ParseError describing why the line was dropped. Nothing here raises.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from history_monitor.models.record import RawHistoryRecord

logger = logging.getLogger(__name__)

MAX_EXCERPT_CHARS = 120


@dataclass
class ParseError:
    """A line that could not be turned into a usable record."""

    reason: str
    line: str = ""


def parse_timestamp(value: Any) -> datetime | None:
    """Normalize a history timestamp to an aware UTC datetime.

    Accepts ISO-8601 strings (``Z`` suffix allowed, naive values are taken
    as UTC) and epoch milliseconds. Returns None for anything that does not
    resolve to a finite instant.

    Args:
        value: Raw ``timestamp`` field.

    Returns:
        datetime in UTC, or None.
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    return None


def parse_record(line: str) -> RawHistoryRecord | ParseError:
    """Parse one JSON line of the history file.

    Args:
        line: A single line (without its newline).

    Returns:
        RawHistoryRecord when the line is valid JSON with a finite timestamp
        and a non-empty project, otherwise ParseError.
    """
    excerpt = line[:MAX_EXCERPT_CHARS]
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        return ParseError(reason=f"invalid JSON: {e.msg}", line=excerpt)

    if not isinstance(data, dict):
        return ParseError(reason="record is not a JSON object", line=excerpt)

    timestamp = parse_timestamp(data.get("timestamp"))
    if timestamp is None:
        return ParseError(reason="missing or invalid timestamp", line=excerpt)

    project = data.get("project")
    if not isinstance(project, str) or not project.strip():
        return ParseError(reason="missing project", line=excerpt)

    session_id = data.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        session_id = None

    prompt = data.get("display")
    if not isinstance(prompt, str):
        prompt = data.get("prompt") if isinstance(data.get("prompt"), str) else ""

    pasted = data.get("pastedContents")
    if not isinstance(pasted, dict):
        pasted = {}

    return RawHistoryRecord(
        timestamp=timestamp,
        project=project,
        session_id=session_id,
        prompt_text=prompt,
        pasted_contents=pasted,
    )


class RecordParser:
    """Stateful wrapper around parse_record that counts outcomes.

    Malformed lines are logged and counted, never raised, so one corrupt
    line cannot stop ingestion of the lines after it.
    """

    def __init__(self):
        self.parsed_count = 0
        self.error_count = 0

    def parse(self, line: str) -> RawHistoryRecord | ParseError:
        result = parse_record(line)
        if isinstance(result, ParseError):
            self.error_count += 1
            logger.debug(f"Skipping history line ({result.reason}): {result.line}")
        else:
            self.parsed_count += 1
        return result

    def stats(self) -> dict[str, int]:
        return {"parsed": self.parsed_count, "errors": self.error_count}
