"""Expansion of pasted-content references.

Newer Claude Code versions store large pastes out of line, in
``<claude_dir>/paste-cache/<contentHash>.txt``, and leave only the hash in
history.jsonl.
"""

import logging
from pathlib import Path
from typing import Any

from history_monitor.models.record import to_epoch_ms
from history_monitor.services.record_parser import ParseError, parse_record

logger = logging.getLogger(__name__)


def _read_paste(claude_dir: Path, content_hash: str) -> str | None:
    paste_file = claude_dir / "paste-cache" / f"{content_hash}.txt"
    if not paste_file.exists():
        return None
    try:
        return paste_file.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Failed to read paste cache {content_hash}: {e}")
        return None


def expand_pasted_contents(pasted: dict[str, Any], claude_dir: str | Path) -> dict[str, Any]:
    """Replace contentHash references with the cached paste text.

    Values that are not hash references, or whose cache file is missing,
    are returned unchanged.

    Args:
        pasted: The record's pastedContents mapping.
        claude_dir: Claude Code configuration directory.

    Returns:
        New mapping with ``content`` filled in where possible.
    """
    claude_dir = Path(claude_dir)
    expanded: dict[str, Any] = {}
    for key, value in pasted.items():
        if isinstance(value, dict) and value.get("contentHash") and not value.get("content"):
            content = _read_paste(claude_dir, str(value["contentHash"]))
            expanded[key] = {**value, "content": content} if content is not None else value
        else:
            expanded[key] = value
    return expanded


def read_session_pastes(
    history_file: str | Path, session_id: str, claude_dir: str | Path
) -> list[dict[str, Any]]:
    """List the distinct pastes of one session from the history file.

    Args:
        history_file: Path to history.jsonl.
        session_id: Session to collect pastes for.
        claude_dir: Claude Code configuration directory.

    Returns:
        List of dicts with key, filename, content, contentHash, timestamp.
    """
    history_file = Path(history_file)
    claude_dir = Path(claude_dir)
    if not history_file.exists():
        return []

    pastes: list[dict[str, Any]] = []
    seen_hashes: set[str] = set()

    try:
        with open(history_file, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = parse_record(line)
                if isinstance(record, ParseError) or record.session_id != session_id:
                    continue

                for key, value in record.pasted_contents.items():
                    if not isinstance(value, dict):
                        continue
                    content_hash = value.get("contentHash") or ""
                    if content_hash:
                        if content_hash in seen_hashes:
                            continue
                        seen_hashes.add(content_hash)

                    content = value.get("content") or ""
                    if not content and content_hash:
                        content = _read_paste(claude_dir, content_hash) or ""
                    if content:
                        pastes.append(
                            {
                                "key": key,
                                "filename": value.get("basename") or key,
                                "content": content,
                                "contentHash": content_hash or None,
                                "timestamp": to_epoch_ms(record.timestamp),
                            }
                        )
    except OSError as e:
        logger.warning(f"Error reading history file {history_file}: {e}")

    return pastes
