"""Pytest configuration and shared fixtures for Claude History Monitor tests."""

import json
import tempfile
from pathlib import Path

import pytest

from history_monitor.services.config_service import reset_config_service
from history_monitor.services.event_bus import reset_event_bus


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset module-level singletons before and after each test."""
    reset_event_bus()
    reset_config_service()
    yield
    reset_event_bus()
    reset_config_service()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def history_line():
    """Build one history.jsonl line (with trailing newline)."""

    def _build(
        timestamp=1704067200000,
        project="/home/u/app",
        session_id="s1",
        display="hello",
        **extra,
    ) -> str:
        data = {"timestamp": timestamp, "project": project, "display": display, **extra}
        if session_id is not None:
            data["sessionId"] = session_id
        return json.dumps(data) + "\n"

    return _build
