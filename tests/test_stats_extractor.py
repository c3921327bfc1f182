"""Tests for ConversationStatsExtractor."""

import json

import pytest

from history_monitor.models.stats import TokenPricing
from history_monitor.services.stats_extractor import (
    ConversationStatsExtractor,
    candidate_encodings,
    encode_project_path,
)

PROJECT = "/home/u/my_app"


@pytest.fixture
def projects_dir(temp_dir):
    path = temp_dir / "projects"
    path.mkdir()
    return path


@pytest.fixture
def extractor(projects_dir):
    return ConversationStatsExtractor(projects_dir=projects_dir)


def _write_transcript(projects_dir, entries, session_id="s1", encoded=None):
    directory = projects_dir / (encoded or encode_project_path(PROJECT))
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{session_id}.jsonl"
    with open(path, "w") as f:
        for entry in entries:
            f.write((entry if isinstance(entry, str) else json.dumps(entry)) + "\n")
    return path


def _assistant(message_id, usage, ts, content=None, **extra):
    return {
        "type": "assistant",
        "timestamp": ts,
        "message": {"id": message_id, "usage": usage, "content": content or []},
        **extra,
    }


def _tool_use(tool_id, name):
    return {"type": "tool_use", "id": tool_id, "name": name, "input": {}}


def _tool_result(tool_id, ts, is_error=False, duration_ms=None):
    entry = {
        "type": "user",
        "timestamp": ts,
        "message": {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": tool_id, "is_error": is_error}],
        },
    }
    if duration_ms is not None:
        entry["toolUseResult"] = {"durationMs": duration_ms}
    return entry


class TestEncoding:
    """Tests for transcript directory naming."""

    def test_encode_project_path(self):
        assert encode_project_path("/home/u/app") == "-home-u-app"

    def test_candidates_include_legacy_variant(self):
        assert candidate_encodings("/home/u/my_app.v2") == [
            "-home-u-my_app.v2",
            "-home-u-my-app-v2",
        ]

    def test_finds_legacy_directory(self, extractor, projects_dir):
        _write_transcript(projects_dir, [], encoded="-home-u-my-app")
        assert extractor.find_transcript(PROJECT, "s1") is not None


class TestZeroedStatistics:
    """Missing or empty transcripts never fail."""

    def test_missing_transcript(self, extractor):
        metadata = extractor.extract("nope", PROJECT)
        assert metadata.session_id == "nope"
        assert metadata.project == PROJECT
        assert metadata.total_tokens == 0
        assert metadata.total_cost_usd == 0
        assert metadata.record_count == 0
        assert metadata.tool_use_count == 0
        assert metadata.tool_usage == {}
        assert metadata.tool_errors == {}
        assert metadata.tool_avg_duration == {}
        assert not metadata.has_tool_use
        assert not metadata.has_errors

    def test_empty_transcript(self, extractor, projects_dir):
        _write_transcript(projects_dir, [])
        metadata = extractor.extract("s1", PROJECT)
        assert metadata.total_tokens == 0
        assert metadata.first_timestamp == 0

    def test_corrupt_lines_skipped(self, extractor, projects_dir):
        _write_transcript(
            projects_dir,
            ["{broken", _assistant("m1", {"input_tokens": 10, "output_tokens": 5}, "2024-01-01T00:00:00Z")],
        )
        metadata = extractor.extract("s1", PROJECT)
        assert metadata.total_tokens == 15
        assert metadata.record_count == 1


class TestUsageAndCost:
    """Tests for token and cost accumulation."""

    def test_streamed_message_counted_once(self, extractor, projects_dir):
        """Repeated writes of one message id use the last usage block."""
        _write_transcript(
            projects_dir,
            [
                _assistant("m1", {"input_tokens": 100, "output_tokens": 1}, "2024-01-01T00:00:00Z"),
                _assistant("m1", {"input_tokens": 100, "output_tokens": 50}, "2024-01-01T00:00:01Z"),
                _assistant(
                    "m2",
                    {
                        "input_tokens": 10,
                        "output_tokens": 20,
                        "cache_creation_input_tokens": 30,
                        "cache_read_input_tokens": 40,
                    },
                    "2024-01-01T00:00:05Z",
                ),
            ],
        )
        metadata = extractor.extract("s1", PROJECT)

        assert metadata.input_tokens == 110
        assert metadata.output_tokens == 70
        assert metadata.cache_creation_tokens == 30
        assert metadata.cache_read_tokens == 40
        assert metadata.total_tokens == 250
        assert metadata.first_timestamp == 1704067200000
        assert metadata.last_timestamp == 1704067205000

    def test_reported_cost_used(self, extractor, projects_dir):
        _write_transcript(
            projects_dir,
            [
                _assistant("m1", {"input_tokens": 1, "output_tokens": 1}, "2024-01-01T00:00:00Z", costUSD=0.25),
                _assistant("m2", {"input_tokens": 1, "output_tokens": 1}, "2024-01-01T00:00:01Z", cost_usd=0.5),
            ],
        )
        assert extractor.extract("s1", PROJECT).total_cost_usd == pytest.approx(0.75)

    def test_cost_computed_from_pricing(self, projects_dir):
        extractor = ConversationStatsExtractor(
            projects_dir=projects_dir,
            pricing=TokenPricing(input_price=1.0, output_price=2.0, cache_write_price=0, cache_read_price=0),
        )
        _write_transcript(
            projects_dir,
            [_assistant("m1", {"input_tokens": 1_000_000, "output_tokens": 500_000}, "2024-01-01T00:00:00Z")],
        )
        assert extractor.extract("s1", PROJECT).total_cost_usd == pytest.approx(2.0)


class TestToolLedger:
    """Tests for tool counts, errors and durations."""

    def test_tool_statistics(self, extractor, projects_dir):
        _write_transcript(
            projects_dir,
            [
                _assistant(
                    "m1",
                    {"input_tokens": 1, "output_tokens": 1},
                    "2024-01-01T00:00:00Z",
                    content=[_tool_use("t1", "Bash"), _tool_use("t2", "Read")],
                ),
                _tool_result("t1", "2024-01-01T00:00:02Z", duration_ms=1200),
                _tool_result("t2", "2024-01-01T00:00:03Z", is_error=True),
                _assistant(
                    "m2",
                    {"input_tokens": 1, "output_tokens": 1},
                    "2024-01-01T00:00:04Z",
                    content=[_tool_use("t3", "Bash"), _tool_use("t4", "Grep")],
                ),
                _tool_result("t3", "2024-01-01T00:00:05Z", duration_ms=800),
            ],
        )
        metadata = extractor.extract("s1", PROJECT)

        assert metadata.tool_usage == {"Bash": 2, "Read": 1, "Grep": 1}
        assert metadata.tool_use_count == 4
        assert metadata.has_tool_use
        assert metadata.tool_errors == {"Read": 1}
        assert metadata.has_errors
        # Read falls back to the timestamp difference; Grep never completed
        assert metadata.tool_avg_duration == {"Bash": 1000.0, "Read": 3000.0}

    def test_extract_project(self, extractor, projects_dir):
        _write_transcript(projects_dir, [], session_id="a")
        results = extractor.extract_project(PROJECT, ["a", "b"])
        assert [m.session_id for m in results] == ["a", "b"]


class TestProjectStatistics:
    """Tests for totals over every transcript of a project."""

    def test_sums_sessions_found_on_disk(self, extractor, projects_dir):
        _write_transcript(
            projects_dir,
            [
                _assistant(
                    "m1",
                    {"input_tokens": 10, "output_tokens": 20},
                    "2024-01-01T00:00:00Z",
                    content=[_tool_use("t1", "Bash")],
                    costUSD=0.5,
                ),
                _tool_result("t1", "2024-01-01T00:00:01Z", duration_ms=1000),
            ],
            session_id="a",
        )
        _write_transcript(
            projects_dir,
            [
                _assistant(
                    "m2",
                    {"input_tokens": 1, "output_tokens": 2},
                    "2024-01-02T00:00:00Z",
                    content=[_tool_use("t2", "Bash"), _tool_use("t3", "Bash"), _tool_use("t4", "Read")],
                    costUSD=0.25,
                ),
                _tool_result("t2", "2024-01-02T00:00:01Z", duration_ms=2000),
                _tool_result("t3", "2024-01-02T00:00:02Z", duration_ms=4000, is_error=True),
            ],
            session_id="b",
        )

        stats = extractor.project_statistics(PROJECT)

        assert stats.session_count == 2
        assert [m.session_id for m in stats.sessions] == ["a", "b"]
        assert stats.total_tokens == 33
        assert stats.total_cost_usd == pytest.approx(0.75)
        assert stats.tool_use_count == 4
        assert stats.tool_usage == {"Bash": 3, "Read": 1}
        assert stats.tool_errors == {"Bash": 1}
        assert stats.error_count == 1
        # weighted by timed results: (1000 + 2000 + 4000) / 3
        assert stats.tool_avg_duration["Bash"] == pytest.approx(7000 / 3)
        assert stats.first_timestamp == 1704067200000
        assert stats.last_timestamp == 1704153602000

    def test_includes_legacy_encoding(self, extractor, projects_dir):
        _write_transcript(projects_dir, [], session_id="a")
        _write_transcript(projects_dir, [], session_id="b", encoded="-home-u-my-app")

        assert sorted(extractor.session_files(PROJECT)) == ["a", "b"]
        assert extractor.project_statistics(PROJECT).session_count == 2

    def test_unknown_project_is_zeroed(self, extractor):
        stats = extractor.project_statistics("/nowhere")
        assert stats.session_count == 0
        assert stats.total_tokens == 0
        assert stats.tool_usage == {}
        assert stats.sessions == []


class TestReadConversation:
    """Tests for reading transcript turns."""

    def test_missing_transcript_is_empty(self, extractor):
        conversation = extractor.read_conversation("nope", PROJECT)
        assert not conversation.found
        assert conversation.messages == []

    def test_turns_in_order(self, extractor, projects_dir):
        _write_transcript(
            projects_dir,
            [
                {"type": "summary", "summary": "Fix the build"},
                {
                    "type": "user",
                    "uuid": "u1",
                    "timestamp": "2024-01-01T00:00:00Z",
                    "message": {"role": "user", "content": "run the tests"},
                },
                _assistant(
                    "m1",
                    {"input_tokens": 10, "output_tokens": 1},
                    "2024-01-01T00:00:01Z",
                    content=[{"type": "text", "text": "Running"}],
                    costUSD=0.1,
                ),
                _tool_result("t1", "2024-01-01T00:00:03Z"),
                "{corrupt",
            ],
        )

        conversation = extractor.read_conversation("s1", PROJECT)

        assert conversation.found
        assert [m.role for m in conversation.messages] == ["user", "assistant", "user"]
        user = conversation.messages[0]
        assert user.uuid == "u1"
        assert user.timestamp == 1704067200000
        assert user.content == [{"type": "text", "text": "run the tests"}]
        assistant = conversation.messages[1]
        assert assistant.content == [{"type": "text", "text": "Running"}]
        assert assistant.usage == {"input_tokens": 10, "output_tokens": 1}
        assert assistant.cost_usd == pytest.approx(0.1)
        assert conversation.messages[2].content[0]["type"] == "tool_result"

    def test_streamed_message_merged(self, extractor, projects_dir):
        """Entries sharing a message id form one message."""
        _write_transcript(
            projects_dir,
            [
                _assistant(
                    "m1",
                    {"input_tokens": 5, "output_tokens": 1},
                    "2024-01-01T00:00:00Z",
                    content=[{"type": "text", "text": "Let me look"}],
                ),
                _assistant(
                    "m1",
                    {"input_tokens": 5, "output_tokens": 9},
                    "2024-01-01T00:00:01Z",
                    content=[_tool_use("t1", "Read")],
                ),
            ],
        )

        messages = extractor.read_conversation("s1", PROJECT).messages

        assert len(messages) == 1
        assert [b["type"] for b in messages[0].content] == ["text", "tool_use"]
        assert messages[0].usage["output_tokens"] == 9
        assert messages[0].timestamp == 1704067200000
