"""History routes for Claude History Monitor.

Provides REST API endpoints over the persisted history:
- GET /api/history - Bounded full record list
- GET /api/history/metadata - Metadata-only session list
- GET /api/history/sessions/<id> - All records of one session
- GET /api/history/sessions/<id>/pastes - Pasted contents of one session
- GET /api/history/sessions/<id>/conversation - Transcript turns of one session
- DELETE /api/history/records - Delete one record
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from history_monitor.models.config import AppConfig
from history_monitor.services.paste_cache import read_session_pastes
from history_monitor.services.session_aggregator import SessionAggregator
from history_monitor.services.stats_extractor import ConversationStatsExtractor

history_bp = Blueprint("history", __name__)

logger = logging.getLogger(__name__)


def _get_aggregator() -> SessionAggregator:
    return current_app.extensions.get("session_aggregator")


def _get_config() -> AppConfig:
    return current_app.extensions.get("config")


def _record_limit() -> int:
    """Requested record limit, capped by api_limits.max_history_records."""
    cap = _get_config().api_limits.max_history_records
    limit = request.args.get("limit", type=int)
    if limit is None or limit <= 0:
        return cap
    return min(limit, cap)


def _record_to_json(record) -> dict:
    return {
        "timestamp": record.timestamp,
        "project": record.project,
        "sessionId": record.session_id,
        "display": record.display,
        "pastedContents": record.pasted_contents,
    }


@history_bp.route("/history", methods=["GET"])
def get_history():
    """Get persisted records in file order.

    Query parameters:
        limit: Maximum records (capped by configuration)

    Returns:
        JSON object with success, records, count.
    """
    records = _get_aggregator().read_history(_record_limit())
    return jsonify(
        {
            "success": True,
            "records": [_record_to_json(r) for r in records],
            "count": len(records),
        }
    )


@history_bp.route("/history/metadata", methods=["GET"])
def get_history_metadata():
    """Get session summaries without prompt bodies."""
    summaries = _get_aggregator().list_metadata_only(_record_limit())
    return jsonify(
        {
            "success": True,
            "sessions": [
                {
                    "sessionId": s.session_id,
                    "project": s.project,
                    "firstTimestamp": s.first_timestamp,
                    "latestTimestamp": s.latest_timestamp,
                    "recordCount": s.record_count,
                }
                for s in summaries
            ],
            "count": len(summaries),
        }
    )


@history_bp.route("/history/sessions/<session_id>", methods=["GET"])
def get_session_details(session_id: str):
    """Get every record of one session, newest first."""
    records = _get_aggregator().read_session_details(session_id)
    if not records:
        return jsonify({"success": False, "error": "Session not found"}), 404
    return jsonify(
        {
            "success": True,
            "sessionId": session_id,
            "project": records[0].project,
            "records": [_record_to_json(r) for r in records],
            "count": len(records),
        }
    )


@history_bp.route("/history/sessions/<session_id>/pastes", methods=["GET"])
def get_session_pastes(session_id: str):
    """Get the distinct pasted contents of one session."""
    config = _get_config()
    pastes = read_session_pastes(config.history_path, session_id, config.claude_path)
    return jsonify({"success": True, "pastes": pastes, "count": len(pastes)})


@history_bp.route("/history/sessions/<session_id>/conversation", methods=["GET"])
def get_session_conversation(session_id: str):
    """Get the full conversation of one session from its transcript.

    Query parameters:
        project: Absolute project path the session ran in (required)

    Returns:
        JSON object with success and conversation. A session without a
        readable transcript returns an empty message list with found false.
    """
    project = request.args.get("project", "").strip()
    if not project:
        return jsonify({"success": False, "error": "project is required"}), 400

    extractor: ConversationStatsExtractor = current_app.extensions.get("stats_extractor")
    conversation = extractor.read_conversation(session_id, project)
    return jsonify(
        {
            "success": True,
            "conversation": conversation.model_dump(mode="json"),
            "count": len(conversation.messages),
        }
    )


@history_bp.route("/history/records", methods=["DELETE"])
def delete_record():
    """Delete one record by (sessionId, timestamp).

    Request body:
        {"sessionId": "...", "timestamp": 1704067200000}
    """
    data = request.get_json(silent=True) or {}
    session_id = data.get("sessionId")
    timestamp = data.get("timestamp")

    if not isinstance(session_id, str) or not session_id:
        return jsonify({"success": False, "error": "sessionId is required"}), 400
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        return jsonify({"success": False, "error": "timestamp must be epoch milliseconds"}), 400

    result = _get_aggregator().delete_record(session_id, int(timestamp))
    if not result.success:
        status = 404 if result.error == "Record not found" else 500
        return jsonify({"success": False, "error": result.error}), status

    logger.info(f"Deleted record {session_id}@{int(timestamp)}")
    return jsonify({"success": True})
