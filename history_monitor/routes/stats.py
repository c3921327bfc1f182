"""Statistics routes for Claude History Monitor."""

from flask import Blueprint, current_app, jsonify, request

from history_monitor.services.stats_extractor import ConversationStatsExtractor

stats_bp = Blueprint("stats", __name__)


def _get_extractor() -> ConversationStatsExtractor:
    return current_app.extensions.get("stats_extractor")


@stats_bp.route("/stats/sessions/<session_id>", methods=["GET"])
def get_session_stats(session_id: str):
    """Get usage, cost and tool statistics for one session.

    Query parameters:
        project: Absolute project path the session ran in (required)

    Returns:
        JSON object with success and metadata. A session without a readable
        transcript reports zeroed statistics.
    """
    project = request.args.get("project", "").strip()
    if not project:
        return jsonify({"success": False, "error": "project is required"}), 400

    metadata = _get_extractor().extract(session_id, project)
    return jsonify({"success": True, "metadata": metadata.model_dump(mode="json")})


@stats_bp.route("/stats/projects", methods=["GET"])
def get_project_totals():
    """Get statistics summed over every transcript of one project.

    Query parameters:
        project: Absolute project path (required)

    Returns:
        JSON object with success and statistics (totals, merged tool maps
        and the per-session metadata they were built from).
    """
    project = request.args.get("project", "").strip()
    if not project:
        return jsonify({"success": False, "error": "project is required"}), 400

    stats = _get_extractor().project_statistics(project)
    return jsonify({"success": True, "statistics": stats.model_dump(mode="json")})


@stats_bp.route("/stats/projects", methods=["POST"])
def get_project_stats():
    """Get statistics for several sessions of one project.

    Request body:
        {"project": "/path/to/project", "sessionIds": ["...", "..."]}
    """
    data = request.get_json(silent=True) or {}
    project = data.get("project")
    session_ids = data.get("sessionIds")

    if not isinstance(project, str) or not project:
        return jsonify({"success": False, "error": "project is required"}), 400
    if not isinstance(session_ids, list) or not all(isinstance(s, str) for s in session_ids):
        return jsonify({"success": False, "error": "sessionIds must be a list of strings"}), 400

    sessions = _get_extractor().extract_project(project, session_ids)
    return jsonify(
        {
            "success": True,
            "sessions": [m.model_dump(mode="json") for m in sessions],
            "count": len(sessions),
        }
    )
