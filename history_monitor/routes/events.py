"""Event routes for Claude History Monitor.

Provides the Server-Sent Events (SSE) endpoint for pushed updates.
"""

from flask import Blueprint, Response, current_app, jsonify

from history_monitor.services.event_bus import EventBus, get_event_bus

events_bp = Blueprint("events", __name__)


def _get_event_bus() -> EventBus:
    return current_app.extensions.get("event_bus") or get_event_bus()


@events_bp.route("/events")
def sse_events():
    """Server-Sent Events endpoint.

    Events:
    - new-record: A prompt was appended to the history file
    - auto-cleanup-tick: Countdown to the next cleanup
    - auto-cleanup-executed: A cleanup finished
    - auto-cleanup-error: A cleanup failed
    - auto-cleanup-config-updated: Retention settings changed

    Returns:
        SSE stream with events in format:
        event: <event_type>
        data: <json_payload>
    """
    event_bus = _get_event_bus()

    def generate():
        yield from event_bus.get_sse_stream()

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@events_bp.route("/events/recent", methods=["GET"])
def recent_events():
    """Get buffered events (countdown ticks are not buffered)."""
    events = _get_event_bus().get_buffered_events()
    return jsonify(
        {
            "success": True,
            "events": [
                {"id": e.id, "type": e.event_type, "data": e.data, "timestamp": e.timestamp.isoformat()}
                for e in events
            ],
        }
    )


@events_bp.route("/status", methods=["GET"])
def ingestion_status():
    """Get ingestion counters for the live history tail."""
    ingestion = current_app.extensions.get("ingestion_service")
    if ingestion is None:
        return jsonify({"success": True, "ingestion": {"running": False}})
    return jsonify({"success": True, "ingestion": ingestion.stats()})
