"""Retention routes for Claude History Monitor.

Provides REST API endpoints for auto-cleanup:
- GET /api/retention - Countdown status
- POST /api/retention - Enable, disable or reconfigure
- POST /api/retention/trigger - Run cleanup now
- POST /api/cache/clear - Delete all persisted files, or those older than retainMs
"""

import logging
import time

from flask import Blueprint, current_app, jsonify, request

from history_monitor.models.retention import RetentionConfig
from history_monitor.services.config_service import ConfigService
from history_monitor.services.log_store import LogStore
from history_monitor.services.retention_scheduler import RetentionScheduler

retention_bp = Blueprint("retention", __name__)

logger = logging.getLogger(__name__)


def _get_scheduler() -> RetentionScheduler:
    return current_app.extensions.get("retention_scheduler")


def _get_store() -> LogStore:
    return current_app.extensions.get("log_store")


def _get_config_service() -> ConfigService | None:
    return current_app.extensions.get("config_service")


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _persist_retention(enabled: bool, interval_ms: int, retain_ms: int) -> None:
    """Store the retention settings so they survive a restart."""
    config_service = _get_config_service()
    if config_service is None:
        return
    config = config_service.get_config().model_copy(
        update={
            "retention": RetentionConfig(
                enabled=enabled, interval_ms=interval_ms, retain_ms=retain_ms
            )
        }
    )
    if config_service.save(config):
        current_app.extensions["config"] = config
    else:
        logger.warning("Retention settings applied but not saved")


@retention_bp.route("/retention", methods=["GET"])
def get_retention():
    """Get the auto-cleanup countdown.

    Returns:
        JSON object with success, enabled, nextCleanupTime, remainingMs.
    """
    scheduler = _get_scheduler()
    return jsonify({"success": True, **scheduler.status(), "state": scheduler.state.to_event()})


@retention_bp.route("/retention", methods=["POST"])
def update_retention():
    """Enable, disable or reconfigure auto-cleanup.

    Request body:
        {"enabled": true, "intervalMs": 86400000, "retainMs": 43200000}

    Returns:
        JSON object with success and state, or 400 with an error for
        invalid parameters (the scheduler is left unchanged).
    """
    data = request.get_json(silent=True) or {}
    scheduler = _get_scheduler()
    current = scheduler.state

    enabled = data.get("enabled", current.enabled)
    interval_ms = data.get("intervalMs", current.interval_ms)
    retain_ms = data.get("retainMs", current.retain_ms)

    if not isinstance(enabled, bool):
        return jsonify({"success": False, "error": "enabled must be a boolean"}), 400
    if not _is_int(interval_ms) or not _is_int(retain_ms):
        return jsonify({"success": False, "error": "intervalMs and retainMs must be integers"}), 400

    if enabled:
        result = scheduler.enable(interval_ms, retain_ms)
    else:
        try:
            config = RetentionConfig(enabled=False, interval_ms=interval_ms, retain_ms=retain_ms)
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        result = scheduler.apply_config(config)

    if not result.success:
        return jsonify(result.to_dict()), 400

    _persist_retention(enabled, interval_ms, retain_ms)
    return jsonify(result.to_dict())


@retention_bp.route("/retention/trigger", methods=["POST"])
def trigger_retention():
    """Run a cleanup immediately."""
    result = _get_scheduler().trigger_now()
    status = 200
    if not result.success:
        status = 409 if result.error == "Cleanup already running" else 500
    return jsonify(result.to_dict()), status


@retention_bp.route("/cache/clear", methods=["POST"])
def clear_cache():
    """Delete persisted history files.

    Request body (optional):
        {"retainMs": 3600000}  - only delete files older than this

    Returns:
        JSON object with success and deletedCount (entries when retainMs is
        given, files otherwise).
    """
    data = request.get_json(silent=True) or {}
    retain_ms = data.get("retainMs")
    store = _get_store()

    if retain_ms is None:
        deleted = store.clear_all()
        logger.info(f"Cleared {deleted} history file(s)")
        return jsonify({"success": True, "deletedCount": deleted})

    if not _is_int(retain_ms) or retain_ms < 0:
        return jsonify({"success": False, "error": "retainMs must be a non-negative integer"}), 400

    cutoff = int(time.time() * 1000) - retain_ms
    result = store.delete_older_than(cutoff)
    return jsonify(
        {
            "success": not result.failed_files,
            "deletedCount": result.deleted_count,
            "deletedFiles": result.deleted_files,
            "failedFiles": result.failed_files,
            "error": result.error,
        }
    )
