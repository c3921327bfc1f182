"""Flask application factory for Claude History Monitor.

This module creates and configures the Flask application, wiring together
the services:

- ConfigService: Configuration loading and migration
- EventBus: Real-time SSE event broadcasting
- LogStore: Per-project-per-day JSONL persistence
- SessionAggregator: Session grouping and history views
- IngestionService: Live tail of ~/.claude/history.jsonl
- ConversationStatsExtractor: Transcript statistics
- RetentionScheduler: Periodic cleanup of aged files

Usage:
    from history_monitor.app import create_app
    app = create_app()
    app.run(port=5050)
"""

import logging

from flask import Flask, jsonify

from history_monitor import __version__
from history_monitor.models import AppConfig
from history_monitor.routes import register_blueprints
from history_monitor.services import (
    ConversationStatsExtractor,
    FileTailer,
    IngestionService,
    LogStore,
    RetentionScheduler,
    SessionAggregator,
    get_config_service,
    get_event_bus,
)

logger = logging.getLogger(__name__)


def create_app(config_path: str = "config.yaml") -> Flask:
    """Create and configure the Flask application.

    No threads are started here; see start_background_tasks().

    Args:
        config_path: Path to the configuration file.

    Returns:
        Configured Flask application.
    """
    config_service = get_config_service(config_path)
    config = config_service.get_config()

    app = Flask(__name__)
    app.config["TESTING"] = False

    app.extensions["config"] = config
    app.extensions["config_service"] = config_service

    _init_services(app, config)

    register_blueprints(app)

    @app.route("/api/health")
    def health():
        return jsonify({"success": True, "version": __version__})

    return app


def _init_services(app: Flask, config: AppConfig) -> None:
    """Initialize all services and wire them together.

    Args:
        app: Flask application.
        config: Application configuration.
    """
    event_bus = get_event_bus()
    app.extensions["event_bus"] = event_bus

    log_store = LogStore(config.save_path)
    log_store.ensure_directory()
    app.extensions["log_store"] = log_store

    aggregator = SessionAggregator(
        store=log_store,
        event_bus=event_bus,
        claude_dir=config.claude_path,
    )
    app.extensions["session_aggregator"] = aggregator

    app.extensions["stats_extractor"] = ConversationStatsExtractor(
        projects_dir=config.projects_path,
        pricing=config.token_pricing,
    )

    app.extensions["retention_scheduler"] = RetentionScheduler(
        store=log_store,
        event_bus=event_bus,
    )

    if config.record_enabled:
        tailer = FileTailer(
            use_polling=config.tailer.use_polling,
            poll_interval=config.tailer.poll_interval,
        )
        app.extensions["ingestion_service"] = IngestionService(
            history_path=config.history_path,
            aggregator=aggregator,
            tailer=tailer,
        )

    logger.info("Services initialized")


def start_background_tasks(app: Flask) -> None:
    """Start the history tail and the retention scheduler.

    Args:
        app: Flask application.
    """
    config: AppConfig = app.extensions["config"]

    aggregator: SessionAggregator = app.extensions["session_aggregator"]
    sessions = aggregator.rebuild()
    logger.info(f"Loaded {sessions} session(s) from {config.save_path}")

    ingestion = app.extensions.get("ingestion_service")
    if ingestion is not None:
        ingestion.start()
        logger.info(f"Watching {config.history_path}")
    else:
        logger.info("Recording disabled, history file not watched")

    scheduler: RetentionScheduler = app.extensions["retention_scheduler"]
    result = scheduler.apply_config(config.retention)
    if not result.success:
        logger.warning(f"Retention settings not applied: {result.error}")


def stop_background_tasks(app: Flask) -> None:
    """Stop the history tail and cancel retention timers."""
    ingestion = app.extensions.get("ingestion_service")
    if ingestion is not None:
        ingestion.stop()
    scheduler = app.extensions.get("retention_scheduler")
    if scheduler is not None:
        scheduler.shutdown()


def main():
    """Run the Flask application."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = create_app()
    config = app.extensions.get("config")

    start_background_tasks(app)

    port = config.port if config else 5050
    debug = config.debug if config else False

    logger.info(f"Starting Claude History Monitor on port {port}")
    try:
        app.run(host="127.0.0.1", port=port, debug=debug, threaded=True, use_reloader=False)
    finally:
        stop_background_tasks(app)


if __name__ == "__main__":
    main()
