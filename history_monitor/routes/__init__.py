"""Flask routes for Claude History Monitor."""

from history_monitor.routes.events import events_bp
from history_monitor.routes.history import history_bp
from history_monitor.routes.retention import retention_bp
from history_monitor.routes.stats import stats_bp

__all__ = [
    "events_bp",
    "history_bp",
    "retention_bp",
    "stats_bp",
]


def register_blueprints(app):
    """Register all blueprints with the Flask app.

    Args:
        app: The Flask application instance.
    """
    app.register_blueprint(events_bp, url_prefix="/api")
    app.register_blueprint(history_bp, url_prefix="/api")
    app.register_blueprint(retention_bp, url_prefix="/api")
    app.register_blueprint(stats_bp, url_prefix="/api")
