"""Shared fixtures for API route tests."""

import pytest
import yaml

from history_monitor.app import create_app, stop_background_tasks


@pytest.fixture
def claude_dir(temp_dir):
    path = temp_dir / "claude"
    (path / "projects").mkdir(parents=True)
    return path


@pytest.fixture
def app(temp_dir, claude_dir):
    """Create a Flask app backed by temporary directories."""
    config_file = temp_dir / "config.yaml"
    config_file.write_text(
        yaml.dump(
            {
                "claude_dir": str(claude_dir),
                "save_path": str(temp_dir / "saved"),
                "api_limits": {"max_history_records": 10},
            }
        )
    )

    app = create_app(str(config_file))
    app.config["TESTING"] = True
    yield app
    stop_background_tasks(app)


@pytest.fixture
def client(app):
    """Create a test client."""
    return app.test_client()
