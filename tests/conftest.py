"""Pytest fixtures for the Todoist MCP server tests."""
import json
from pathlib import Path

import pytest

from todoist_mcp import config, todoist_api

CONFIG_ENV_VARS = (
    "TODOIST_API_KEY",
    "TODOIST_API_TOKEN",
    "HOST",
    "PORT",
    "PUBLIC_URL",
    "SSE_KEEPALIVE_SECONDS",
    "MAX_BODY_BYTES",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch) -> Path:
    """Point config at a temp file and clear env/module state between tests."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    config_path = tmp_path / "config.json"
    monkeypatch.setenv("TODOIST_MCP_CONFIG", str(config_path))
    config.clear_config_cache()
    todoist_api.reset_client()
    yield config_path
    config.clear_config_cache()
    todoist_api.reset_client()


@pytest.fixture
def config_file(isolated_config: Path):
    """Helper to write the temp config file."""

    class ConfigHelper:
        def __init__(self):
            self.path = isolated_config

        def write(self, data: dict):
            self.path.write_text(json.dumps(data))
            config.clear_config_cache()

        def delete_file(self):
            if self.path.exists():
                self.path.unlink()
            config.clear_config_cache()

    return ConfigHelper()
