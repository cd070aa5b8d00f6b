"""Configuration loader for the Todoist MCP server.

Settings come from ~/.todoist-mcp/config.json (or the file named by
TODOIST_MCP_CONFIG). Environment variables win over the file.
"""
import json
import os
from pathlib import Path

_config_cache = None

DEFAULT_HTTP_CONFIG = {
    "host": "0.0.0.0",
    "port": 3000,
    "public_url": "",
    "keepalive_seconds": 15.0,
    "max_body_bytes": 10 * 1024 * 1024,
}

# env var -> (http config key, converter)
HTTP_ENV_OVERRIDES = {
    "HOST": ("host", str),
    "PORT": ("port", int),
    "PUBLIC_URL": ("public_url", str),
    "SSE_KEEPALIVE_SECONDS": ("keepalive_seconds", float),
    "MAX_BODY_BYTES": ("max_body_bytes", int),
}


def get_config_path() -> Path:
    override = os.environ.get("TODOIST_MCP_CONFIG")
    if override:
        return Path(os.path.expanduser(override))
    return Path.home() / ".todoist-mcp" / "config.json"


def get_config() -> dict:
    """Load the config file with caching. A missing file is an empty config."""
    global _config_cache
    if _config_cache is None:
        config_path = get_config_path()
        if config_path.exists():
            with open(config_path) as f:
                _config_cache = json.load(f)
        else:
            _config_cache = {}
    return _config_cache


def clear_config_cache():
    """Invalidate the cached config, forcing a re-read on next access."""
    global _config_cache
    _config_cache = None


def get_api_token() -> str:
    """Return the Todoist API token.

    Looks at TODOIST_API_KEY, then TODOIST_API_TOKEN, then todoist.api_token
    in the config file.

    Raises:
        ValueError: if no token is configured anywhere.
    """
    token = os.environ.get("TODOIST_API_KEY") or os.environ.get("TODOIST_API_TOKEN")
    if token:
        return token
    token = get_config().get("todoist", {}).get("api_token", "")
    if not token:
        raise ValueError(
            "No Todoist API token configured. "
            "Set TODOIST_API_KEY or add todoist.api_token to "
            f"{get_config_path()}. "
            "Get your token at https://app.todoist.com/app/settings/integrations/developer"
        )
    return token


def get_http_config() -> dict:
    """Get HTTP transport settings with defaults.

    Returns dict with keys: host, port, public_url, keepalive_seconds,
    max_body_bytes. Values from the config file's 'http' section are
    overridden by HOST, PORT, PUBLIC_URL, SSE_KEEPALIVE_SECONDS and
    MAX_BODY_BYTES.
    """
    merged = {**DEFAULT_HTTP_CONFIG, **get_config().get("http", {})}
    for env_name, (key, convert) in HTTP_ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            merged[key] = convert(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {env_name}: {raw!r}") from None

    try:
        merged["port"] = int(merged["port"])
    except (TypeError, ValueError):
        raise ValueError(f"Invalid port: {merged['port']!r}") from None

    for key, convert in (("keepalive_seconds", float), ("max_body_bytes", int)):
        try:
            value = convert(merged[key])
        except (TypeError, ValueError):
            value = None
        # NaN fails the comparison too
        if value is None or not value > 0:
            raise ValueError(f"Invalid {key}: {merged[key]!r} (must be a positive number)")
        merged[key] = value
    return merged


def get_log_level() -> str:
    return (os.environ.get("LOG_LEVEL") or get_config().get("log_level") or "INFO").upper()
