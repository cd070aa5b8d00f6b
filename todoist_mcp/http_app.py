"""
HTTP entry point for the Todoist MCP Server.

Usage:
    todoist-mcp
    uvicorn todoist_mcp.http_app:app --host 0.0.0.0 --port 3000
"""
import logging

from . import config
from .http_transport import HttpServerTransport
from .server import configure_logging, server

logger = logging.getLogger("todoist-mcp")


def create_transport() -> HttpServerTransport:
    """Build the transport from config (HOST, PORT, PUBLIC_URL, ...)."""
    http = config.get_http_config()
    return HttpServerTransport(
        server,
        port=http["port"],
        host=http["host"],
        keepalive_interval=float(http["keepalive_seconds"]),
        max_body_bytes=int(http["max_body_bytes"]),
        public_url=http["public_url"] or "",
    )


def create_app():
    return create_transport().app


app = create_app()


def main():
    configure_logging()
    try:
        config.get_api_token()
    except ValueError as e:
        # Tool calls will report this too; the server still starts for health checks
        logger.warning("%s", e)
    create_transport().start()


if __name__ == "__main__":
    main()
