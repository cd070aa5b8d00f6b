"""Todoist tools for LLM agents over the Model Context Protocol."""

__version__ = "1.0.2"

SERVER_NAME = "Todoist MCP Server"
SERVICE_ID = "todoist-mcp-server"
