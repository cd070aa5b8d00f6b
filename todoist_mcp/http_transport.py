"""
HTTP transport for the Todoist MCP server.

Puts an mcp.server.Server behind plain HTTP so clients that cannot speak
stdio can list and call tools:

    GET  /health                  -> health check
    GET  /                        -> server info
    GET  /tools                   -> tools/list
    POST /tools/{tool_name}       -> tools/call with the body as arguments
    POST /rpc                     -> JSON-RPC 2.0 (single or batch)
    GET  /sse                     -> Server-Sent Events channel
    POST /messages?sessionId=...  -> JSON-RPC for an open SSE channel
    *    /mcp                     -> MCP Streamable HTTP (SDK session manager)

plus the OAuth discovery stubs from oauth.py.

This is a best-effort shim, not a full MCP transport: there is no
capability negotiation and no resumable streams.

Usage:
    transport = HttpServerTransport(server, port=3000)
    transport.start()
"""
import asyncio
import contextlib
import json
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import parse_qsl

import uvicorn
from mcp import types
from mcp.server import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from . import SERVER_NAME, SERVICE_ID, __version__
from .oauth import oauth_routes

logger = logging.getLogger("todoist-mcp.http")

DEFAULT_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_INPUT_SCHEMA = {"type": "object", "properties": {}}
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024

# Some clients omit text/event-stream from Accept and the SDK rejects them
ACCEPT_BOTH = (b"accept", b"application/json, text/event-stream")


class JSONRPCError(Exception):
    """Raised inside dispatch; turned into a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class RequestBodyError(Exception):
    """The HTTP body could not be read as a request."""

    def __init__(self, status_code: int, code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


def error_response(request_id, code: int, message: str, data=None) -> dict:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def _valid_id(value) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        # 1e999 parses as inf; neither inf nor NaN can be written back as JSON
        return math.isfinite(value)
    return value is None or isinstance(value, (str, int))


def is_valid_request(request) -> bool:
    """Check the JSON-RPC 2.0 envelope. A missing id means a notification."""
    return (
        isinstance(request, dict)
        and request.get("jsonrpc") == "2.0"
        and isinstance(request.get("method"), str)
        and _valid_id(request.get("id"))
    )


def request_id_of(body):
    """Best-effort id for error responses to malformed requests."""
    if isinstance(body, dict) and _valid_id(body.get("id")):
        return body.get("id")
    return None


def format_sse(event: str, data: str) -> str:
    lines = data.splitlines() or [""]
    return f"event: {event}\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


@dataclass
class SseSession:
    """One open /sse connection and the responses waiting to be streamed."""

    session_id: str
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed: bool = False

    def send(self, message: dict):
        if not self.closed:
            self.queue.put_nowait(message)

    def close(self):
        if not self.closed:
            self.closed = True
            # Wakes the stream so it can finish
            self.queue.put_nowait(None)


class StreamableHTTPEndpoint:
    """Raw ASGI endpoint for /mcp.

    A plain ASGI callable (not a function) so Starlette routes every method
    to it and does not redirect /mcp to /mcp/.
    """

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self.session_manager = session_manager

    async def __call__(self, scope, receive, send):
        headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != b"accept"]
        headers.append(ACCEPT_BOTH)
        await self.session_manager.handle_request({**scope, "headers": headers}, receive, send)


class HttpServerTransport:
    """Exposes an MCP server object over HTTP, JSON-RPC and SSE."""

    def __init__(
        self,
        server: Server,
        port: int = 3000,
        host: str = "0.0.0.0",
        *,
        keepalive_interval: float = 15.0,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        public_url: str = "",
    ):
        self.server = server
        self.port = port
        self.host = host
        self.keepalive_interval = keepalive_interval
        self.max_body_bytes = max_body_bytes
        self.sessions: dict[str, SseSession] = {}
        self.session_manager = StreamableHTTPSessionManager(
            app=server, stateless=True, json_response=True,
        )
        self._methods = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "resources/list": self._list_resources,
            "prompts/list": self._list_prompts,
        }
        self.app = Starlette(
            routes=self._routes(),
            middleware=[
                Middleware(
                    CORSMiddleware,
                    allow_origins=["*"],
                    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
                    allow_headers=["Content-Type", "Authorization", "Mcp-Session-Id", "Mcp-Protocol-Version"],
                    expose_headers=["Mcp-Session-Id"],
                ),
            ],
            lifespan=self._lifespan,
        )
        self.app.state.public_url = public_url.rstrip("/")

    def _routes(self) -> list[Route]:
        return [
            Route("/health", self.health, methods=["GET"]),
            Route("/", self.info, methods=["GET"]),
            Route("/tools", self.list_tools, methods=["GET"]),
            Route("/tools/{tool_name}", self.call_tool, methods=["POST"]),
            Route("/rpc", self.rpc, methods=["POST"]),
            Route("/sse", self.open_sse, methods=["GET"]),
            Route("/messages", self.post_message, methods=["POST"]),
            Route("/mcp", StreamableHTTPEndpoint(self.session_manager)),
            *oauth_routes(),
        ]

    @contextlib.asynccontextmanager
    async def _lifespan(self, app):
        async with self.session_manager.run():
            try:
                yield
            finally:
                for session_id in list(self.sessions):
                    self.close_session(session_id)
                logger.info("HTTP transport shut down")

    # ------------------------------------------------------------------
    # JSON-RPC dispatch
    # ------------------------------------------------------------------

    async def handle_request(self, request: dict) -> dict | None:
        """Dispatch one validated JSON-RPC request.

        Returns the response object, or None for notifications.
        """
        method = request["method"]
        is_notification = "id" not in request
        request_id = request.get("id")
        logger.debug("JSON-RPC %s (id=%r)", method, request_id)

        handler = self._methods.get(method)
        try:
            if handler is None:
                if is_notification:
                    logger.debug("Ignoring notification %s", method)
                    return None
                raise JSONRPCError(types.METHOD_NOT_FOUND, f"Method not found: {method}")

            params = request.get("params")
            if params is None:
                params = {}
            elif not isinstance(params, dict):
                raise JSONRPCError(types.INVALID_PARAMS, "Invalid params: expected an object")

            result = await handler(params)
        except JSONRPCError as e:
            if is_notification:
                return None
            return error_response(request_id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception("Error handling MCP request %s", method)
            if is_notification:
                return None
            return error_response(request_id, types.INTERNAL_ERROR, "Internal error", str(e))

        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def _initialize(self, params: dict) -> dict:
        requested = params.get("protocolVersion")
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            version = requested
        else:
            version = DEFAULT_PROTOCOL_VERSION
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    async def _ping(self, params: dict) -> dict:
        return {}

    async def _list_resources(self, params: dict) -> dict:
        return {"resources": []}

    async def _list_prompts(self, params: dict) -> dict:
        return {"prompts": []}

    async def registered_tools(self) -> list[types.Tool]:
        """Read the tool registry through the server's tools/list handler."""
        handler = self.server.request_handlers.get(types.ListToolsRequest)
        if handler is None:
            logger.debug("Server %r has no tools/list handler", self.server.name)
            return []
        result = await handler(types.ListToolsRequest(method="tools/list"))
        result = getattr(result, "root", result)
        return list(result.tools)

    async def _list_tools(self, params: dict) -> dict:
        tools = []
        for tool in await self.registered_tools():
            data = tool.model_dump(by_alias=True, mode="json", exclude_none=True)
            if not data.get("inputSchema"):
                data["inputSchema"] = dict(DEFAULT_INPUT_SCHEMA)
            tools.append(data)
        logger.debug("Listing %d tools", len(tools))
        return {"tools": tools}

    async def _call_tool(self, params: dict) -> dict:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise JSONRPCError(types.INVALID_PARAMS, "Invalid params: 'name' must be a non-empty string")
        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        elif not isinstance(arguments, dict):
            raise JSONRPCError(types.INVALID_PARAMS, "Invalid params: 'arguments' must be an object")

        known = {tool.name for tool in await self.registered_tools()}
        handler = self.server.request_handlers.get(types.CallToolRequest)
        if name not in known or handler is None:
            raise JSONRPCError(types.METHOD_NOT_FOUND, f"Tool not found: {name}")

        logger.debug("Calling tool %s with args %s", name, arguments)
        request = types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name=name, arguments=arguments),
        )
        try:
            result = await handler(request)
        except Exception as e:
            logger.exception("Tool execution error: %s", name)
            raise JSONRPCError(types.INTERNAL_ERROR, f"Tool execution failed: {e}") from e

        result = getattr(result, "root", result)
        return result.model_dump(by_alias=True, mode="json", exclude_none=True)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def read_body(self, request: Request, default=None):
        """Read a JSON or form-encoded body, enforcing max_body_bytes.

        Raises:
            RequestBodyError: body too large, missing, or not parseable.
        """
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_body_bytes:
            raise RequestBodyError(413, types.INVALID_REQUEST, "Request body too large")

        chunks = []
        size = 0
        async for chunk in request.stream():
            size += len(chunk)
            if size > self.max_body_bytes:
                raise RequestBodyError(413, types.INVALID_REQUEST, "Request body too large")
            chunks.append(chunk)
        raw = b"".join(chunks)

        if not raw.strip():
            if default is not None:
                return default
            raise RequestBodyError(400, types.PARSE_ERROR, "Parse error")

        content_type = request.headers.get("content-type", "")
        try:
            if content_type.startswith("application/x-www-form-urlencoded"):
                return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
            return json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            raise RequestBodyError(400, types.PARSE_ERROR, "Parse error") from None

    async def health(self, request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "service": SERVICE_ID,
        })

    async def info(self, request: Request) -> JSONResponse:
        return JSONResponse({
            "name": SERVER_NAME,
            "version": __version__,
            "description": "HTTP-based Model Context Protocol server for Todoist",
            "endpoints": {
                "health": "/health",
                "rpc": "/rpc",
                "tools": "/tools",
                "sse": "/sse",
                "mcp": "/mcp",
                "oauth": "/.well-known/oauth-authorization-server",
            },
            "usage": {
                "listTools": "GET /tools",
                "callTool": (
                    'POST /rpc with {"jsonrpc":"2.0","id":"1","method":"tools/call",'
                    '"params":{"name":"toolName","arguments":{}}}'
                ),
                "callToolDirect": "POST /tools/{toolName} with the arguments object as body",
            },
        })

    async def list_tools(self, request: Request) -> JSONResponse:
        try:
            response = await self.handle_request({
                "jsonrpc": "2.0",
                "id": "tools-list",
                "method": "tools/list",
                "params": {},
            })
            return JSONResponse(response)
        except Exception as e:
            logger.exception("Error listing tools")
            return JSONResponse(
                {"error": "Failed to list tools", "details": str(e)},
                status_code=500,
            )

    async def call_tool(self, request: Request) -> JSONResponse:
        tool_name = request.path_params["tool_name"]
        try:
            arguments = await self.read_body(request, default={})
            if not isinstance(arguments, dict):
                return JSONResponse(
                    {"error": "Tool execution failed", "details": "Tool arguments must be a JSON object"},
                    status_code=400,
                )
            response = await self.handle_request({
                "jsonrpc": "2.0",
                "id": f"tool-{int(time.time() * 1000)}",
                "method": "tools/call",
                "params": {"name": tool_name, "arguments": arguments},
            })
            return JSONResponse(response)
        except RequestBodyError as e:
            return JSONResponse(
                {"error": "Tool execution failed", "details": e.message},
                status_code=e.status_code,
            )
        except Exception as e:
            logger.exception("Tool execution error")
            return JSONResponse(
                {"error": "Tool execution failed", "details": str(e)},
                status_code=500,
            )

    async def rpc(self, request: Request) -> Response:
        body = None
        try:
            body = await self.read_body(request)

            if isinstance(body, list):
                return await self._rpc_batch(body)

            if not is_valid_request(body):
                return JSONResponse(
                    error_response(request_id_of(body), types.INVALID_REQUEST, "Invalid Request"),
                    status_code=400,
                )

            response = await self.handle_request(body)
            if response is None:
                return Response(status_code=202)
            return JSONResponse(response)

        except RequestBodyError as e:
            return JSONResponse(error_response(None, e.code, e.message), status_code=e.status_code)
        except Exception as e:
            logger.exception("RPC error")
            return JSONResponse(
                error_response(request_id_of(body), types.INTERNAL_ERROR, "Internal error", str(e)),
                status_code=500,
            )

    async def _rpc_batch(self, batch: list) -> Response:
        if not batch:
            return JSONResponse(
                error_response(None, types.INVALID_REQUEST, "Invalid Request"),
                status_code=400,
            )

        responses = []
        for item in batch:
            if not is_valid_request(item):
                responses.append(error_response(request_id_of(item), types.INVALID_REQUEST, "Invalid Request"))
                continue
            response = await self.handle_request(item)
            if response is not None:
                responses.append(response)

        if not responses:
            return Response(status_code=202)
        return JSONResponse(responses)

    # ------------------------------------------------------------------
    # SSE channel
    # ------------------------------------------------------------------

    def open_session(self) -> SseSession:
        session = SseSession(session_id=uuid.uuid4().hex)
        self.sessions[session.session_id] = session
        logger.info("SSE session %s connected", session.session_id[:8])
        return session

    def close_session(self, session_id: str):
        session = self.sessions.pop(session_id, None)
        if session is not None:
            session.close()
            logger.info("SSE session %s disconnected", session_id[:8])

    async def event_stream(self, session: SseSession):
        """Yield SSE frames for a session until it is closed.

        Starlette cancels this generator when the client goes away; the
        finally block then drops the session.
        """
        try:
            yield format_sse("endpoint", f"/messages?sessionId={session.session_id}")
            while True:
                try:
                    message = await asyncio.wait_for(session.queue.get(), timeout=self.keepalive_interval)
                except asyncio.TimeoutError:
                    # SSE comment frame, ignored by clients
                    yield ": keepalive\n\n"
                    continue
                if message is None:
                    break
                yield format_sse("message", json.dumps(message))
        finally:
            self.close_session(session.session_id)

    async def open_sse(self, request: Request) -> StreamingResponse:
        session = self.open_session()
        return StreamingResponse(
            self.event_stream(session),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def post_message(self, request: Request) -> JSONResponse:
        session_id = request.query_params.get("sessionId") or request.query_params.get("session_id", "")
        session = self.sessions.get(session_id)
        if session is None or session.closed:
            return JSONResponse({"error": "Session not found or expired"}, status_code=404)

        try:
            body = await self.read_body(request)
        except RequestBodyError as e:
            return JSONResponse(error_response(None, e.code, e.message), status_code=e.status_code)

        if not is_valid_request(body):
            return JSONResponse(
                error_response(request_id_of(body), types.INVALID_REQUEST, "Invalid Request"),
                status_code=400,
            )

        response = await self.handle_request(body)
        if response is not None:
            session.send(response)
        return JSONResponse({"ok": True}, status_code=202)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Serve the app with uvicorn until SIGINT/SIGTERM."""
        logger.info("Todoist MCP Server running on port %s", self.port)
        logger.info("Health check: http://localhost:%s/health", self.port)
        logger.info("API docs: http://localhost:%s/", self.port)
        logger.info("Tools list: http://localhost:%s/tools", self.port)
        uvicorn.run(
            self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            timeout_graceful_shutdown=5,
        )
