"""OAuth discovery and registration stubs.

Some MCP clients refuse to connect until OAuth discovery succeeds. These
routes satisfy that handshake and nothing more: every client is
registered, every authorization is approved, and the minted tokens are
random strings the server never checks. Todoist access itself uses the
server's own API token.
"""
import json
import logging
import secrets
import time
import uuid
from urllib.parse import parse_qsl, urlencode

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse
from starlette.routing import Route

logger = logging.getLogger("todoist-mcp.oauth")

TOKEN_LIFETIME_SECONDS = 3600
SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token", "client_credentials")


def public_base_url(request: Request) -> str:
    """Base URL clients should use, honouring reverse-proxy headers."""
    configured = getattr(request.app.state, "public_url", "")
    if configured:
        return configured
    proto = request.headers.get("x-forwarded-proto", request.url.scheme).split(",")[0].strip()
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto}://{host.split(',')[0].strip()}"


async def _read_params(request: Request) -> dict:
    """OAuth bodies are form-encoded per RFC 6749; some clients send JSON."""
    raw = await request.body()
    if not raw:
        return {}
    if request.headers.get("content-type", "").startswith("application/json"):
        data = json.loads(raw)
        return data if isinstance(data, dict) else {}
    return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))


async def _read_client_metadata(request: Request) -> dict:
    """Registration bodies are JSON objects (RFC 7591), whatever the Content-Type says.

    Raises:
        ValueError: body is not JSON or not an object.
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    metadata = json.loads(raw)
    if not isinstance(metadata, dict):
        raise ValueError("Body must be a JSON object")
    return metadata


async def authorization_server_metadata(request: Request) -> JSONResponse:
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)"""
    base = public_base_url(request)
    return JSONResponse({
        "issuer": base,
        "authorization_endpoint": f"{base}/authorize",
        "token_endpoint": f"{base}/token",
        "registration_endpoint": f"{base}/register",
        "response_types_supported": ["code"],
        "grant_types_supported": list(SUPPORTED_GRANT_TYPES),
        "code_challenge_methods_supported": ["S256", "plain"],
        "token_endpoint_auth_methods_supported": ["none", "client_secret_post", "client_secret_basic"],
    })


async def protected_resource_metadata(request: Request) -> JSONResponse:
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)"""
    base = public_base_url(request)
    resource = request.path_params.get("resource", "").strip("/")
    return JSONResponse({
        "resource": f"{base}/{resource}" if resource else base,
        "authorization_servers": [base],
        "bearer_methods_supported": ["header"],
    })


async def register_client(request: Request) -> JSONResponse:
    """Dynamic client registration (RFC 7591). Accepts any JSON object."""
    try:
        metadata = await _read_client_metadata(request)
    except ValueError:
        return JSONResponse(
            {"error": "invalid_client_metadata", "error_description": "Body must be a JSON object"},
            status_code=400,
        )

    auth_method = metadata.get("token_endpoint_auth_method") or "none"
    client = {
        "client_id": uuid.uuid4().hex,
        "client_id_issued_at": int(time.time()),
        "client_name": metadata.get("client_name", "mcp-client"),
        "redirect_uris": metadata.get("redirect_uris", []),
        "grant_types": metadata.get("grant_types", ["authorization_code", "refresh_token"]),
        "response_types": metadata.get("response_types", ["code"]),
        "token_endpoint_auth_method": auth_method,
    }
    if auth_method != "none":
        client["client_secret"] = secrets.token_urlsafe(32)
        client["client_secret_expires_at"] = 0

    logger.info("Registered OAuth client %s (%s)", client["client_id"][:8], client["client_name"])
    return JSONResponse(client, status_code=201)


async def authorize(request: Request):
    """Approve every authorization request and redirect back with a code."""
    redirect_uri = request.query_params.get("redirect_uri")
    if not redirect_uri:
        return JSONResponse(
            {"error": "invalid_request", "error_description": "redirect_uri is required"},
            status_code=400,
        )

    params = {"code": secrets.token_urlsafe(24)}
    state = request.query_params.get("state")
    if state is not None:
        params["state"] = state

    separator = "&" if "?" in redirect_uri else "?"
    logger.info("Auto-approved authorization for client %s", request.query_params.get("client_id", "?"))
    return RedirectResponse(f"{redirect_uri}{separator}{urlencode(params)}", status_code=302)


async def issue_token(request: Request) -> JSONResponse:
    """Mint an access token for any supported grant."""
    try:
        params = await _read_params(request)
    except ValueError:
        params = {}

    grant_type = params.get("grant_type")
    if not grant_type:
        return JSONResponse(
            {"error": "invalid_request", "error_description": "grant_type is required"},
            status_code=400,
        )
    if grant_type not in SUPPORTED_GRANT_TYPES:
        return JSONResponse({"error": "unsupported_grant_type"}, status_code=400)

    return JSONResponse(
        {
            "access_token": secrets.token_urlsafe(32),
            "token_type": "Bearer",
            "expires_in": TOKEN_LIFETIME_SECONDS,
            "refresh_token": secrets.token_urlsafe(32),
            "scope": params.get("scope", ""),
        },
        headers={"Cache-Control": "no-store", "Pragma": "no-cache"},
    )


def oauth_routes() -> list[Route]:
    return [
        Route("/.well-known/oauth-authorization-server", authorization_server_metadata, methods=["GET"]),
        Route("/.well-known/openid-configuration", authorization_server_metadata, methods=["GET"]),
        Route("/.well-known/oauth-protected-resource", protected_resource_metadata, methods=["GET"]),
        Route(
            "/.well-known/oauth-protected-resource/{resource:path}",
            protected_resource_metadata,
            methods=["GET"],
        ),
        Route("/register", register_client, methods=["POST"]),
        Route("/authorize", authorize, methods=["GET"]),
        Route("/token", issue_token, methods=["POST"]),
    ]
