"""
MCP transports.

Streamable HTTP: `POST /mcp` (aliased at `/v1/mcp`) carries one JSON-RPC envelope per
request, with the bearer token in the `Authorization` header or the `token` query parameter.

Legacy HTTP+SSE: `GET /sse?token=...` binds the token to a fresh session id and announces the
`/messages?sessionId=...` endpoint in its first frame. Messages posted there recover the token
from the session binding, falling back to the request's own token.
"""

from datetime import datetime, timedelta, timezone
import json
import logging
from typing import Optional
from urllib.parse import urlencode

from aiohttp import web
import sentry_sdk

from social.graze.crm.app.config import (
    DatabaseSessionMakerAppKey,
    DispatcherAppKey,
    HealthGaugeAppKey,
    SettingsAppKey,
)
from social.graze.crm.app.handlers.helpers import (
    MCP_PROTOCOL_HEADER,
    MCP_SESSION_HEADER,
    accepts_html,
    get_token,
    request_session_id,
)
from social.graze.crm.mcp.dispatcher import (
    INTERNAL_ERROR,
    PROTOCOL_VERSION,
    SERVER_CAPABILITIES,
    SERVER_INFO,
    error_response,
)
from social.graze.crm.model.ephemeral import (
    create_mcp_session,
    generate_session_id,
    lookup_mcp_session,
)

logger = logging.getLogger(__name__)


async def dispatch_mcp_request(
    request: web.Request, token: Optional[str], headers
) -> web.Response:
    dispatcher = request.app[DispatcherAppKey]

    try:
        raw_body = await request.read()
        result = await dispatcher.dispatch(raw_body, token)
    except web.HTTPException as e:
        sentry_sdk.capture_exception(e)
        raise e
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.exception("dispatch_mcp_request: unexpected error")
        await request.app[HealthGaugeAppKey].womp()
        return web.json_response(
            error_response(None, INTERNAL_ERROR, "Internal error", str(e)),
            status=500,
            headers=headers,
        )

    headers = {**headers, **result.headers}
    if result.body is None:
        return web.Response(status=result.status, headers=headers)
    return web.json_response(result.body, status=result.status, headers=headers)


async def handle_mcp_post(request: web.Request):
    headers = {
        MCP_SESSION_HEADER: request_session_id(request),
        MCP_PROTOCOL_HEADER: PROTOCOL_VERSION,
    }
    return await dispatch_mcp_request(request, get_token(request), headers)


async def handle_mcp_get(request: web.Request):
    settings = request.app[SettingsAppKey]
    token = get_token(request)

    if not token and accepts_html(request):
        raise web.HTTPFound(settings.auth_app_url)

    if not token:
        return web.json_response(
            {
                "error": "unauthorized",
                "message": "Authentication required. Please complete OAuth flow.",
            },
            status=401,
            headers={
                "WWW-Authenticate": f'Bearer resource_metadata="{settings.resource_metadata_url}"'
            },
        )

    return web.json_response(
        {
            **SERVER_INFO,
            "protocolVersion": PROTOCOL_VERSION,
            "transport": "streamable-http",
            "capabilities": SERVER_CAPABILITIES,
        },
        headers={
            MCP_SESSION_HEADER: request_session_id(request),
            MCP_PROTOCOL_HEADER: PROTOCOL_VERSION,
        },
    )


async def handle_mcp_delete(request: web.Request):
    return web.Response(status=204)


def sse_frame(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


async def handle_sse(request: web.Request):
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    token = get_token(request)

    if token:
        async with database_session_maker() as database_session:
            session_id = await create_mcp_session(
                database_session,
                settings.encryption_key,
                token,
                datetime.now(timezone.utc),
                timedelta(seconds=settings.mcp_session_expiry),
            )
    else:
        # Public methods still work over an unbound session.
        session_id = generate_session_id()

    connected = {
        "jsonrpc": "2.0",
        "method": "sse/connection",
        "params": {"message": "SSE Connection established"},
    }
    body = sse_frame("endpoint", f"/messages?{urlencode({'sessionId': session_id})}")
    body += sse_frame("message", json.dumps(connected))

    return web.Response(
        text=body,
        content_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


async def handle_messages(request: web.Request):
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]

    token: Optional[str] = None
    session_id = request.query.get("sessionId")
    if session_id:
        async with database_session_maker() as database_session:
            token = await lookup_mcp_session(
                database_session,
                settings.encryption_key,
                session_id,
                datetime.now(timezone.utc),
            )

    if not token:
        token = get_token(request)

    return await dispatch_mcp_request(request, token, {})


async def handle_root(request: web.Request):
    settings = request.app[SettingsAppKey]
    location = settings.auth_app_url
    if request.query_string:
        location = f"{location}?{request.query_string}"
    raise web.HTTPFound(location)
