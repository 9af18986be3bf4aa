import logging
import secrets
import string
import time
from typing import Callable, Optional

from aiohttp import web

from social.graze.crm.app.config import Settings
from social.graze.crm.crm.identity import BearerTokenIdentityResolver, IdentityResolver

logger = logging.getLogger(__name__)

MCP_SESSION_HEADER = "Mcp-Session-Id"
MCP_PROTOCOL_HEADER = "Mcp-Protocol-Version"

_SESSION_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def get_token(request: web.Request) -> Optional[str]:
    """
    Find the caller's bearer token.

    The `token` query parameter wins over the `Authorization: Bearer` header; clients that
    cannot set headers (the legacy SSE transport) put the token in the URL.
    """
    token = request.query.get("token")
    if token:
        return token

    authorization: Optional[str] = request.headers.getone("Authorization", None)
    if (
        authorization is None
        or not authorization.startswith("Bearer ")
        or len(authorization) < 8
    ):
        return None
    return authorization[7:]


def generate_request_session_id() -> str:
    suffix = "".join(secrets.choice(_SESSION_SUFFIX_ALPHABET) for _ in range(9))
    return f"mcp_{int(time.time() * 1000)}_{suffix}"


def request_session_id(request: web.Request) -> str:
    """Echo the client's `Mcp-Session-Id`, or mint a new one."""
    return request.headers.get(MCP_SESSION_HEADER) or generate_request_session_id()


def bearer_resolver_factory(
    settings: Settings,
) -> Callable[[Optional[str]], IdentityResolver]:
    def factory(token: Optional[str]) -> IdentityResolver:
        return BearerTokenIdentityResolver(
            token,
            expected_issuer=settings.expected_issuer or settings.base_url,
            expected_audience=settings.expected_audience,
            sign_in_url=settings.auth_app_url,
            json_web_keys=settings.json_web_keys,
        )

    return factory


def accepts_html(request: web.Request) -> bool:
    return "text/html" in request.headers.get("Accept", "")
