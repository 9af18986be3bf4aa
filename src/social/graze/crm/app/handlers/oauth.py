"""
OAuth 2.1 authorization code flow with PKCE.

The service never signs anyone in itself. `/oauth/authorize` records the client's PKCE
challenge and sends the browser to the sign-in app. Once the sign-in app holds a bearer token
it posts it to `/oauth/code` together with the original `state` and gets back a short-lived
single-use code, which it hands to the client's redirect URI. The client then trades the code
for the bearer token at `/oauth/token`.

Every client is treated as public (`token_endpoint_auth_method: none`); registration issues
a client id and persists nothing.
"""

from datetime import datetime, timedelta, timezone
import json
import logging
import secrets
import time
from typing import Any, Dict
from urllib.parse import urlencode

from aiohttp import web
import sentry_sdk

from social.graze.crm.app.config import (
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    SettingsAppKey,
)
from social.graze.crm.auth.pkce import S256
from social.graze.crm.model.ephemeral import (
    create_authorization_code,
    discard_pkce_challenge,
    store_pkce_challenge,
    take_authorization_code,
    verify_pkce_challenge,
)

logger = logging.getLogger(__name__)

SCOPE = "mcp:tools"
GRANT_TYPES = ["authorization_code", "refresh_token"]


def oauth_error(error: str, description: str = "", status: int = 400) -> web.Response:
    body: Dict[str, Any] = {"error": error}
    if description:
        body["error_description"] = description
    return web.json_response(body, status=status)


async def handle_register(request: web.Request):
    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    now = int(time.time())
    return web.json_response(
        {
            "client_id": f"client_{now * 1000}_{secrets.token_hex(4)}",
            "client_secret": "",
            "client_id_issued_at": now,
            "client_secret_expires_at": 0,
            "redirect_uris": body.get("redirect_uris") or [],
            "grant_types": GRANT_TYPES,
            "response_types": ["code"],
            "token_endpoint_auth_method": "none",
        },
        status=201,
    )


async def handle_authorize(request: web.Request):
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]

    redirect_uri = request.query.get("redirect_uri", "")
    state = request.query.get("state", "")
    code_challenge = request.query.get("code_challenge", "")
    code_challenge_method = request.query.get("code_challenge_method") or S256

    if state and code_challenge:
        async with database_session_maker() as database_session:
            await store_pkce_challenge(
                database_session,
                state,
                code_challenge,
                code_challenge_method,
                redirect_uri,
                datetime.now(timezone.utc),
                timedelta(seconds=settings.pkce_challenge_expiry),
            )

    params = {"oauth_redirect_uri": redirect_uri, "oauth_state": state}
    if code_challenge:
        params["oauth_code_challenge"] = code_challenge
    params["oauth_code_challenge_method"] = code_challenge_method

    raise web.HTTPFound(f"{settings.auth_app_url}?{urlencode(params)}")


async def handle_code(request: web.Request):
    """Mint an authorization code for a token obtained by the sign-in app."""
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]

    try:
        body = await request.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    token = body.get("token")
    state = body.get("state") or ""
    if not token or not isinstance(token, str):
        return web.json_response({"error": "Token required"}, status=400)

    try:
        async with database_session_maker() as database_session:
            code = await create_authorization_code(
                database_session,
                settings.encryption_key,
                token,
                str(state),
                datetime.now(timezone.utc),
                timedelta(seconds=settings.authorization_code_expiry),
            )
    except Exception as e:
        sentry_sdk.capture_exception(e)
        logger.exception("handle_code: failed to create authorization code")
        await request.app[HealthGaugeAppKey].womp()
        return web.json_response({"error": "Failed to create code"}, status=500)

    return web.json_response({"code": code})


async def _token_request_body(request: web.Request) -> Dict[str, Any]:
    if "application/x-www-form-urlencoded" in request.headers.get("Content-Type", ""):
        return dict(await request.post())
    try:
        body = json.loads(await request.text())
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def token_response(token: str, expires_in: int) -> web.Response:
    return web.json_response(
        {
            "access_token": token,
            "token_type": "Bearer",
            "expires_in": expires_in,
            "refresh_token": token,
            "scope": SCOPE,
        }
    )


async def handle_token(request: web.Request):
    settings = request.app[SettingsAppKey]
    metrics_client = request.app[MetricsClientAppKey]

    body = await _token_request_body(request)
    grant_type = body.get("grant_type")

    def count(outcome: str) -> None:
        metrics_client.increment(
            "crm.oauth.token.count",
            1,
            tag_dict={"grant": str(grant_type), "outcome": outcome},
        )

    logger.debug(
        "token request grant_type=%s code_verifier=%s",
        grant_type,
        "present" if body.get("code_verifier") else "missing",
    )

    if grant_type == "authorization_code":
        code = body.get("code")
        if not code:
            count("invalid_request")
            return oauth_error("invalid_request", "Missing authorization code")
        try:
            response = await exchange_authorization_code(
                request, str(code), body.get("code_verifier")
            )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("handle_token: token exchange failed")
            await request.app[HealthGaugeAppKey].womp()
            count("server_error")
            return oauth_error(
                "server_error", "Internal error during token exchange", status=500
            )
        count("ok" if response.status == 200 else "invalid_grant")
        return response

    if grant_type == "refresh_token" and body.get("refresh_token"):
        # No local refresh: the upstream token's own expiry governs its lifetime.
        count("ok")
        return token_response(str(body["refresh_token"]), settings.access_token_expires_in)

    count("unsupported_grant_type")
    return oauth_error("unsupported_grant_type")


async def exchange_authorization_code(
    request: web.Request, code: str, code_verifier
) -> web.Response:
    settings = request.app[SettingsAppKey]
    database_session_maker = request.app[DatabaseSessionMakerAppKey]
    now = datetime.now(timezone.utc)

    async with database_session_maker() as database_session:
        taken = await take_authorization_code(
            database_session, settings.encryption_key, code
        )
        if taken is None:
            return oauth_error("invalid_grant", "Invalid authorization code")

        if taken.is_expired(now):
            return oauth_error("invalid_grant", "Authorization code expired")

        if settings.enforce_pkce:
            verification = await verify_pkce_challenge(
                database_session, taken.state, code_verifier, now
            )
            if not verification.valid:
                return oauth_error("invalid_grant", verification.error or "")
        else:
            await discard_pkce_challenge(database_session, taken.state)

    return token_response(taken.token, settings.access_token_expires_in)
