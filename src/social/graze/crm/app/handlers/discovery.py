"""OAuth discovery documents (RFC 9728 protected resource, RFC 8414 authorization server)."""

from aiohttp import web

from social.graze.crm.app.config import SettingsAppKey
from social.graze.crm.app.handlers.oauth import GRANT_TYPES, SCOPE
from social.graze.crm.auth.pkce import S256


async def handle_protected_resource(request: web.Request):
    settings = request.app[SettingsAppKey]
    return web.json_response(
        {
            "resource": f"{settings.base_url}/mcp",
            "authorization_servers": [settings.base_url],
            "scopes_supported": [SCOPE],
            "bearer_methods_supported": ["header"],
            "resource_documentation": "MCP-CRM API",
        }
    )


async def handle_authorization_server(request: web.Request):
    settings = request.app[SettingsAppKey]
    return web.json_response(
        {
            "issuer": settings.base_url,
            "authorization_endpoint": f"{settings.base_url}/oauth/authorize",
            "token_endpoint": f"{settings.base_url}/oauth/token",
            "registration_endpoint": f"{settings.base_url}/oauth/register",
            "response_types_supported": ["code"],
            "grant_types_supported": GRANT_TYPES,
            # plain is still accepted by the verifier but never advertised.
            "code_challenge_methods_supported": [S256],
            "token_endpoint_auth_methods_supported": ["none"],
            "scopes_supported": [SCOPE],
        }
    )
