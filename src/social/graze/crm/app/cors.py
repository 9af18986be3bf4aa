from typing import Dict

from aiohttp import web

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": (
        "Content-Type, Authorization, Accept, "
        "Mcp-Session-Id, Mcp-Protocol-Version, Last-Event-ID"
    ),
    "Access-Control-Expose-Headers": "Mcp-Session-Id, Mcp-Protocol-Version",
    "Access-Control-Max-Age": "86400",
}


def get_cors_headers() -> Dict[str, str]:
    """Return the CORS headers attached to every response."""
    return dict(CORS_HEADERS)


@web.middleware
async def cors_middleware(request: web.Request, handler):
    # Preflight requests never reach a handler, whatever the path.
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=get_cors_headers())

    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(get_cors_headers())
        raise e

    response.headers.update(get_cors_headers())
    return response
