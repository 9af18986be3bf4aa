from datetime import datetime, timezone

from aiohttp import web

from social.graze.crm.app.config import HealthGaugeAppKey
from social.graze.crm.mcp.dispatcher import SERVER_INFO


async def handle_internal_ready(request: web.Request):
    health_gauge = request.app[HealthGaugeAppKey]
    if await health_gauge.is_healthy():
        return web.Response(status=200)
    return web.Response(status=503)


async def handle_internal_alive(request: web.Request):
    return web.Response(status=200)


async def handle_health(request: web.Request):
    return web.json_response(
        {
            "status": "ok",
            "service": SERVER_INFO["name"],
            "version": SERVER_INFO["version"],
            "timestamp": datetime.now(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
        }
    )
