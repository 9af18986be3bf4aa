import asyncio
import contextlib
import logging
from time import time
from typing import Optional

from aio_statsd import TelegrafStatsdClient
from aiohttp import web
import sentry_sdk
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from social.graze.crm.app.config import (
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    DispatcherAppKey,
    ExpirySweepTaskAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    Settings,
    SettingsAppKey,
    TickHealthTaskAppKey,
)
from social.graze.crm.app.cors import cors_middleware
from social.graze.crm.app.handlers.discovery import (
    handle_authorization_server,
    handle_protected_resource,
)
from social.graze.crm.app.handlers.helpers import bearer_resolver_factory
from social.graze.crm.app.handlers.internal import (
    handle_health,
    handle_internal_alive,
    handle_internal_ready,
)
from social.graze.crm.app.handlers.mcp import (
    handle_mcp_delete,
    handle_mcp_get,
    handle_mcp_post,
    handle_messages,
    handle_root,
    handle_sse,
)
from social.graze.crm.app.handlers.oauth import (
    handle_authorize,
    handle_code,
    handle_register,
    handle_token,
)
from social.graze.crm.app.metrics import create_metrics_client
from social.graze.crm.app.tasks import expiry_sweep_task, tick_health_task
from social.graze.crm.mcp.dispatcher import Dispatcher
from social.graze.crm.model.health import HealthGauge

logger = logging.getLogger(__name__)

OAUTH_PREFIXES = ("/oauth", "/mcp", "")


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    engine = create_async_engine(str(settings.pg_dsn))
    app[DatabaseAppKey] = engine
    database_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    app[DatabaseSessionMakerAppKey] = database_session

    telegraf_client: Optional[TelegrafStatsdClient] = None
    if settings.metrics_backend.lower() == "telegraf":
        telegraf_client = TelegrafStatsdClient(
            host=settings.statsd_host, port=settings.statsd_port, debug=settings.debug
        )
        await telegraf_client.connect()
    metrics_client = create_metrics_client(
        settings.metrics_backend,
        host=settings.statsd_host,
        port=settings.statsd_port,
        telegraf_client=telegraf_client,
        debug=settings.debug,
    )
    app[MetricsClientAppKey] = metrics_client

    app[DispatcherAppKey] = Dispatcher(
        database_session,
        bearer_resolver_factory(settings),
        metrics_client,
        settings.resource_metadata_url,
    )

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))
    if settings.sweep_interval > 0:
        app[ExpirySweepTaskAppKey] = asyncio.create_task(expiry_sweep_task(app))

    yield

    logger.info("Shutting down background tasks")

    tasks = [app[TickHealthTaskAppKey]]
    if ExpirySweepTaskAppKey in app:
        tasks.append(app[ExpirySweepTaskAppKey])

    for task in tasks:
        task.cancel()

    for task in tasks:
        with contextlib.suppress(asyncio.exceptions.CancelledError):
            await task

    await app[DatabaseAppKey].dispose()
    await app[MetricsClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        response = await handler(request)
        return response
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    metrics_client = request.app[MetricsClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except web.HTTPException as e:
        response_status_code = e.status
        raise e
    except Exception as e:
        metrics_client.increment(
            "crm.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        metrics_client.timer(
            "crm.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        metrics_client.increment(
            "crm.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


async def start_web_server(settings: Optional[Settings] = None):

    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=False,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(
        middlewares=[statsd_middleware, sentry_middleware, cors_middleware]
    )

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()

    app.add_routes([web.get("/", handle_root)])

    app.add_routes(
        [
            web.get("/.well-known/oauth-protected-resource", handle_protected_resource),
            web.get(
                "/.well-known/oauth-authorization-server", handle_authorization_server
            ),
        ]
    )

    for prefix in OAUTH_PREFIXES:
        app.add_routes(
            [
                web.post(f"{prefix}/register", handle_register),
                web.get(f"{prefix}/authorize", handle_authorize),
                web.post(f"{prefix}/token", handle_token),
            ]
        )
    app.add_routes([web.post("/oauth/code", handle_code)])

    for path in ("/mcp", "/v1/mcp"):
        app.add_routes(
            [
                web.get(path, handle_mcp_get, allow_head=False),
                web.post(path, handle_mcp_post),
                web.delete(path, handle_mcp_delete),
            ]
        )

    app.add_routes(
        [
            web.get("/sse", handle_sse, allow_head=False),
            web.post("/messages", handle_messages),
        ]
    )

    app.add_routes(
        [
            web.get("/health", handle_health),
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )

    app.cleanup_ctx.append(background_tasks)

    return app
