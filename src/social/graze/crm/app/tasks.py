import asyncio
from datetime import datetime, timezone
import logging
from typing import Dict, NoReturn

from aiohttp import web
import sentry_sdk
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.graze.crm.app.config import (
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    MetricsClientAppKey,
    SettingsAppKey,
)
from social.graze.crm.app.metrics import MetricsClient
from social.graze.crm.model.ephemeral import sweep_expired

logger = logging.getLogger(__name__)


async def tick_health_task(app: web.Application) -> NoReturn:
    """
    Tick the health gauge every 30 seconds, reducing the health score by 1 each time, and
    report the current score as `crm.health.value`.
    """

    logger.info("Starting health gauge task")

    health_gauge = app[HealthGaugeAppKey]
    metrics_client = app[MetricsClientAppKey]
    while True:
        await health_gauge.tick()
        metrics_client.gauge("crm.health.value", health_gauge.value)
        await asyncio.sleep(30)


async def run_expiry_sweep(
    database_session_maker: async_sessionmaker[AsyncSession],
    metrics_client: MetricsClient,
) -> Dict[str, int]:
    """Delete expired PKCE challenges, authorization codes and SSE sessions once."""
    async with database_session_maker() as database_session:
        counts = await sweep_expired(database_session, datetime.now(timezone.utc))

    for relation, deleted in counts.items():
        metrics_client.increment(
            "crm.sweep.deleted", deleted, tag_dict={"relation": relation}
        )
    logger.info("expiry sweep deleted %s", counts)
    return counts


async def expiry_sweep_task(app: web.Application) -> NoReturn:
    """
    Run the expiry sweep every `sweep_interval` seconds.

    Only started when `sweep_interval` is positive. A failed sweep is reported and retried on
    the next interval.
    """

    settings = app[SettingsAppKey]
    logger.info("Starting expiry sweep task every %d seconds", settings.sweep_interval)

    while True:
        await asyncio.sleep(settings.sweep_interval)
        try:
            await run_expiry_sweep(
                app[DatabaseSessionMakerAppKey], app[MetricsClientAppKey]
            )
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.exception("expiry sweep failed")
            await app[HealthGaugeAppKey].womp()
