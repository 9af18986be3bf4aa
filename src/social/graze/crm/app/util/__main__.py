import argparse
import asyncio
import base64
import json
import logging
from typing import Any, Optional

from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from social.graze.crm.app.config import Settings
from social.graze.crm.app.handlers.helpers import bearer_resolver_factory
from social.graze.crm.app.metrics import NoOpMetricsClient
from social.graze.crm.app.tasks import run_expiry_sweep
from social.graze.crm.crm.admin import provision_user
from social.graze.crm.crm.errors import CRMError
from social.graze.crm.crm.identity import PlatformIdentityResolver
from social.graze.crm.mcp.dispatcher import Dispatcher
from social.graze.crm.model.base import Base
import social.graze.crm.model.crm  # noqa: F401
import social.graze.crm.model.ephemeral  # noqa: F401

logger = logging.getLogger(__name__)


async def genCryptoKey() -> None:
    key = Fernet.generate_key()
    print(base64.b64encode(key).decode("utf-8"))


async def initDatabase(settings: Settings) -> None:
    engine = create_async_engine(settings.pg_dsn)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    finally:
        await engine.dispose()
    print("Database schema created")


async def sweep(settings: Settings) -> None:
    engine = create_async_engine(settings.pg_dsn)
    try:
        counts = await run_expiry_sweep(
            async_sessionmaker(engine, expire_on_commit=False), NoOpMetricsClient()
        )
    finally:
        await engine.dispose()
    for relation, deleted in counts.items():
        print(f"{relation}: {deleted} deleted")


async def provisionUser(settings: Settings, email: str, name: Optional[str]) -> None:
    engine = create_async_engine(settings.pg_dsn)
    database_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    try:
        async with database_session() as session:
            async with session.begin():
                user = await provision_user(session, email, name)
                print(json.dumps(user.to_dict(), indent=2))
    finally:
        await engine.dispose()


async def callTool(settings: Settings, email: str, tool: str, arguments: Any) -> None:
    engine = create_async_engine(settings.pg_dsn)
    dispatcher = Dispatcher(
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        bearer_resolver_factory(settings),
        NoOpMetricsClient(),
        settings.resource_metadata_url,
    )
    try:
        result = await dispatcher.call_tool_as(
            tool, arguments, PlatformIdentityResolver(email)
        )
        print(json.dumps(result, indent=2))
    except CRMError as e:
        print(json.dumps(e.to_dict(), indent=2))
    finally:
        await engine.dispose()


async def realMain() -> None:
    parser = argparse.ArgumentParser(prog="crmutil", description="CRM utilities")

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser("gen-crypto", help="Generate an encryption key")
    _ = subparsers.add_parser(
        "init-db", help="Create all tables (development databases only)"
    )
    _ = subparsers.add_parser(
        "sweep", help="Delete expired PKCE challenges, codes and SSE sessions"
    )

    provision = subparsers.add_parser(
        "provision-user", help="Provision a user as the sign-in app would"
    )
    provision.add_argument("email", help="The user's email address.")
    provision.add_argument("name", nargs="?", default=None, help="Display name.")

    call_tool = subparsers.add_parser(
        "call-tool", help="Invoke a CRM tool as the user with the given email"
    )
    call_tool.add_argument("email", help="The email of the acting user.")
    call_tool.add_argument("tool", help="The tool name, e.g. list_accounts.")
    call_tool.add_argument(
        "arguments", nargs="?", default="{}", help="Tool arguments as a JSON object."
    )

    args = vars(parser.parse_args())
    command = args.get("command", None)

    if command == "gen-crypto":
        await genCryptoKey()
        return

    settings = Settings()  # type: ignore

    if command == "init-db":
        await initDatabase(settings)
    elif command == "sweep":
        await sweep(settings)
    elif command == "provision-user":
        await provisionUser(settings, args["email"], args.get("name"))
    elif command == "call-tool":
        await callTool(
            settings, args["email"], args["tool"], json.loads(args["arguments"])
        )


def main() -> None:
    logging.basicConfig()
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
