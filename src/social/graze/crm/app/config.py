"""
Configuration Module for the MCP CRM Service

Settings are loaded from environment variables through pydantic-settings, and every shared
resource (database engine, session factory, metrics client, dispatcher, background tasks) is
injected into handlers through typed aiohttp AppKeys.

Key configuration areas include:
- Service identification and networking
- Token claim expectations and optional upstream signing keys
- Database connection
- Lifetimes of the ephemeral credential relations
- Monitoring and error reporting
"""

import asyncio
import base64
import logging
from typing import Annotated, Final, Optional

from aiohttp import web
from cryptography.fernet import Fernet
from jwcrypto import jwk
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from social.graze.crm.app.metrics import MetricsClient
from social.graze.crm.mcp.dispatcher import Dispatcher
from social.graze.crm.model.health import HealthGauge

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the MCP CRM service.

    Environment variables map to fields by name, with aliases where older deployments used a
    different variable (PG_DSN or DATABASE_URL, TELEGRAF_HOST, TELEGRAF_PORT, PORT).
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    base_url: str = "https://rare-sturgeon-827.convex.site"
    """
    Public origin of this service. Used in discovery documents and in the WWW-Authenticate
    challenge returned to unauthenticated MCP clients.
    Set with BASE_URL environment variable.
    """

    auth_app_url: str = "https://mcp-crm.vercel.app"
    """
    The human sign-in surface that authorize requests are redirected to.
    Set with AUTH_APP_URL environment variable.
    """

    expected_issuer: Optional[str] = None
    """
    Required `iss` claim of bearer tokens. Defaults to the base URL.
    Set with EXPECTED_ISSUER environment variable.
    """

    expected_audience: str = "convex"
    """
    Required `aud` claim of bearer tokens.
    Set with EXPECTED_AUDIENCE environment variable.
    """

    json_web_keys: Annotated[jwk.JWKSet, NoDecode] = jwk.JWKSet()
    """
    Optional signing keys of the upstream token issuer. When the set is not empty, bearer token
    signatures are verified as well as their claims.
    Set with JSON_WEB_KEYS environment variable (path to a JSON file containing a JWK Set).
    """

    encryption_key: Fernet = Fernet(Fernet.generate_key())
    """
    Fernet key used to encrypt bearer tokens held by authorization codes and SSE sessions.
    Can be set to a Fernet object or base64-encoded key string.
    Set with ENCRYPTION_KEY environment variable.
    """

    pg_dsn: str = Field(
        "postgresql+asyncpg://postgres:password@db/crm",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )
    """
    SQLAlchemy async connection URL.
    Set with PG_DSN or DATABASE_URL environment variables.
    Default: postgresql+asyncpg://postgres:password@db/crm
    """

    pkce_challenge_expiry: int = 600
    """Lifetime in seconds of a stored PKCE challenge. Default: 600 (10 minutes)"""

    authorization_code_expiry: int = 300
    """Lifetime in seconds of an authorization code. Default: 300 (5 minutes)"""

    mcp_session_expiry: int = 3600
    """Lifetime in seconds of an SSE session binding. Default: 3600 (1 hour)"""

    access_token_expires_in: int = 3600
    """`expires_in` reported by the token endpoint. Default: 3600"""

    enforce_pkce: bool = False
    """
    Verify the PKCE code verifier during the token exchange. When disabled (the default) a
    stored challenge is only discarded.
    Set with ENFORCE_PKCE=true environment variable.
    """

    sweep_interval: int = 0
    """
    Seconds between in-process expiry sweeps. 0 disables the task and leaves sweeping to
    `crmutil sweep` run by an external scheduler.
    Set with SWEEP_INTERVAL environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "telegraf"
    """
    Metrics backend, 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @model_validator(mode="after")
    def default_expected_issuer(self) -> "Settings":
        if not self.expected_issuer:
            self.expected_issuer = self.base_url
        return self

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.base_url}/.well-known/oauth-protected-resource"

    @field_validator("json_web_keys", mode="before")
    @classmethod
    def decode_json_web_keys(cls, v) -> jwk.JWKSet:
        """
        Accept either a JWKSet object or a path to a JSON file containing a JWK Set.

        Raises:
            ValueError: If the input is neither a JWKSet nor a valid file path
        """
        if isinstance(v, jwk.JWKSet):
            return v
        elif isinstance(v, str):
            with open(v) as fd:
                return jwk.JWKSet.from_json(fd.read())
        raise ValueError(
            "json_web_keys must be a JWKSet object or a valid JSON file path"
        )

    @field_validator("encryption_key", mode="before")
    @classmethod
    def decode_encryption_key(cls, v) -> Fernet:
        """
        Accept either a Fernet object or a base64-encoded Fernet key string.

        Raises:
            ValueError: If the input is neither a Fernet object nor a valid base64 key
        """
        if isinstance(v, Fernet):
            return v
        elif isinstance(v, str):
            return Fernet(base64.b64decode(v))
        raise ValueError(
            "encryption_key must be a Fernet object or a base64-encoded key string"
        )


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for the metrics client"""

DispatcherAppKey: Final = web.AppKey("dispatcher", Dispatcher)
"""AppKey for the MCP JSON-RPC dispatcher"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that decays the health gauge"""

ExpirySweepTaskAppKey: Final = web.AppKey("expiry_sweep_task", asyncio.Task[None])
"""AppKey for the optional background task that sweeps expired credentials"""
