"""
JSON-RPC dispatcher for the MCP endpoint.

`Dispatcher.dispatch` takes the raw request body and the caller's bearer token (if any) and
returns a `DispatchResult`: the HTTP status, the JSON-RPC response body (None for
notifications) and any extra headers. It is transport agnostic; `/mcp`, `/v1/mcp` and the
legacy `/messages` endpoint all share it and differ only in where the token comes from.

Public methods (`initialize`, `tools/list`, `ping`) are answered without looking at the token.
Everything else needs one: a request without a token gets HTTP 401 and JSON-RPC error -32001
with a `WWW-Authenticate` challenge so that clients start the OAuth flow. A token that is
present but unusable is reported as a -32000 error carrying the UNAUTHORIZED domain error.
"""

import copy
from dataclasses import dataclass, field
import json
import logging
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social.graze.crm.app.metrics import MetricsClient
from social.graze.crm.crm.capabilities import invoke_capability
from social.graze.crm.crm.errors import CRMError, format_error
from social.graze.crm.crm.identity import IdentityResolver
from social.graze.crm.crm.store import TenantStore, utc_now
from social.graze.crm.mcp.catalog import list_tools

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-03-26"
SERVER_INFO = {"name": "mcp-crm", "version": "1.0.0"}
SERVER_CAPABILITIES = {"tools": {}}

PUBLIC_METHODS = frozenset(["initialize", "tools/list", "ping"])
NOTIFICATION_PREFIX = "notifications/"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_ERROR = -32000
AUTHENTICATION_REQUIRED = -32001


class JsonRpcError(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class JsonRpcRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    jsonrpc: Optional[str] = None
    id: Any = None
    method: Optional[str] = None
    params: Any = None

    @property
    def is_notification(self) -> bool:
        if self.id:
            return False
        return self.method is None or self.method.startswith(NOTIFICATION_PREFIX)


@dataclass
class DispatchResult:
    status: int
    body: Optional[Dict[str, Any]]
    headers: Dict[str, str] = field(default_factory=dict)


def success_response(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(
    request_id: Any, code: int, message: str, data: Any = None
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def initialize_result() -> Dict[str, Any]:
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "serverInfo": dict(SERVER_INFO),
        "capabilities": copy.deepcopy(SERVER_CAPABILITIES),
    }


def tool_result(result: Any) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(result, indent=2)}]}


class Dispatcher:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        resolver_factory: Callable[[Optional[str]], IdentityResolver],
        metrics_client: MetricsClient,
        resource_metadata_url: str,
        clock=utc_now,
    ):
        self.database_session_maker = database_session_maker
        self.resolver_factory = resolver_factory
        self.metrics_client = metrics_client
        self.resource_metadata_url = resource_metadata_url
        self.clock = clock

    @property
    def authentication_challenge(self) -> str:
        return f'Bearer resource_metadata="{self.resource_metadata_url}"'

    async def dispatch(
        self, raw_body: Union[str, bytes], token: Optional[str]
    ) -> DispatchResult:
        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            return DispatchResult(
                400, error_response(None, PARSE_ERROR, "Parse error", str(e))
            )

        try:
            request = JsonRpcRequest.model_validate(payload)
        except ValidationError:
            request_id = payload.get("id") if isinstance(payload, dict) else None
            return DispatchResult(
                400, error_response(request_id, INVALID_REQUEST, "Invalid Request")
            )

        if request.is_notification:
            logger.debug("notification %s", request.method)
            return DispatchResult(202, None)

        if request.method is None:
            return DispatchResult(
                400, error_response(request.id, INVALID_REQUEST, "Invalid Request")
            )

        method = request.method
        public = method in PUBLIC_METHODS
        self.metrics_client.increment(
            "crm.mcp.method.count", 1, tag_dict={"method": method}
        )

        if not public and not token:
            return DispatchResult(
                401,
                error_response(
                    request.id, AUTHENTICATION_REQUIRED, "Authentication required"
                ),
                {"WWW-Authenticate": self.authentication_challenge},
            )

        try:
            result = await self.handle_method(request, token)
        except JsonRpcError as e:
            return DispatchResult(200, error_response(request.id, e.code, e.message, e.data))
        except Exception as e:
            if not isinstance(e, CRMError):
                logger.exception("unexpected error handling %s", method)
            error = format_error(e)
            return DispatchResult(
                200, error_response(request.id, TOOL_ERROR, error["message"], error)
            )

        return DispatchResult(200, success_response(request.id, result))

    async def handle_method(self, request: JsonRpcRequest, token: Optional[str]) -> Any:
        method = request.method

        if method == "initialize":
            return initialize_result()

        if method == "ping":
            return {}

        if method == "tools/list":
            return {"tools": list_tools()}

        if method == "tools/call":
            params = request.params or {}
            if not isinstance(params, dict):
                raise JsonRpcError(INVALID_PARAMS, "Invalid params")
            name = params.get("name")
            if not isinstance(name, str) or not name:
                raise JsonRpcError(INVALID_PARAMS, "Missing tool name")
            return tool_result(
                await self.call_tool(name, params.get("arguments"), token)
            )

        raise JsonRpcError(METHOD_NOT_FOUND, f"Unknown method: {method}")

    async def call_tool(self, name: str, arguments: Any, token: Optional[str]) -> Any:
        return await self.call_tool_as(name, arguments, self.resolver_factory(token))

    async def call_tool_as(
        self, name: str, arguments: Any, resolver: IdentityResolver
    ) -> Any:
        """Run one tool inside a single transaction under the identity `resolver` yields."""
        outcome = "ok"
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    auth = await resolver.resolve(database_session)
                    store = TenantStore(database_session, auth, self.clock)
                    return await invoke_capability(name, store, arguments)
        except CRMError as e:
            outcome = e.code
            raise
        except Exception:
            outcome = "INTERNAL_ERROR"
            raise
        finally:
            self.metrics_client.increment(
                "crm.mcp.tool.count", 1, tag_dict={"tool": name, "outcome": outcome}
            )
