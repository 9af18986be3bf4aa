"""
Common testing utilities for CRM tests.

Provides a deterministic clock, unsigned bearer tokens shaped like the upstream issuer's, and
JSON-RPC helpers for driving the MCP endpoint.
"""

import base64
from datetime import datetime, timedelta
import json
import time
from typing import Any, Dict, Optional

from ulid import ULID

BASE_URL = "http://crm.test"
AUTH_APP_URL = "http://auth.test"
ADMIN_EMAIL = "ada@example.com"
MEMBER_EMAIL = "grace@example.com"
OUTSIDER_EMAIL = "otto@elsewhere.example"


def generate_ulid_string() -> str:
    """Generate a ULID string for testing."""
    return str(ULID())


class TickingClock:
    """A clock that moves forward one second every time it is read."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        self.current = self.current + self.step
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current = self.current + delta

    def millis(self) -> int:
        return int(self.current.timestamp() * 1000)


def _b64url(data: Dict[str, Any]) -> str:
    encoded = base64.urlsafe_b64encode(json.dumps(data).encode("utf-8"))
    return encoded.decode("ascii").rstrip("=")


def make_token(
    sub: Optional[str] = None,
    email: Optional[str] = None,
    iss: str = "http://crm.test",
    aud: str = "convex",
    exp: Optional[int] = None,
    **extra: Any,
) -> str:
    """Build an unsigned three-segment bearer token with the given claims."""
    claims: Dict[str, Any] = {
        "iss": iss,
        "aud": aud,
        "exp": int(time.time()) + 3600 if exp is None else exp,
    }
    if sub is not None:
        claims["sub"] = sub
    if email is not None:
        claims["email"] = email
    claims.update(extra)
    return ".".join([_b64url({"alg": "RS256", "typ": "JWT"}), _b64url(claims), "sig"])


def rpc(method: str, params: Optional[Dict[str, Any]] = None, id: Any = 1) -> Dict[str, Any]:
    body: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if id is not None:
        body["id"] = id
    if params is not None:
        body["params"] = params
    return body


def tool_call(name: str, arguments: Optional[Dict[str, Any]] = None, id: Any = 1):
    return rpc("tools/call", {"name": name, "arguments": arguments or {}}, id=id)


def tool_payload(response_body: Dict[str, Any]) -> Any:
    """Decode the JSON text carried in a successful tools/call result."""
    content = response_body["result"]["content"]
    assert content[0]["type"] == "text"
    return json.loads(content[0]["text"])
