"""
Bearer token claim decoding and validation.

Bearer tokens are compact three-segment JWTs issued and signed by the upstream identity
authority. By default this module does not verify the signature: it decodes the claim set and
checks that it is unexpired and was issued by, and for, the expected parties. When the service
is configured with the authority's public keys, `decode_claims` also verifies the signature
before the claims are trusted.
"""

import base64
import binascii
import json
import logging
from time import time
from typing import Any, Dict, Optional

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException

logger = logging.getLogger(__name__)


class TokenError(Exception):
    """Base class for bearer tokens that cannot be accepted."""


class MalformedToken(TokenError):
    """The token is not a three-segment token with a JSON object claim set."""

    def __init__(self, message: str = "Invalid token format - could not decode JWT"):
        super().__init__(message)


class InvalidClaims(TokenError):
    """The claim set decoded but failed validation."""

    MISSING_EXPIRATION = "missing expiration"
    EXPIRED = "expired"
    INVALID_ISSUER = "invalid issuer"
    INVALID_AUDIENCE = "invalid audience"

    MESSAGES = {
        MISSING_EXPIRATION: "Token missing expiration claim",
        EXPIRED: "Token has expired",
        INVALID_ISSUER: "Invalid token issuer",
        INVALID_AUDIENCE: "Invalid token audience",
    }

    def __init__(self, reason: str):
        super().__init__(self.MESSAGES.get(reason, "Token validation failed"))
        self.reason = reason


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def decode_claims(
    token: str, json_web_keys: Optional[jwk.JWKSet] = None
) -> Dict[str, Any]:
    """
    Decode the claim set of a bearer token.

    Raises:
        MalformedToken: The token does not have exactly three segments, or the middle segment
            is not base64url-encoded JSON describing an object, or (when keys are given) the
            signature does not verify.
    """
    segments = token.split(".")
    if len(segments) != 3:
        raise MalformedToken()

    if json_web_keys is not None and len(json_web_keys["keys"]) > 0:
        try:
            # Claims are checked by validate_claims so that rejections stay deterministic.
            jwt.JWT(jwt=token, key=json_web_keys, check_claims=False)
        except (JWException, ValueError) as e:
            logger.debug("bearer token signature rejected: %s", type(e).__name__)
            raise MalformedToken("Invalid token signature") from e

    try:
        claims = json.loads(_b64url_decode(segments[1]))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise MalformedToken() from e

    if not isinstance(claims, dict):
        raise MalformedToken()
    return claims


def validate_claims(
    claims: Dict[str, Any],
    expected_issuer: str,
    expected_audience: str,
    now: Optional[float] = None,
) -> None:
    """
    Check expiry, then issuer, then audience.

    Raises:
        InvalidClaims: carrying the first failed check as its `reason`.
    """
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not exp:
        raise InvalidClaims(InvalidClaims.MISSING_EXPIRATION)

    current_time = int(time()) if now is None else int(now)
    if exp < current_time:
        raise InvalidClaims(InvalidClaims.EXPIRED)

    if claims.get("iss") != expected_issuer:
        raise InvalidClaims(InvalidClaims.INVALID_ISSUER)

    if claims.get("aud") != expected_audience:
        raise InvalidClaims(InvalidClaims.INVALID_AUDIENCE)
