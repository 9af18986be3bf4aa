"""
Identity resolution.

Every CRM capability runs under an `AuthContext`. There are two ways to obtain one and both are
explicit `IdentityResolver` implementations:

* `BearerTokenIdentityResolver` serves every MCP-originated call. It decodes and validates the
  bearer token's claims, then finds the user by the identifier in `sub` (falling back to the
  `email` claim).
* `PlatformIdentityResolver` serves in-process callers that already hold an identity verified by
  the platform (the operator CLI), and looks the user up by email.

Both reject unknown users as UNAUTHORIZED and inactive users as FORBIDDEN.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Optional

from jwcrypto import jwk
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from social.graze.crm.auth.token import TokenError, decode_claims, validate_claims
from social.graze.crm.crm.errors import forbidden, unauthorized
from social.graze.crm.model.crm import User

logger = logging.getLogger(__name__)


@dataclass(repr=False, eq=False)
class AuthContext:
    """
    The ambient identity of one request.

    Attributes:
        user_id: The id of the calling user
        tenant_id: The tenant every read and write is scoped to
        role: "admin" or "member"
        user: The user record as loaded during resolution
    """

    user_id: str
    tenant_id: str
    role: str
    user: User

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def _auth_context(user: User) -> AuthContext:
    return AuthContext(
        user_id=user.id, tenant_id=user.tenant_id, role=user.role, user=user
    )


async def find_user_by_email(
    database_session: AsyncSession, email: str
) -> Optional[User]:
    stmt = select(User).where(User.email == email).order_by(User.created_at)
    return (await database_session.scalars(stmt)).first()


class IdentityResolver(ABC):
    @abstractmethod
    async def resolve(self, database_session: AsyncSession) -> AuthContext:
        """Resolve the caller, raising CRMError (UNAUTHORIZED or FORBIDDEN) on failure."""


class BearerTokenIdentityResolver(IdentityResolver):
    def __init__(
        self,
        token: Optional[str],
        expected_issuer: str,
        expected_audience: str,
        sign_in_url: str,
        json_web_keys: Optional[jwk.JWKSet] = None,
    ):
        self.token = token
        self.expected_issuer = expected_issuer
        self.expected_audience = expected_audience
        self.sign_in_url = sign_in_url
        self.json_web_keys = json_web_keys

    async def resolve(self, database_session: AsyncSession) -> AuthContext:
        if not self.token:
            raise unauthorized(
                f"Missing authentication token. Please sign in at {self.sign_in_url}/"
            )

        try:
            claims = decode_claims(self.token, self.json_web_keys)
            validate_claims(claims, self.expected_issuer, self.expected_audience)
        except TokenError as e:
            logger.info("bearer token rejected: %s", e)
            raise unauthorized(str(e)) from e

        user: Optional[User] = None

        subject = claims.get("sub")
        if isinstance(subject, str) and subject:
            # Subjects look like "<userId>|<sessionId>".
            user_id = subject.split("|", 1)[0]
            user = await database_session.get(User, user_id)

        email = claims.get("email")
        if user is None and isinstance(email, str) and email:
            user = await find_user_by_email(database_session, email)

        if user is None:
            raise unauthorized("User not found. Please sign in at the auth app first.")

        if not user.is_active:
            raise forbidden("User account is deactivated")

        return _auth_context(user)


class PlatformIdentityResolver(IdentityResolver):
    def __init__(self, email: str):
        self.email = email

    async def resolve(self, database_session: AsyncSession) -> AuthContext:
        user = await find_user_by_email(database_session, self.email)
        if user is None:
            raise unauthorized("User not found")

        if not user.is_active:
            raise forbidden("User account is deactivated")

        return _auth_context(user)
