"""Expiring credential relations used by the OAuth flow and the legacy SSE transport.

Each relation follows the same lifecycle: a row is created with an expiry, read at most once
(reading deletes it) and otherwise removed by `sweep_expired`. Reads always re-check expiry.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
import string
from typing import Dict, Optional
import uuid

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import String, delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from social.graze.crm.auth.pkce import verify_code_verifier
from social.graze.crm.model.base import Base, str64, str1024

logger = logging.getLogger(__name__)

PKCE_CHALLENGE_EXPIRY = timedelta(minutes=10)
AUTHORIZATION_CODE_EXPIRY = timedelta(minutes=5)
MCP_SESSION_EXPIRY = timedelta(hours=1)

AUTHORIZATION_CODE_ALPHABET = string.ascii_letters + string.digits
AUTHORIZATION_CODE_LENGTH = 32


class PkceChallenge(Base):
    """A pending authorization attempt, keyed by the client's `state`."""

    __tablename__ = "pkce_challenges"

    state: Mapped[str] = mapped_column(String(512), primary_key=True)
    code_challenge: Mapped[str] = mapped_column(String(256), nullable=False)
    code_challenge_method: Mapped[str] = mapped_column(String(16), nullable=False)
    redirect_uri: Mapped[str1024]
    created_at: Mapped[datetime]
    expires_at: Mapped[datetime] = mapped_column(index=True)


class AuthorizationCode(Base):
    """A single-use code standing in for a bearer token during the redirect back to the client."""

    __tablename__ = "authorization_codes"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    encrypted_token: Mapped[str] = mapped_column(String(8192), nullable=False)
    state: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    created_at: Mapped[datetime]
    expires_at: Mapped[datetime] = mapped_column(index=True)


class McpSession(Base):
    """Binds a legacy SSE session id to the bearer token presented when the stream opened."""

    __tablename__ = "mcp_sessions"

    session_id: Mapped[str64] = mapped_column(primary_key=True)
    encrypted_token: Mapped[str] = mapped_column(String(8192), nullable=False)
    created_at: Mapped[datetime]
    expires_at: Mapped[datetime] = mapped_column(index=True)


@dataclass(repr=False)
class TakenAuthorizationCode:
    token: str
    state: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now


@dataclass(repr=False)
class PkceVerification:
    valid: bool
    error: Optional[str] = None


def _decrypt(fernet: Fernet, value: str) -> Optional[str]:
    try:
        return fernet.decrypt(value.encode()).decode()
    except InvalidToken:
        # Rows written under a retired encryption key are treated as absent.
        logger.warning("Unable to decrypt stored bearer token")
        return None


async def store_pkce_challenge(
    database_session: AsyncSession,
    state: str,
    code_challenge: str,
    code_challenge_method: str,
    redirect_uri: str,
    now: datetime,
    expiry: timedelta = PKCE_CHALLENGE_EXPIRY,
) -> PkceChallenge:
    """
    Record the challenge for `state`, replacing any earlier record for the same state.
    """
    async with database_session.begin():
        await database_session.execute(
            delete(PkceChallenge).where(PkceChallenge.state == state)
        )
        challenge = PkceChallenge(
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            redirect_uri=redirect_uri,
            created_at=now,
            expires_at=now + expiry,
        )
        database_session.add(challenge)
    return challenge


async def take_pkce_challenge(
    database_session: AsyncSession, state: str
) -> Optional[PkceChallenge]:
    """
    Delete the challenge for `state` and return what was deleted.

    The delete and the read are one statement, so two concurrent callers can never both
    receive the same challenge.
    """
    async with database_session.begin():
        result = await database_session.execute(
            delete(PkceChallenge)
            .where(PkceChallenge.state == state)
            .returning(
                PkceChallenge.state,
                PkceChallenge.code_challenge,
                PkceChallenge.code_challenge_method,
                PkceChallenge.redirect_uri,
                PkceChallenge.created_at,
                PkceChallenge.expires_at,
            )
        )
        row = result.first()
    if row is None:
        return None
    return PkceChallenge(**row._asdict())


async def verify_pkce_challenge(
    database_session: AsyncSession,
    state: str,
    code_verifier: Optional[str],
    now: datetime,
) -> PkceVerification:
    """
    Consume the challenge for `state` and check `code_verifier` against it.

    A state with no recorded challenge needs no proof and is valid. The challenge is deleted
    before any check runs, so a second verification of the same state finds nothing.
    """
    challenge = await take_pkce_challenge(database_session, state)
    if challenge is None:
        return PkceVerification(valid=True)

    if challenge.expires_at < now:
        return PkceVerification(valid=False, error="Challenge expired")

    if not code_verifier:
        return PkceVerification(valid=False, error="Code verifier required")

    if not verify_code_verifier(
        code_verifier, challenge.code_challenge, challenge.code_challenge_method
    ):
        return PkceVerification(valid=False, error="Invalid code verifier")

    return PkceVerification(valid=True)


async def discard_pkce_challenge(database_session: AsyncSession, state: str) -> None:
    async with database_session.begin():
        await database_session.execute(
            delete(PkceChallenge).where(PkceChallenge.state == state)
        )


def generate_authorization_code() -> str:
    return "".join(
        secrets.choice(AUTHORIZATION_CODE_ALPHABET)
        for _ in range(AUTHORIZATION_CODE_LENGTH)
    )


async def create_authorization_code(
    database_session: AsyncSession,
    fernet: Fernet,
    token: str,
    state: str,
    now: datetime,
    expiry: timedelta = AUTHORIZATION_CODE_EXPIRY,
) -> str:
    code = generate_authorization_code()
    async with database_session.begin():
        database_session.add(
            AuthorizationCode(
                code=code,
                encrypted_token=fernet.encrypt(token.encode()).decode(),
                state=state,
                created_at=now,
                expires_at=now + expiry,
            )
        )
    return code


async def take_authorization_code(
    database_session: AsyncSession, fernet: Fernet, code: str
) -> Optional[TakenAuthorizationCode]:
    """
    Delete the authorization code and return its binding.

    The row is gone once this returns, whatever the caller decides about expiry, so a code
    can be exchanged at most once.
    """
    async with database_session.begin():
        result = await database_session.execute(
            delete(AuthorizationCode)
            .where(AuthorizationCode.code == code)
            .returning(
                AuthorizationCode.encrypted_token,
                AuthorizationCode.state,
                AuthorizationCode.expires_at,
            )
        )
        row = result.first()
    if row is None:
        return None

    token = _decrypt(fernet, row.encrypted_token)
    if token is None:
        return None
    return TakenAuthorizationCode(
        token=token, state=row.state, expires_at=row.expires_at
    )


def generate_session_id() -> str:
    return str(uuid.uuid4())


async def create_mcp_session(
    database_session: AsyncSession,
    fernet: Fernet,
    token: str,
    now: datetime,
    expiry: timedelta = MCP_SESSION_EXPIRY,
) -> str:
    session_id = generate_session_id()
    async with database_session.begin():
        database_session.add(
            McpSession(
                session_id=session_id,
                encrypted_token=fernet.encrypt(token.encode()).decode(),
                created_at=now,
                expires_at=now + expiry,
            )
        )
    return session_id


async def lookup_mcp_session(
    database_session: AsyncSession, fernet: Fernet, session_id: str, now: datetime
) -> Optional[str]:
    """Return the bearer token bound to `session_id`, or None if absent or expired."""
    async with database_session.begin():
        stmt = select(McpSession).where(McpSession.session_id == session_id)
        mcp_session: Optional[McpSession] = (
            await database_session.scalars(stmt)
        ).first()
        if mcp_session is None or mcp_session.expires_at < now:
            return None
        encrypted_token = mcp_session.encrypted_token
    return _decrypt(fernet, encrypted_token)


async def sweep_expired(database_session: AsyncSession, now: datetime) -> Dict[str, int]:
    """
    Delete every expired row from the three relations and return per-relation counts.
    """
    counts: Dict[str, int] = {}
    async with database_session.begin():
        for name, model in (
            ("pkce_challenges", PkceChallenge),
            ("authorization_codes", AuthorizationCode),
            ("mcp_sessions", McpSession),
        ):
            result = await database_session.execute(
                delete(model).where(model.expires_at < now)
            )
            counts[name] = result.rowcount or 0
    return counts

