"""
Tests for PKCE helpers and the expiring credential relations in social.graze.crm.model.ephemeral
"""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from social.graze.crm.auth.pkce import (
    PLAIN,
    S256,
    compute_challenge,
    generate_pkce_verifier,
    verify_code_verifier,
)
from social.graze.crm.model.ephemeral import (
    AuthorizationCode,
    McpSession,
    PkceChallenge,
    create_authorization_code,
    create_mcp_session,
    discard_pkce_challenge,
    lookup_mcp_session,
    store_pkce_challenge,
    sweep_expired,
    take_authorization_code,
    take_pkce_challenge,
    verify_pkce_challenge,
)

NOW = datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)


async def count_rows(session: AsyncSession, model) -> int:
    async with session.begin():
        return (await session.scalar(select(func.count()).select_from(model))) or 0


class TestPkce:
    def test_rfc7636_appendix_b(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert compute_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_generated_pair_verifies(self):
        verifier, challenge = generate_pkce_verifier()
        assert "=" not in challenge
        assert verify_code_verifier(verifier, challenge, S256)
        assert not verify_code_verifier(verifier + "x", challenge, S256)

    def test_plain_method(self):
        assert verify_code_verifier("abc", "abc", PLAIN)
        assert not verify_code_verifier("abc", "abd", PLAIN)

    def test_unknown_method(self):
        assert not verify_code_verifier("abc", "abc", "S512")


class TestPkceChallenges:
    async def test_take_is_single_use(self, session: AsyncSession):
        await store_pkce_challenge(session, "state-1", "challenge", S256, "http://cb", NOW)

        taken = await take_pkce_challenge(session, "state-1")
        assert taken is not None
        assert taken.code_challenge == "challenge"
        assert taken.redirect_uri == "http://cb"
        assert taken.expires_at == NOW + timedelta(minutes=10)

        assert await take_pkce_challenge(session, "state-1") is None

    async def test_store_replaces_existing_state(self, session: AsyncSession):
        await store_pkce_challenge(session, "state-1", "first", S256, "", NOW)
        await store_pkce_challenge(session, "state-1", "second", S256, "", NOW)

        assert await count_rows(session, PkceChallenge) == 1
        taken = await take_pkce_challenge(session, "state-1")
        assert taken is not None and taken.code_challenge == "second"

    async def test_verify_without_challenge_is_valid(self, session: AsyncSession):
        result = await verify_pkce_challenge(session, "unknown", None, NOW)
        assert result.valid

    async def test_verify_success_consumes(self, session: AsyncSession):
        verifier, challenge = generate_pkce_verifier()
        await store_pkce_challenge(session, "state-1", challenge, S256, "", NOW)

        result = await verify_pkce_challenge(session, "state-1", verifier, NOW)
        assert result.valid
        assert await count_rows(session, PkceChallenge) == 0

    @pytest.mark.parametrize(
        "verifier, now, error",
        [
            (None, NOW, "Code verifier required"),
            ("wrong", NOW, "Invalid code verifier"),
            ("anything", NOW + timedelta(minutes=11), "Challenge expired"),
        ],
    )
    async def test_verify_failures(self, session: AsyncSession, verifier, now, error):
        _, challenge = generate_pkce_verifier()
        await store_pkce_challenge(session, "state-1", challenge, S256, "", NOW)

        result = await verify_pkce_challenge(session, "state-1", verifier, now)
        assert not result.valid
        assert result.error == error
        # Consumed whatever the outcome.
        assert await count_rows(session, PkceChallenge) == 0

    async def test_discard(self, session: AsyncSession):
        await store_pkce_challenge(session, "state-1", "challenge", S256, "", NOW)
        await discard_pkce_challenge(session, "state-1")
        assert await count_rows(session, PkceChallenge) == 0


class TestAuthorizationCodes:
    async def test_code_shape_and_encryption(self, session: AsyncSession, encryption_key):
        code = await create_authorization_code(
            session, encryption_key, "bearer-token", "state-1", NOW
        )
        assert len(code) == 32
        assert code.isalnum()

        async with session.begin():
            row = await session.get(AuthorizationCode, code)
            assert row is not None
            assert "bearer-token" not in row.encrypted_token

    async def test_take_is_single_use(self, session: AsyncSession, encryption_key):
        code = await create_authorization_code(
            session, encryption_key, "bearer-token", "state-1", NOW
        )

        taken = await take_authorization_code(session, encryption_key, code)
        assert taken is not None
        assert taken.token == "bearer-token"
        assert taken.state == "state-1"
        assert not taken.is_expired(NOW + timedelta(minutes=5))
        assert taken.is_expired(NOW + timedelta(minutes=5, seconds=1))

        assert await take_authorization_code(session, encryption_key, code) is None

    async def test_unknown_code(self, session: AsyncSession, encryption_key):
        assert await take_authorization_code(session, encryption_key, "nope") is None

    async def test_retired_key_reads_as_absent(self, session: AsyncSession, encryption_key):
        code = await create_authorization_code(
            session, encryption_key, "bearer-token", "", NOW
        )
        other_key = Fernet(Fernet.generate_key())
        assert await take_authorization_code(session, other_key, code) is None
        assert await count_rows(session, AuthorizationCode) == 0


class TestMcpSessions:
    async def test_lookup(self, session: AsyncSession, encryption_key):
        session_id = await create_mcp_session(session, encryption_key, "bearer-token", NOW)

        assert await lookup_mcp_session(session, encryption_key, session_id, NOW) == "bearer-token"
        # Lookups do not consume the binding.
        assert await lookup_mcp_session(session, encryption_key, session_id, NOW) == "bearer-token"

    async def test_expired_session(self, session: AsyncSession, encryption_key):
        session_id = await create_mcp_session(
            session, encryption_key, "bearer-token", NOW, timedelta(minutes=1)
        )
        later = NOW + timedelta(minutes=2)
        assert await lookup_mcp_session(session, encryption_key, session_id, later) is None

    async def test_unknown_session(self, session: AsyncSession, encryption_key):
        assert await lookup_mcp_session(session, encryption_key, "nope", NOW) is None


class TestSweep:
    async def test_sweep_removes_only_expired_rows(
        self, session: AsyncSession, encryption_key
    ):
        earlier = NOW - timedelta(hours=2)
        await store_pkce_challenge(session, "old", "c", S256, "", earlier)
        await store_pkce_challenge(session, "new", "c", S256, "", NOW)
        await create_authorization_code(session, encryption_key, "t", "", earlier)
        await create_authorization_code(session, encryption_key, "t", "", NOW)
        await create_mcp_session(session, encryption_key, "t", earlier)
        await create_mcp_session(session, encryption_key, "t", NOW)

        counts = await sweep_expired(session, NOW)
        assert counts == {
            "pkce_challenges": 1,
            "authorization_codes": 1,
            "mcp_sessions": 1,
        }

        assert await count_rows(session, PkceChallenge) == 1
        assert await count_rows(session, AuthorizationCode) == 1
        assert await count_rows(session, McpSession) == 1

        assert await sweep_expired(session, NOW) == {
            "pkce_challenges": 0,
            "authorization_codes": 0,
            "mcp_sessions": 0,
        }
