"""
Tests for identity resolution and user provisioning.
"""

import pytest

from social.graze.crm.crm.admin import provision_user
from social.graze.crm.crm.errors import CRMError, ErrorCodes
from social.graze.crm.crm.identity import (
    BearerTokenIdentityResolver,
    PlatformIdentityResolver,
)
from social.graze.crm.model.crm import DEFAULT_STAGES, Tenant
from tests.test_helpers import ADMIN_EMAIL, make_token


def resolver(token):
    return BearerTokenIdentityResolver(
        token,
        expected_issuer="http://crm.test",
        expected_audience="convex",
        sign_in_url="http://auth.test",
    )


async def resolve(session_maker, identity_resolver):
    async with session_maker() as session:
        async with session.begin():
            return await identity_resolver.resolve(session)


class TestProvisioning:
    async def test_new_email_gets_tenant_and_admin(self, session_maker):
        async with session_maker() as session:
            async with session.begin():
                user = await provision_user(session, "new@example.com", "Newton")
                tenant = await session.get(Tenant, user.tenant_id)

        assert user.role == "admin"
        assert user.is_active
        assert tenant is not None
        assert tenant.name == "Newton's Workspace"
        assert tenant.settings["opportunityStages"] == DEFAULT_STAGES
        assert tenant.settings["defaultCurrency"] == "USD"

    async def test_name_defaults_to_email_local_part(self, session_maker):
        async with session_maker() as session:
            async with session.begin():
                user = await provision_user(session, "solo@example.com")
        assert user.name == "solo"

    async def test_existing_user_is_reused(self, session_maker, admin_user):
        async with session_maker() as session:
            async with session.begin():
                again = await provision_user(session, ADMIN_EMAIL, "Ada Renamed")

        assert again.id == admin_user.id
        assert again.tenant_id == admin_user.tenant_id
        assert again.name == "Ada Renamed"

    async def test_email_required(self, session_maker):
        async with session_maker() as session:
            async with session.begin():
                with pytest.raises(CRMError) as excinfo:
                    await provision_user(session, "")
        assert excinfo.value.code == ErrorCodes.VALIDATION_ERROR


class TestBearerTokenIdentityResolver:
    async def test_resolves_by_subject(self, session_maker, admin_user):
        token = make_token(sub=f"{admin_user.id}|session")
        auth = await resolve(session_maker, resolver(token))

        assert auth.user_id == admin_user.id
        assert auth.tenant_id == admin_user.tenant_id
        assert auth.is_admin

    async def test_falls_back_to_email(self, session_maker, admin_user):
        token = make_token(sub="unknown|session", email=ADMIN_EMAIL)
        auth = await resolve(session_maker, resolver(token))
        assert auth.user_id == admin_user.id

    async def test_missing_token(self, session_maker):
        with pytest.raises(CRMError) as excinfo:
            await resolve(session_maker, resolver(None))
        assert excinfo.value.code == ErrorCodes.UNAUTHORIZED
        assert "http://auth.test/" in excinfo.value.message

    @pytest.mark.parametrize(
        "token, message",
        [
            ("not-a-token", "Invalid token format - could not decode JWT"),
            (make_token(exp=1), "Token has expired"),
            (make_token(iss="http://other.test"), "Invalid token issuer"),
            (make_token(aud="other"), "Invalid token audience"),
        ],
    )
    async def test_rejected_tokens(self, session_maker, admin_user, token, message):
        with pytest.raises(CRMError) as excinfo:
            await resolve(session_maker, resolver(token))
        assert excinfo.value.code == ErrorCodes.UNAUTHORIZED
        assert excinfo.value.message == message

    async def test_unknown_user(self, session_maker, admin_user):
        with pytest.raises(CRMError) as excinfo:
            await resolve(session_maker, resolver(make_token(email="who@example.com")))
        assert excinfo.value.code == ErrorCodes.UNAUTHORIZED

    async def test_inactive_user(self, session_maker, admin_user):
        async with session_maker() as session:
            async with session.begin():
                user = await session.merge(admin_user)
                user.is_active = False

        with pytest.raises(CRMError) as excinfo:
            await resolve(session_maker, resolver(make_token(email=ADMIN_EMAIL)))
        assert excinfo.value.code == ErrorCodes.FORBIDDEN


class TestPlatformIdentityResolver:
    async def test_resolves_by_email(self, session_maker, admin_user):
        auth = await resolve(session_maker, PlatformIdentityResolver(ADMIN_EMAIL))
        assert auth.user_id == admin_user.id

    async def test_unknown_email(self, session_maker, admin_user):
        with pytest.raises(CRMError) as excinfo:
            await resolve(session_maker, PlatformIdentityResolver("who@example.com"))
        assert excinfo.value.code == ErrorCodes.UNAUTHORIZED
