"""
Tenant and user administration.

Mutations here are restricted to admins of the caller's tenant. Users are never hard deleted;
they are deactivated and can be reactivated later.
"""

from datetime import datetime
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from social.graze.crm.crm.errors import (
    CRMError,
    ErrorCodes,
    duplicate_invite,
    forbidden,
    not_found,
    validation_error,
)
from social.graze.crm.crm.identity import AuthContext, find_user_by_email
from social.graze.crm.crm.schemas import (
    EntityId,
    InviteUser,
    ListUsers,
    NoArguments,
    UpdateTenant,
)
from social.graze.crm.crm.store import TenantStore, new_id, paginate, utc_now
from social.graze.crm.model.crm import Tenant, User, default_tenant_settings

logger = logging.getLogger(__name__)


def require_admin(auth: AuthContext) -> None:
    if not auth.is_admin:
        raise forbidden("Admin role required")


async def _tenant_user(store: TenantStore, id: str) -> User:
    user = await store.database_session.get(User, id)
    if user is None or user.tenant_id != store.auth.tenant_id:
        raise not_found("User")
    return user


async def get_tenant(store: TenantStore, args: NoArguments) -> Dict[str, Any]:
    tenant = await store.tenant()
    if tenant is None:
        raise not_found("Tenant")
    return tenant.to_dict()


async def update_tenant(store: TenantStore, args: UpdateTenant) -> Dict[str, Any]:
    require_admin(store.auth)

    tenant = await store.tenant()
    if tenant is None:
        raise not_found("Tenant")

    changes = args.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if args.name is not None:
        tenant.name = args.name
    if "settings" in changes:
        tenant.settings = {**tenant.settings, **changes["settings"]}
    tenant.updated_at = store.now()
    await store.database_session.flush()

    await store.audit("update", "tenant", tenant.id, changes)
    return tenant.to_dict()


async def invite_user(store: TenantStore, args: InviteUser) -> Dict[str, Any]:
    require_admin(store.auth)

    existing = await find_user_by_email(store.database_session, args.email)
    if existing is not None:
        if existing.tenant_id == store.auth.tenant_id:
            raise duplicate_invite(args.email)
        raise validation_error(
            "This email is already registered with another organization"
        )

    now = store.now()
    user = User(
        id=new_id(),
        tenant_id=store.auth.tenant_id,
        email=args.email,
        name=args.name,
        role=args.role,
        is_active=False,
        invited_by=store.auth.user_id,
        created_at=now,
        updated_at=now,
    )
    store.database_session.add(user)
    await store.database_session.flush()

    await store.audit(
        "create", "user", user.id, {"email": args.email, "role": args.role}
    )
    logger.info("user %s invited to tenant %s", user.id, user.tenant_id)
    return user.to_dict()


async def list_users(store: TenantStore, args: ListUsers) -> Dict[str, Any]:
    stmt = (
        select(User)
        .where(User.tenant_id == store.auth.tenant_id)
        .order_by(User.created_at, User.id)
    )
    if not args.include_inactive:
        stmt = stmt.where(User.is_active.is_(True))

    users = list((await store.database_session.scalars(stmt)).all())
    page = paginate(users, args.limit, args.cursor, lambda user: user.id)
    page["items"] = [user.to_dict() for user in page["items"]]
    return page


async def deactivate_user(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    require_admin(store.auth)
    user = await _tenant_user(store, args.id)

    if user.id == store.auth.user_id:
        raise CRMError(
            ErrorCodes.CANNOT_DEACTIVATE_SELF, "Cannot deactivate your own account"
        )

    if user.role == "admin":
        stmt = select(User).where(
            User.tenant_id == store.auth.tenant_id,
            User.role == "admin",
            User.is_active.is_(True),
        )
        active_admins = (await store.database_session.scalars(stmt)).all()
        if len(active_admins) <= 1:
            raise CRMError(
                ErrorCodes.CANNOT_DEACTIVATE_LAST_ADMIN,
                "Cannot deactivate the last admin",
            )

    user.is_active = False
    user.updated_at = store.now()
    await store.database_session.flush()
    await store.audit("update", "user", user.id, {"isActive": False})
    return user.to_dict()


async def reactivate_user(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    require_admin(store.auth)
    user = await _tenant_user(store, args.id)

    if user.is_active:
        raise validation_error("User is already active")

    user.is_active = True
    user.updated_at = store.now()
    await store.database_session.flush()
    await store.audit("update", "user", user.id, {"isActive": True})
    return user.to_dict()


async def provision_user(
    database_session: AsyncSession,
    email: str,
    name: Optional[str] = None,
    clock: Callable[[], datetime] = utc_now,
) -> User:
    """
    Provision the user behind a platform sign-in.

    An invited (inactive) user is activated, an existing user has their name refreshed, and an
    unknown email gets a fresh tenant of which they become the admin. Runs inside the caller's
    transaction.
    """
    if not email:
        raise validation_error("Email is required")

    now = clock()
    display_name = name or email.split("@", 1)[0]

    user = await find_user_by_email(database_session, email)
    if user is not None:
        if name:
            user.name = name
        if not user.is_active:
            logger.info("activating invited user %s", user.id)
        user.is_active = True
        user.updated_at = now
        await database_session.flush()
        return user

    tenant = Tenant(
        id=new_id(),
        name=f"{display_name}'s Workspace",
        settings=default_tenant_settings(),
        created_at=now,
        updated_at=now,
    )
    database_session.add(tenant)
    await database_session.flush()

    user = User(
        id=new_id(),
        tenant_id=tenant.id,
        email=email,
        name=display_name,
        role="admin",
        is_active=True,
        invited_by=None,
        created_at=now,
        updated_at=now,
    )
    database_session.add(user)
    await database_session.flush()

    logger.info("provisioned tenant %s for user %s", tenant.id, user.id)
    return user
