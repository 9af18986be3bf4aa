"""
Accounts, contacts and opportunities.

Contacts and opportunities hang off an account. An account with live children cannot be
deleted unless the caller forces a cascade, and a child cannot be restored while its account
is deleted.
"""

import logging
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel

from social.graze.crm.crm.errors import (
    has_dependencies,
    invalid_stage,
    not_found,
    validation_error,
)
from social.graze.crm.crm.schemas import (
    CreateAccount,
    CreateContact,
    CreateOpportunity,
    DeleteAccount,
    EntityId,
    ListAccounts,
    ListContacts,
    ListOpportunities,
    UpdateAccount,
    UpdateContact,
    UpdateOpportunity,
)
from social.graze.crm.crm.store import TenantStore, paginate_records
from social.graze.crm.model.crm import (
    DEFAULT_CURRENCY,
    DEFAULT_STAGES,
    CrmRecord,
    to_millis,
)

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
CONTACTS = "contacts"
OPPORTUNITIES = "opportunities"


def record_body(args: BaseModel, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    return args.model_dump(by_alias=True, exclude_none=True, exclude=set(exclude))


def record_changes(args: BaseModel) -> Dict[str, Any]:
    return args.model_dump(
        by_alias=True, exclude_unset=True, exclude_none=True, exclude={"id"}
    )


async def existing_record(
    store: TenantStore, collection: str, id: str, label: str
) -> CrmRecord:
    record = await store.get(collection, id)
    if record is None:
        raise not_found(label)
    return record


async def live_record(
    store: TenantStore, collection: str, id: str, label: str
) -> CrmRecord:
    record = await store.get(collection, id)
    if record is None or record.is_deleted:
        raise not_found(label)
    return record


async def restore_record(
    store: TenantStore, collection: str, id: str, label: str, entity_type: str
) -> CrmRecord:
    record = await existing_record(store, collection, id, label)
    if not record.is_deleted:
        raise validation_error(f"{label} is not deleted")

    account_id = record.body.get("accountId")
    if collection != ACCOUNTS and account_id:
        account = await store.get(ACCOUNTS, account_id)
        if account is None or account.is_deleted:
            raise validation_error(
                f"Cannot restore {entity_type}: parent account is deleted"
            )

    await store.restore(record)
    await store.audit("restore", entity_type, record.id)
    return record


async def delete_record(
    store: TenantStore, collection: str, id: str, label: str, entity_type: str
) -> Dict[str, Any]:
    record = await live_record(store, collection, id, label)
    await store.soft_delete(record)
    await store.audit("delete", entity_type, record.id)
    return {"success": True}


async def tenant_settings(store: TenantStore) -> Dict[str, Any]:
    tenant = await store.tenant()
    if tenant is None:
        raise not_found("Tenant")
    return tenant.settings


def tenant_stages(settings: Dict[str, Any]) -> List[str]:
    return list(settings.get("opportunityStages") or DEFAULT_STAGES)


# Accounts


async def create_account(store: TenantStore, args: CreateAccount) -> Dict[str, Any]:
    record = await store.insert(ACCOUNTS, record_body(args))
    await store.audit("create", "account", record.id, record_body(args))
    return record.to_dict()


async def get_account(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return (await existing_record(store, ACCOUNTS, args.id, "Account")).to_dict()


async def list_accounts(store: TenantStore, args: ListAccounts) -> Dict[str, Any]:
    records = await store.list(ACCOUNTS, include_deleted=args.include_deleted)
    if args.industry is not None:
        records = [r for r in records if r.body.get("industry") == args.industry]
    if args.owner_id is not None:
        records = [r for r in records if r.body.get("ownerId") == args.owner_id]
    return paginate_records(records, args.limit, args.cursor)


async def update_account(store: TenantStore, args: UpdateAccount) -> Dict[str, Any]:
    record = await live_record(store, ACCOUNTS, args.id, "Account")
    changes = record_changes(args)
    await store.patch(record, changes)
    await store.audit("update", "account", record.id, changes)
    return record.to_dict()


async def delete_account(store: TenantStore, args: DeleteAccount) -> Dict[str, Any]:
    record = await live_record(store, ACCOUNTS, args.id, "Account")

    children = [
        child
        for collection in (CONTACTS, OPPORTUNITIES)
        for child in await store.list(collection)
        if child.body.get("accountId") == record.id
    ]

    if children and not args.force:
        raise has_dependencies("Account", "related records", len(children))

    for child in children:
        await store.soft_delete(child)

    await store.soft_delete(record)
    await store.audit(
        "delete", "account", record.id, {"cascaded": len(children)} if children else None
    )
    logger.debug("deleted account %s with %d dependents", record.id, len(children))
    return {"success": True}


async def restore_account(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    record = await restore_record(store, ACCOUNTS, args.id, "Account", "account")
    return record.to_dict()


# Contacts


async def create_contact(store: TenantStore, args: CreateContact) -> Dict[str, Any]:
    await live_record(store, ACCOUNTS, args.account_id, "Account")
    body = record_body(args)
    record = await store.insert(CONTACTS, body)
    await store.audit("create", "contact", record.id, body)
    return record.to_dict()


async def get_contact(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return (await existing_record(store, CONTACTS, args.id, "Contact")).to_dict()


async def list_contacts(store: TenantStore, args: ListContacts) -> Dict[str, Any]:
    records = await store.list(CONTACTS, include_deleted=args.include_deleted)
    if args.account_id is not None:
        records = [r for r in records if r.body.get("accountId") == args.account_id]
    return paginate_records(records, args.limit, args.cursor)


async def update_contact(store: TenantStore, args: UpdateContact) -> Dict[str, Any]:
    record = await live_record(store, CONTACTS, args.id, "Contact")
    changes = record_changes(args)
    await store.patch(record, changes)
    await store.audit("update", "contact", record.id, changes)
    return record.to_dict()


async def delete_contact(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return await delete_record(store, CONTACTS, args.id, "Contact", "contact")


async def restore_contact(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    record = await restore_record(store, CONTACTS, args.id, "Contact", "contact")
    return record.to_dict()


# Opportunities


async def _check_contact(store: TenantStore, contact_id) -> None:
    if contact_id:
        await live_record(store, CONTACTS, contact_id, "Contact")


def _closed_at(store: TenantStore, stage) -> Dict[str, Any]:
    if stage and stage.startswith("closed_"):
        return {"closedAt": to_millis(store.now())}
    return {}


async def create_opportunity(
    store: TenantStore, args: CreateOpportunity
) -> Dict[str, Any]:
    await live_record(store, ACCOUNTS, args.account_id, "Account")
    await _check_contact(store, args.contact_id)

    settings = await tenant_settings(store)
    stages = tenant_stages(settings)
    if args.stage not in stages:
        raise invalid_stage(args.stage, stages)

    body = record_body(args)
    body.setdefault("currency", settings.get("defaultCurrency", DEFAULT_CURRENCY))
    body.update(_closed_at(store, args.stage))

    record = await store.insert(OPPORTUNITIES, body)
    await store.audit("create", "opportunity", record.id, body)
    return record.to_dict()


async def get_opportunity(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return (
        await existing_record(store, OPPORTUNITIES, args.id, "Opportunity")
    ).to_dict()


async def list_opportunities(
    store: TenantStore, args: ListOpportunities
) -> Dict[str, Any]:
    records = await store.list(OPPORTUNITIES, include_deleted=args.include_deleted)
    if args.account_id is not None:
        records = [r for r in records if r.body.get("accountId") == args.account_id]
    if args.stage is not None:
        records = [r for r in records if r.body.get("stage") == args.stage]
    if args.owner_id is not None:
        records = [r for r in records if r.body.get("ownerId") == args.owner_id]
    return paginate_records(records, args.limit, args.cursor)


async def update_opportunity(
    store: TenantStore, args: UpdateOpportunity
) -> Dict[str, Any]:
    record = await live_record(store, OPPORTUNITIES, args.id, "Opportunity")
    await _check_contact(store, args.contact_id)

    if args.stage is not None:
        stages = tenant_stages(await tenant_settings(store))
        if args.stage not in stages:
            raise invalid_stage(args.stage, stages)

    changes = record_changes(args)
    await store.patch(record, {**changes, **_closed_at(store, args.stage)})
    await store.audit("update", "opportunity", record.id, changes)
    return record.to_dict()


async def delete_opportunity(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return await delete_record(
        store, OPPORTUNITIES, args.id, "Opportunity", "opportunity"
    )


async def restore_opportunity(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    record = await restore_record(
        store, OPPORTUNITIES, args.id, "Opportunity", "opportunity"
    )
    return record.to_dict()
