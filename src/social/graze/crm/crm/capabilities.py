"""
The name to capability routing table.

Each MCP tool maps to exactly one capability: a pydantic model describing its arguments and the
coroutine that runs it against a `TenantStore`.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Type

from pydantic import ValidationError

from social.graze.crm.crm import activities, admin, insights, records
from social.graze.crm.crm.errors import validation_error
from social.graze.crm.crm.schemas import (
    ActivityFeed,
    CreateAccount,
    CreateContact,
    CreateOpportunity,
    CreateReminder,
    CreateTask,
    DeleteAccount,
    EntityId,
    InviteUser,
    ListAccounts,
    ListContacts,
    ListOpportunities,
    ListReminders,
    ListTasks,
    ListUsers,
    NoArguments,
    OverdueItems,
    Search,
    ToolArguments,
    UpdateAccount,
    UpdateContact,
    UpdateOpportunity,
    UpdateReminder,
    UpdateTask,
    UpdateTenant,
)
from social.graze.crm.crm.store import TenantStore

Handler = Callable[[TenantStore, Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class Capability:
    arguments: Type[ToolArguments]
    handler: Handler


CAPABILITIES: Mapping[str, Capability] = MappingProxyType(
    {
        "create_account": Capability(CreateAccount, records.create_account),
        "get_account": Capability(EntityId, records.get_account),
        "list_accounts": Capability(ListAccounts, records.list_accounts),
        "update_account": Capability(UpdateAccount, records.update_account),
        "delete_account": Capability(DeleteAccount, records.delete_account),
        "restore_account": Capability(EntityId, records.restore_account),
        "create_contact": Capability(CreateContact, records.create_contact),
        "get_contact": Capability(EntityId, records.get_contact),
        "list_contacts": Capability(ListContacts, records.list_contacts),
        "update_contact": Capability(UpdateContact, records.update_contact),
        "delete_contact": Capability(EntityId, records.delete_contact),
        "restore_contact": Capability(EntityId, records.restore_contact),
        "create_opportunity": Capability(CreateOpportunity, records.create_opportunity),
        "get_opportunity": Capability(EntityId, records.get_opportunity),
        "list_opportunities": Capability(ListOpportunities, records.list_opportunities),
        "update_opportunity": Capability(UpdateOpportunity, records.update_opportunity),
        "delete_opportunity": Capability(EntityId, records.delete_opportunity),
        "restore_opportunity": Capability(EntityId, records.restore_opportunity),
        "create_task": Capability(CreateTask, activities.create_task),
        "get_task": Capability(EntityId, activities.get_task),
        "list_tasks": Capability(ListTasks, activities.list_tasks),
        "update_task": Capability(UpdateTask, activities.update_task),
        "delete_task": Capability(EntityId, activities.delete_task),
        "restore_task": Capability(EntityId, activities.restore_task),
        "create_reminder": Capability(CreateReminder, activities.create_reminder),
        "get_reminder": Capability(EntityId, activities.get_reminder),
        "list_reminders": Capability(ListReminders, activities.list_reminders),
        "update_reminder": Capability(UpdateReminder, activities.update_reminder),
        "delete_reminder": Capability(EntityId, activities.delete_reminder),
        "restore_reminder": Capability(EntityId, activities.restore_reminder),
        "search_crm": Capability(Search, insights.search_crm),
        "get_pipeline_summary": Capability(NoArguments, insights.get_pipeline_summary),
        "get_activity_feed": Capability(ActivityFeed, insights.get_activity_feed),
        "get_overdue_items": Capability(OverdueItems, insights.get_overdue_items),
        "get_tenant": Capability(NoArguments, admin.get_tenant),
        "update_tenant": Capability(UpdateTenant, admin.update_tenant),
        "invite_user": Capability(InviteUser, admin.invite_user),
        "list_users": Capability(ListUsers, admin.list_users),
        "deactivate_user": Capability(EntityId, admin.deactivate_user),
        "reactivate_user": Capability(EntityId, admin.reactivate_user),
    }
)


async def invoke_capability(
    name: str, store: TenantStore, arguments: Any
) -> Dict[str, Any]:
    capability = CAPABILITIES.get(name)
    if capability is None:
        raise validation_error(f"Unknown tool: {name}")

    try:
        parsed = capability.arguments.model_validate(
            {} if arguments is None else arguments
        )
    except ValidationError as e:
        raise validation_error(
            f"Invalid arguments for {name}",
            e.errors(include_url=False, include_context=False, include_input=False),
        ) from e

    return await capability.handler(store, parsed)
