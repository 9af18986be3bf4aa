"""
The tool catalog.

The catalog is built once at import time and never changes. Each tool's input schema is
generated from the pydantic model that validates its arguments, so what `tools/list`
advertises is exactly what `tools/call` accepts.
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type

from social.graze.crm.crm.capabilities import CAPABILITIES
from social.graze.crm.crm.schemas import ToolArguments


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": copy.deepcopy(self.input_schema),
        }


def _strip_titles(node: Any) -> Any:
    if isinstance(node, dict):
        return {
            key: _strip_titles(value)
            for key, value in node.items()
            if not (key == "title" and isinstance(value, str))
        }
    if isinstance(node, list):
        return [_strip_titles(value) for value in node]
    return node


def input_schema(arguments: Type[ToolArguments]) -> Dict[str, Any]:
    schema = _strip_titles(arguments.model_json_schema(by_alias=True))
    schema.setdefault("properties", {})
    schema["type"] = "object"
    return schema


DESCRIPTIONS: List[Tuple[str, str]] = [
    (
        "create_account",
        "Create a new account (a company or organization). Name is required; industry, "
        "website, phone, address, notes and owner are optional.",
    ),
    ("get_account", "Get one account by ID."),
    (
        "list_accounts",
        "List accounts with optional industry and owner filters. Results are paginated; "
        "pass nextCursor back as cursor to fetch the next page.",
    ),
    ("update_account", "Update fields of an existing account. Only provided fields change."),
    (
        "delete_account",
        "Soft delete an account. Fails while the account has contacts or opportunities "
        "unless force is true, which deletes them as well.",
    ),
    ("restore_account", "Restore a soft-deleted account."),
    (
        "create_contact",
        "Create a contact belonging to an account. accountId, firstName and lastName are "
        "required.",
    ),
    ("get_contact", "Get one contact by ID."),
    ("list_contacts", "List contacts, optionally only those of one account. Paginated."),
    ("update_contact", "Update fields of an existing contact. Only provided fields change."),
    ("delete_contact", "Soft delete a contact. It can be restored later."),
    (
        "restore_contact",
        "Restore a soft-deleted contact. Its account must not be deleted.",
    ),
    (
        "create_opportunity",
        "Create a sales opportunity for an account. The stage must be one of the tenant's "
        "pipeline stages; currency defaults to the tenant currency.",
    ),
    ("get_opportunity", "Get one opportunity by ID."),
    (
        "list_opportunities",
        "List opportunities filtered by account, stage or owner. Paginated.",
    ),
    (
        "update_opportunity",
        "Update an opportunity. Moving it to a closed stage records when it was closed.",
    ),
    ("delete_opportunity", "Soft delete an opportunity. It can be restored later."),
    (
        "restore_opportunity",
        "Restore a soft-deleted opportunity. Its account must not be deleted.",
    ),
    (
        "create_task",
        "Create a task, optionally linked to an account, contact or opportunity. Status "
        "defaults to pending and priority to medium.",
    ),
    ("get_task", "Get one task by ID."),
    (
        "list_tasks",
        "List tasks by status, priority, assignee, linked entity or overdue state. Sorted "
        "by due date, undated tasks last. Paginated.",
    ),
    ("update_task", "Update a task. Setting status to completed records completion time."),
    ("delete_task", "Soft delete a task. It can be restored later."),
    ("restore_task", "Restore a soft-deleted task."),
    (
        "create_reminder",
        "Create a reminder due at remindAt (epoch milliseconds), optionally linked to an "
        "account, contact, opportunity or task.",
    ),
    ("get_reminder", "Get one reminder by ID."),
    (
        "list_reminders",
        "List reminders sorted by remindAt, optionally only upcoming or overdue ones. "
        "Paginated.",
    ),
    ("update_reminder", "Update a reminder or mark it completed."),
    ("delete_reminder", "Soft delete a reminder. It can be restored later."),
    ("restore_reminder", "Restore a soft-deleted reminder."),
    (
        "search_crm",
        "Search accounts, contacts, opportunities, tasks and reminders by name or title. "
        "Results are ranked by relevance.",
    ),
    (
        "get_pipeline_summary",
        "Summarize open pipeline value per stage: count, total and probability weighted "
        "amounts.",
    ),
    (
        "get_activity_feed",
        "List recent changes from the audit log, newest first. Filter by entity, user, "
        "action or date range (epoch milliseconds). Paginated.",
    ),
    (
        "get_overdue_items",
        "List open tasks past their due date and incomplete reminders past their time, "
        "most overdue first.",
    ),
    ("get_tenant", "Get the current organization and its settings."),
    (
        "update_tenant",
        "Update the organization name or settings (pipeline stages, default currency, "
        "timezone). Admin only.",
    ),
    (
        "invite_user",
        "Invite a user to the organization by email. The user becomes active when they "
        "first sign in. Admin only.",
    ),
    ("list_users", "List users of the organization. Inactive users are hidden by default."),
    (
        "deactivate_user",
        "Deactivate a user. Admins cannot deactivate themselves or the last admin. Admin "
        "only.",
    ),
    ("reactivate_user", "Reactivate a deactivated user. Admin only."),
]

TOOL_CATALOG: Tuple[ToolDefinition, ...] = tuple(
    ToolDefinition(name, description, input_schema(CAPABILITIES[name].arguments))
    for name, description in DESCRIPTIONS
)


def find_tool(name: str) -> Optional[ToolDefinition]:
    for tool in TOOL_CATALOG:
        if tool.name == name:
            return tool
    return None


def list_tools() -> List[Dict[str, Any]]:
    return [tool.to_dict() for tool in TOOL_CATALOG]
