"""Pydantic models for tool arguments.

Field names are snake_case in Python and camelCase on the wire; every model accepts either.
Unknown arguments are ignored.
"""

import re
from typing import List, Literal, Optional, Union

from typing_extensions import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
TaskPriority = Literal["low", "medium", "high"]
TaskLinkKind = Literal["account", "contact", "opportunity"]
ReminderLinkKind = Literal["account", "contact", "opportunity", "task"]
SearchableKind = Literal["account", "contact", "opportunity", "task", "reminder"]
AuditEntityType = Literal[
    "account", "contact", "opportunity", "task", "reminder", "user", "tenant"
]
AuditAction = Literal["create", "update", "delete", "restore"]
Role = Literal["admin", "member"]

Number = Union[int, float]

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ToolArguments(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class EntityId(ToolArguments):
    id: str = Field(min_length=1)


class Page(ToolArguments):
    cursor: Optional[str] = None
    limit: int = Field(default=20, ge=1, le=100)


class Address(ToolArguments):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


def _check_website(value: Optional[str]) -> Optional[str]:
    if value and not re.match(r"^https?://[^\s/$.?#].[^\s]*$", value, re.IGNORECASE):
        raise ValueError("website must be a valid URL")
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    if value and not EMAIL_PATTERN.match(value):
        raise ValueError("email must be a valid email address")
    return value


def _within(minimum: float, maximum: Optional[float] = None):
    def check(value):
        if value < minimum or (maximum is not None and value > maximum):
            bound = f"between {minimum} and {maximum}" if maximum is not None else f">= {minimum}"
            raise ValueError(f"must be {bound}")
        return value

    return check


NonNegative = Annotated[Number, AfterValidator(_within(0))]
Percentage = Annotated[Number, AfterValidator(_within(0, 100))]
Timestamp = Annotated[Number, AfterValidator(_within(1))]
Website = Annotated[Optional[str], AfterValidator(_check_website)]
Email = Annotated[Optional[str], AfterValidator(_check_email)]


class AccountFields(ToolArguments):
    industry: Optional[str] = Field(default=None, max_length=100)
    website: Website = None
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[Address] = None
    notes: Optional[str] = Field(default=None, max_length=10000)
    owner_id: Optional[str] = None


class CreateAccount(AccountFields):
    name: str = Field(min_length=1, max_length=255)


class UpdateAccount(AccountFields):
    id: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)


class DeleteAccount(EntityId):
    force: bool = False


class ListAccounts(Page):
    industry: Optional[str] = None
    owner_id: Optional[str] = None
    include_deleted: bool = False


class ContactFields(ToolArguments):
    email: Email = None
    phone: Optional[str] = Field(default=None, max_length=50)
    title: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=10000)


class CreateContact(ContactFields):
    account_id: str = Field(min_length=1)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    is_primary: bool = False


class UpdateContact(ContactFields):
    id: str = Field(min_length=1)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_primary: Optional[bool] = None


class ListContacts(Page):
    account_id: Optional[str] = None
    include_deleted: bool = False


class OpportunityFields(ToolArguments):
    contact_id: Optional[str] = None
    amount: Optional[NonNegative] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    probability: Optional[Percentage] = None
    expected_close_date: Optional[Number] = None
    notes: Optional[str] = Field(default=None, max_length=10000)
    owner_id: Optional[str] = None


class CreateOpportunity(OpportunityFields):
    account_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)
    stage: str = Field(min_length=1)


class UpdateOpportunity(OpportunityFields):
    id: str = Field(min_length=1)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    stage: Optional[str] = Field(default=None, min_length=1)


class ListOpportunities(Page):
    account_id: Optional[str] = None
    stage: Optional[str] = None
    owner_id: Optional[str] = None
    include_deleted: bool = False


class CreateTask(ToolArguments):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=10000)
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    due_date: Optional[Number] = None
    linked_entity_type: Optional[TaskLinkKind] = None
    linked_entity_id: Optional[str] = None
    assignee_id: Optional[str] = None


class UpdateTask(ToolArguments):
    id: str = Field(min_length=1)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=10000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[Number] = None
    linked_entity_type: Optional[TaskLinkKind] = None
    linked_entity_id: Optional[str] = None
    assignee_id: Optional[str] = None


class ListTasks(Page):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee_id: Optional[str] = None
    linked_entity_type: Optional[TaskLinkKind] = None
    linked_entity_id: Optional[str] = None
    overdue: bool = False
    include_deleted: bool = False


class CreateReminder(ToolArguments):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=10000)
    remind_at: Timestamp
    linked_entity_type: Optional[ReminderLinkKind] = None
    linked_entity_id: Optional[str] = None
    assignee_id: Optional[str] = None


class UpdateReminder(ToolArguments):
    id: str = Field(min_length=1)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=10000)
    remind_at: Optional[Timestamp] = None
    is_completed: Optional[bool] = None
    linked_entity_type: Optional[ReminderLinkKind] = None
    linked_entity_id: Optional[str] = None
    assignee_id: Optional[str] = None


class ListReminders(Page):
    assignee_id: Optional[str] = None
    linked_entity_type: Optional[ReminderLinkKind] = None
    linked_entity_id: Optional[str] = None
    upcoming: bool = False
    overdue: bool = False
    include_deleted: bool = False


class Search(ToolArguments):
    query: str = Field(min_length=1, max_length=255)
    entity_types: Optional[List[SearchableKind]] = None
    limit: int = Field(default=10, ge=1, le=50)


class ActivityFeed(Page):
    entity_type: Optional[AuditEntityType] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    action: Optional[AuditAction] = None
    start_date: Optional[Number] = None
    end_date: Optional[Number] = None


class OverdueItems(ToolArguments):
    limit: int = Field(default=20, ge=1, le=100)


class TenantSettingsUpdate(ToolArguments):
    opportunity_stages: Optional[List[str]] = Field(default=None, min_length=1)
    default_currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    timezone: Optional[str] = Field(default=None, max_length=50)

    @field_validator("opportunity_stages")
    @classmethod
    def stages_not_blank(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and any(len(stage) == 0 for stage in v):
            raise ValueError("opportunity stages must not be empty")
        return v


class UpdateTenant(ToolArguments):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    settings: Optional[TenantSettingsUpdate] = None


class InviteUser(ToolArguments):
    email: Annotated[str, AfterValidator(_check_email)]
    name: str = Field(min_length=1, max_length=255)
    role: Role = "member"


class ListUsers(Page):
    include_inactive: bool = False


class NoArguments(ToolArguments):
    pass
