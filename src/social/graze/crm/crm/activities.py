"""Tasks and reminders."""

from typing import Any, Dict, List

from social.graze.crm.crm.links import verify_linked_entity
from social.graze.crm.crm.records import (
    delete_record,
    existing_record,
    live_record,
    record_body,
    record_changes,
    restore_record,
)
from social.graze.crm.crm.schemas import (
    CreateReminder,
    CreateTask,
    EntityId,
    ListReminders,
    ListTasks,
    UpdateReminder,
    UpdateTask,
)
from social.graze.crm.crm.store import TenantStore, paginate_records
from social.graze.crm.model.crm import CrmRecord, to_millis

TASKS = "tasks"
REMINDERS = "reminders"

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}
CLOSED_TASK_STATUSES = ("completed", "cancelled")


def is_open_task(record: CrmRecord) -> bool:
    return record.body.get("status") not in CLOSED_TASK_STATUSES


def _linked_to(records: List[CrmRecord], kind, entity_id) -> List[CrmRecord]:
    if not kind or not entity_id:
        return records
    return [
        r
        for r in records
        if r.body.get("linkedEntityType") == kind
        and r.body.get("linkedEntityId") == entity_id
    ]


def _task_order(record: CrmRecord):
    due = record.body.get("dueDate")
    priority = PRIORITY_RANK.get(record.body.get("priority"), 1)
    if due is None:
        return (1, 0, priority)
    return (0, due, 0)


# Tasks


async def create_task(store: TenantStore, args: CreateTask) -> Dict[str, Any]:
    await verify_linked_entity(store, args.linked_entity_type, args.linked_entity_id)
    body = record_body(args)
    record = await store.insert(TASKS, body)
    await store.audit("create", "task", record.id, body)
    return record.to_dict()


async def get_task(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return (await existing_record(store, TASKS, args.id, "Task")).to_dict()


async def list_tasks(store: TenantStore, args: ListTasks) -> Dict[str, Any]:
    now = to_millis(store.now())
    records = await store.list(TASKS, include_deleted=args.include_deleted)
    records = _linked_to(records, args.linked_entity_type, args.linked_entity_id)
    if args.status is not None:
        records = [r for r in records if r.body.get("status") == args.status]
    if args.priority is not None:
        records = [r for r in records if r.body.get("priority") == args.priority]
    if args.assignee_id is not None:
        records = [r for r in records if r.body.get("assigneeId") == args.assignee_id]
    if args.overdue:
        records = [
            r
            for r in records
            if is_open_task(r)
            and r.body.get("dueDate") is not None
            and r.body["dueDate"] <= now
        ]
    records.sort(key=_task_order)
    return paginate_records(records, args.limit, args.cursor)


async def update_task(store: TenantStore, args: UpdateTask) -> Dict[str, Any]:
    record = await live_record(store, TASKS, args.id, "Task")
    await verify_linked_entity(store, args.linked_entity_type, args.linked_entity_id)

    changes = record_changes(args)
    stamp = {}
    if args.status == "completed":
        stamp["completedAt"] = to_millis(store.now())

    await store.patch(record, {**changes, **stamp})
    await store.audit("update", "task", record.id, changes)
    return record.to_dict()


async def delete_task(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return await delete_record(store, TASKS, args.id, "Task", "task")


async def restore_task(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return (await restore_record(store, TASKS, args.id, "Task", "task")).to_dict()


# Reminders


async def create_reminder(store: TenantStore, args: CreateReminder) -> Dict[str, Any]:
    await verify_linked_entity(store, args.linked_entity_type, args.linked_entity_id)
    body = record_body(args)
    body["isCompleted"] = False
    record = await store.insert(REMINDERS, body)
    await store.audit("create", "reminder", record.id, body)
    return record.to_dict()


async def get_reminder(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return (await existing_record(store, REMINDERS, args.id, "Reminder")).to_dict()


async def list_reminders(store: TenantStore, args: ListReminders) -> Dict[str, Any]:
    now = to_millis(store.now())
    records = await store.list(REMINDERS, include_deleted=args.include_deleted)
    records = _linked_to(records, args.linked_entity_type, args.linked_entity_id)
    if args.assignee_id is not None:
        records = [r for r in records if r.body.get("assigneeId") == args.assignee_id]
    if args.upcoming:
        records = [
            r
            for r in records
            if not r.body.get("isCompleted") and r.body["remindAt"] > now
        ]
    if args.overdue:
        records = [
            r
            for r in records
            if not r.body.get("isCompleted") and r.body["remindAt"] <= now
        ]
    records.sort(key=lambda r: r.body["remindAt"])
    return paginate_records(records, args.limit, args.cursor)


async def update_reminder(store: TenantStore, args: UpdateReminder) -> Dict[str, Any]:
    record = await live_record(store, REMINDERS, args.id, "Reminder")
    await verify_linked_entity(store, args.linked_entity_type, args.linked_entity_id)

    changes = record_changes(args)
    stamp = {}
    if args.is_completed:
        stamp["completedAt"] = to_millis(store.now())

    await store.patch(record, {**changes, **stamp})
    await store.audit("update", "reminder", record.id, changes)
    return record.to_dict()


async def delete_reminder(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return await delete_record(store, REMINDERS, args.id, "Reminder", "reminder")


async def restore_reminder(store: TenantStore, args: EntityId) -> Dict[str, Any]:
    return (
        await restore_record(store, REMINDERS, args.id, "Reminder", "reminder")
    ).to_dict()
