"""Cross-entity read queries: search, pipeline summary, activity feed and overdue items."""

import re
from typing import Any, Callable, Dict, List

from sqlalchemy import select

from social.graze.crm.crm.activities import REMINDERS, TASKS, is_open_task
from social.graze.crm.crm.records import (
    ACCOUNTS,
    CONTACTS,
    OPPORTUNITIES,
    tenant_stages,
    tenant_settings,
)
from social.graze.crm.crm.schemas import ActivityFeed, NoArguments, OverdueItems, Search
from social.graze.crm.crm.store import TenantStore, paginate
from social.graze.crm.model.crm import (
    DEFAULT_CURRENCY,
    AuditLog,
    CrmRecord,
    from_millis,
    to_millis,
)

SEARCH_TEXT: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "account": lambda body: body.get("name", ""),
    "contact": lambda body: f"{body.get('firstName', '')} {body.get('lastName', '')}",
    "opportunity": lambda body: body.get("name", ""),
    "task": lambda body: body.get("title", ""),
    "reminder": lambda body: body.get("title", ""),
}

SEARCH_COLLECTIONS = {
    "account": ACCOUNTS,
    "contact": CONTACTS,
    "opportunity": OPPORTUNITIES,
    "task": TASKS,
    "reminder": REMINDERS,
}


def relevance(text: str, query: str) -> int:
    """Score how well `text` matches `query`, highest for an exact match."""
    text = text.lower()
    query = query.lower()

    if text == query:
        return 100
    if text.startswith(query):
        return 80
    if f" {query}" in text or f"{query} " in text:
        return 60
    if query in text:
        return 40
    if any(word.startswith(query) for word in re.split(r"\s+", text)):
        return 30
    return 10


async def search_crm(store: TenantStore, args: Search) -> Dict[str, Any]:
    entity_types = args.entity_types or list(SEARCH_COLLECTIONS)
    needle = args.query.lower()

    results: List[Dict[str, Any]] = []
    for entity_type in entity_types:
        text_of = SEARCH_TEXT[entity_type]
        for record in await store.list(SEARCH_COLLECTIONS[entity_type]):
            text = text_of(record.body)
            if needle not in text.lower():
                continue
            results.append(
                {
                    "entityType": entity_type,
                    "entity": record.to_dict(),
                    "score": relevance(text, args.query),
                }
            )

    results.sort(key=lambda result: result["score"], reverse=True)
    return {
        "results": results[: args.limit],
        "query": args.query,
        "entityTypes": entity_types,
    }


async def get_pipeline_summary(store: TenantStore, args: NoArguments) -> Dict[str, Any]:
    settings = await tenant_settings(store)
    currency = settings.get("defaultCurrency", DEFAULT_CURRENCY)
    opportunities = await store.list(OPPORTUNITIES)

    stages = []
    for stage in tenant_stages(settings):
        in_stage = [o.body for o in opportunities if o.body.get("stage") == stage]
        stages.append(
            {
                "stage": stage,
                "count": len(in_stage),
                "totalAmount": sum(body.get("amount") or 0 for body in in_stage),
                "weightedAmount": sum(
                    (body.get("amount") or 0) * (body.get("probability") or 0) / 100
                    for body in in_stage
                ),
                "currency": currency,
            }
        )

    return {
        "stages": stages,
        "totals": {
            "count": len(opportunities),
            "totalAmount": sum(s["totalAmount"] for s in stages),
            "weightedAmount": sum(s["weightedAmount"] for s in stages),
            "currency": currency,
        },
    }


async def get_activity_feed(store: TenantStore, args: ActivityFeed) -> Dict[str, Any]:
    stmt = select(AuditLog).where(AuditLog.tenant_id == store.auth.tenant_id)
    if args.entity_type is not None:
        stmt = stmt.where(AuditLog.entity_type == args.entity_type)
    if args.entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == args.entity_id)
    if args.user_id is not None:
        stmt = stmt.where(AuditLog.user_id == args.user_id)
    if args.action is not None:
        stmt = stmt.where(AuditLog.action == args.action)
    if args.start_date is not None:
        stmt = stmt.where(AuditLog.timestamp >= from_millis(args.start_date))
    if args.end_date is not None:
        stmt = stmt.where(AuditLog.timestamp <= from_millis(args.end_date))
    stmt = stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

    entries = list((await store.database_session.scalars(stmt)).all())
    page = paginate(entries, args.limit, args.cursor, lambda entry: entry.id)
    page["items"] = [entry.to_dict() for entry in page["items"]]
    return page


def _overdue_item(entity_type: str, record: CrmRecord, due_at) -> Dict[str, Any]:
    return {"entityType": entity_type, "entity": record.to_dict(), "dueAt": due_at}


async def get_overdue_items(store: TenantStore, args: OverdueItems) -> Dict[str, Any]:
    now = to_millis(store.now())

    tasks = [
        _overdue_item("task", r, r.body["dueDate"])
        for r in await store.list(TASKS)
        if is_open_task(r)
        and r.body.get("dueDate") is not None
        and r.body["dueDate"] < now
    ]
    reminders = [
        _overdue_item("reminder", r, r.body["remindAt"])
        for r in await store.list(REMINDERS)
        if not r.body.get("isCompleted") and r.body["remindAt"] < now
    ]

    items = sorted(tasks + reminders, key=lambda item: item["dueAt"])
    return {
        "items": items[: args.limit],
        "counts": {
            "tasks": len(tasks),
            "reminders": len(reminders),
            "total": len(tasks) + len(reminders),
        },
    }
