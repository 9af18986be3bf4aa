"""
Tests for search, pipeline summary, activity feed and overdue items.
"""

import pytest

from social.graze.crm.crm.insights import relevance

DAY = 24 * 60 * 60 * 1000


@pytest.mark.parametrize(
    "text, score",
    [
        ("Acme", 100),
        ("acme corp", 80),
        ("Big Acme Partners", 60),
        ("Xacmex", 40),
        ("Nothing", 10),
    ],
)
def test_relevance(text, score):
    assert relevance(text, "ACME") == score


class TestSearch:
    async def test_ranked_results(self, call):
        for name in ("Xacmex", "Big Acme Partners", "Acme Corp", "Acme", "Globex"):
            await call("create_account", {"name": name})

        found = await call("search_crm", {"query": "acme"})
        assert [r["entity"]["name"] for r in found["results"]] == [
            "Acme",
            "Acme Corp",
            "Big Acme Partners",
            "Xacmex",
        ]
        assert [r["score"] for r in found["results"]] == [100, 80, 60, 40]
        assert found["query"] == "acme"
        assert found["entityTypes"] == ["account", "contact", "opportunity", "task", "reminder"]

        limited = await call("search_crm", {"query": "acme", "limit": 2})
        assert len(limited["results"]) == 2

    async def test_searches_across_entity_types(self, call):
        account = await call("create_account", {"name": "Doe Industries"})
        await call(
            "create_contact",
            {"accountId": account["id"], "firstName": "Jane", "lastName": "Doe"},
        )
        await call("create_task", {"title": "Email Doe about renewal"})

        found = await call("search_crm", {"query": "doe"})
        assert sorted(r["entityType"] for r in found["results"]) == [
            "account",
            "contact",
            "task",
        ]

        only_contacts = await call("search_crm", {"query": "doe", "entityTypes": ["contact"]})
        assert [r["entity"]["firstName"] for r in only_contacts["results"]] == ["Jane"]

    async def test_deleted_records_are_not_found(self, call):
        account = await call("create_account", {"name": "Acme"})
        await call("delete_account", {"id": account["id"]})
        assert (await call("search_crm", {"query": "acme"}))["results"] == []


class TestPipelineSummary:
    async def test_summary(self, call):
        account = await call("create_account", {"name": "Acme"})
        for name, stage, amount, probability in (
            ("A", "lead", 1000, 10),
            ("B", "lead", 500, None),
            ("C", "proposal", 2000, 50),
        ):
            args = {"accountId": account["id"], "name": name, "stage": stage, "amount": amount}
            if probability is not None:
                args["probability"] = probability
            await call("create_opportunity", args)

        deleted = await call(
            "create_opportunity",
            {"accountId": account["id"], "name": "D", "stage": "lead", "amount": 9999},
        )
        await call("delete_opportunity", {"id": deleted["id"]})

        summary = await call("get_pipeline_summary")
        stages = {s["stage"]: s for s in summary["stages"]}

        assert list(stages) == [
            "lead",
            "qualified",
            "proposal",
            "negotiation",
            "closed_won",
            "closed_lost",
        ]
        assert stages["lead"]["count"] == 2
        assert stages["lead"]["totalAmount"] == 1500
        assert stages["lead"]["weightedAmount"] == pytest.approx(100)
        assert stages["proposal"]["weightedAmount"] == pytest.approx(1000)
        assert stages["qualified"]["count"] == 0
        assert stages["lead"]["currency"] == "USD"

        assert summary["totals"]["count"] == 3
        assert summary["totals"]["totalAmount"] == 3500
        assert summary["totals"]["weightedAmount"] == pytest.approx(1100)


class TestActivityFeed:
    async def test_feed_newest_first(self, call, admin_user):
        account = await call("create_account", {"name": "Acme"})
        await call("update_account", {"id": account["id"], "industry": "Retail"})
        await call("create_task", {"title": "T"})

        feed = await call("get_activity_feed")
        assert [(e["action"], e["entityType"]) for e in feed["items"]] == [
            ("create", "task"),
            ("update", "account"),
            ("create", "account"),
        ]
        assert feed["items"][1]["changes"] == {"industry": "Retail"}
        assert all(e["userId"] == admin_user.id for e in feed["items"])

    async def test_filters_and_pagination(self, call, clock):
        account = await call("create_account", {"name": "Acme"})
        midpoint = clock.millis() + 500
        await call("update_account", {"id": account["id"], "name": "Acme 2"})
        await call("update_account", {"id": account["id"], "name": "Acme 3"})

        updates = await call(
            "get_activity_feed", {"entityId": account["id"], "action": "update"}
        )
        assert len(updates["items"]) == 2

        since = await call("get_activity_feed", {"startDate": midpoint})
        assert [e["action"] for e in since["items"]] == ["update", "update"]

        until = await call("get_activity_feed", {"endDate": midpoint})
        assert [e["action"] for e in until["items"]] == ["create"]

        first = await call("get_activity_feed", {"limit": 2})
        assert first["hasMore"] is True
        rest = await call("get_activity_feed", {"limit": 2, "cursor": first["nextCursor"]})
        assert [e["action"] for e in rest["items"]] == ["create"]
        assert rest["hasMore"] is False


class TestOverdueItems:
    async def test_overdue_items(self, call, clock):
        now = clock.millis()
        task = await call("create_task", {"title": "late task", "dueDate": now - 2 * DAY})
        reminder = await call(
            "create_reminder", {"title": "late reminder", "remindAt": now - DAY}
        )
        done = await call("create_task", {"title": "done", "dueDate": now - 3 * DAY})
        await call("update_task", {"id": done["id"], "status": "completed"})
        await call("create_task", {"title": "future", "dueDate": now + DAY})

        overdue = await call("get_overdue_items")
        assert [(i["entityType"], i["entity"]["id"]) for i in overdue["items"]] == [
            ("task", task["id"]),
            ("reminder", reminder["id"]),
        ]
        assert overdue["items"][0]["dueAt"] == now - 2 * DAY
        assert overdue["counts"] == {"tasks": 1, "reminders": 1, "total": 2}

        limited = await call("get_overdue_items", {"limit": 1})
        assert len(limited["items"]) == 1
        assert limited["counts"]["total"] == 2
