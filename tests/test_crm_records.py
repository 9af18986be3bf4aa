"""
Tests for account, contact and opportunity capabilities.

Tools are invoked through the dispatcher exactly as an MCP `tools/call` would run them, one
transaction per call.
"""

import pytest

from social.graze.crm.crm.errors import CRMError, ErrorCodes
from tests.test_helpers import OUTSIDER_EMAIL


async def expect_error(call, code, name, arguments=None, **kwargs) -> CRMError:
    with pytest.raises(CRMError) as excinfo:
        await call(name, arguments, **kwargs)
    assert excinfo.value.code == code
    return excinfo.value


@pytest.fixture
def account(call):
    async def create(name="Acme Corp", **fields):
        return await call("create_account", {"name": name, **fields})

    return create


class TestAccounts:
    async def test_create_and_get(self, call, admin_user, account):
        created = await account(industry="Manufacturing", website="https://acme.test")

        assert created["name"] == "Acme Corp"
        assert created["industry"] == "Manufacturing"
        assert created["tenantId"] == admin_user.tenant_id
        assert created["createdBy"] == admin_user.id
        assert isinstance(created["createdAt"], int)
        assert "deletedAt" not in created

        fetched = await call("get_account", {"id": created["id"]})
        assert fetched == created

    async def test_get_missing(self, call):
        error = await expect_error(
            call, ErrorCodes.NOT_FOUND, "get_account", {"id": "missing"}
        )
        assert error.message == "Account not found"

    async def test_invalid_arguments(self, call):
        error = await expect_error(
            call,
            ErrorCodes.VALIDATION_ERROR,
            "create_account",
            {"name": "Acme", "website": "not a url"},
        )
        assert error.message == "Invalid arguments for create_account"
        assert [detail["loc"] for detail in error.details] == [("website",)]

    async def test_name_required(self, call):
        await expect_error(call, ErrorCodes.VALIDATION_ERROR, "create_account", {})

    async def test_list_filters_and_pagination(self, call, account):
        first = await account("Alpha", industry="Retail")
        second = await account("Beta", industry="Retail")
        third = await account("Gamma", industry="Retail")
        await account("Delta", industry="Energy")

        page = await call("list_accounts", {"industry": "Retail", "limit": 2})
        assert [item["name"] for item in page["items"]] == ["Alpha", "Beta"]
        assert page["hasMore"] is True
        assert page["nextCursor"] == second["id"]

        page = await call(
            "list_accounts", {"industry": "Retail", "limit": 2, "cursor": page["nextCursor"]}
        )
        assert [item["id"] for item in page["items"]] == [third["id"]]
        assert page["hasMore"] is False
        assert page["nextCursor"] is None

        everything = await call("list_accounts")
        assert len(everything["items"]) == 4
        assert everything["items"][0]["id"] == first["id"]

    async def test_update_is_partial(self, call, account):
        created = await account(industry="Retail", phone="555-0100")

        updated = await call(
            "update_account", {"id": created["id"], "name": "Acme Holdings"}
        )
        assert updated["name"] == "Acme Holdings"
        assert updated["industry"] == "Retail"
        assert updated["phone"] == "555-0100"
        assert updated["updatedAt"] > created["updatedAt"]

    async def test_delete_and_restore(self, call, account):
        created = await account()

        assert await call("delete_account", {"id": created["id"]}) == {"success": True}

        listed = await call("list_accounts")
        assert listed["items"] == []

        # Deleted records stay readable by id and visible on request.
        fetched = await call("get_account", {"id": created["id"]})
        assert "deletedAt" in fetched
        listed = await call("list_accounts", {"includeDeleted": True})
        assert [item["id"] for item in listed["items"]] == [created["id"]]

        await expect_error(
            call, ErrorCodes.NOT_FOUND, "update_account", {"id": created["id"], "name": "X"}
        )
        await expect_error(call, ErrorCodes.NOT_FOUND, "delete_account", {"id": created["id"]})

        restored = await call("restore_account", {"id": created["id"]})
        assert "deletedAt" not in restored

        error = await expect_error(
            call, ErrorCodes.VALIDATION_ERROR, "restore_account", {"id": created["id"]}
        )
        assert error.message == "Account is not deleted"

    async def test_delete_with_dependents_requires_force(self, call, account):
        created = await account()
        await call(
            "create_contact",
            {"accountId": created["id"], "firstName": "Jane", "lastName": "Doe"},
        )
        await call(
            "create_opportunity",
            {"accountId": created["id"], "name": "Big deal", "stage": "lead"},
        )

        error = await expect_error(
            call, ErrorCodes.DELETION_HAS_DEPENDENCIES, "delete_account", {"id": created["id"]}
        )
        assert error.message == "Cannot delete Account: has 2 related records"
        assert error.details == {"dependencyType": "related records", "count": 2}

        # Nothing was deleted by the refused call.
        assert len((await call("list_contacts"))["items"]) == 1

        await call("delete_account", {"id": created["id"], "force": True})
        assert (await call("list_contacts"))["items"] == []
        assert (await call("list_opportunities"))["items"] == []

    async def test_child_restore_waits_for_parent(self, call, account):
        created = await account()
        contact = await call(
            "create_contact",
            {"accountId": created["id"], "firstName": "Jane", "lastName": "Doe"},
        )
        await call("delete_account", {"id": created["id"], "force": True})

        error = await expect_error(
            call, ErrorCodes.VALIDATION_ERROR, "restore_contact", {"id": contact["id"]}
        )
        assert error.message == "Cannot restore contact: parent account is deleted"

        await call("restore_account", {"id": created["id"]})
        restored = await call("restore_contact", {"id": contact["id"]})
        assert "deletedAt" not in restored

    async def test_tenant_isolation(self, call, account, outsider_user):
        created = await account()

        await expect_error(
            call, ErrorCodes.NOT_FOUND, "get_account", {"id": created["id"]}, email=OUTSIDER_EMAIL
        )
        listed = await call("list_accounts", email=OUTSIDER_EMAIL)
        assert listed["items"] == []


class TestContacts:
    async def test_create_requires_live_account(self, call, account):
        error = await expect_error(
            call,
            ErrorCodes.NOT_FOUND,
            "create_contact",
            {"accountId": "missing", "firstName": "Jane", "lastName": "Doe"},
        )
        assert error.message == "Account not found"

        created = await account()
        await call("delete_account", {"id": created["id"]})
        await expect_error(
            call,
            ErrorCodes.NOT_FOUND,
            "create_contact",
            {"accountId": created["id"], "firstName": "Jane", "lastName": "Doe"},
        )

    async def test_email_validated(self, call, account):
        created = await account()
        await expect_error(
            call,
            ErrorCodes.VALIDATION_ERROR,
            "create_contact",
            {
                "accountId": created["id"],
                "firstName": "Jane",
                "lastName": "Doe",
                "email": "not-an-email",
            },
        )

    async def test_list_by_account_and_update(self, call, account):
        acme = await account("Acme")
        globex = await account("Globex")
        jane = await call(
            "create_contact",
            {"accountId": acme["id"], "firstName": "Jane", "lastName": "Doe"},
        )
        await call(
            "create_contact",
            {"accountId": globex["id"], "firstName": "Hank", "lastName": "Scorpio"},
        )

        listed = await call("list_contacts", {"accountId": acme["id"]})
        assert [item["id"] for item in listed["items"]] == [jane["id"]]
        assert listed["items"][0]["isPrimary"] is False

        updated = await call(
            "update_contact", {"id": jane["id"], "title": "CTO", "isPrimary": True}
        )
        assert updated["title"] == "CTO"
        assert updated["isPrimary"] is True
        assert updated["firstName"] == "Jane"

    async def test_delete_contact(self, call, account):
        acme = await account()
        jane = await call(
            "create_contact",
            {"accountId": acme["id"], "firstName": "Jane", "lastName": "Doe"},
        )
        assert await call("delete_contact", {"id": jane["id"]}) == {"success": True}
        await expect_error(call, ErrorCodes.NOT_FOUND, "delete_contact", {"id": jane["id"]})


class TestOpportunities:
    async def test_create_defaults_currency(self, call, account):
        acme = await account()
        created = await call(
            "create_opportunity",
            {"accountId": acme["id"], "name": "Renewal", "stage": "qualified", "amount": 1000},
        )
        assert created["currency"] == "USD"
        assert created["amount"] == 1000
        assert "closedAt" not in created

    async def test_invalid_stage(self, call, account):
        acme = await account()
        error = await expect_error(
            call,
            ErrorCodes.INVALID_STAGE,
            "create_opportunity",
            {"accountId": acme["id"], "name": "Renewal", "stage": "won"},
        )
        assert error.details["stage"] == "won"
        assert "closed_won" in error.details["validStages"]

    async def test_tenant_stages_are_used(self, call, account):
        await call("update_tenant", {"settings": {"opportunityStages": ["new", "done"]}})
        acme = await account()

        await expect_error(
            call,
            ErrorCodes.INVALID_STAGE,
            "create_opportunity",
            {"accountId": acme["id"], "name": "Renewal", "stage": "lead"},
        )
        created = await call(
            "create_opportunity", {"accountId": acme["id"], "name": "Renewal", "stage": "new"}
        )
        assert created["stage"] == "new"

    async def test_closing_stamps_closed_at(self, call, account):
        acme = await account()
        created = await call(
            "create_opportunity", {"accountId": acme["id"], "name": "Renewal", "stage": "lead"}
        )

        updated = await call("update_opportunity", {"id": created["id"], "stage": "closed_won"})
        assert updated["stage"] == "closed_won"
        assert isinstance(updated["closedAt"], int)

        await expect_error(
            call, ErrorCodes.INVALID_STAGE, "update_opportunity", {"id": created["id"], "stage": "nope"}
        )

    async def test_contact_must_exist(self, call, account):
        acme = await account()
        error = await expect_error(
            call,
            ErrorCodes.NOT_FOUND,
            "create_opportunity",
            {"accountId": acme["id"], "contactId": "missing", "name": "R", "stage": "lead"},
        )
        assert error.message == "Contact not found"

    async def test_probability_bounds(self, call, account):
        acme = await account()
        await expect_error(
            call,
            ErrorCodes.VALIDATION_ERROR,
            "create_opportunity",
            {"accountId": acme["id"], "name": "R", "stage": "lead", "probability": 120},
        )

    async def test_list_by_stage_delete_restore(self, call, account):
        acme = await account()
        lead = await call(
            "create_opportunity", {"accountId": acme["id"], "name": "A", "stage": "lead"}
        )
        await call(
            "create_opportunity", {"accountId": acme["id"], "name": "B", "stage": "proposal"}
        )

        listed = await call("list_opportunities", {"stage": "lead"})
        assert [item["id"] for item in listed["items"]] == [lead["id"]]

        await call("delete_opportunity", {"id": lead["id"]})
        assert (await call("list_opportunities", {"stage": "lead"}))["items"] == []

        restored = await call("restore_opportunity", {"id": lead["id"]})
        assert restored["stage"] == "lead"
