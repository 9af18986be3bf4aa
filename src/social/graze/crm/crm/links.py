"""
Linked entities.

Tasks and reminders may point at another CRM record through a `(linkedEntityType,
linkedEntityId)` pair. The type tag is resolved through `LINK_TARGETS`, so supporting a new
linkable kind means adding one row to the table.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from social.graze.crm.crm.errors import not_found, validation_error
from social.graze.crm.crm.store import TenantStore
from social.graze.crm.model.crm import CrmRecord


@dataclass(frozen=True)
class LinkTarget:
    collection: str
    label: str


LINK_TARGETS: Mapping[str, LinkTarget] = MappingProxyType(
    {
        "account": LinkTarget("accounts", "Account"),
        "contact": LinkTarget("contacts", "Contact"),
        "opportunity": LinkTarget("opportunities", "Opportunity"),
        "task": LinkTarget("tasks", "Task"),
    }
)


async def verify_linked_entity(
    store: TenantStore, kind: Optional[str], entity_id: Optional[str]
) -> Optional[CrmRecord]:
    """Return the live record a link points at, or raise NOT_FOUND.

    A link is only checked when both halves are present.
    """
    if not kind or not entity_id:
        return None

    target = LINK_TARGETS.get(kind)
    if target is None:
        raise validation_error(f"Unsupported linked entity type: {kind}")

    record = await store.get(target.collection, entity_id)
    if record is None or record.is_deleted:
        raise not_found(target.label)
    return record
