"""
Tenant-scoped document store.

`TenantStore` is the only way capabilities touch CRM records. Every read is filtered to the
caller's tenant, so a record in another tenant is indistinguishable from a missing one. Writes
are flushed into the surrounding transaction; the caller owns the commit.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from ulid import ULID

from social.graze.crm.crm.identity import AuthContext
from social.graze.crm.model.crm import AuditLog, CrmRecord, Tenant

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ULID())


def paginate(
    items: Sequence[T],
    limit: int,
    cursor: Optional[str],
    get_cursor: Callable[[T], str],
) -> Dict[str, Any]:
    """
    Cursor pagination over an already ordered list.

    The cursor is the id of the last item of the previous page. An unknown cursor starts again
    from the beginning.
    """
    remaining = list(items)
    if cursor:
        for index, item in enumerate(remaining):
            if get_cursor(item) == cursor:
                remaining = remaining[index + 1 :]
                break

    has_more = len(remaining) > limit
    page = remaining[:limit]
    return {
        "items": page,
        "nextCursor": get_cursor(page[-1]) if has_more else None,
        "hasMore": has_more,
    }


@dataclass
class TenantStore:
    database_session: AsyncSession
    auth: AuthContext
    clock: Callable[[], datetime] = field(default=utc_now)

    def now(self) -> datetime:
        return self.clock()

    async def tenant(self) -> Optional[Tenant]:
        return await self.database_session.get(Tenant, self.auth.tenant_id)

    async def get(self, collection: str, id: str) -> Optional[CrmRecord]:
        record = await self.database_session.get(CrmRecord, id)
        if (
            record is None
            or record.tenant_id != self.auth.tenant_id
            or record.collection != collection
        ):
            return None
        return record

    async def list(
        self, collection: str, include_deleted: bool = False
    ) -> List[CrmRecord]:
        stmt = select(CrmRecord).where(
            CrmRecord.tenant_id == self.auth.tenant_id,
            CrmRecord.collection == collection,
        )
        if not include_deleted:
            stmt = stmt.where(CrmRecord.deleted_at.is_(None))
        stmt = stmt.order_by(CrmRecord.created_at, CrmRecord.id)
        return list((await self.database_session.scalars(stmt)).all())

    async def insert(self, collection: str, body: Dict[str, Any]) -> CrmRecord:
        now = self.now()
        record = CrmRecord(
            id=new_id(),
            tenant_id=self.auth.tenant_id,
            collection=collection,
            body=dict(body),
            created_by=self.auth.user_id,
            created_at=now,
            updated_at=now,
            deleted_at=None,
        )
        self.database_session.add(record)
        await self.database_session.flush()
        return record

    async def patch(self, record: CrmRecord, changes: Dict[str, Any]) -> CrmRecord:
        # JSON columns only notice reassignment, never in-place mutation.
        record.body = {**record.body, **changes}
        record.updated_at = self.now()
        await self.database_session.flush()
        return record

    async def soft_delete(self, record: CrmRecord) -> CrmRecord:
        now = self.now()
        record.deleted_at = now
        record.updated_at = now
        await self.database_session.flush()
        return record

    async def restore(self, record: CrmRecord) -> CrmRecord:
        record.deleted_at = None
        record.updated_at = self.now()
        await self.database_session.flush()
        return record

    async def audit(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        changes: Any = None,
    ) -> AuditLog:
        entry = AuditLog(
            id=new_id(),
            tenant_id=self.auth.tenant_id,
            user_id=self.auth.user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes,
            timestamp=self.now(),
        )
        self.database_session.add(entry)
        await self.database_session.flush()
        return entry


def paginate_records(
    records: Sequence[CrmRecord], limit: int, cursor: Optional[str]
) -> Dict[str, Any]:
    page = paginate(records, limit, cursor, lambda record: record.id)
    page["items"] = [record.to_dict() for record in page["items"]]
    return page
