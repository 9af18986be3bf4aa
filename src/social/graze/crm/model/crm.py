"""Tenant, user, CRM record and audit log models.

CRM entities (accounts, contacts, opportunities, tasks, reminders) share one table: each row
belongs to a tenant and a named collection and keeps its fields in a JSON body. Timestamps live
in columns; the body only holds entity fields.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from social.graze.crm.model.base import Base, str64, str512, ulidpk

DEFAULT_STAGES: List[str] = [
    "lead",
    "qualified",
    "proposal",
    "negotiation",
    "closed_won",
    "closed_lost",
]

DEFAULT_CURRENCY = "USD"
DEFAULT_TIMEZONE = "UTC"


def default_tenant_settings() -> Dict[str, Any]:
    return {
        "opportunityStages": list(DEFAULT_STAGES),
        "defaultCurrency": DEFAULT_CURRENCY,
        "timezone": DEFAULT_TIMEZONE,
    }


def to_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def from_millis(value: float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[ulidpk]
    name: Mapped[str512]
    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime]
    updated_at: Mapped[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "settings": dict(self.settings),
            "createdAt": to_millis(self.created_at),
            "updatedAt": to_millis(self.updated_at),
        }


class User(Base):
    """A person in exactly one tenant. Invited users stay inactive until they first sign in."""

    __tablename__ = "users"

    id: Mapped[ulidpk]
    tenant_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("tenants.id"), nullable=False, index=True
    )
    email: Mapped[str512] = mapped_column(index=True)
    name: Mapped[str512]
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    invited_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    created_at: Mapped[datetime]
    updated_at: Mapped[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "isActive": self.is_active,
            "invitedBy": self.invited_by,
            "createdAt": to_millis(self.created_at),
            "updatedAt": to_millis(self.updated_at),
        }


class CrmRecord(Base):
    __tablename__ = "crm_records"
    __table_args__ = (
        Index("idx_crm_records_tenant_collection", "tenant_id", "collection"),
    )

    id: Mapped[ulidpk]
    tenant_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("tenants.id"), nullable=False
    )
    collection: Mapped[str64]
    body: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    created_at: Mapped[datetime]
    updated_at: Mapped[datetime]
    deleted_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "tenantId": self.tenant_id}
        data.update(self.body)
        data["createdBy"] = self.created_by
        data["createdAt"] = to_millis(self.created_at)
        data["updatedAt"] = to_millis(self.updated_at)
        if self.deleted_at is not None:
            data["deletedAt"] = to_millis(self.deleted_at)
        return data


class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("idx_audit_logs_tenant_timestamp", "tenant_id", "timestamp"),
    )

    id: Mapped[ulidpk]
    tenant_id: Mapped[str] = mapped_column(String(26), nullable=False)
    user_id: Mapped[str] = mapped_column(String(26), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    changes: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    timestamp: Mapped[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "userId": self.user_id,
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "changes": self.changes,
            "timestamp": to_millis(self.timestamp),
        }
