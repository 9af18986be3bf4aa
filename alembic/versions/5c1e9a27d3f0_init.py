"""init

Revision ID: 5c1e9a27d3f0
Revises:
Create Date: 2025-06-12 10:41:07.513206

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c1e9a27d3f0"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("settings", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(26), sa.ForeignKey("tenants.id"), nullable=False
        ),
        sa.Column("email", sa.String(512), nullable=False),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False),
        sa.Column("invited_by", sa.String(26), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "crm_records",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(26), sa.ForeignKey("tenants.id"), nullable=False
        ),
        sa.Column("collection", sa.String(64), nullable=False),
        sa.Column("body", sa.JSON, nullable=False),
        sa.Column("created_by", sa.String(26), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_crm_records_tenant_collection", "crm_records", ["tenant_id", "collection"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("tenant_id", sa.String(26), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("action", sa.String(16), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("changes", sa.JSON, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_audit_logs_tenant_timestamp", "audit_logs", ["tenant_id", "timestamp"]
    )

    op.create_table(
        "pkce_challenges",
        sa.Column("state", sa.String(512), primary_key=True),
        sa.Column("code_challenge", sa.String(256), nullable=False),
        sa.Column("code_challenge_method", sa.String(16), nullable=False),
        sa.Column("redirect_uri", sa.String(1024), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_pkce_challenges_expires_at", "pkce_challenges", ["expires_at"]
    )

    op.create_table(
        "authorization_codes",
        sa.Column("code", sa.String(64), primary_key=True),
        sa.Column("encrypted_token", sa.String(8192), nullable=False),
        sa.Column("state", sa.String(512), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_authorization_codes_expires_at", "authorization_codes", ["expires_at"]
    )

    op.create_table(
        "mcp_sessions",
        sa.Column("session_id", sa.String(64), primary_key=True),
        sa.Column("encrypted_token", sa.String(8192), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_mcp_sessions_expires_at", "mcp_sessions", ["expires_at"])


def downgrade() -> None:
    op.drop_table("mcp_sessions")
    op.drop_table("authorization_codes")
    op.drop_table("pkce_challenges")
    op.drop_table("audit_logs")
    op.drop_table("crm_records")
    op.drop_table("users")
    op.drop_table("tenants")
