"""Initial SafeDocs schema"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20260301_0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ENUMS = {
    "user_role": ("admin", "manager", "user", "viewer"),
    "storage_type": ("local", "minio"),
    "media_storage_type": ("local", "minio"),
    "access_level": ("viewer", "commenter", "editor", "owner"),
    "requested_access_level": ("viewer", "commenter", "editor", "owner"),
    "share_link_access_level": ("viewer", "commenter", "editor", "owner"),
    "permission_type": ("user", "group", "role"),
    "group_role": ("admin", "member"),
    "access_request_status": ("pending", "approved", "denied"),
    "employee_status": ("active", "inactive", "terminated"),
    "media_type": ("image", "video", "audio"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name in ENUMS:
        _enum(name).create(bind, checkfirst=True)

    op.create_table(
        "organizations",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("role", _enum("user_role"), nullable=False, server_default="user"),
        sa.Column("org_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_org_id", "users", ["org_id"])

    op.create_table(
        "user_sessions",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("session_token_hash", sa.String(), nullable=False),
        sa.Column("token_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("session_token_hash", name="uq_user_sessions_token"),
    )

    op.create_table(
        "folders",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("parent_id", _uuid(), sa.ForeignKey("folders.id", ondelete="CASCADE"), nullable=True),
        sa.Column("path", sa.Text(), nullable=True),
        sa.Column("created_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("org_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_folders_parent_id", "folders", ["parent_id"])
    op.create_index("ix_folders_org_id", "folders", ["org_id"])

    op.create_table(
        "documents",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("file_path", sa.String(1000), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("storage_type", _enum("storage_type"), nullable=False, server_default="local"),
        sa.Column("folder_id", _uuid(), sa.ForeignKey("folders.id", ondelete="SET NULL"), nullable=True),
        sa.Column("uploaded_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("org_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("current_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("text_excerpt", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_documents_folder_id", "documents", ["folder_id"])
    op.create_index("ix_documents_uploaded_by", "documents", ["uploaded_by"])
    op.create_index("ix_documents_org_id", "documents", ["org_id"])
    op.create_index("ix_documents_is_deleted", "documents", ["is_deleted"])

    op.create_table(
        "document_versions",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("file_path", sa.String(1000), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(255), nullable=True),
        sa.Column("storage_type", _enum("storage_type"), nullable=False, server_default="local"),
        sa.Column("uploaded_by", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("change_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("document_id", "version_number", name="uq_document_versions_number"),
    )
    op.create_index("ix_document_versions_document_id", "document_versions", ["document_id"])

    op.create_table(
        "tags",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("color", sa.String(7), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "document_tags",
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tag_id", _uuid(), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "groups",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "group_members",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("group_id", _uuid(), sa.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", _enum("group_role"), nullable=False, server_default="member"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )
    op.create_index("ix_group_members_group_id", "group_members", ["group_id"])
    op.create_index("ix_group_members_user_id", "group_members", ["user_id"])

    op.create_table(
        "document_permissions",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("permission_type", _enum("permission_type"), nullable=False),
        sa.Column("target_id", sa.String(255), nullable=False),
        sa.Column("access_level", _enum("access_level"), nullable=False),
        sa.Column("granted_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_by", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("document_id", "permission_type", "target_id", name="uq_document_permissions_target"),
    )
    op.create_index("ix_document_permissions_document_id", "document_permissions", ["document_id"])

    op.create_table(
        "folder_permissions",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("folder_id", _uuid(), sa.ForeignKey("folders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("permission_type", _enum("permission_type"), nullable=False),
        sa.Column("target_id", sa.String(255), nullable=False),
        sa.Column("access_level", _enum("access_level"), nullable=False),
        sa.Column("granted_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("inherit_to_children", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("folder_id", "permission_type", "target_id", name="uq_folder_permissions_target"),
    )
    op.create_index("ix_folder_permissions_folder_id", "folder_permissions", ["folder_id"])

    op.create_table(
        "share_links",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("access_level", _enum("share_link_access_level"), nullable=False, server_default="viewer"),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("allow_download", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_share_links_document_id", "share_links", ["document_id"])
    op.create_index("ix_share_links_token", "share_links", ["token"], unique=True)
    op.create_index("ix_share_links_expires_at", "share_links", ["expires_at"])
    op.create_index("ix_share_links_is_active", "share_links", ["is_active"])

    op.create_table(
        "access_requests",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requester_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requested_access", _enum("requested_access_level"), nullable=False, server_default="viewer"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", _enum("access_request_status"), nullable=False, server_default="pending"),
        sa.Column("reviewed_by", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("response_message", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_access_requests_document_id", "access_requests", ["document_id"])
    op.create_index("ix_access_requests_requester_id", "access_requests", ["requester_id"])
    op.create_index("ix_access_requests_status", "access_requests", ["status"])
    op.create_index(
        "uq_access_requests_pending",
        "access_requests",
        ["document_id", "requester_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_document_id", "audit_logs", ["document_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("recipient_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("related_id", _uuid(), nullable=True),
        sa.Column("related_type", sa.String(50), nullable=True),
        sa.Column("actor_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])

    op.create_table(
        "employees",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.String(50), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("department", sa.String(100), nullable=False),
        sa.Column("position", sa.String(150), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", _enum("employee_status"), nullable=False, server_default="active"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("org_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_employees_org_id", "employees", ["org_id"])

    op.create_table(
        "employee_documents",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("employee_id", _uuid(), sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("hr_category", sa.String(50), nullable=False, server_default="other"),
        sa.Column("added_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("employee_id", "document_id", name="uq_employee_documents_pair"),
    )
    op.create_index("ix_employee_documents_employee_id", "employee_documents", ["employee_id"])
    op.create_index("ix_employee_documents_document_id", "employee_documents", ["document_id"])

    op.create_table(
        "media_items",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("file_path", sa.String(1000), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("media_type", _enum("media_type"), nullable=False),
        sa.Column("storage_type", _enum("media_storage_type"), nullable=False, server_default="local"),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("tags", postgresql.JSONB(), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("document_id", _uuid(), sa.ForeignKey("documents.id", ondelete="SET NULL"), nullable=True),
        sa.Column("org_id", _uuid(), sa.ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("uploaded_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_media_items_org_id", "media_items", ["org_id"])
    op.create_index("ix_media_items_is_deleted", "media_items", ["is_deleted"])


def downgrade() -> None:
    for table in (
        "media_items",
        "employee_documents",
        "employees",
        "notifications",
        "audit_logs",
        "access_requests",
        "share_links",
        "folder_permissions",
        "document_permissions",
        "group_members",
        "groups",
        "document_tags",
        "tags",
        "document_versions",
        "documents",
        "folders",
        "user_sessions",
        "users",
        "organizations",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        sa.Enum(*ENUMS[name], name=name).drop(bind, checkfirst=True)
