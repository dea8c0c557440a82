from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from .base import Base


class AccessLevel(str, enum.Enum):
    VIEWER = "viewer"
    COMMENTER = "commenter"
    EDITOR = "editor"
    OWNER = "owner"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def satisfies(self, required: "AccessLevel") -> bool:
        return self.rank >= required.rank


_ACCESS_RANK = {
    AccessLevel.VIEWER: 1,
    AccessLevel.COMMENTER: 2,
    AccessLevel.EDITOR: 3,
    AccessLevel.OWNER: 4,
}


class PermissionType(str, enum.Enum):
    USER = "user"
    GROUP = "group"
    ROLE = "role"


_access_level_enum = Enum(
    AccessLevel,
    name="access_level",
    values_callable=lambda enum: [member.value for member in enum],
)

_permission_type_enum = Enum(
    PermissionType,
    name="permission_type",
    values_callable=lambda enum: [member.value for member in enum],
)


class DocumentPermission(Base):
    __tablename__ = "document_permissions"
    __table_args__ = (
        UniqueConstraint(
            "document_id", "permission_type", "target_id", name="uq_document_permissions_target"
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_type = Column(_permission_type_enum, nullable=False)
    # user id, group id, or role name depending on permission_type
    target_id = Column(String(255), nullable=False)
    access_level = Column(_access_level_enum, nullable=False)
    granted_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    granted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class FolderPermission(Base):
    __tablename__ = "folder_permissions"
    __table_args__ = (
        UniqueConstraint(
            "folder_id", "permission_type", "target_id", name="uq_folder_permissions_target"
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    folder_id = Column(Uuid(as_uuid=True), ForeignKey("folders.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_type = Column(_permission_type_enum, nullable=False)
    target_id = Column(String(255), nullable=False)
    access_level = Column(_access_level_enum, nullable=False)
    granted_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    granted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    inherit_to_children = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
