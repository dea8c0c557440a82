"""Effective access resolution for documents and folders.

A user's level on a resource is the most permissive of:

* ownership (uploader / folder creator) and the ``admin``/``manager`` roles,
  which short-circuit to ``owner``;
* live grants (not revoked, not expired) addressed to the user directly, to
  any group the user belongs to, or to the user's role;
* for documents, the effective level on the containing folder;
* for folders, grants on ancestor folders flagged ``inherit_to_children``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional, Sequence, Type, Union

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..models import (
    AccessLevel,
    Document,
    DocumentPermission,
    Folder,
    FolderPermission,
    GroupMember,
    PermissionType,
    User,
)
from ..models.base import utcnow

logger = logging.getLogger(__name__)

GrantModel = Union[Type[DocumentPermission], Type[FolderPermission]]


class PermissionDenied(Exception):
    """Raised when the caller lacks the access level an operation needs."""


def highest_access_level(levels: Iterable[AccessLevel]) -> Optional[AccessLevel]:
    best: Optional[AccessLevel] = None
    for level in levels:
        if best is None or level.rank > best.rank:
            best = level
    return best


def coerce_level(value: AccessLevel | str) -> AccessLevel:
    return value if isinstance(value, AccessLevel) else AccessLevel(value)


class PermissionService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self._group_ids: dict[uuid.UUID, list[str]] = {}
        self._folder_levels: dict[tuple[uuid.UUID, uuid.UUID], Optional[AccessLevel]] = {}

    # --- Resolution ------------------------------------------------------
    def document_access_level(self, user: User, document: Document) -> Optional[AccessLevel]:
        if document.uploaded_by == user.id:
            return AccessLevel.OWNER
        if not user.is_active:
            return None
        if user.is_privileged:
            return AccessLevel.OWNER

        levels = self._grant_levels(DocumentPermission, DocumentPermission.document_id, document.id, user)

        if document.folder_id:
            folder = self.db.get(Folder, document.folder_id)
            if folder is not None:
                folder_level = self.folder_access_level(user, folder)
                if folder_level:
                    levels.append(folder_level)

        return highest_access_level(levels)

    def folder_access_level(self, user: User, folder: Folder) -> Optional[AccessLevel]:
        cache_key = (user.id, folder.id)
        if cache_key in self._folder_levels:
            return self._folder_levels[cache_key]

        level = self._resolve_folder_level(user, folder)
        self._folder_levels[cache_key] = level
        return level

    def _resolve_folder_level(self, user: User, folder: Folder) -> Optional[AccessLevel]:
        if folder.created_by == user.id:
            return AccessLevel.OWNER
        if not user.is_active:
            return None
        if user.is_privileged:
            return AccessLevel.OWNER

        levels = self._grant_levels(FolderPermission, FolderPermission.folder_id, folder.id, user)

        visited = {folder.id}
        parent_id = folder.parent_id
        while parent_id is not None and parent_id not in visited:
            visited.add(parent_id)
            parent = self.db.get(Folder, parent_id)
            if parent is None:
                break
            if parent.created_by == user.id:
                levels.append(AccessLevel.OWNER)
                break
            levels.extend(
                self._grant_levels(
                    FolderPermission,
                    FolderPermission.folder_id,
                    parent.id,
                    user,
                    inherited_only=True,
                )
            )
            parent_id = parent.parent_id

        return highest_access_level(levels)

    def check_document(self, user: User, document: Document, required: AccessLevel | str) -> bool:
        level = self.document_access_level(user, document)
        return level is not None and level.satisfies(coerce_level(required))

    def check_folder(self, user: User, folder: Folder, required: AccessLevel | str) -> bool:
        level = self.folder_access_level(user, folder)
        return level is not None and level.satisfies(coerce_level(required))

    def require_document(self, user: User, document: Document, required: AccessLevel | str, message: str | None = None) -> None:
        if not self.check_document(user, document, required):
            raise PermissionDenied(message or "Insufficient document permissions")

    def require_folder(self, user: User, folder: Folder, required: AccessLevel | str, message: str | None = None) -> None:
        if not self.check_folder(user, folder, required):
            raise PermissionDenied(message or "Insufficient folder permissions")

    def filter_accessible(
        self,
        user: User,
        documents: Sequence[Document],
        min_level: AccessLevel = AccessLevel.VIEWER,
    ) -> list[Document]:
        if user.is_active and user.is_privileged:
            return list(documents)
        return [doc for doc in documents if self.check_document(user, doc, min_level)]

    def _group_ids_for(self, user: User) -> list[str]:
        if user.id not in self._group_ids:
            rows = self.db.query(GroupMember.group_id).filter(GroupMember.user_id == user.id).all()
            self._group_ids[user.id] = [str(row[0]) for row in rows]
        return self._group_ids[user.id]

    def _grant_levels(
        self,
        model: GrantModel,
        resource_column,
        resource_id: uuid.UUID,
        user: User,
        inherited_only: bool = False,
    ) -> list[AccessLevel]:
        role = user.role.value if hasattr(user.role, "value") else str(user.role)
        targets = [
            and_(model.permission_type == PermissionType.USER, model.target_id == str(user.id)),
            and_(model.permission_type == PermissionType.ROLE, model.target_id == role),
        ]
        group_ids = self._group_ids_for(user)
        if group_ids:
            targets.append(and_(model.permission_type == PermissionType.GROUP, model.target_id.in_(group_ids)))

        query = self.db.query(model.access_level).filter(
            resource_column == resource_id,
            or_(*targets),
            or_(model.expires_at.is_(None), model.expires_at > utcnow()),
        )
        if model is DocumentPermission:
            query = query.filter(DocumentPermission.is_revoked.is_(False))
        if inherited_only:
            query = query.filter(FolderPermission.inherit_to_children.is_(True))

        return [coerce_level(row[0]) for row in query.all()]

    # --- Grants ----------------------------------------------------------
    def grant_document_access(
        self,
        document_id: uuid.UUID,
        permission_type: PermissionType,
        target_id: str,
        access_level: AccessLevel,
        granted_by: uuid.UUID,
        expires_at: Optional[datetime] = None,
    ) -> DocumentPermission:
        permission = (
            self.db.query(DocumentPermission)
            .filter(
                DocumentPermission.document_id == document_id,
                DocumentPermission.permission_type == permission_type,
                DocumentPermission.target_id == str(target_id),
            )
            .one_or_none()
        )
        if permission is None:
            permission = DocumentPermission(
                document_id=document_id,
                permission_type=permission_type,
                target_id=str(target_id),
                granted_at=utcnow(),
            )
            self.db.add(permission)

        permission.access_level = access_level
        permission.granted_by = granted_by
        permission.expires_at = expires_at
        permission.is_revoked = False
        permission.revoked_by = None
        permission.revoked_at = None
        self.db.flush()

        logger.info(
            "document_access_granted document_id=%s type=%s target=%s level=%s by=%s",
            document_id,
            permission_type.value,
            target_id,
            access_level.value,
            granted_by,
        )
        return permission

    def grant_folder_access(
        self,
        folder_id: uuid.UUID,
        permission_type: PermissionType,
        target_id: str,
        access_level: AccessLevel,
        granted_by: uuid.UUID,
        expires_at: Optional[datetime] = None,
        inherit_to_children: bool = True,
    ) -> FolderPermission:
        permission = (
            self.db.query(FolderPermission)
            .filter(
                FolderPermission.folder_id == folder_id,
                FolderPermission.permission_type == permission_type,
                FolderPermission.target_id == str(target_id),
            )
            .one_or_none()
        )
        if permission is None:
            permission = FolderPermission(
                folder_id=folder_id,
                permission_type=permission_type,
                target_id=str(target_id),
                granted_at=utcnow(),
            )
            self.db.add(permission)

        permission.access_level = access_level
        permission.granted_by = granted_by
        permission.expires_at = expires_at
        permission.inherit_to_children = inherit_to_children
        self.db.flush()
        self._folder_levels.clear()

        logger.info(
            "folder_access_granted folder_id=%s type=%s target=%s level=%s by=%s",
            folder_id,
            permission_type.value,
            target_id,
            access_level.value,
            granted_by,
        )
        return permission

    def revoke_document_access(self, permission: DocumentPermission, revoked_by: uuid.UUID) -> None:
        permission.is_revoked = True
        permission.revoked_by = revoked_by
        permission.revoked_at = utcnow()
        self.db.flush()
        logger.info("document_access_revoked permission_id=%s by=%s", permission.id, revoked_by)

    def revoke_folder_access(self, permission: FolderPermission) -> None:
        # folder grants carry no revocation columns; removing the row is the revocation
        self.db.delete(permission)
        self.db.flush()
        self._folder_levels.clear()
        logger.info("folder_access_revoked permission_id=%s", permission.id)

    def document_permissions(self, document_id: uuid.UUID) -> list[DocumentPermission]:
        return (
            self.db.query(DocumentPermission)
            .filter(DocumentPermission.document_id == document_id, DocumentPermission.is_revoked.is_(False))
            .order_by(DocumentPermission.created_at.desc())
            .all()
        )

    def folder_permissions(self, folder_id: uuid.UUID) -> list[FolderPermission]:
        return (
            self.db.query(FolderPermission)
            .filter(FolderPermission.folder_id == folder_id)
            .order_by(FolderPermission.created_at.desc())
            .all()
        )
