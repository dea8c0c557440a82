from __future__ import annotations

import logging
from collections import deque
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..dependencies.access import ensure_folder_access, get_folder_or_404, parse_uuid
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..dependencies.files import parse_datetime
from ..models import AccessLevel, Document, Folder, FolderPermission, Group, PermissionType, User, UserRole
from ..services import audit
from ..services.permissions import PermissionService
from .documents import serialize_document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/folders")


class CreateFolderPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    parent_id: Optional[str] = None


class RenameFolderPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)


class FolderGrantPayload(BaseModel):
    permission_type: PermissionType
    target_id: str = Field(..., min_length=1)
    access_level: AccessLevel
    expires_at: Optional[str] = None
    inherit_to_children: bool = True


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned or "/" in cleaned:
        raise HTTPException(status_code=400, detail="Folder name is required and may not contain '/'")
    return cleaned


def serialize_folder(folder: Folder, access_level: Optional[AccessLevel] = None) -> Dict[str, Any]:
    return {
        "id": str(folder.id),
        "name": folder.name,
        "parent_id": str(folder.parent_id) if folder.parent_id else None,
        "path": folder.path,
        "created_by": str(folder.created_by),
        "org_id": str(folder.org_id) if folder.org_id else None,
        "created_at": folder.created_at.isoformat() if folder.created_at else None,
        "updated_at": folder.updated_at.isoformat() if folder.updated_at else None,
        "access_level": access_level.value if access_level else None,
    }


def _serialize_grant(permission: FolderPermission) -> Dict[str, Any]:
    return {
        "id": str(permission.id),
        "folder_id": str(permission.folder_id),
        "permission_type": permission.permission_type.value,
        "target_id": permission.target_id,
        "access_level": permission.access_level.value,
        "inherit_to_children": permission.inherit_to_children,
        "granted_by": str(permission.granted_by),
        "granted_at": permission.granted_at.isoformat() if permission.granted_at else None,
        "expires_at": permission.expires_at.isoformat() if permission.expires_at else None,
    }


def _tree_node(permissions: PermissionService, user: User, folder: Folder, seen: set) -> Optional[Dict[str, Any]]:
    if folder.id in seen:
        return None
    seen.add(folder.id)
    level = permissions.folder_access_level(user, folder)
    if level is None:
        return None
    node = serialize_folder(folder, level)
    node["children"] = [
        child_node
        for child_node in (_tree_node(permissions, user, child, seen) for child in folder.children)
        if child_node is not None
    ]
    return node


def _refresh_descendant_paths(db: Session, root: Folder) -> int:
    updated = 0
    queue = deque([root])
    seen = {root.id}
    while queue:
        parent = queue.popleft()
        for child in db.query(Folder).filter(Folder.parent_id == parent.id).all():
            if child.id in seen:
                continue
            seen.add(child.id)
            child.path = f"{parent.path}/{child.name}"
            db.add(child)
            queue.append(child)
            updated += 1
    return updated


@router.post("", status_code=201)
def create_folder(
    payload: CreateFolderPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    name = _clean_name(payload.name)
    path = name
    parent: Optional[Folder] = None
    if payload.parent_id:
        parent = db.get(Folder, parse_uuid(payload.parent_id, "folder"))
        if parent is None:
            raise HTTPException(status_code=404, detail="Parent folder not found")
        ensure_folder_access(
            PermissionService(db),
            context.user,
            parent,
            AccessLevel.EDITOR,
            "You do not have permission to create a subfolder here",
        )
        path = f"{parent.path or parent.name}/{name}"

    folder = Folder(
        name=name,
        parent_id=parent.id if parent else None,
        path=path,
        created_by=context.user.id,
        org_id=context.user.org_id,
    )
    db.add(folder)
    db.flush()
    audit.record_audit(
        db,
        audit.FOLDER_CREATED,
        user_id=context.user.id,
        details={"folder_id": str(folder.id), "path": path},
        request=request,
    )
    db.commit()
    db.refresh(folder)
    return serialize_folder(folder, AccessLevel.OWNER)


@router.get("")
def list_folders(
    parent_id: Optional[str] = Query(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    query = db.query(Folder)
    if parent_id == "root":
        query = query.filter(Folder.parent_id.is_(None))
    elif parent_id:
        query = query.filter(Folder.parent_id == parse_uuid(parent_id, "folder"))

    permissions = PermissionService(db)
    items = []
    for folder in query.order_by(Folder.name.asc()).all():
        level = permissions.folder_access_level(context.user, folder)
        if level is not None:
            items.append(serialize_folder(folder, level))
    return {"items": items}


@router.get("/tree")
def folder_tree(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    permissions = PermissionService(db)
    seen: set = set()
    roots = db.query(Folder).filter(Folder.parent_id.is_(None)).order_by(Folder.name.asc()).all()
    tree = [node for node in (_tree_node(permissions, context.user, root, seen) for root in roots) if node]
    return {"tree": tree}


@router.get("/{folder_id}")
def get_folder(
    folder_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    folder = get_folder_or_404(db, folder_id)
    permissions = PermissionService(db)
    level = permissions.folder_access_level(context.user, folder)
    if level is None:
        raise HTTPException(status_code=403, detail="You do not have access to this folder")

    children = []
    for child in folder.children:
        child_level = permissions.folder_access_level(context.user, child)
        if child_level is not None:
            children.append(serialize_folder(child, child_level))
    documents = (
        db.query(Document)
        .filter(Document.folder_id == folder.id, Document.is_deleted.is_(False))
        .order_by(Document.title.asc())
        .all()
    )
    payload = serialize_folder(folder, level)
    payload["children"] = children
    payload["documents"] = [
        serialize_document(document, permissions.document_access_level(context.user, document))
        for document in documents
    ]
    return payload


@router.patch("/{folder_id}")
def rename_folder(
    folder_id: str,
    payload: RenameFolderPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    folder = get_folder_or_404(db, folder_id)
    permissions = PermissionService(db)
    ensure_folder_access(
        permissions, context.user, folder, AccessLevel.EDITOR, "You do not have permission to update this folder"
    )

    name = _clean_name(payload.name)
    parent = db.get(Folder, folder.parent_id) if folder.parent_id else None
    folder.name = name
    folder.path = f"{parent.path}/{name}" if parent else name
    db.add(folder)
    descendants = _refresh_descendant_paths(db, folder)

    audit.record_audit(
        db,
        audit.FOLDER_UPDATED,
        user_id=context.user.id,
        details={"folder_id": str(folder.id), "path": folder.path, "descendants_updated": descendants},
        request=request,
    )
    db.commit()
    db.refresh(folder)
    return serialize_folder(folder, permissions.folder_access_level(context.user, folder))


@router.delete("/{folder_id}")
def delete_folder(
    folder_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    folder = get_folder_or_404(db, folder_id)
    if context.user.role != UserRole.ADMIN:
        ensure_folder_access(
            PermissionService(db), context.user, folder, AccessLevel.OWNER, "You do not have permission to delete this folder"
        )

    children = db.query(func.count(Folder.id)).filter(Folder.parent_id == folder.id).scalar() or 0
    documents = (
        db.query(func.count(Document.id))
        .filter(Document.folder_id == folder.id, Document.is_deleted.is_(False))
        .scalar()
        or 0
    )
    if children or documents:
        raise HTTPException(status_code=400, detail="Folder must be empty before deletion")

    # soft-deleted documents keep their row but lose the folder link
    db.query(Document).filter(Document.folder_id == folder.id).update({"folder_id": None}, synchronize_session=False)
    audit.record_audit(
        db,
        audit.FOLDER_DELETED,
        user_id=context.user.id,
        details={"folder_id": str(folder.id), "path": folder.path},
        request=request,
    )
    db.delete(folder)
    db.commit()
    return {"status": "deleted"}


# --- Folder grants -------------------------------------------------------
@router.post("/{folder_id}/permissions", status_code=201)
def grant_folder_permission(
    folder_id: str,
    payload: FolderGrantPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    folder = get_folder_or_404(db, folder_id)
    permissions = PermissionService(db)
    ensure_folder_access(permissions, context.user, folder, AccessLevel.EDITOR, "You do not have permission to share this folder")
    if payload.access_level == AccessLevel.OWNER:
        ensure_folder_access(permissions, context.user, folder, AccessLevel.OWNER, "Only owners can grant owner access")

    if payload.permission_type == PermissionType.ROLE:
        try:
            target_id = UserRole(payload.target_id).value
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Unknown role") from exc
    else:
        model = User if payload.permission_type == PermissionType.USER else Group
        target_uuid = parse_uuid(payload.target_id, payload.permission_type.value)
        if db.get(model, target_uuid) is None:
            raise HTTPException(status_code=404, detail=f"{payload.permission_type.value.capitalize()} not found")
        target_id = str(target_uuid)

    grant = permissions.grant_folder_access(
        folder.id,
        payload.permission_type,
        target_id,
        payload.access_level,
        context.user.id,
        parse_datetime(payload.expires_at),
        payload.inherit_to_children,
    )
    audit.record_audit(
        db,
        audit.FOLDER_SHARED,
        user_id=context.user.id,
        details={
            "folder_id": str(folder.id),
            "permission_type": payload.permission_type.value,
            "target_id": target_id,
            "access_level": payload.access_level.value,
            "inherit_to_children": payload.inherit_to_children,
        },
        request=request,
    )
    db.commit()
    db.refresh(grant)
    return _serialize_grant(grant)


@router.get("/{folder_id}/permissions")
def list_folder_permissions(
    folder_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    folder = get_folder_or_404(db, folder_id)
    permissions = PermissionService(db)
    ensure_folder_access(permissions, context.user, folder, AccessLevel.EDITOR)
    return {"items": [_serialize_grant(grant) for grant in permissions.folder_permissions(folder.id)]}


@router.delete("/{folder_id}/permissions/{permission_id}")
def revoke_folder_permission(
    folder_id: str,
    permission_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    folder = get_folder_or_404(db, folder_id)
    grant = db.get(FolderPermission, parse_uuid(permission_id, "permission"))
    if grant is None or grant.folder_id != folder.id:
        raise HTTPException(status_code=404, detail="Permission not found")

    permissions = PermissionService(db)
    ensure_folder_access(
        permissions, context.user, folder, AccessLevel.EDITOR, "You do not have permission to revoke this share"
    )
    permissions.revoke_folder_access(grant)
    audit.record_audit(
        db,
        audit.FOLDER_SHARE_REVOKED,
        user_id=context.user.id,
        details={"folder_id": str(folder.id), "permission_id": permission_id},
        request=request,
    )
    db.commit()
    return {"status": "revoked"}
