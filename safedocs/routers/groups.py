from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..dependencies.access import parse_uuid
from ..dependencies.auth import AuthContext, require_auth
from ..dependencies.db import get_db
from ..models import DocumentPermission, FolderPermission, Group, GroupMember, GroupRole, PermissionType, User
from ..services import audit

router = APIRouter(prefix="/groups", tags=["groups"])


class GroupPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class UpdateGroupPayload(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None


class AddMemberPayload(BaseModel):
    user_id: str
    role: GroupRole = GroupRole.MEMBER


class MemberRolePayload(BaseModel):
    role: GroupRole


def _serialize_group(group: Group, member_count: int, my_role: Optional[GroupRole] = None) -> dict:
    return {
        "id": str(group.id),
        "name": group.name,
        "description": group.description,
        "created_by": str(group.created_by),
        "member_count": member_count,
        "my_role": my_role.value if my_role else None,
        "created_at": group.created_at.isoformat() if group.created_at else None,
    }


def _serialize_member(member: GroupMember, user: User) -> dict:
    return {
        "id": str(member.id),
        "user_id": str(user.id),
        "username": user.username,
        "full_name": user.full_name,
        "email": user.email,
        "role": member.role.value,
        "joined_at": member.created_at.isoformat() if member.created_at else None,
    }


def _get_group_or_404(db: Session, group_id: str) -> Group:
    group = db.get(Group, parse_uuid(group_id, "group"))
    if group is None:
        raise HTTPException(status_code=404, detail="Group not found")
    return group


def _membership(db: Session, group_id: uuid.UUID, user_id: uuid.UUID) -> Optional[GroupMember]:
    return (
        db.query(GroupMember)
        .filter(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        .one_or_none()
    )


def _require_group_admin(db: Session, group: Group, user: User, message: str) -> None:
    membership = _membership(db, group.id, user.id)
    if membership is None or membership.role != GroupRole.ADMIN:
        raise HTTPException(status_code=403, detail=message)


def _admin_count(db: Session, group_id: uuid.UUID) -> int:
    return (
        db.query(func.count(GroupMember.id))
        .filter(GroupMember.group_id == group_id, GroupMember.role == GroupRole.ADMIN)
        .scalar()
        or 0
    )


def _member_count(db: Session, group_id: uuid.UUID) -> int:
    return db.query(func.count(GroupMember.id)).filter(GroupMember.group_id == group_id).scalar() or 0


@router.post("", status_code=201)
def create_group(
    payload: GroupPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    group = Group(name=payload.name.strip(), description=payload.description, created_by=context.user.id)
    db.add(group)
    db.flush()
    db.add(GroupMember(group_id=group.id, user_id=context.user.id, role=GroupRole.ADMIN))
    audit.record_audit(
        db,
        audit.GROUP_CREATED,
        user_id=context.user.id,
        details={"group_id": str(group.id), "name": group.name},
        request=request,
    )
    db.commit()
    db.refresh(group)
    return _serialize_group(group, 1, GroupRole.ADMIN)


@router.get("")
def list_my_groups(
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(Group, GroupMember.role)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .filter(GroupMember.user_id == context.user.id)
        .order_by(Group.name.asc())
        .all()
    )
    return {"items": [_serialize_group(group, _member_count(db, group.id), role) for group, role in rows]}


@router.get("/{group_id}")
def get_group(
    group_id: str,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    group = _get_group_or_404(db, group_id)
    membership = _membership(db, group.id, context.user.id)
    if membership is None and not context.user.is_privileged:
        raise HTTPException(status_code=403, detail="You are not a member of this group")

    members = (
        db.query(GroupMember, User)
        .join(User, User.id == GroupMember.user_id)
        .filter(GroupMember.group_id == group.id)
        .order_by(User.username.asc())
        .all()
    )
    payload = _serialize_group(group, len(members), membership.role if membership else None)
    payload["members"] = [_serialize_member(member, user) for member, user in members]
    return payload


@router.patch("/{group_id}")
def update_group(
    group_id: str,
    payload: UpdateGroupPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    group = _get_group_or_404(db, group_id)
    _require_group_admin(db, group, context.user, "Only group admins can update group details")

    if payload.name is not None:
        group.name = payload.name.strip()
    if payload.description is not None:
        group.description = payload.description
    audit.record_audit(
        db,
        audit.GROUP_UPDATED,
        user_id=context.user.id,
        details={"group_id": str(group.id), "name": group.name},
        request=request,
    )
    db.add(group)
    db.commit()
    db.refresh(group)
    return _serialize_group(group, _member_count(db, group.id), GroupRole.ADMIN)


@router.delete("/{group_id}")
def delete_group(
    group_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    group = _get_group_or_404(db, group_id)
    _require_group_admin(db, group, context.user, "Only group admins can delete the group")

    target = str(group.id)
    # grants addressed to the group go with it
    db.query(DocumentPermission).filter(
        DocumentPermission.permission_type == PermissionType.GROUP, DocumentPermission.target_id == target
    ).delete(synchronize_session=False)
    db.query(FolderPermission).filter(
        FolderPermission.permission_type == PermissionType.GROUP, FolderPermission.target_id == target
    ).delete(synchronize_session=False)
    db.query(GroupMember).filter(GroupMember.group_id == group.id).delete(synchronize_session=False)
    audit.record_audit(
        db,
        audit.GROUP_DELETED,
        user_id=context.user.id,
        details={"group_id": target, "name": group.name},
        request=request,
    )
    db.delete(group)
    db.commit()
    return {"status": "deleted"}


@router.post("/{group_id}/members", status_code=201)
def add_member(
    group_id: str,
    payload: AddMemberPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    group = _get_group_or_404(db, group_id)
    _require_group_admin(db, group, context.user, "Only group admins can add members")

    user = db.get(User, parse_uuid(payload.user_id, "user"))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if _membership(db, group.id, user.id) is not None:
        raise HTTPException(status_code=400, detail="User is already a member of this group")

    member = GroupMember(group_id=group.id, user_id=user.id, role=payload.role)
    db.add(member)
    audit.record_audit(
        db,
        audit.GROUP_MEMBER_ADDED,
        user_id=context.user.id,
        details={"group_id": str(group.id), "member_id": str(user.id), "role": payload.role.value},
        request=request,
    )
    db.commit()
    db.refresh(member)
    return _serialize_member(member, user)


@router.delete("/{group_id}/members/{user_id}")
def remove_member(
    group_id: str,
    user_id: str,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    group = _get_group_or_404(db, group_id)
    member_uuid = parse_uuid(user_id, "user")
    # members may always leave; removing someone else needs group admin
    if member_uuid != context.user.id:
        _require_group_admin(db, group, context.user, "Only group admins can remove members")

    membership = _membership(db, group.id, member_uuid)
    if membership is None:
        raise HTTPException(status_code=404, detail="Membership not found")
    if membership.role == GroupRole.ADMIN and _admin_count(db, group.id) <= 1:
        raise HTTPException(status_code=400, detail="Cannot remove the last admin from the group")

    db.delete(membership)
    audit.record_audit(
        db,
        audit.GROUP_MEMBER_REMOVED,
        user_id=context.user.id,
        details={"group_id": str(group.id), "member_id": str(member_uuid)},
        request=request,
    )
    db.commit()
    return {"status": "removed"}


@router.patch("/{group_id}/members/{user_id}/role")
def update_member_role(
    group_id: str,
    user_id: str,
    payload: MemberRolePayload,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    group = _get_group_or_404(db, group_id)
    _require_group_admin(db, group, context.user, "Only group admins can update member roles")

    membership = _membership(db, group.id, parse_uuid(user_id, "user"))
    if membership is None:
        raise HTTPException(status_code=404, detail="Membership not found")
    if (
        membership.role == GroupRole.ADMIN
        and payload.role != GroupRole.ADMIN
        and _admin_count(db, group.id) <= 1
    ):
        raise HTTPException(status_code=400, detail="Cannot demote the last admin")

    membership.role = payload.role
    db.add(membership)
    db.commit()
    user = db.get(User, membership.user_id)
    return _serialize_member(membership, user)
