from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..dependencies.access import get_document_or_404, parse_uuid
from ..dependencies.auth import AuthContext, require_admin, require_role
from ..dependencies.db import get_db
from ..models import Document, Employee, EmployeeDocument, EmployeeStatus, UserRole
from ..models.base import utcnow
from ..services import audit
from .documents import serialize_document

router = APIRouter(prefix="/hr", tags=["hr"])

require_hr = require_role(UserRole.ADMIN, UserRole.MANAGER)

HRCategory = Literal[
    "contract",
    "id_copy",
    "certificate",
    "performance_review",
    "onboarding",
    "medical",
    "payslip",
    "other",
]
HR_METADATA_KEYS = ("hr_category", "hr_employee_name", "hr_department", "hr_notes")
EXPIRY_WINDOW_DAYS = 60


class EmployeePayload(BaseModel):
    employee_id: str = Field(..., min_length=1, max_length=50)
    full_name: str = Field(..., min_length=1, max_length=255)
    department: str = Field(..., min_length=1, max_length=100)
    position: str = Field(..., min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: EmployeeStatus = EmployeeStatus.ACTIVE
    notes: Optional[str] = None


class UpdateEmployeePayload(BaseModel):
    employee_id: Optional[str] = Field(default=None, min_length=1, max_length=50)
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    department: Optional[str] = Field(default=None, min_length=1, max_length=100)
    position: Optional[str] = Field(default=None, min_length=1, max_length=150)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[EmployeeStatus] = None
    notes: Optional[str] = None


class LinkDocumentPayload(BaseModel):
    document_id: str
    hr_category: HRCategory = "other"


class HRMetadataPayload(BaseModel):
    hr_category: HRCategory
    hr_employee_name: Optional[str] = Field(default=None, max_length=255)
    hr_department: Optional[str] = Field(default=None, max_length=100)
    hr_notes: Optional[str] = None


def _serialize_employee(employee: Employee, document_count: int | None = None) -> dict:
    payload = {
        "id": str(employee.id),
        "employee_id": employee.employee_id,
        "full_name": employee.full_name,
        "department": employee.department,
        "position": employee.position,
        "email": employee.email,
        "phone": employee.phone,
        "start_date": employee.start_date.isoformat() if employee.start_date else None,
        "end_date": employee.end_date.isoformat() if employee.end_date else None,
        "status": employee.status.value,
        "notes": employee.notes,
        "org_id": str(employee.org_id) if employee.org_id else None,
        "created_by": str(employee.created_by),
        "created_at": employee.created_at.isoformat() if employee.created_at else None,
    }
    if document_count is not None:
        payload["document_count"] = document_count
    return payload


def _get_employee_or_404(db: Session, employee_id: str) -> Employee:
    employee = db.get(Employee, parse_uuid(employee_id, "employee"))
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found")
    return employee


def _ensure_unique_employee_id(db: Session, value: str, exclude_id: uuid.UUID | None = None) -> None:
    query = db.query(Employee.id).filter(Employee.employee_id == value)
    if exclude_id is not None:
        query = query.filter(Employee.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail=f'Employee ID "{value}" already exists')


def _document_counts(db: Session, employee_ids: list[uuid.UUID]) -> dict:
    if not employee_ids:
        return {}
    return dict(
        db.query(EmployeeDocument.employee_id, func.count(EmployeeDocument.id))
        .filter(EmployeeDocument.employee_id.in_(employee_ids))
        .group_by(EmployeeDocument.employee_id)
        .all()
    )


# --- Dashboard & classified documents ------------------------------------
@router.get("/stats")
def hr_stats(
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    by_status = dict(db.query(Employee.status, func.count(Employee.id)).group_by(Employee.status).all())
    now = utcnow()
    horizon = now + timedelta(days=EXPIRY_WINDOW_DAYS)
    expiring = (
        db.query(EmployeeDocument, Document, Employee)
        .join(Document, Document.id == EmployeeDocument.document_id)
        .join(Employee, Employee.id == EmployeeDocument.employee_id)
        .filter(
            Document.is_deleted.is_(False),
            Document.expires_at.isnot(None),
            Document.expires_at >= now,
            Document.expires_at <= horizon,
        )
        .order_by(Document.expires_at.asc())
        .all()
    )
    departments = [
        row[0] for row in db.query(Employee.department).distinct().order_by(Employee.department.asc()).all()
    ]
    return {
        "stats": {
            "total": sum(by_status.values()),
            "active": by_status.get(EmployeeStatus.ACTIVE, 0),
            "inactive": by_status.get(EmployeeStatus.INACTIVE, 0),
            "terminated": by_status.get(EmployeeStatus.TERMINATED, 0),
        },
        "expiring_documents": [
            {
                "document_id": str(document.id),
                "title": document.title,
                "expires_at": document.expires_at.isoformat() if document.expires_at else None,
                "hr_category": link.hr_category,
                "employee": {
                    "id": str(employee.id),
                    "employee_id": employee.employee_id,
                    "full_name": employee.full_name,
                    "department": employee.department,
                },
            }
            for link, document, employee in expiring
        ],
        "departments": departments,
    }


@router.get("/documents/classified")
def classified_documents(
    category: Optional[HRCategory] = Query(default=None),
    q: Optional[str] = Query(default=None),
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    query = db.query(Document).filter(Document.is_deleted.is_(False), Document.metadata_json.isnot(None))
    if context.user.role != UserRole.ADMIN and context.user.org_id:
        query = query.filter(Document.org_id == context.user.org_id)

    needle = q.strip().lower() if q else None
    items = []
    for document in query.order_by(Document.created_at.desc()).all():
        metadata = document.metadata_json or {}
        if not metadata.get("hr_category"):
            continue
        if category and metadata.get("hr_category") != category:
            continue
        if needle and not any(
            needle in str(value or "").lower()
            for value in (document.title, metadata.get("hr_employee_name"), metadata.get("hr_department"))
        ):
            continue
        items.append(serialize_document(document))
    return {"items": items}


@router.put("/documents/{doc_id}/metadata")
def set_hr_metadata(
    doc_id: str,
    payload: HRMetadataPayload,
    request: Request,
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    metadata = dict(document.metadata_json or {})
    metadata.update({key: value for key, value in payload.model_dump().items() if value is not None})
    document.metadata_json = metadata

    audit.record_audit(
        db,
        audit.DOCUMENT_UPDATED,
        user_id=context.user.id,
        document_id=document.id,
        details={"hr_category": payload.hr_category},
        request=request,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return serialize_document(document)


@router.delete("/documents/{doc_id}/metadata")
def clear_hr_metadata(
    doc_id: str,
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    remaining = {key: value for key, value in (document.metadata_json or {}).items() if key not in HR_METADATA_KEYS}
    document.metadata_json = remaining or None
    db.add(document)
    db.commit()
    return {"status": "cleared"}


# --- Employees -----------------------------------------------------------
@router.get("/employees")
def list_employees(
    q: Optional[str] = Query(default=None),
    department: Optional[str] = Query(default=None),
    status: Optional[EmployeeStatus] = Query(default=None),
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    query = db.query(Employee)
    if q:
        pattern = f"%{q.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Employee.full_name).like(pattern),
                func.lower(Employee.employee_id).like(pattern),
                func.lower(Employee.department).like(pattern),
                func.lower(Employee.position).like(pattern),
                func.lower(func.coalesce(Employee.email, "")).like(pattern),
            )
        )
    if department:
        query = query.filter(Employee.department == department)
    if status:
        query = query.filter(Employee.status == status)

    employees = query.order_by(Employee.full_name.asc()).all()
    counts = _document_counts(db, [employee.id for employee in employees])
    return {"items": [_serialize_employee(employee, counts.get(employee.id, 0)) for employee in employees]}


@router.get("/employees/{employee_id}")
def get_employee(
    employee_id: str,
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    employee = _get_employee_or_404(db, employee_id)
    rows = (
        db.query(EmployeeDocument, Document)
        .join(Document, Document.id == EmployeeDocument.document_id)
        .filter(EmployeeDocument.employee_id == employee.id, Document.is_deleted.is_(False))
        .order_by(EmployeeDocument.created_at.desc())
        .all()
    )
    payload = _serialize_employee(employee, len(rows))
    payload["documents"] = [
        {
            **serialize_document(document),
            "hr_category": link.hr_category,
            "linked_at": link.created_at.isoformat() if link.created_at else None,
        }
        for link, document in rows
    ]
    return payload


@router.post("/employees", status_code=201)
def create_employee(
    payload: EmployeePayload,
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    employee_code = payload.employee_id.strip()
    _ensure_unique_employee_id(db, employee_code)

    employee = Employee(
        employee_id=employee_code,
        full_name=payload.full_name.strip(),
        department=payload.department.strip(),
        position=payload.position.strip(),
        email=str(payload.email) if payload.email else None,
        phone=payload.phone,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=payload.status,
        notes=payload.notes,
        org_id=context.user.org_id,
        created_by=context.user.id,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return _serialize_employee(employee, 0)


@router.put("/employees/{employee_id}")
def update_employee(
    employee_id: str,
    payload: UpdateEmployeePayload,
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    employee = _get_employee_or_404(db, employee_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("employee_id"):
        changes["employee_id"] = changes["employee_id"].strip()
        _ensure_unique_employee_id(db, changes["employee_id"], exclude_id=employee.id)
    if "email" in changes and changes["email"] is not None:
        changes["email"] = str(changes["email"])

    for field, value in changes.items():
        setattr(employee, field, value)
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return _serialize_employee(employee)


@router.delete("/employees/{employee_id}")
def delete_employee(
    employee_id: str,
    context: AuthContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    employee = _get_employee_or_404(db, employee_id)
    db.query(EmployeeDocument).filter(EmployeeDocument.employee_id == employee.id).delete(synchronize_session=False)
    db.delete(employee)
    db.commit()
    return {"status": "deleted"}


@router.post("/employees/{employee_id}/documents", status_code=201)
def link_document(
    employee_id: str,
    payload: LinkDocumentPayload,
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    employee = _get_employee_or_404(db, employee_id)
    document = get_document_or_404(db, payload.document_id)

    link = (
        db.query(EmployeeDocument)
        .filter(EmployeeDocument.employee_id == employee.id, EmployeeDocument.document_id == document.id)
        .one_or_none()
    )
    if link is None:
        link = EmployeeDocument(
            employee_id=employee.id,
            document_id=document.id,
            hr_category=payload.hr_category,
            added_by=context.user.id,
        )
    else:
        link.hr_category = payload.hr_category
    db.add(link)
    db.commit()
    db.refresh(link)
    return {
        "id": str(link.id),
        "employee_id": str(employee.id),
        "document_id": str(document.id),
        "hr_category": link.hr_category,
    }


@router.delete("/employees/{employee_id}/documents/{doc_id}")
def unlink_document(
    employee_id: str,
    doc_id: str,
    context: AuthContext = Depends(require_hr),
    db: Session = Depends(get_db),
):
    deleted = (
        db.query(EmployeeDocument)
        .filter(
            EmployeeDocument.employee_id == parse_uuid(employee_id, "employee"),
            EmployeeDocument.document_id == parse_uuid(doc_id, "document"),
        )
        .delete(synchronize_session=False)
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Link not found")
    db.commit()
    return {"status": "unlinked"}
