from __future__ import annotations

import logging
from collections import Counter
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..dependencies.access import ensure_document_access, get_document_or_404
from ..dependencies.auth import AuthContext, require_auth, require_role
from ..dependencies.db import get_db
from ..models import AccessLevel, Document, User, UserRole
from ..services import audit
from ..services.permissions import PermissionService
from .documents import serialize_document

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/healthcare", tags=["healthcare"])

HC_RECORD_TYPES = (
    "patient_record",
    "lab_result",
    "prescription",
    "consent_form",
    "discharge_summary",
    "imaging",
    "referral",
    "immunization",
    "clinical_note",
    "insurance",
    "other",
)
HC_PRIVACY_LEVELS = ("general", "sensitive", "restricted", "mental_health", "hiv_aids")
# levels hidden from ordinary staff accounts
PROTECTED_PRIVACY_LEVELS = frozenset({"restricted", "mental_health", "hiv_aids"})
HC_METADATA_KEYS = (
    "hc_record_type",
    "hc_privacy_level",
    "hc_patient_id",
    "hc_patient_name",
    "hc_facility",
    "hc_provider",
    "hc_consent_obtained",
    "hc_retention_years",
    "hc_notes",
)


class HealthcareMetadataPayload(BaseModel):
    hc_record_type: Optional[str] = None
    hc_privacy_level: Optional[str] = None
    hc_patient_id: Optional[str] = Field(default=None, max_length=100)
    hc_patient_name: Optional[str] = Field(default=None, max_length=255)
    hc_facility: Optional[str] = Field(default=None, max_length=255)
    hc_provider: Optional[str] = Field(default=None, max_length=255)
    hc_consent_obtained: Optional[bool] = None
    hc_retention_years: Optional[int] = Field(default=None, ge=0, le=200)
    hc_notes: Optional[str] = None


def is_healthcare_record(metadata: dict) -> bool:
    return bool(metadata.get("hc_record_type") or metadata.get("hc_patient_id"))


def _can_see_privacy_level(user: User, level: str) -> bool:
    if level not in PROTECTED_PRIVACY_LEVELS:
        return True
    return user.role not in (UserRole.USER, UserRole.VIEWER)


def _scoped_documents(db: Session, user: User) -> list[Document]:
    query = db.query(Document).filter(Document.is_deleted.is_(False), Document.metadata_json.isnot(None))
    if user.org_id and user.role != UserRole.ADMIN:
        query = query.filter(or_(Document.org_id == user.org_id, Document.uploaded_by == user.id))
    documents = query.order_by(Document.created_at.desc()).limit(500).all()
    return PermissionService(db).filter_accessible(user, documents)


def _matches_query(document: Document, metadata: dict, needle: str) -> bool:
    haystack = (
        document.title,
        metadata.get("hc_patient_id"),
        metadata.get("hc_patient_name"),
        metadata.get("hc_facility"),
    )
    return any(needle in str(value or "").lower() for value in haystack)


@router.get("/documents")
def list_healthcare_documents(
    record_type: Optional[str] = Query(default=None),
    privacy_level: Optional[str] = Query(default=None),
    patient_id: Optional[str] = Query(default=None),
    q: Optional[str] = Query(default=None),
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    needle = q.strip().lower() if q else None
    patient_needle = patient_id.strip().lower() if patient_id else None
    items = []
    for document in _scoped_documents(db, context.user):
        metadata = document.metadata_json or {}
        if not is_healthcare_record(metadata):
            continue
        if not _can_see_privacy_level(context.user, metadata.get("hc_privacy_level") or "general"):
            continue
        if record_type and metadata.get("hc_record_type") != record_type:
            continue
        if privacy_level and metadata.get("hc_privacy_level") != privacy_level:
            continue
        if patient_needle and patient_needle not in str(metadata.get("hc_patient_id") or "").lower():
            continue
        if needle and not _matches_query(document, metadata, needle):
            continue
        items.append(serialize_document(document))
    return {"items": items, "total": len(items)}


@router.put("/documents/{doc_id}")
def set_healthcare_metadata(
    doc_id: str,
    payload: HealthcareMetadataPayload,
    request: Request,
    context: AuthContext = Depends(require_auth),
    db: Session = Depends(get_db),
):
    if payload.hc_record_type and payload.hc_record_type not in HC_RECORD_TYPES:
        raise HTTPException(status_code=400, detail="Invalid record type")
    if payload.hc_privacy_level and payload.hc_privacy_level not in HC_PRIVACY_LEVELS:
        raise HTTPException(status_code=400, detail="Invalid privacy level")

    document = get_document_or_404(db, doc_id)
    ensure_document_access(
        PermissionService(db),
        context.user,
        document,
        AccessLevel.EDITOR,
        "You do not have permission to edit this document",
    )

    metadata = dict(document.metadata_json or {})
    metadata.update(payload.model_dump(exclude_unset=True))
    document.metadata_json = metadata

    audit.record_audit(
        db,
        audit.DOCUMENT_UPDATED,
        user_id=context.user.id,
        document_id=document.id,
        details={
            "hc_record_type": metadata.get("hc_record_type"),
            "hc_privacy_level": metadata.get("hc_privacy_level"),
        },
        request=request,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info("healthcare_metadata_set document_id=%s by=%s", document.id, context.user.id)
    return {"message": "Healthcare metadata saved", "document": serialize_document(document)}


@router.delete("/documents/{doc_id}")
def clear_healthcare_metadata(
    doc_id: str,
    context: AuthContext = Depends(require_role(UserRole.ADMIN, UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    document = get_document_or_404(db, doc_id)
    remaining = {key: value for key, value in (document.metadata_json or {}).items() if key not in HC_METADATA_KEYS}
    document.metadata_json = remaining or None
    db.add(document)
    db.commit()
    return {"message": "Healthcare metadata cleared"}


@router.get("/stats")
def healthcare_stats(
    context: AuthContext = Depends(require_role(UserRole.ADMIN, UserRole.MANAGER)),
    db: Session = Depends(get_db),
):
    by_type: Counter = Counter()
    by_privacy: Counter = Counter()
    no_consent = 0
    for document in _scoped_documents(db, context.user):
        metadata = document.metadata_json or {}
        if not is_healthcare_record(metadata):
            continue
        by_type[metadata.get("hc_record_type") or "other"] += 1
        by_privacy[metadata.get("hc_privacy_level") or "general"] += 1
        if not metadata.get("hc_consent_obtained"):
            no_consent += 1
    return {
        "total": sum(by_type.values()),
        "by_type": dict(by_type),
        "by_privacy": dict(by_privacy),
        "no_consent": no_consent,
    }
