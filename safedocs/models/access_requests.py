from __future__ import annotations

import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Text, Uuid, text
from sqlalchemy.sql import func

from .base import Base
from .permissions import AccessLevel


class AccessRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class AccessRequest(Base):
    __tablename__ = "access_requests"
    __table_args__ = (
        Index(
            "uq_access_requests_pending",
            "document_id",
            "requester_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    requester_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_access = Column(
        Enum(
            AccessLevel,
            name="requested_access_level",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=AccessLevel.VIEWER,
    )
    message = Column(Text, nullable=True)
    status = Column(
        Enum(
            AccessRequestStatus,
            name="access_request_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=AccessRequestStatus.PENDING,
        index=True,
    )
    reviewed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    response_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
