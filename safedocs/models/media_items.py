from __future__ import annotations

import enum
import uuid

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.sql import func

from .base import Base, JSONType
from .documents import StorageType


class MediaType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class MediaItem(Base):
    __tablename__ = "media_items"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    file_name = Column(String(500), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    mime_type = Column(String(100), nullable=False)
    media_type = Column(
        Enum(
            MediaType,
            name="media_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    storage_type = Column(
        Enum(
            StorageType,
            name="media_storage_type",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=StorageType.LOCAL,
    )
    category = Column(String(100), nullable=True)
    tags = Column(JSONType, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    document_id = Column(Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    org_id = Column(Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True)
    uploaded_by = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
