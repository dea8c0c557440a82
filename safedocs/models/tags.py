from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Table, Uuid
from sqlalchemy.sql import func

from .base import Base


document_tags = Table(
    "document_tags",
    Base.metadata,
    Column("document_id", Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Uuid(as_uuid=True), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    color = Column(String(7), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
