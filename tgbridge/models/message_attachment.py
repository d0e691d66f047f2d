import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from tgbridge.database import Base
from tgbridge.models._types import utcnow


class MessageAttachment(Base):
    __tablename__ = "message_attachments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    message_id = Column(UUID(as_uuid=True), ForeignKey("messages.id"), nullable=False, index=True)
    telegram_file_id = Column(Text)
    telegram_file_unique_id = Column(Text)
    storage_path = Column(Text, nullable=False)  # access-control scope, not a blob location
    file_name = Column(Text, nullable=False)
    mime = Column(Text)
    size_bytes = Column(BigInteger)
    duration_seconds = Column(Integer)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    message = relationship("Message", back_populates="attachments")
