import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from tgbridge.database import Base
from tgbridge.models._types import utcnow


class Document(Base):
    __tablename__ = "documents"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)
    origin_attachment_id = Column(UUID(as_uuid=True), ForeignKey("message_attachments.id"), unique=True)
    storage_path = Column(Text, nullable=False)
    file_name = Column(Text, nullable=False)
    mime = Column(Text)
    size_bytes = Column(BigInteger)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
