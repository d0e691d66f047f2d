import uuid
from enum import Enum

from sqlalchemy import BigInteger, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from tgbridge.database import Base
from tgbridge.models._types import utcnow


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageSource(str, Enum):
    TELEGRAM = "telegram"
    INTERNAL = "internal"


class MessageStatus(str, Enum):
    RECEIVED = "received"
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    conversation_id = Column(UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, index=True)
    direction = Column(Text, nullable=False)
    source = Column(Text, nullable=False)
    sender_profile_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    telegram_message_id = Column(BigInteger)
    body = Column(Text)
    status = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    conversation = relationship("Conversation", back_populates="messages")
    attachments = relationship("MessageAttachment", back_populates="message", order_by="MessageAttachment.created_at")
