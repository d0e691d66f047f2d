import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from tgbridge.database import Base
from tgbridge.models._types import utcnow


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("bot_id", "telegram_contact_id", name="uq_conversations_bot_contact"),
        CheckConstraint("unread_count >= 0", name="ck_conversations_unread_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    bot_id = Column(UUID(as_uuid=True), ForeignKey("tenant_bots.id"), nullable=False)
    telegram_contact_id = Column(UUID(as_uuid=True), ForeignKey("telegram_contacts.id"), nullable=False)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"))
    status = Column(Text, nullable=False, default="open")  # open, closed
    assigned_accountant_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"))
    last_message_at = Column(TIMESTAMP(timezone=True))
    unread_count = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    contact = relationship("TelegramContact")
    messages = relationship("Message", back_populates="conversation")
