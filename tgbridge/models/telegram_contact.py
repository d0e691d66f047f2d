import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from tgbridge.database import Base
from tgbridge.models._types import utcnow


class TelegramContact(Base):
    __tablename__ = "telegram_contacts"
    __table_args__ = (UniqueConstraint("bot_id", "telegram_user_id", name="uq_telegram_contacts_bot_user"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    bot_id = Column(UUID(as_uuid=True), ForeignKey("tenant_bots.id"), nullable=False)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"))
    telegram_user_id = Column(BigInteger, nullable=False)
    chat_id = Column(BigInteger, nullable=False)
    username = Column(Text)
    first_name = Column(Text)
    last_name = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
