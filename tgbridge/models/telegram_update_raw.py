import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from tgbridge.database import Base
from tgbridge.models._types import JSONDocument, utcnow


class TelegramUpdateRaw(Base):
    __tablename__ = "telegram_updates_raw"
    __table_args__ = (UniqueConstraint("bot_id", "update_id", name="uq_telegram_updates_raw_bot_update"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    bot_id = Column(UUID(as_uuid=True), ForeignKey("tenant_bots.id"), nullable=False)
    update_id = Column(BigInteger, nullable=False)
    payload = Column(JSONDocument, nullable=False)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(TIMESTAMP(timezone=True))
    error = Column(Text)
