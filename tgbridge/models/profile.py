import uuid

from sqlalchemy import BigInteger, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from tgbridge.database import Base


class Profile(Base):
    """Staff member of a tenant (accountant or admin)."""

    __tablename__ = "profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    full_name = Column(Text)
    role = Column(Text, nullable=False, default="accountant")  # admin, accountant
    telegram_chat_id = Column(BigInteger, unique=True)
    telegram_link_code = Column(Text, index=True)
    telegram_link_code_expires_at = Column(TIMESTAMP(timezone=True))
