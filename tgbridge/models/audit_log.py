import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from tgbridge.database import Base
from tgbridge.models._types import JSONDocument, utcnow


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    actor_id = Column(UUID(as_uuid=True))
    entity = Column(Text, nullable=False)
    entity_id = Column(UUID(as_uuid=True))
    action = Column(Text, nullable=False)
    meta = Column(JSONDocument, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
