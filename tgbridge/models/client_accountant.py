import uuid

from sqlalchemy import Boolean, Column, ForeignKey
from sqlalchemy.dialects.postgresql import UUID

from tgbridge.database import Base


class ClientAccountant(Base):
    __tablename__ = "client_accountants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)
    accountant_id = Column(UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    is_primary = Column(Boolean, nullable=False, default=False)
