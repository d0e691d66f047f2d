import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import UUID

from tgbridge.database import Base


class Client(Base):
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(Text, nullable=False)
