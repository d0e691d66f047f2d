from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel


class QueueName(str, Enum):
    INBOUND_PROCESS = "inbound_process"
    OUTBOUND_SEND = "outbound_send"
    FILE_REGISTER = "file_download_upload"


class InboundProcessJob(BaseModel):
    tenant_id: UUID
    bot_id: UUID
    update_id: int
    payload: dict[str, Any]


class OutboundSendJob(BaseModel):
    tenant_id: UUID
    bot_id: UUID
    conversation_id: UUID
    message_id: UUID


class FileRegisterJob(BaseModel):
    tenant_id: UUID
    bot_id: UUID
    client_id: Optional[UUID] = None
    attachment_id: UUID
    telegram_file_id: str
    file_name: str
    mime: Optional[str] = None
    size_bytes: Optional[int] = None
