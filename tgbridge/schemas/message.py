from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class SendMessageRequest(BaseModel):
    body: Optional[str] = None
    document_id: Optional[UUID] = Field(default=None, alias="documentId")

    model_config = ConfigDict(populate_by_name=True)


class SendMessageResponse(BaseModel):
    ok: bool
    message_id: UUID
    status: str


class SendVoiceResponse(BaseModel):
    ok: bool
    message_id: UUID
    telegram_message_id: Optional[int] = None
