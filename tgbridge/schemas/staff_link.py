from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class StaffLinkRequest(BaseModel):
    profile_id: UUID


class StaffLinkResponse(BaseModel):
    code: str
    expires_at: datetime
    bot_username: Optional[str] = None
    already_linked: bool = False


class StaffUnlinkResponse(BaseModel):
    ok: bool
