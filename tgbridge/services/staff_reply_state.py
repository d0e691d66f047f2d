"""Which conversation a staff chat is currently replying to.

State is process-local and lost on restart; staff press "reply" again.
"""

import time
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from tgbridge.config import settings


@dataclass
class ActiveReply:
    conversation_id: UUID
    expires_at: float


_active_replies: dict[int, ActiveReply] = {}


def set_active_reply(chat_id: int, conversation_id: UUID, ttl_seconds: Optional[int] = None) -> ActiveReply:
    ttl = settings.active_reply_ttl_seconds if ttl_seconds is None else ttl_seconds
    entry = ActiveReply(conversation_id=conversation_id, expires_at=time.monotonic() + ttl)
    _active_replies[chat_id] = entry
    return entry


def get_active_reply(chat_id: int) -> Optional[UUID]:
    entry = _active_replies.get(chat_id)
    if entry is None:
        return None
    if entry.expires_at <= time.monotonic():
        _active_replies.pop(chat_id, None)
        return None
    return entry.conversation_id


def clear_active_reply(chat_id: int) -> None:
    _active_replies.pop(chat_id, None)


def reset_active_replies() -> None:
    _active_replies.clear()
