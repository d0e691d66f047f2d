"""Inbound update processing.

Updates are classified in a fixed order, first match wins:

1. callback query (staff pressed "reply" on a notification)
2. ``/start <CODE>`` link command
3. message from a linked staff chat (free-text reply)
4. ordinary client message

Only the client path writes conversation history. Archival and staff
notification run after the commit and never fail the update.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from tgbridge.config import settings
from tgbridge.logging_config import get_logger
from tgbridge.models import Message, MessageAttachment, MessageDirection, MessageSource, MessageStatus
from tgbridge.schemas.jobs import FileRegisterJob
from tgbridge.schemas.telegram import TelegramMessage, TelegramUpdate
from tgbridge.services import conversation_service, staff_service
from tgbridge.services.bot_service import client_for_bot, get_active_bot
from tgbridge.services.telegram_service import BotClient, best_effort_call
from tgbridge.services.update_parser import (
    build_contact_name,
    extract_attachments,
    extract_body,
    pending_storage_path,
)

logger = get_logger("inbound_service")

GROUP_CHAT_TYPES = {"group", "supergroup"}


@dataclass
class InboundResult:
    kind: str  # callback, link, staff_reply, client_message, ignored
    conversation_id: Optional[UUID] = None
    message_id: Optional[UUID] = None
    file_jobs: list[FileRegisterJob] = field(default_factory=list)


async def process_inbound_update(
    db: Session,
    tenant_id: UUID,
    bot_id: UUID,
    payload: dict,
) -> InboundResult:
    update = TelegramUpdate.model_validate(payload)
    bot = client_for_bot(get_active_bot(db, tenant_id, bot_id))

    if update.callback_query is not None:
        result = await staff_service.handle_staff_callback(db, bot, tenant_id, update.callback_query)
        return InboundResult(kind="callback", conversation_id=result.value if result.ok else None)

    message = update.primary_message
    if message is None or message.chat.type in GROUP_CHAT_TYPES:
        return InboundResult(kind="ignored")

    chat_id = message.chat.id
    code = staff_service.parse_link_code(message.text)
    if code:
        result = staff_service.handle_staff_link(db, tenant_id, chat_id, code)
        await bot.send_message(chat_id, result.reply_text)
        return InboundResult(kind="link")

    staff = conversation_service.find_staff_by_chat(db, tenant_id, chat_id)
    if staff is not None:
        result = await staff_service.handle_staff_reply(db, bot, tenant_id, staff, message)
        return InboundResult(kind="staff_reply", message_id=result.value if result.ok else None)

    return await _process_client_message(db, bot, tenant_id, bot_id, message)


async def _process_client_message(
    db: Session,
    bot: BotClient,
    tenant_id: UUID,
    bot_id: UUID,
    message: TelegramMessage,
) -> InboundResult:
    chat_id = message.chat.id
    sender = message.from_user
    contact = conversation_service.get_or_create_contact(
        db,
        tenant_id=tenant_id,
        bot_id=bot_id,
        telegram_user_id=sender.id if sender else chat_id,
        chat_id=chat_id,
        username=sender.username if sender else message.chat.username,
        first_name=sender.first_name if sender else message.chat.first_name,
        last_name=sender.last_name if sender else message.chat.last_name,
    )
    conversation = conversation_service.get_or_create_conversation(db, tenant_id, bot_id, contact)
    client_id = conversation.client_id or contact.client_id

    now = datetime.now(timezone.utc)
    body = extract_body(message)
    inbound = Message(
        tenant_id=tenant_id,
        conversation_id=conversation.id,
        direction=MessageDirection.INBOUND.value,
        source=MessageSource.TELEGRAM.value,
        telegram_message_id=message.message_id,
        body=body,
        status=MessageStatus.RECEIVED.value,
        created_at=now,
    )
    db.add(inbound)
    db.flush()

    extracted = extract_attachments(message)
    rows = [
        MessageAttachment(
            tenant_id=tenant_id,
            message_id=inbound.id,
            telegram_file_id=item.file_id,
            telegram_file_unique_id=item.file_unique_id,
            storage_path=pending_storage_path(tenant_id, item.file_name),
            file_name=item.file_name,
            mime=item.mime,
            size_bytes=item.size_bytes,
            duration_seconds=item.duration_seconds,
        )
        for item in extracted
    ]
    if rows:
        db.add_all(rows)
        db.flush()

    conversation_service.increment_unread(db, conversation, now, client_id=contact.client_id)

    conversation_id = conversation.id
    message_id = inbound.id
    file_jobs = [
        FileRegisterJob(
            tenant_id=tenant_id,
            bot_id=bot_id,
            client_id=client_id,
            attachment_id=row.id,
            telegram_file_id=item.file_id,
            file_name=item.file_name,
            mime=item.mime,
            size_bytes=item.size_bytes,
        )
        for row, item in zip(rows, extracted)
    ]
    db.commit()

    context = {"conversation_id": str(conversation_id), "message_id": str(message_id)}
    logger.info("Inbound Telegram message stored", extra={"context": {**context, "attachments": len(rows)}})

    if rows and settings.telegram_archive_chat_id:
        await best_effort_call(
            "archive",
            bot.copy_message(settings.telegram_archive_chat_id, chat_id, message.message_id),
            context,
        )
    await best_effort_call(
        "notify_staff",
        staff_service.notify_staff(db, bot, conversation, build_contact_name(message), body),
        context,
    )

    return InboundResult(
        kind="client_message",
        conversation_id=conversation_id,
        message_id=message_id,
        file_jobs=file_jobs,
    )

