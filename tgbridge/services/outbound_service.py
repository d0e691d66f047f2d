from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from tgbridge.logging_config import get_logger
from tgbridge.models import (
    AuditLog,
    Conversation,
    Message,
    MessageAttachment,
    MessageStatus,
)
from tgbridge.schemas.jobs import OutboundSendJob
from tgbridge.services import conversation_service, storage_service
from tgbridge.services.bot_service import client_for_bot

logger = get_logger("outbound_service")


class OutboundValidationError(Exception):
    pass


class OutboundMessageNotFoundError(Exception):
    pass


@dataclass
class OutboundResult:
    message_id: UUID
    status: str
    telegram_message_id: Optional[int] = None
    skipped: bool = False


async def send_outbound_message(db: Session, job: OutboundSendJob) -> OutboundResult:
    """Deliver a queued outbound message; replays of sent messages are no-ops."""
    message = (
        db.query(Message)
        .filter(Message.tenant_id == job.tenant_id, Message.id == job.message_id)
        .first()
    )
    if message is None:
        raise OutboundMessageNotFoundError(f"Message {job.message_id} not found")
    if message.status != MessageStatus.QUEUED.value:
        logger.info(
            "Outbound message already handled",
            extra={"context": {"message_id": str(message.id), "status": message.status}},
        )
        return OutboundResult(message_id=message.id, status=message.status, skipped=True)

    rows = (
        db.query(Conversation, MessageAttachment)
        .outerjoin(MessageAttachment, MessageAttachment.message_id == message.id)
        .filter(Conversation.tenant_id == job.tenant_id, Conversation.id == message.conversation_id)
        .order_by(MessageAttachment.created_at)
        .all()
    )
    if not rows:
        raise OutboundMessageNotFoundError(f"Conversation {message.conversation_id} not found")
    conversation = rows[0][0]
    attachments = [attachment for _, attachment in rows if attachment is not None]

    body = (message.body or "").strip()
    if not attachments and not body:
        raise OutboundValidationError("Outbound message has no body and no attachments")

    pair = conversation_service.get_contact_and_bot(db, conversation)
    if pair is None:
        raise OutboundMessageNotFoundError(f"Contact or bot for conversation {conversation.id} not found")
    contact, bot_row = pair
    bot = client_for_bot(bot_row)

    telegram_message_id: Optional[int] = None
    if attachments:
        for index, attachment in enumerate(attachments):
            document = attachment.telegram_file_id or await storage_service.create_signed_url(
                attachment.storage_path
            )
            sent_id = await bot.send_document(
                contact.chat_id,
                document,
                file_name=attachment.file_name,
                caption=body if index == 0 and body else None,
                mime=attachment.mime,
            )
            if telegram_message_id is None:
                telegram_message_id = sent_id
    else:
        telegram_message_id = await bot.send_message(contact.chat_id, body)

    message.status = MessageStatus.SENT.value
    message.telegram_message_id = telegram_message_id
    conversation.last_message_at = datetime.now(timezone.utc)
    db.commit()

    logger.info(
        "Outbound message sent",
        extra={"context": {"message_id": str(message.id), "attachments": len(attachments)}},
    )
    return OutboundResult(
        message_id=message.id,
        status=MessageStatus.SENT.value,
        telegram_message_id=telegram_message_id,
    )


def mark_outbound_failed(db: Session, job: OutboundSendJob, reason: str) -> None:
    message = (
        db.query(Message)
        .filter(Message.tenant_id == job.tenant_id, Message.id == job.message_id)
        .first()
    )
    if message is None or message.status == MessageStatus.SENT.value:
        return
    message.status = MessageStatus.FAILED.value
    db.add(
        AuditLog(
            tenant_id=job.tenant_id,
            entity="messages",
            entity_id=job.message_id,
            action="telegram_outbound_failed",
            meta={"reason": reason[:500], "conversation_id": str(job.conversation_id)},
        )
    )
    db.commit()
