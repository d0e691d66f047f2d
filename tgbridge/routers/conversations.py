from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from tgbridge.auth import StaffContext, require_staff
from tgbridge.config import settings
from tgbridge.database import get_db
from tgbridge.logging_config import get_logger
from tgbridge.models import (
    Document,
    Message,
    MessageAttachment,
    MessageDirection,
    MessageSource,
    MessageStatus,
)
from tgbridge.schemas.jobs import OutboundSendJob
from tgbridge.schemas.message import SendMessageRequest, SendMessageResponse, SendVoiceResponse
from tgbridge.services import conversation_service, job_service
from tgbridge.services.bot_service import BotNotFoundError, client_for_bot
from tgbridge.services.telegram_service import TelegramApiError, best_effort_call

logger = get_logger("conversations")

router = APIRouter()


def _get_conversation_or_404(db: Session, context: StaffContext, conversation_id: UUID):
    conversation = conversation_service.get_conversation(db, context.tenant_id, conversation_id)
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


@router.post("/conversations/{conversation_id}/messages", response_model=SendMessageResponse)
async def send_conversation_message(
    conversation_id: UUID,
    request: SendMessageRequest,
    context: StaffContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    body = (request.body or "").strip()
    if not body and request.document_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either message body or documentId must be provided.",
        )

    conversation = _get_conversation_or_404(db, context, conversation_id)

    document: Optional[Document] = None
    if request.document_id is not None:
        document = (
            db.query(Document)
            .filter(Document.tenant_id == context.tenant_id, Document.id == request.document_id)
            .first()
        )
        if document is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
        if conversation.client_id is not None and document.client_id != conversation.client_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Document belongs to a different client.",
            )

    message = Message(
        tenant_id=context.tenant_id,
        conversation_id=conversation.id,
        direction=MessageDirection.OUTBOUND.value,
        source=MessageSource.INTERNAL.value,
        sender_profile_id=context.profile_id,
        body=body or None,
        status=MessageStatus.QUEUED.value,
    )
    db.add(message)
    db.flush()

    if document is not None:
        origin = None
        if document.origin_attachment_id is not None:
            origin = db.query(MessageAttachment).filter(MessageAttachment.id == document.origin_attachment_id).first()
        db.add(
            MessageAttachment(
                tenant_id=context.tenant_id,
                message_id=message.id,
                telegram_file_id=origin.telegram_file_id if origin else None,
                telegram_file_unique_id=origin.telegram_file_unique_id if origin else None,
                storage_path=document.storage_path,
                file_name=document.file_name,
                mime=document.mime,
                size_bytes=document.size_bytes,
            )
        )

    message_id = message.id
    job = OutboundSendJob(
        tenant_id=context.tenant_id,
        bot_id=conversation.bot_id,
        conversation_id=conversation.id,
        message_id=message_id,
    )
    db.commit()

    try:
        await job_service.enqueue_outbound_send_job(job)
    except Exception as exc:
        logger.error(
            "Outbound delivery failed",
            extra={"context": {"message_id": str(message_id), "error": str(exc)}},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Telegram delivery failed: {exc}")

    return SendMessageResponse(ok=True, message_id=message_id, status=MessageStatus.QUEUED.value)


@router.post("/conversations/{conversation_id}/voice", response_model=SendVoiceResponse)
async def send_conversation_voice(
    conversation_id: UUID,
    request: Request,
    duration: Optional[int] = None,
    caption: Optional[str] = None,
    context: StaffContext = Depends(require_staff),
    db: Session = Depends(get_db),
):
    """Send a recorded voice note (raw audio body) to the conversation's contact."""
    mime = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if not mime.startswith("audio/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Voice body must be audio/*.")
    audio = await request.body()
    if not audio:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Voice body is empty.")

    conversation = _get_conversation_or_404(db, context, conversation_id)
    pair = conversation_service.get_contact_and_bot(db, conversation)
    if pair is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Telegram contact not found")
    contact, bot_row = pair

    try:
        bot = client_for_bot(bot_row)
        sent = await bot.send_voice(contact.chat_id, audio, mime=mime, duration=duration, caption=caption)
    except BotNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message)
    except TelegramApiError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Telegram delivery failed: {exc.message}")

    if settings.telegram_archive_chat_id:
        await best_effort_call(
            "archive",
            bot.copy_message(settings.telegram_archive_chat_id, contact.chat_id, sent.message_id),
            {"conversation_id": str(conversation.id)},
        )

    caption_text = (caption or "").strip() or None
    message = Message(
        tenant_id=context.tenant_id,
        conversation_id=conversation.id,
        direction=MessageDirection.OUTBOUND.value,
        source=MessageSource.INTERNAL.value,
        sender_profile_id=context.profile_id,
        telegram_message_id=sent.message_id,
        body=caption_text,
        status=MessageStatus.SENT.value,
    )
    db.add(message)
    db.flush()

    file_name = f"voice_{sent.message_id}.ogg"
    db.add(
        MessageAttachment(
            tenant_id=context.tenant_id,
            message_id=message.id,
            telegram_file_id=sent.file_id,
            telegram_file_unique_id=sent.file_unique_id,
            storage_path=f"{context.tenant_id}/tg/{file_name}",
            file_name=file_name,
            mime=mime,
            size_bytes=len(audio),
            duration_seconds=duration,
        )
    )
    conversation.last_message_at = datetime.now(timezone.utc)
    message_id = message.id
    db.commit()

    return SendVoiceResponse(ok=True, message_id=message_id, telegram_message_id=sent.message_id)
