from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse, Response
from sqlalchemy.orm import Session

from tgbridge.auth import StaffContext, get_staff_context
from tgbridge.database import get_db
from tgbridge.logging_config import get_logger
from tgbridge.models import Conversation, Document, Message, MessageAttachment
from tgbridge.services.bot_service import BotNotFoundError, client_for_bot, get_active_bot
from tgbridge.services.storage_service import StorageError, create_signed_url
from tgbridge.services.telegram_service import TelegramApiError
from tgbridge.services.update_parser import sanitize_file_name

logger = get_logger("documents")

router = APIRouter()

TELEGRAM_BACKED_SEGMENTS = ("/tg/", "/pending/")
GONE_DETAIL = "File is no longer available in Telegram."


def _is_telegram_backed(path: str) -> bool:
    return any(segment in path for segment in TELEGRAM_BACKED_SEGMENTS)


def _find_attachment(db: Session, context: StaffContext, path: str) -> tuple[Optional[MessageAttachment], bool]:
    attachment = (
        db.query(MessageAttachment)
        .filter(MessageAttachment.tenant_id == context.tenant_id, MessageAttachment.storage_path == path)
        .first()
    )
    if attachment is not None:
        return attachment, True
    document = (
        db.query(Document)
        .filter(Document.tenant_id == context.tenant_id, Document.storage_path == path)
        .first()
    )
    if document is None:
        return None, False
    if document.origin_attachment_id is None:
        return None, True
    origin = db.query(MessageAttachment).filter(MessageAttachment.id == document.origin_attachment_id).first()
    return origin, True


@router.get("/documents/download")
async def download_document(
    path: str = Query(..., min_length=1),
    context: StaffContext = Depends(get_staff_context),
    db: Session = Depends(get_db),
):
    """Stream a Telegram-held file, or redirect to a signed blob URL for uploaded files."""
    if not path.startswith(f"{context.tenant_id}/"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

    attachment, known = _find_attachment(db, context, path)
    if not known:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    if attachment is None or not attachment.telegram_file_id:
        if _is_telegram_backed(path):
            raise HTTPException(status_code=status.HTTP_410_GONE, detail=GONE_DETAIL)
        try:
            return RedirectResponse(await create_signed_url(path))
        except StorageError as exc:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    bot_id = (
        db.query(Conversation.bot_id)
        .join(Message, Message.conversation_id == Conversation.id)
        .filter(Message.id == attachment.message_id)
        .scalar()
    )
    try:
        bot = client_for_bot(get_active_bot(db, context.tenant_id, bot_id))
        file_path = await bot.get_file(attachment.telegram_file_id)
        content = await bot.download_file(file_path)
    except BotNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=exc.message)
    except TelegramApiError as exc:
        logger.warning(
            "Telegram file download failed",
            extra={"context": {"attachment_id": str(attachment.id), "error": exc.message}},
        )
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=GONE_DETAIL)

    file_name = sanitize_file_name(attachment.file_name)
    return Response(
        content=content,
        media_type=attachment.mime or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )
