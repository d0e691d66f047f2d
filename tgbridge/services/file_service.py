from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tgbridge.logging_config import get_logger
from tgbridge.models import Document, MessageAttachment
from tgbridge.schemas.jobs import FileRegisterJob
from tgbridge.services.update_parser import registered_storage_path, sanitize_file_name

logger = get_logger("file_service")

MEDIA_MIME_PREFIXES = ("audio/", "image/", "video/")
MEDIA_FILE_PREFIXES = ("voice_", "audio_", "video_note_", "sticker_")
DEFAULT_MIME = "application/octet-stream"


class AttachmentNotFoundError(Exception):
    pass


@dataclass
class FileRegisterResult:
    attachment_id: UUID
    is_media: bool
    document_id: Optional[UUID] = None
    created: bool = False


def is_media_attachment(mime: Optional[str], file_name: Optional[str]) -> bool:
    """Voice notes, photos, clips and stickers stay chat-only; the mime type decides when known."""
    if mime:
        return mime.lower().startswith(MEDIA_MIME_PREFIXES)
    return (file_name or "").lower().startswith(MEDIA_FILE_PREFIXES)


def register_file(db: Session, job: FileRegisterJob) -> FileRegisterResult:
    attachment = (
        db.query(MessageAttachment)
        .filter(MessageAttachment.tenant_id == job.tenant_id, MessageAttachment.id == job.attachment_id)
        .first()
    )
    if attachment is None:
        raise AttachmentNotFoundError(f"Attachment {job.attachment_id} not found")

    file_name = sanitize_file_name(job.file_name)
    mime = job.mime or attachment.mime or DEFAULT_MIME
    attachment.storage_path = registered_storage_path(job.tenant_id, attachment.id, file_name)
    attachment.mime = mime
    if job.size_bytes is not None:
        attachment.size_bytes = job.size_bytes

    media = is_media_attachment(job.mime, file_name)
    result = FileRegisterResult(attachment_id=attachment.id, is_media=media)
    if media or job.client_id is None:
        db.commit()
        return result

    existing = db.query(Document).filter(Document.origin_attachment_id == attachment.id).first()
    if existing is not None:
        db.commit()
        result.document_id = existing.id
        return result

    document = Document(
        tenant_id=job.tenant_id,
        client_id=job.client_id,
        origin_attachment_id=attachment.id,
        storage_path=attachment.storage_path,
        file_name=file_name,
        mime=mime,
        size_bytes=attachment.size_bytes,
    )
    db.add(document)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent run registered it between lookup and insert.
        db.rollback()
        existing = db.query(Document).filter(Document.origin_attachment_id == job.attachment_id).first()
        result.document_id = existing.id if existing else None
        return result

    result.document_id = document.id
    result.created = True
    logger.info(
        "Document registered from Telegram attachment",
        extra={"context": {"attachment_id": str(attachment.id), "document_id": str(document.id)}},
    )
    return result
