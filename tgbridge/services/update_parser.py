import re
import uuid
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from tgbridge.schemas.telegram import TelegramMessage

MAX_FILE_NAME_LENGTH = 120

_UNSAFE_FILE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


@dataclass
class ExtractedAttachment:
    kind: str  # document, photo, voice, audio, video, video_note, sticker
    file_id: str
    file_unique_id: Optional[str]
    file_name: str
    mime: Optional[str]
    size_bytes: Optional[int] = None
    duration_seconds: Optional[int] = None


def sanitize_file_name(name: Optional[str]) -> str:
    trimmed = (name or "").strip()
    if not trimmed:
        return "file"
    return _UNSAFE_FILE_NAME_CHARS.sub("_", trimmed)[:MAX_FILE_NAME_LENGTH]


def pending_storage_path(tenant_id: UUID, file_name: str) -> str:
    return f"{tenant_id}/pending/{uuid.uuid4()}_{sanitize_file_name(file_name)}"


def staff_storage_path(tenant_id: UUID, telegram_message_id: int, file_name: str) -> str:
    return f"{tenant_id}/tg/staff_{telegram_message_id}_{sanitize_file_name(file_name)}"


def registered_storage_path(tenant_id: UUID, attachment_id: UUID, file_name: str) -> str:
    return f"{tenant_id}/tg/{attachment_id}_{sanitize_file_name(file_name)}"


def extract_body(message: TelegramMessage) -> Optional[str]:
    """Trimmed text, else trimmed caption, else None."""
    for candidate in (message.text, message.caption):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def build_contact_name(message: TelegramMessage) -> str:
    sender = message.from_user
    if sender:
        parts = [part.strip() for part in (sender.first_name, sender.last_name) if part and part.strip()]
        if parts:
            return " ".join(parts)
        if sender.username and sender.username.strip():
            return f"@{sender.username.strip()}"
    return f"Telegram {message.chat.id}"


def extract_attachments(message: TelegramMessage) -> list[ExtractedAttachment]:
    attachments: list[ExtractedAttachment] = []
    msg_id = message.message_id

    if message.document:
        doc = message.document
        attachments.append(
            ExtractedAttachment(
                kind="document",
                file_id=doc.file_id,
                file_unique_id=doc.file_unique_id,
                file_name=(doc.file_name or "").strip() or "document",
                mime=doc.mime_type,
                size_bytes=doc.file_size,
            )
        )

    if message.photo:
        # Telegram lists several resolutions; keep the largest.
        largest = message.photo[0]
        for size in message.photo:
            if (size.file_size or 0) >= (largest.file_size or 0):
                largest = size
        attachments.append(
            ExtractedAttachment(
                kind="photo",
                file_id=largest.file_id,
                file_unique_id=largest.file_unique_id,
                file_name=f"photo_{msg_id}.jpg",
                mime="image/jpeg",
                size_bytes=largest.file_size,
            )
        )

    if message.voice:
        voice = message.voice
        attachments.append(
            ExtractedAttachment(
                kind="voice",
                file_id=voice.file_id,
                file_unique_id=voice.file_unique_id,
                file_name=f"voice_{msg_id}.ogg",
                mime=voice.mime_type or "audio/ogg",
                size_bytes=voice.file_size,
                duration_seconds=voice.duration,
            )
        )

    if message.audio:
        audio = message.audio
        name = (
            (audio.file_name or "").strip()
            or " - ".join(part for part in (audio.performer, audio.title) if part)
            or f"audio_{msg_id}.mp3"
        )
        attachments.append(
            ExtractedAttachment(
                kind="audio",
                file_id=audio.file_id,
                file_unique_id=audio.file_unique_id,
                file_name=name,
                mime=audio.mime_type or "audio/mpeg",
                size_bytes=audio.file_size,
                duration_seconds=audio.duration,
            )
        )

    if message.video:
        video = message.video
        attachments.append(
            ExtractedAttachment(
                kind="video",
                file_id=video.file_id,
                file_unique_id=video.file_unique_id,
                file_name=(video.file_name or "").strip() or f"video_{msg_id}.mp4",
                mime=video.mime_type or "video/mp4",
                size_bytes=video.file_size,
                duration_seconds=video.duration,
            )
        )

    if message.video_note:
        note = message.video_note
        attachments.append(
            ExtractedAttachment(
                kind="video_note",
                file_id=note.file_id,
                file_unique_id=note.file_unique_id,
                file_name=f"video_note_{msg_id}.mp4",
                mime="video/mp4",
                size_bytes=note.file_size,
                duration_seconds=note.duration,
            )
        )

    if message.sticker:
        sticker = message.sticker
        suffix = f"_{sticker.emoji}" if sticker.emoji else ""
        attachments.append(
            ExtractedAttachment(
                kind="sticker",
                file_id=sticker.file_id,
                file_unique_id=sticker.file_unique_id,
                file_name=f"sticker_{msg_id}{suffix}.webp",
                mime="image/webp",
                size_bytes=sticker.file_size,
            )
        )

    return attachments
