"""Staff-side Telegram flows: linking a chat, reply buttons, free-text replies, notifications."""

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tgbridge.config import settings
from tgbridge.logging_config import get_logger
from tgbridge.models import (
    Conversation,
    Message,
    MessageAttachment,
    MessageDirection,
    MessageSource,
    MessageStatus,
    Profile,
)
from tgbridge.schemas.jobs import OutboundSendJob
from tgbridge.schemas.telegram import TelegramCallbackQuery, TelegramMessage
from tgbridge.services import conversation_service, job_service
from tgbridge.services.result import Result
from tgbridge.services.staff_reply_state import clear_active_reply, get_active_reply, set_active_reply
from tgbridge.services.telegram_service import BotClient, build_force_reply, build_reply_buttons
from tgbridge.services.update_parser import extract_body, staff_storage_path

logger = get_logger("staff_service")

LINK_COMMAND_RE = re.compile(r"^/start(?:@\w+)?\s+([A-Za-z0-9]{6})\s*$", re.IGNORECASE)
REPLY_CALLBACK_RE = re.compile(r"^reply:(.+)$")

LINK_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
LINK_CODE_LENGTH = 6
PREVIEW_LIMIT = 200

MSG_CODE_INVALID = "Код недійсний або прострочений. Попросіть адміністратора згенерувати новий код."
MSG_CODE_OTHER_TENANT = (
    "Цей код належить іншій компанії. Попросіть адміністратора вашого акаунта створити новий код."
)
MSG_CHAT_TAKEN = (
    "Цей Telegram уже підключено до іншого співробітника. Попросіть адміністратора спочатку відв’язати його."
)
MSG_ALREADY_LINKED = (
    "Telegram вже підключено для {name}. Ви можете працювати з повідомленнями клієнтів у цьому чаті."
)
MSG_LINKED = "Telegram підключено для {name}. Ви будете отримувати сповіщення про нові повідомлення клієнтів."
MSG_CONVERSATION_NOT_FOUND = "Розмову не знайдено."
MSG_NO_ACCESS = "Немає доступу."
MSG_REPLY_PROMPT = "Введіть відповідь для {name}:"
MSG_PRESS_REPLY_FIRST = 'Натисніть "Відповісти" на сповіщенні щоб розпочати відповідь.'
MSG_UNSUPPORTED_CONTENT = "Підтримуються тільки текстові повідомлення та документи."
MSG_REPLY_SENT = "Відповідь надіслано {name}."
MSG_REPLY_FAILED = "Не вдалося надіслати відповідь. Спробуйте ще раз."
MSG_NEW_MESSAGE = "Нове повідомлення від {name}:\n\n{preview}"
ATTACHMENT_PREVIEW = "(вкладення)"


def parse_link_code(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = LINK_COMMAND_RE.match(text.strip())
    return match.group(1).upper() if match else None


def format_short_name(full_name: Optional[str]) -> str:
    """"Шевченко Тарас Григорович" -> "Шевченко Т.Г."."""
    parts = (full_name or "").split()
    if not parts:
        return ""
    last, rest = parts[0], parts[1:]
    initials = ""
    for part in rest:
        letter = next((ch for ch in part if ch.isalpha()), "")
        if letter:
            initials += f"{letter.upper()}."
    return f"{last} {initials}" if initials else last


def generate_link_code() -> str:
    return "".join(secrets.choice(LINK_CODE_ALPHABET) for _ in range(LINK_CODE_LENGTH))


def issue_link_code(db: Session, profile: Profile) -> Profile:
    profile.telegram_link_code = generate_link_code()
    profile.telegram_link_code_expires_at = datetime.now(timezone.utc) + timedelta(
        minutes=settings.staff_link_code_ttl_minutes
    )
    db.commit()
    db.refresh(profile)
    return profile


def unlink_profile(db: Session, profile: Profile) -> None:
    profile.telegram_chat_id = None
    profile.telegram_link_code = None
    profile.telegram_link_code_expires_at = None
    db.commit()


def handle_staff_link(db: Session, tenant_id: UUID, chat_id: int, code: str) -> Result[str]:
    """Bind a Telegram chat to the staff profile holding a valid link code."""
    now = datetime.now(timezone.utc)
    profile = (
        db.query(Profile)
        .filter(Profile.telegram_link_code == code, Profile.telegram_link_code_expires_at > now)
        .first()
    )
    if not profile:
        return Result.failure(MSG_CODE_INVALID, "code_invalid")
    if profile.tenant_id != tenant_id:
        return Result.failure(MSG_CODE_OTHER_TENANT, "other_tenant")

    existing = db.query(Profile).filter(Profile.telegram_chat_id == chat_id).first()
    if existing and existing.id != profile.id:
        return Result.failure(MSG_CHAT_TAKEN, "chat_linked_elsewhere")

    name = format_short_name(profile.full_name)
    already_linked = existing is not None

    profile.telegram_chat_id = chat_id
    profile.telegram_link_code = None
    profile.telegram_link_code_expires_at = None
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return Result.failure(MSG_CHAT_TAKEN, "chat_linked_elsewhere")

    logger.info(
        "Staff Telegram chat linked",
        extra={"context": {"profile_id": str(profile.id), "already_linked": already_linked}},
    )
    if already_linked:
        return Result.success(MSG_ALREADY_LINKED.format(name=name))
    return Result.success(MSG_LINKED.format(name=name))


async def handle_staff_callback(
    db: Session,
    bot: BotClient,
    tenant_id: UUID,
    callback: TelegramCallbackQuery,
) -> Result[UUID]:
    """Handle a "reply:<conversation id>" button press from a staff chat."""
    match = REPLY_CALLBACK_RE.match(callback.data or "")
    if not match:
        await bot.answer_callback_query(callback.id)
        return Result.failure("Unsupported callback", "unsupported")

    chat_id = callback.message.chat.id if callback.message else callback.from_user.id
    profile = conversation_service.find_staff_by_chat(db, tenant_id, chat_id)
    conversation_id = _parse_uuid(match.group(1))
    conversation = (
        conversation_service.get_conversation(db, tenant_id, conversation_id) if conversation_id else None
    )

    if profile is None:
        await bot.answer_callback_query(callback.id, text=MSG_NO_ACCESS)
        return Result.failure(MSG_NO_ACCESS, "not_staff")
    if conversation is None:
        await bot.answer_callback_query(callback.id, text=MSG_CONVERSATION_NOT_FOUND)
        return Result.failure(MSG_CONVERSATION_NOT_FOUND, "conversation_not_found")
    if not conversation_service.has_conversation_access(db, profile, conversation):
        await bot.answer_callback_query(callback.id, text=MSG_NO_ACCESS)
        return Result.failure(MSG_NO_ACCESS, "no_access")

    set_active_reply(chat_id, conversation.id)
    await bot.answer_callback_query(callback.id)
    client_label = conversation_service.get_client_label(db, conversation)
    await bot.send_message(chat_id, MSG_REPLY_PROMPT.format(name=client_label), reply_markup=build_force_reply())
    return Result.success(conversation.id)


async def handle_staff_reply(
    db: Session,
    bot: BotClient,
    tenant_id: UUID,
    profile: Profile,
    message: TelegramMessage,
) -> Result[UUID]:
    """Turn a staff chat message into a queued outbound message on the active conversation."""
    chat_id = message.chat.id
    conversation_id = get_active_reply(chat_id)
    if conversation_id is None:
        await bot.send_message(chat_id, MSG_PRESS_REPLY_FIRST)
        return Result.failure(MSG_PRESS_REPLY_FIRST, "no_active_reply")

    body = extract_body(message)
    document = message.document
    if not body and document is None:
        await bot.send_message(chat_id, MSG_UNSUPPORTED_CONTENT)
        return Result.failure(MSG_UNSUPPORTED_CONTENT, "unsupported_content")

    conversation: Optional[Conversation] = conversation_service.get_conversation(db, tenant_id, conversation_id)
    if conversation is None:
        clear_active_reply(chat_id)
        await bot.send_message(chat_id, MSG_CONVERSATION_NOT_FOUND)
        return Result.failure(MSG_CONVERSATION_NOT_FOUND, "conversation_not_found")

    outbound = Message(
        tenant_id=tenant_id,
        conversation_id=conversation.id,
        direction=MessageDirection.OUTBOUND.value,
        source=MessageSource.INTERNAL.value,
        sender_profile_id=profile.id,
        body=body,
        status=MessageStatus.QUEUED.value,
    )
    db.add(outbound)
    db.flush()

    if document is not None:
        file_name = (document.file_name or "").strip() or "document"
        db.add(
            MessageAttachment(
                tenant_id=tenant_id,
                message_id=outbound.id,
                telegram_file_id=document.file_id,
                telegram_file_unique_id=document.file_unique_id,
                storage_path=staff_storage_path(tenant_id, message.message_id, file_name),
                file_name=file_name,
                mime=document.mime_type,
                size_bytes=document.file_size,
            )
        )
    db.commit()

    message_id = outbound.id
    client_label = conversation_service.get_client_label(db, conversation)
    job = OutboundSendJob(
        tenant_id=tenant_id,
        bot_id=conversation.bot_id,
        conversation_id=conversation.id,
        message_id=message_id,
    )
    try:
        await job_service.enqueue_outbound_send_job(job)
    except Exception as exc:
        # Inline delivery already marked the message failed.
        logger.error(
            "Staff reply delivery failed",
            extra={"context": {"message_id": str(message_id), "error": str(exc)}},
        )
        clear_active_reply(chat_id)
        await bot.send_message(chat_id, MSG_REPLY_FAILED)
        return Result.failure(MSG_REPLY_FAILED, "delivery_failed")

    clear_active_reply(chat_id)
    await bot.send_message(chat_id, MSG_REPLY_SENT.format(name=client_label))
    logger.info(
        "Staff reply queued",
        extra={"context": {"conversation_id": str(conversation.id), "message_id": str(message_id)}},
    )
    return Result.success(message_id)


def build_notification_text(client_name: str, body: Optional[str]) -> str:
    if body:
        preview = f"{body[:PREVIEW_LIMIT]}..." if len(body) > PREVIEW_LIMIT else body
    else:
        preview = ATTACHMENT_PREVIEW
    return MSG_NEW_MESSAGE.format(name=client_name, preview=preview)


async def notify_staff(
    db: Session,
    bot: BotClient,
    conversation: Conversation,
    client_name: str,
    body: Optional[str],
) -> bool:
    """Tell the responsible staff member about a new client message."""
    staff_chat_id = conversation_service.resolve_notify_chat_id(db, conversation)
    if staff_chat_id is None:
        return False
    await bot.send_message(
        staff_chat_id,
        build_notification_text(client_name, body),
        reply_markup=build_reply_buttons(str(conversation.id), settings.app_url),
    )
    return True


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(value.strip())
    except ValueError:
        return None
