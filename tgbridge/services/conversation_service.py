from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tgbridge.logging_config import get_logger
from tgbridge.models import Client, ClientAccountant, Conversation, Profile, TelegramContact, TenantBot

logger = get_logger("conversation_service")

DEFAULT_CLIENT_LABEL = "клієнта"


def get_or_create_contact(
    db: Session,
    tenant_id: UUID,
    bot_id: UUID,
    telegram_user_id: int,
    chat_id: int,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> TelegramContact:
    """Find the contact for a Telegram user or create it; display fields follow the latest message."""
    contact = _find_contact(db, tenant_id, bot_id, telegram_user_id)

    if not contact:
        contact = TelegramContact(
            tenant_id=tenant_id,
            bot_id=bot_id,
            telegram_user_id=telegram_user_id,
            chat_id=chat_id,
            username=username,
            first_name=first_name,
            last_name=last_name,
        )
        try:
            with db.begin_nested():
                db.add(contact)
                db.flush()
            return contact
        except IntegrityError:
            # Another delivery created it first.
            contact = _find_contact(db, tenant_id, bot_id, telegram_user_id)
            if contact is None:
                raise

    contact.chat_id = chat_id
    contact.username = username
    contact.first_name = first_name
    contact.last_name = last_name
    contact.updated_at = datetime.now(timezone.utc)
    db.flush()
    return contact


def _find_contact(db: Session, tenant_id: UUID, bot_id: UUID, telegram_user_id: int) -> Optional[TelegramContact]:
    return (
        db.query(TelegramContact)
        .filter(
            TelegramContact.tenant_id == tenant_id,
            TelegramContact.bot_id == bot_id,
            TelegramContact.telegram_user_id == telegram_user_id,
        )
        .first()
    )


def get_or_create_conversation(
    db: Session,
    tenant_id: UUID,
    bot_id: UUID,
    contact: TelegramContact,
) -> Conversation:
    conversation = _find_conversation(db, tenant_id, bot_id, contact.id)

    if not conversation:
        conversation = Conversation(
            tenant_id=tenant_id,
            bot_id=bot_id,
            telegram_contact_id=contact.id,
            client_id=contact.client_id,
            status="open",
            unread_count=0,
        )
        try:
            with db.begin_nested():
                db.add(conversation)
                db.flush()
            return conversation
        except IntegrityError:
            conversation = _find_conversation(db, tenant_id, bot_id, contact.id)
            if conversation is None:
                raise

    if conversation.client_id is None and contact.client_id is not None:
        conversation.client_id = contact.client_id
        db.flush()
    return conversation


def _find_conversation(db: Session, tenant_id: UUID, bot_id: UUID, contact_id: UUID) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(
            Conversation.tenant_id == tenant_id,
            Conversation.bot_id == bot_id,
            Conversation.telegram_contact_id == contact_id,
        )
        .first()
    )


def get_conversation(db: Session, tenant_id: UUID, conversation_id: UUID) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.tenant_id == tenant_id, Conversation.id == conversation_id)
        .first()
    )


def increment_unread(
    db: Session,
    conversation: Conversation,
    at: datetime,
    client_id: Optional[UUID] = None,
) -> None:
    """Bump unread_count and last_message_at in one UPDATE; read-then-write if that fails.

    The fallback can under-count when two messages land at the same time.
    """
    try:
        with db.begin_nested():
            db.execute(
                update(Conversation)
                .where(Conversation.id == conversation.id, Conversation.tenant_id == conversation.tenant_id)
                .values(
                    unread_count=Conversation.unread_count + 1,
                    last_message_at=at,
                    client_id=func.coalesce(Conversation.client_id, client_id),
                )
                .execution_options(synchronize_session=False)
            )
        return
    except SQLAlchemyError as exc:
        logger.warning(
            "Atomic unread increment failed, falling back",
            extra={"context": {"conversation_id": str(conversation.id), "error": str(exc)}},
        )

    try:
        current = (
            db.query(Conversation.unread_count).filter(Conversation.id == conversation.id).scalar()
        ) or 0
        conversation.unread_count = max(current, 0) + 1
        conversation.last_message_at = at
        if conversation.client_id is None and client_id is not None:
            conversation.client_id = client_id
        db.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "Unread counter update failed",
            extra={"context": {"conversation_id": str(conversation.id), "error": str(exc)}},
        )


def get_contact_and_bot(
    db: Session, conversation: Conversation
) -> Optional[tuple[TelegramContact, TenantBot]]:
    row = (
        db.query(TelegramContact, TenantBot)
        .join(TenantBot, TenantBot.id == TelegramContact.bot_id)
        .filter(
            TelegramContact.id == conversation.telegram_contact_id,
            TelegramContact.tenant_id == conversation.tenant_id,
            TenantBot.id == conversation.bot_id,
            TenantBot.tenant_id == conversation.tenant_id,
        )
        .first()
    )
    return (row[0], row[1]) if row else None


def find_staff_by_chat(db: Session, tenant_id: UUID, chat_id: int) -> Optional[Profile]:
    return (
        db.query(Profile)
        .filter(Profile.tenant_id == tenant_id, Profile.telegram_chat_id == chat_id)
        .first()
    )


def has_conversation_access(db: Session, profile: Profile, conversation: Conversation) -> bool:
    """Assigned staff, or any accountant listed for the conversation's client."""
    if conversation.assigned_accountant_id == profile.id:
        return True
    if conversation.client_id is None:
        return False
    link = (
        db.query(ClientAccountant.id)
        .filter(
            ClientAccountant.tenant_id == conversation.tenant_id,
            ClientAccountant.client_id == conversation.client_id,
            ClientAccountant.accountant_id == profile.id,
        )
        .first()
    )
    return link is not None


def resolve_notify_chat_id(db: Session, conversation: Conversation) -> Optional[int]:
    staff_id = conversation.assigned_accountant_id
    if staff_id is None and conversation.client_id is not None:
        primary = (
            db.query(ClientAccountant)
            .filter(
                ClientAccountant.tenant_id == conversation.tenant_id,
                ClientAccountant.client_id == conversation.client_id,
                ClientAccountant.is_primary.is_(True),
            )
            .first()
        )
        staff_id = primary.accountant_id if primary else None
    if staff_id is None:
        return None
    profile = db.query(Profile).filter(Profile.id == staff_id).first()
    return profile.telegram_chat_id if profile else None


def get_client_label(db: Session, conversation: Conversation) -> str:
    if conversation.client_id is not None:
        client = db.query(Client).filter(Client.id == conversation.client_id).first()
        if client and client.name:
            return client.name
    return DEFAULT_CLIENT_LABEL
