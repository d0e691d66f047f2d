from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from tgbridge.models import TenantBot
from tgbridge.services.telegram_service import BotClient, get_bot_client


class BotNotFoundError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def resolve_bot_token(token_encrypted: Optional[str]) -> str:
    # TODO: decrypt once tenant_bots.token_encrypted holds ciphertext.
    return (token_encrypted or "").strip()


def parse_uuid(value: object) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def get_bot_by_public_id(db: Session, public_id: str) -> Optional[TenantBot]:
    parsed = parse_uuid(public_id)
    if parsed is None:
        return None
    return db.query(TenantBot).filter(TenantBot.public_id == parsed).first()


def get_active_bot(db: Session, tenant_id: UUID, bot_id: UUID) -> TenantBot:
    bot = db.query(TenantBot).filter(TenantBot.tenant_id == tenant_id, TenantBot.id == bot_id).first()
    return ensure_usable_bot(bot)


def get_tenant_bot(db: Session, tenant_id: UUID) -> Optional[TenantBot]:
    return (
        db.query(TenantBot)
        .filter(TenantBot.tenant_id == tenant_id, TenantBot.is_active.is_(True))
        .order_by(TenantBot.created_at)
        .first()
    )


def ensure_usable_bot(bot: Optional[TenantBot]) -> TenantBot:
    if bot is None:
        raise BotNotFoundError("Bot not found")
    if not bot.is_active:
        raise BotNotFoundError("Bot is inactive")
    if not resolve_bot_token(bot.token_encrypted):
        raise BotNotFoundError("Bot token is empty")
    return bot


def client_for_bot(bot: TenantBot) -> BotClient:
    return get_bot_client(resolve_bot_token(ensure_usable_bot(bot).token_encrypted))
