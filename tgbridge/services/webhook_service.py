"""Telegram webhook ingestion.

The raw update insert is the only deduplication gate: the request that wins
the (bot_id, update_id) unique key owns the inbound job, redeliveries get
``duplicate``.
"""

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tgbridge.database import is_unique_violation
from tgbridge.logging_config import get_logger
from tgbridge.models import TelegramUpdateRaw
from tgbridge.schemas.jobs import InboundProcessJob
from tgbridge.services import job_service
from tgbridge.services.bot_service import get_bot_by_public_id

logger = get_logger("webhook_service")


class WebhookOutcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"
    FAILED = "failed"


STATUS_CODES = {
    WebhookOutcome.ACCEPTED: 200,
    WebhookOutcome.DUPLICATE: 200,
    WebhookOutcome.MALFORMED: 400,
    WebhookOutcome.UNAUTHORIZED: 403,
    WebhookOutcome.NOT_FOUND: 404,
    WebhookOutcome.FAILED: 500,
}


@dataclass
class WebhookResult:
    outcome: WebhookOutcome
    update_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.outcome]


def secret_matches(expected: Optional[str], provided: Optional[str]) -> bool:
    if not expected or provided is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def _update_id(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    value = payload.get("update_id")
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


async def ingest_update(
    db: Session,
    public_id: str,
    secret_token: Optional[str],
    payload: Any,
) -> WebhookResult:
    try:
        bot = get_bot_by_public_id(db, public_id)
    except SQLAlchemyError as exc:
        logger.error("Bot lookup failed", extra={"context": {"public_id": public_id, "error": str(exc)}})
        return WebhookResult(WebhookOutcome.FAILED, error="Bot lookup failed")

    if bot is None or not bot.is_active:
        return WebhookResult(WebhookOutcome.NOT_FOUND, error="Bot not found")

    if not secret_matches(bot.webhook_secret, secret_token):
        logger.warning("Webhook secret mismatch", extra={"context": {"bot_id": str(bot.id)}})
        return WebhookResult(WebhookOutcome.UNAUTHORIZED, error="Invalid secret token")

    update_id = _update_id(payload)
    if update_id is None:
        return WebhookResult(WebhookOutcome.MALFORMED, error="Invalid update payload")

    tenant_id, bot_id = bot.tenant_id, bot.id
    raw = TelegramUpdateRaw(tenant_id=tenant_id, bot_id=bot_id, update_id=update_id, payload=payload)
    try:
        db.add(raw)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if is_unique_violation(exc):
            logger.info(
                "Duplicate Telegram update",
                extra={"context": {"bot_id": str(bot_id), "update_id": update_id}},
            )
            return WebhookResult(WebhookOutcome.DUPLICATE, update_id=update_id)
        logger.error("Raw update insert failed", extra={"context": {"update_id": update_id, "error": str(exc)}})
        return WebhookResult(WebhookOutcome.FAILED, update_id=update_id, error="Failed to store update")
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Raw update insert failed", extra={"context": {"update_id": update_id, "error": str(exc)}})
        return WebhookResult(WebhookOutcome.FAILED, update_id=update_id, error="Failed to store update")

    job = InboundProcessJob(tenant_id=tenant_id, bot_id=bot_id, update_id=update_id, payload=payload)
    try:
        await job_service.enqueue_inbound_process_job(job)
    except Exception as exc:
        # The update is stored with its error; a redelivery would only hit the dedup gate.
        logger.error(
            "Inbound job failed after the update was stored",
            extra={"context": {"bot_id": str(bot_id), "update_id": update_id, "error": str(exc)}},
            exc_info=True,
        )

    return WebhookResult(WebhookOutcome.ACCEPTED, update_id=update_id)
