"""Worker-side job handlers shared by Celery tasks and inline execution."""

import asyncio
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tgbridge import database
from tgbridge.logging_config import JobLoggerAdapter, get_logger
from tgbridge.models import TelegramUpdateRaw
from tgbridge.schemas.jobs import FileRegisterJob, InboundProcessJob, OutboundSendJob, QueueName
from tgbridge.services import job_service
from tgbridge.services.alert_service import alert_error
from tgbridge.services.file_service import FileRegisterResult, register_file
from tgbridge.services.inbound_service import InboundResult, process_inbound_update
from tgbridge.services.outbound_service import (
    OutboundMessageNotFoundError,
    OutboundResult,
    OutboundValidationError,
    mark_outbound_failed,
    send_outbound_message,
)

logger = get_logger("job_handlers")

MAX_ERROR_LENGTH = 1000
NON_RETRYABLE_OUTBOUND_ERRORS = (OutboundValidationError, OutboundMessageNotFoundError)


def _job_logger(kind: str, job: BaseModel) -> JobLoggerAdapter:
    return JobLoggerAdapter(
        logger,
        {"job": kind, "tenant_id": str(job.tenant_id), "bot_id": str(job.bot_id)},
    )


def _find_raw_update(db: Session, job: InboundProcessJob) -> Optional[TelegramUpdateRaw]:
    return (
        db.query(TelegramUpdateRaw)
        .filter(TelegramUpdateRaw.bot_id == job.bot_id, TelegramUpdateRaw.update_id == job.update_id)
        .first()
    )


def _mark_raw_update(db: Session, job: InboundProcessJob, error: Optional[str]) -> None:
    raw = _find_raw_update(db, job)
    if raw is None:
        return
    raw.processed_at = datetime.now(timezone.utc)
    raw.error = error[:MAX_ERROR_LENGTH] if error else None
    db.commit()


async def handle_inbound_process(job: InboundProcessJob, final_attempt: bool = True) -> Optional[InboundResult]:
    log = _job_logger(QueueName.INBOUND_PROCESS.value, job)
    db = database.SessionLocal()
    try:
        raw = _find_raw_update(db, job)
        if raw is not None and raw.processed_at is not None and raw.error is None:
            log.info("Update already processed", context={"update_id": job.update_id})
            return None
        payload = raw.payload if raw is not None else job.payload

        try:
            result = await process_inbound_update(db, job.tenant_id, job.bot_id, payload)
        except Exception as exc:
            db.rollback()
            log.error(
                "Inbound update processing failed",
                context={"update_id": job.update_id, "error": str(exc)},
                exc_info=True,
            )
            try:
                _mark_raw_update(db, job, error=str(exc) or type(exc).__name__)
            except SQLAlchemyError as mark_exc:
                db.rollback()
                log.error("Failed to record update error", context={"error": str(mark_exc)})
            if final_attempt:
                await asyncio.to_thread(
                    alert_error,
                    "Telegram inbound update failed",
                    {"tenant_id": job.tenant_id, "update_id": job.update_id, "error": str(exc)},
                )
            raise

        _mark_raw_update(db, job, error=None)
    finally:
        db.close()

    for file_job in result.file_jobs:
        try:
            await job_service.enqueue_file_register_job(file_job)
        except Exception as exc:
            log.error(
                "File registration job failed",
                context={"attachment_id": str(file_job.attachment_id), "error": str(exc)},
            )

    log.info("Update processed", context={"update_id": job.update_id, "kind": result.kind})
    return result


async def handle_outbound_send(job: OutboundSendJob, final_attempt: bool = True) -> OutboundResult:
    log = _job_logger(QueueName.OUTBOUND_SEND.value, job)
    db = database.SessionLocal()
    try:
        try:
            return await send_outbound_message(db, job)
        except Exception as exc:
            db.rollback()
            log.error(
                "Outbound send failed",
                context={"message_id": str(job.message_id), "error": str(exc)},
                exc_info=True,
            )
            if final_attempt or isinstance(exc, NON_RETRYABLE_OUTBOUND_ERRORS):
                mark_outbound_failed(db, job, reason=str(exc) or type(exc).__name__)
                await asyncio.to_thread(
                    alert_error,
                    "Telegram outbound message failed",
                    {"tenant_id": job.tenant_id, "message_id": job.message_id, "error": str(exc)},
                )
            raise
    finally:
        db.close()


async def handle_file_register(job: FileRegisterJob, final_attempt: bool = True) -> FileRegisterResult:
    log = _job_logger(QueueName.FILE_REGISTER.value, job)
    db = database.SessionLocal()
    try:
        return register_file(db, job)
    except Exception as exc:
        db.rollback()
        log.error(
            "File registration failed",
            context={"attachment_id": str(job.attachment_id), "error": str(exc)},
            exc_info=True,
        )
        if final_attempt:
            await asyncio.to_thread(
                alert_error,
                "Telegram file registration failed",
                {"tenant_id": job.tenant_id, "attachment_id": job.attachment_id, "error": str(exc)},
            )
        raise
    finally:
        db.close()


async def run_job(queue: QueueName, job: BaseModel) -> None:
    if queue == QueueName.INBOUND_PROCESS:
        await handle_inbound_process(job)
    elif queue == QueueName.OUTBOUND_SEND:
        await handle_outbound_send(job)
    elif queue == QueueName.FILE_REGISTER:
        await handle_file_register(job)
    else:
        raise ValueError(f"Unknown queue: {queue}")
