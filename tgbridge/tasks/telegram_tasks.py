"""Celery tasks wrapping the async job handlers.

Each worker process keeps one event loop so cached Telegram clients stay bound
to the loop they were created on.
"""

import asyncio
from typing import Optional

from tgbridge.config import settings
from tgbridge.logging_config import setup_logging
from tgbridge.schemas.jobs import FileRegisterJob, InboundProcessJob, OutboundSendJob
from tgbridge.services import job_handlers
from tgbridge.services.outbound_service import OutboundMessageNotFoundError, OutboundValidationError
from tgbridge.tasks.celery_app import celery_app

setup_logging(settings.log_level)

_loop: Optional[asyncio.AbstractEventLoop] = None


def run_async(coro):
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


def _is_final_attempt(task) -> bool:
    return task.request.retries >= task.max_retries


@celery_app.task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    max_retries=settings.queue_max_retries,
    acks_late=True,
)
def process_inbound_update(self, payload: dict) -> None:
    job = InboundProcessJob.model_validate(payload)
    run_async(job_handlers.handle_inbound_process(job, final_attempt=_is_final_attempt(self)))


@celery_app.task(
    bind=True,
    autoretry_for=(Exception,),
    dont_autoretry_for=(OutboundValidationError, OutboundMessageNotFoundError),
    retry_backoff=True,
    max_retries=settings.queue_max_retries,
    acks_late=True,
)
def send_outbound_message(self, payload: dict) -> None:
    job = OutboundSendJob.model_validate(payload)
    run_async(job_handlers.handle_outbound_send(job, final_attempt=_is_final_attempt(self)))


@celery_app.task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    max_retries=settings.queue_max_retries,
    acks_late=True,
)
def register_file(self, payload: dict) -> None:
    job = FileRegisterJob.model_validate(payload)
    run_async(job_handlers.handle_file_register(job, final_attempt=_is_final_attempt(self)))
