"""Enqueue side of the job queue.

With a Celery broker configured, jobs are published to their queue and run by
a worker. Without one (or with QUEUE_MODE=inline) the job runs in the caller's
event loop before ``enqueue_*`` returns, so callers may only rely on eventual
completion or a raised error.
"""

import asyncio

from pydantic import BaseModel

from tgbridge.config import settings
from tgbridge.logging_config import get_logger
from tgbridge.schemas.jobs import FileRegisterJob, InboundProcessJob, OutboundSendJob, QueueName
from tgbridge.tasks.celery_app import celery_app

logger = get_logger("job_service")

TASK_NAMES = {
    QueueName.INBOUND_PROCESS: "tgbridge.tasks.telegram_tasks.process_inbound_update",
    QueueName.OUTBOUND_SEND: "tgbridge.tasks.telegram_tasks.send_outbound_message",
    QueueName.FILE_REGISTER: "tgbridge.tasks.telegram_tasks.register_file",
}

PUBLISH_RETRY_POLICY = {"max_retries": 2, "interval_start": 0, "interval_step": 0.5, "interval_max": 1}


def is_worker_queue_enabled() -> bool:
    mode = (settings.queue_mode or "").strip().lower()
    return bool(settings.redis_url) and mode != "inline"


async def enqueue_inbound_process_job(job: InboundProcessJob) -> None:
    await _enqueue(QueueName.INBOUND_PROCESS, job)


async def enqueue_outbound_send_job(job: OutboundSendJob) -> None:
    await _enqueue(QueueName.OUTBOUND_SEND, job)


async def enqueue_file_register_job(job: FileRegisterJob) -> None:
    await _enqueue(QueueName.FILE_REGISTER, job)


async def _enqueue(queue: QueueName, job: BaseModel) -> None:
    if is_worker_queue_enabled():
        try:
            await asyncio.to_thread(_publish, queue, job)
            return
        except Exception as exc:
            if not settings.queue_fallback_to_inline:
                raise
            logger.warning(
                "Queue publish failed, running job inline",
                extra={"context": {"queue": queue.value, "error": str(exc)}},
            )
    await _run_inline(queue, job)


def _publish(queue: QueueName, job: BaseModel) -> None:
    celery_app.send_task(
        TASK_NAMES[queue],
        kwargs={"payload": job.model_dump(mode="json")},
        queue=queue.value,
        retry=True,
        retry_policy=PUBLISH_RETRY_POLICY,
    )


async def _run_inline(queue: QueueName, job: BaseModel) -> None:
    # Handlers import the processors, which enqueue follow-up jobs through this module.
    from tgbridge.services import job_handlers

    await job_handlers.run_job(queue, job)
