import os

from celery import Celery

from tgbridge.config import settings
from tgbridge.schemas.jobs import QueueName

celery_app = Celery(
    "tgbridge",
    broker=settings.redis_url or "redis://localhost:6379/0",
    include=["tgbridge.tasks.telegram_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_ignore_result=True,
    timezone="UTC",
    enable_utc=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_concurrency=int(os.getenv("CELERY_WORKER_CONCURRENCY", "4")),
    worker_prefetch_multiplier=int(os.getenv("CELERY_WORKER_PREFETCH", "1")),
    # Jobs are idempotent, so redelivery after a crash is safe.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=True,
    task_default_queue=QueueName.INBOUND_PROCESS.value,
    task_routes={
        "tgbridge.tasks.telegram_tasks.process_inbound_update": {"queue": QueueName.INBOUND_PROCESS.value},
        "tgbridge.tasks.telegram_tasks.send_outbound_message": {"queue": QueueName.OUTBOUND_SEND.value},
        "tgbridge.tasks.telegram_tasks.register_file": {"queue": QueueName.FILE_REGISTER.value},
    },
)
