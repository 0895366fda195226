"""Celery application for off-request invoicing work.

Webhooks process inline; the queue is used for manual bulk replays
(``scripts/process_payments.py --enqueue``, admin ``?enqueue=true``) and for
retrying transient failures with backoff.
"""
from __future__ import annotations

import os
from core.logging_config import get_logger
from celery import Celery
from kombu import Queue

from core.config import settings


CELERY_IMPORTS = (
    "infrastructure.tasks.invoicing_tasks",
)

celery_app = Celery("invoice_reconciler")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    # JSON only: task arguments are plain payment/refund ids
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Ack after completion so a lost worker redelivers the job; the engine is idempotent
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=24 * 3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_queues=(
        Queue("invoicing"),
        Queue("default"),
    ),
    task_routes={
        "invoicing.*": {"queue": "invoicing"},
    },
    imports=CELERY_IMPORTS,
)

if (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, eager=sender.conf.task_always_eager)
