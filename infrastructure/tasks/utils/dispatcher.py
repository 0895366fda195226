"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from ..config.celery import celery_app


PROCESS_PAYMENT_TASK = "invoicing.process_payment"
PROCESS_REFUND_TASK = "invoicing.process_refund"


class TaskDispatcher:
    """Internal facade used by API routes and scripts to schedule tasks."""

    def enqueue_payment(self, payment_id: str) -> str:
        result = celery_app.send_task(PROCESS_PAYMENT_TASK, kwargs={"payment_id": payment_id})
        return result.id

    def enqueue_refund(self, refund_id: str) -> str:
        result = celery_app.send_task(PROCESS_REFUND_TASK, kwargs={"refund_id": refund_id})
        return result.id

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
