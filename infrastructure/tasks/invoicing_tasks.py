"""
Celery tasks running the reconciliation workflow off the request path.

Retries are only scheduled for failures that happened before a document was
issued. Errors that may leave a document behind on the invoicing side
(read timeout after the request was sent, unreadable response, marker write
failure) are surfaced for review, not retried.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from celery import shared_task

from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger
from domain.common.exceptions import ConcurrentProcessingException
from domain.invoicing.outcome import ReconciliationOutcome
from infrastructure.external.invoicing.exceptions import InvoiceIssuerError
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from infrastructure.tasks.utils.base_task import BaseTask


logger = get_logger(__name__)

RETRYABLE_ERRORS = (PaymentRecoverableError, InvoiceIssuerError, ConcurrentProcessingException)
RETRY_BASE_DELAY = 30
RETRY_MAX_DELAY = 600


def _backoff(retries: int) -> int:
    return min(RETRY_MAX_DELAY, RETRY_BASE_DELAY * 2 ** retries)


def _retryable(exc: BaseException) -> bool:
    return not getattr(exc, "may_have_issued", False)


def _service_factory() -> ReconciliationService:
    from infrastructure.bootstrap import build_reconciliation_service
    return build_reconciliation_service()


def _run(operation: Callable[[ReconciliationService], Awaitable[ReconciliationOutcome]]) -> dict[str, Any]:
    async def _inner():
        service = _service_factory()
        try:
            return await operation(service)
        finally:
            await service.aclose()

    # Use asyncio.run per task for isolation
    return asyncio.run(_inner()).to_dict()


@shared_task(name="invoicing.process_payment", bind=True, base=BaseTask, max_retries=5, default_retry_delay=30)
def task_process_payment(self, payment_id: str):
    try:
        result = _run(lambda service: service.process_payment(payment_id))
    except RETRYABLE_ERRORS as exc:
        if not _retryable(exc):
            logger.error("payment_task_needs_review", payment_id=payment_id, error=str(exc))
            raise
        logger.warning("payment_task_retrying", payment_id=payment_id, error=str(exc), retries=self.request.retries)
        raise self.retry(exc=exc, countdown=_backoff(self.request.retries))
    logger.info("payment_task_completed", payment_id=payment_id, action=result["action"])
    return result


@shared_task(name="invoicing.process_refund", bind=True, base=BaseTask, max_retries=5, default_retry_delay=30)
def task_process_refund(self, refund_id: str):
    try:
        result = _run(lambda service: service.process_refund(refund_id))
    except RETRYABLE_ERRORS as exc:
        if not _retryable(exc):
            logger.error("refund_task_needs_review", refund_id=refund_id, error=str(exc))
            raise
        logger.warning("refund_task_retrying", refund_id=refund_id, error=str(exc), retries=self.request.retries)
        raise self.retry(exc=exc, countdown=_backoff(self.request.retries))
    logger.info("refund_task_completed", refund_id=refund_id, action=result["action"])
    return result
