"""
Admin routes for manual replay of the reconciliation workflow.

Replays go through the same idempotent engine as webhooks, so replaying an
already processed payment only reports ``already_processed``.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_reconciliation_service, get_task_dispatcher, require_admin
from application.dtos.webhooks import ReconciliationResult
from application.services.reconciliation_service import ReconciliationService
from core.response import success_response
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.post("/payments/{payment_id}/process", summary="Process payment")
async def process_payment(
    payment_id: str,
    enqueue: bool = Query(default=False, description="Schedule on the task queue instead of running inline"),
    service: ReconciliationService = Depends(get_reconciliation_service),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
):
    if enqueue:
        task_id = dispatcher.enqueue_payment(payment_id)
        return success_response(data={"payment_id": payment_id, "task_id": task_id}, message="Payment enqueued")
    outcome = await service.process_payment(payment_id)
    result = ReconciliationResult(**outcome.to_dict())
    return success_response(data=result.model_dump(mode="json"), message="Payment processed")


@router.post("/refunds/{refund_id}/process", summary="Process refund")
async def process_refund(
    refund_id: str,
    enqueue: bool = Query(default=False),
    service: ReconciliationService = Depends(get_reconciliation_service),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
):
    if enqueue:
        task_id = dispatcher.enqueue_refund(refund_id)
        return success_response(data={"refund_id": refund_id, "task_id": task_id}, message="Refund enqueued")
    outcome = await service.process_refund(refund_id)
    result = ReconciliationResult(**outcome.to_dict())
    return success_response(data=result.model_dump(mode="json"), message="Refund processed")
