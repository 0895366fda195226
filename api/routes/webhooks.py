"""
Payment gateway webhook routes.

Processing happens inline: a 2xx response means the workflow finished for
this event, anything else makes the gateway redeliver it. Redelivery is safe
because the reconciliation engine is idempotent per payment.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_reconciliation_service
from application.dtos.webhooks import PAYMENT_SUCCEEDED_EVENTS, REFUND_EVENTS, ReconciliationResult
from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger
from core.response import success_response
from infrastructure.external.payments.exceptions import PaymentProviderError

import structlog


router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


@router.post("/stripe", summary="Stripe webhook")
async def stripe_webhook(
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    raw_body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    event = service.gateway.parse_webhook(headers, raw_body)
    structlog.contextvars.bind_contextvars(event_id=event.id, event_type=event.type)
    logger.info("webhook_received", provider=event.provider)

    obj = event.object
    if event.type in PAYMENT_SUCCEEDED_EVENTS:
        outcome = await service.process_payment(str(obj["id"]))
    elif event.type == "charge.refunded":
        refund_id = await service.gateway.find_refund_id(obj)
        if not refund_id:
            raise PaymentProviderError(
                "No refund found for refunded charge",
                provider=event.provider,
                details={"charge_id": obj.get("id"), "event_id": event.id},
            )
        outcome = await service.process_refund(refund_id)
    elif event.type in REFUND_EVENTS:
        outcome = await service.process_refund(str(obj["id"]))
    else:
        logger.info("webhook_ignored", provider=event.provider)
        return success_response(
            data={"id": event.id, "type": event.type, "ignored": True},
            message="Event ignored",
        )

    result = ReconciliationResult(**outcome.to_dict())
    logger.info("webhook_processed", action=result.action, invoice_number=result.invoice_number)
    return success_response(data=result.model_dump(mode="json"), message="Event processed")
