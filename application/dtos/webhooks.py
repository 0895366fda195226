"""
Inbound trigger DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict


# Gateway event types that trigger the workflow
PAYMENT_SUCCEEDED_EVENTS = {"payment_intent.succeeded"}
REFUND_EVENTS = {"charge.refunded", "refund.created"}


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    # raw fields for traceability (optional)
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @property
    def object(self) -> dict[str, Any]:
        return self.data.get("object") or {}


class ReconciliationResult(BaseModel):
    """Serializable view of a ReconciliationOutcome for API/task responses."""

    action: str
    payment_id: str
    refund_id: Optional[str] = None
    reason: Optional[str] = None
    invoice_number: Optional[str] = None
    authoritative: dict[str, Any]
    mirror: dict[str, Any]
