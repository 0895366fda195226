"""
Per-invocation outcome of the reconciliation workflow.

The authoritative channel (invoicing service + idempotency marker) and the
mirror channel (ledger) fail differently, so each invocation reports them
separately.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class ReconciliationAction(str, Enum):
    ISSUED = "issued"
    CANCELLED = "cancelled"
    ALREADY_PROCESSED = "already_processed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    NO_CHECKOUT_CONTEXT = "no_checkout_context"
    NOT_INVOICE_CAPABLE = "missing_billing_field"
    NOT_INVOICED = "payment_not_invoiced"


class StepStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    status: StepStatus = StepStatus.SKIPPED
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.OK

    @classmethod
    def success(cls) -> "StepResult":
        return cls(StepStatus.OK)

    @classmethod
    def failure(cls, error: str) -> "StepResult":
        return cls(StepStatus.FAILED, error)


@dataclass
class ReconciliationOutcome:
    action: ReconciliationAction
    payment_id: str
    refund_id: Optional[str] = None
    reason: Optional[SkipReason] = None
    invoice_number: Optional[str] = None
    authoritative: StepResult = field(default_factory=StepResult)
    mirror: StepResult = field(default_factory=StepResult)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["reason"] = self.reason.value if self.reason else None
        data["authoritative"]["status"] = self.authoritative.status.value
        data["mirror"]["status"] = self.mirror.status.value
        return data
