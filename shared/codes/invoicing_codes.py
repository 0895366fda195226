"""
Invoicing workflow codes and payment-provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class InvoicingCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Payment provider errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002

    # Invoicing service errors (61xxx)
    ISSUER_ERROR = 61000
    ISSUER_RESPONSE_INVALID = 61001

    # Ledger errors (62xxx)
    LEDGER_ERROR = 62000
    LEDGER_ROW_NOT_FOUND = 62001

    # Workflow data errors (63xxx)
    CHECKOUT_CONTEXT_MISSING = 63000
    LINE_ITEMS_MISSING = 63001
    CONCURRENT_PROCESSING = 63002
    MARKER_WRITE_FAILED = 63003


# Provider→internal payment status mapping (extend per needs)
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "requires_payment_method": "failed",
        "requires_confirmation": "pending",
        "requires_action": "pending",
        "processing": "pending",
        "requires_capture": "pending",
        "succeeded": "succeeded",
        "canceled": "canceled",
    },
}
