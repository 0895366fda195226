"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.invoicing_codes import InvoicingCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class CheckoutContextMissingException(BusinessException):
    """A refund points at a payment whose checkout context cannot be found."""

    def __init__(self, payment_id: str):
        super().__init__(
            code=InvoicingCode.CHECKOUT_CONTEXT_MISSING,
            message=f"No checkout context found for payment {payment_id}",
            error_type="CheckoutContextMissing",
            details={"payment_id": payment_id},
        )


class LineItemsMissingException(BusinessException):
    def __init__(self, payment_id: str):
        super().__init__(
            code=InvoicingCode.LINE_ITEMS_MISSING,
            message=f"No line items found for payment {payment_id}",
            error_type="LineItemsMissing",
            details={"payment_id": payment_id},
        )


class ConcurrentProcessingException(BusinessException):
    """Another invocation holds the claim for the same payment (strict mode)."""

    def __init__(self, payment_id: str, operation: str):
        super().__init__(
            code=InvoicingCode.CONCURRENT_PROCESSING,
            message=f"{operation} for payment {payment_id} is already in progress",
            error_type="ConcurrentProcessing",
            details={"payment_id": payment_id, "operation": operation},
        )


class MarkerWriteException(BusinessException):
    """The document was issued but its idempotency marker could not be stored.

    Carries the issued number so the duplicate-risk can be reconciled by hand.
    """

    def __init__(self, payment_id: str, marker: str, invoice_number: str, reason: str):
        super().__init__(
            code=InvoicingCode.MARKER_WRITE_FAILED,
            message=f"Issued {invoice_number} but failed to store marker {marker} on {payment_id}: {reason}",
            error_type="MarkerWriteFailed",
            details={"payment_id": payment_id, "marker": marker, "invoice_number": invoice_number},
        )
