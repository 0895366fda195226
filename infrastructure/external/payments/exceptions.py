"""
Payment gateway errors mapped to BusinessException variants.

``PaymentRecoverableError`` marks failures worth retrying (connection drops,
rate limits); everything else from the SDK becomes ``PaymentProviderError``.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.invoicing_codes import InvoicingCode


def _provider_details(provider: str, provider_code: Optional[str], details: Optional[dict]) -> dict:
    merged = {"provider": provider}
    if provider_code is not None:
        merged["provider_code"] = provider_code
    merged.update(details or {})
    return merged


class PaymentProviderError(BusinessException):
    code = InvoicingCode.PROVIDER_ERROR
    error_type = "PaymentProviderError"

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            code=type(self).code,
            message=message,
            error_type=type(self).error_type,
            details=_provider_details(provider, provider_code, details),
        )


class PaymentRecoverableError(PaymentProviderError):
    code = InvoicingCode.PROVIDER_RECOVERABLE
    error_type = "PaymentRecoverableError"


class PaymentSignatureError(BusinessException):
    """Webhook payload failed signature verification or was malformed."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            code=InvoicingCode.SIGNATURE_ERROR,
            message=message,
            error_type="PaymentSignatureError",
            details=_provider_details(provider, None, details),
        )
