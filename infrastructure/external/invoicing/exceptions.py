"""
Invoicing service errors.

``InvoiceIssuerError`` means the call failed (network, authentication, or an
error reported by the service). Its ``may_have_issued`` flag is set when the
request was sent but no answer arrived, e.g. a read timeout.
``InvoiceResponseError`` means the call returned but no invoice number could
be read from the response. In both of those cases a document may exist
remotely, so they must not be retried blindly.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.invoicing_codes import InvoicingCode


class InvoiceIssuerError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        provider: str,
        kind: str = "service",
        may_have_issued: bool = False,
        status_code: Optional[int] = None,
        provider_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.kind = kind
        self.may_have_issued = may_have_issued
        full_details = {
            "provider": provider,
            "kind": kind,
            "may_have_issued": may_have_issued,
            "status_code": status_code,
            "provider_code": provider_code,
        }
        if details:
            full_details.update(details)
        super().__init__(
            code=InvoicingCode.ISSUER_ERROR,
            message=message,
            error_type="InvoiceIssuerError",
            details=full_details,
        )


class InvoiceResponseError(BusinessException):
    def __init__(self, message: str, *, provider: str, preview: str = "", details: Optional[dict] = None):
        full_details = {"provider": provider, "preview": preview}
        if details:
            full_details.update(details)
        super().__init__(
            code=InvoicingCode.ISSUER_RESPONSE_INVALID,
            message=message,
            error_type="InvoiceResponseError",
            details=full_details,
        )
