"""
Ledger (spreadsheet mirror) errors.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.invoicing_codes import InvoicingCode


class LedgerError(BusinessException):
    def __init__(self, message: str, *, sheet: Optional[str] = None, details: Optional[dict] = None):
        full_details = {"sheet": sheet}
        if details:
            full_details.update(details)
        super().__init__(
            code=InvoicingCode.LEDGER_ERROR,
            message=message,
            error_type="LedgerError",
            details=full_details,
        )


class LedgerRowNotFoundError(BusinessException):
    def __init__(self, payment_id: str, sheet: str):
        super().__init__(
            code=InvoicingCode.LEDGER_ROW_NOT_FOUND,
            message=f"Payment {payment_id} not found in sheet {sheet}",
            error_type="LedgerRowNotFound",
            details={"payment_id": payment_id, "sheet": sheet},
        )
