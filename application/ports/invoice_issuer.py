"""
Invoice issuer port.

Both operations are non-idempotent on the remote side: every successful
call creates a new fiscal document.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.invoicing.entity import InvoiceRecord


@runtime_checkable
class InvoiceIssuer(Protocol):
    provider: str

    async def issue(self, record: InvoiceRecord) -> str:
        """Create an invoice and return its number."""
        ...

    async def cancel(self, original_invoice_number: str, record: InvoiceRecord) -> str:
        """Create a cancellation (storno) invoice and return its number."""
        ...
