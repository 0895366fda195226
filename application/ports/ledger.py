"""
Ledger port: the human-auditable mirror of invoicing outcomes.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from domain.invoicing.entity import LedgerRow, LedgerStatus


@runtime_checkable
class Ledger(Protocol):
    async def row_exists(self, payment_id: str, sheet: str) -> bool: ...

    async def append_row(self, row: LedgerRow, sheet: str) -> None: ...

    async def update_status(
        self,
        payment_id: str,
        invoice_number: Optional[str],
        status: LedgerStatus,
        sheet: str,
    ) -> int:
        """Update every row carrying ``payment_id``; return how many were touched."""
        ...
