"""
Google Sheets ledger adapter (Sheets API v4 over httpx).

Layout: one row per purchased line, columns A..K::

    date | customer | email | amount | product | quantity | tax rate |
    address | invoice number | status | payment id

Rows are joined to payments through column K; status updates rewrite
columns I..J on every matching row in a single batch request.
"""
from __future__ import annotations

import json
from typing import Any, Optional
from urllib.parse import quote

import anyio
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from core.logging_config import get_logger
from core.settings import LedgerSettings, invoicing_settings
from domain.invoicing.derivation import format_rate, to_major
from domain.invoicing.entity import LedgerRow, LedgerStatus
from infrastructure.external.api_clients.base import APIError, BaseAPIClient, TokenProvider
from infrastructure.external.ledger.exceptions import LedgerError, LedgerRowNotFoundError


logger = get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
COLUMNS = "A:K"
PAYMENT_ID_COLUMN = 10  # K, zero-based
INVOICE_COLUMNS = ("I", "J")


class ServiceAccountTokenProvider:
    """Bearer tokens from a service-account key, refreshed when expired."""

    def __init__(self, credentials: service_account.Credentials) -> None:
        self._credentials = credentials
        self._lock = anyio.Lock()

    @classmethod
    def from_json(cls, raw: str) -> "ServiceAccountTokenProvider":
        try:
            info = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise RuntimeError("LEDGER__SERVICE_ACCOUNT_JSON contains invalid JSON") from exc
        return cls(service_account.Credentials.from_service_account_info(info, scopes=SCOPES))

    async def __call__(self) -> str:
        async with self._lock:
            if not self._credentials.valid:
                # google-auth refresh is blocking
                await anyio.to_thread.run_sync(self._credentials.refresh, GoogleAuthRequest())
            return str(self._credentials.token)


class SheetsLedger(BaseAPIClient):
    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        config: Optional[LedgerSettings] = None,
        transport=None,
    ) -> None:
        self.config = config or invoicing_settings.ledger
        if not self.config.spreadsheet_id:
            raise RuntimeError("LEDGER__SPREADSHEET_ID not configured")
        timeouts = invoicing_settings.timeouts
        super().__init__(
            f"{self.config.api_url.rstrip('/')}/{self.config.spreadsheet_id}",
            timeout=timeouts.total,
            max_retries=invoicing_settings.retry.max,
            retry_delay=invoicing_settings.retry.base_backoff,
            token_provider=token_provider,
            transport=transport,
        )

    @staticmethod
    def _range(sheet: str, cells: str = COLUMNS) -> str:
        return f"{sheet}!{cells}"

    def _values_endpoint(self, sheet: str, cells: str = COLUMNS) -> str:
        return f"values/{quote(self._range(sheet, cells), safe='!:')}"

    def _label(self, status: LedgerStatus) -> str:
        return self.config.status_labels.get(status.value, status.value)

    def _serialize(self, row: LedgerRow) -> list[Any]:
        return [
            row.date.isoformat(),
            row.customer_name,
            row.email,
            f"{to_major(row.amount):.2f}",
            row.product_name,
            row.quantity,
            f"{format_rate(row.tax_rate)}%",
            row.address,
            row.invoice_number or "",
            self._label(row.status),
            row.payment_id,
        ]

    async def _rows(self, sheet: str) -> list[list[Any]]:
        try:
            response = await self.get(self._values_endpoint(sheet))
        except APIError as exc:
            raise LedgerError(f"Failed to read sheet: {exc}", sheet=sheet) from exc
        return (response.json() or {}).get("values") or []

    async def _matching_row_numbers(self, payment_id: str, sheet: str) -> list[int]:
        rows = await self._rows(sheet)
        return [
            index + 1  # 1-based sheet rows
            for index, row in enumerate(rows)
            if len(row) > PAYMENT_ID_COLUMN and row[PAYMENT_ID_COLUMN] == payment_id
        ]

    async def row_exists(self, payment_id: str, sheet: str) -> bool:
        return bool(await self._matching_row_numbers(payment_id, sheet))

    async def append_row(self, row: LedgerRow, sheet: str) -> None:
        try:
            await self.post(
                f"{self._values_endpoint(sheet)}:append",
                params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
                json_data={"values": [self._serialize(row)]},
                # Appends are not idempotent: never retry after the request was sent
                idempotent=False,
            )
        except APIError as exc:
            raise LedgerError(f"Failed to append row: {exc}", sheet=sheet, details={"payment_id": row.payment_id}) from exc
        logger.debug("ledger_row_appended", payment_id=row.payment_id, sheet=sheet, status=row.status.value)

    async def update_status(
        self,
        payment_id: str,
        invoice_number: Optional[str],
        status: LedgerStatus,
        sheet: str,
    ) -> int:
        row_numbers = await self._matching_row_numbers(payment_id, sheet)
        if not row_numbers:
            raise LedgerRowNotFoundError(payment_id, sheet)
        first, last = INVOICE_COLUMNS
        data = [
            {
                "range": self._range(sheet, f"{first}{n}:{last}{n}"),
                "values": [[invoice_number or "", self._label(status)]],
            }
            for n in row_numbers
        ]
        try:
            await self.post(
                "values:batchUpdate",
                json_data={"valueInputOption": "USER_ENTERED", "data": data},
            )
        except APIError as exc:
            raise LedgerError(f"Failed to update rows: {exc}", sheet=sheet, details={"payment_id": payment_id}) from exc
        logger.debug("ledger_rows_status_updated", payment_id=payment_id, sheet=sheet, rows=len(row_numbers), status=status.value)
        return len(row_numbers)
