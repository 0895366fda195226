"""
Számlázz.hu Számla Agent adapter (httpx).

Each request uploads one XML document as a multipart field. The created
invoice number comes back in the ``szlahu_szamlaszam`` header, or as a
``szlahu_szamlaszam=...`` line in the text part of the body.

Issuing is not idempotent on the remote side. Retries are therefore limited
to failures where the request provably never reached the service
(connection establishment); read timeouts are surfaced to the caller.
"""
from __future__ import annotations

from datetime import date
from typing import Callable, Optional
from urllib.parse import unquote_plus

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.logging_config import get_logger
from core.settings import HttpRetry, HttpTimeouts, SzamlazzSettings, invoicing_settings
from domain.invoicing.entity import InvoiceRecord
from infrastructure.external.invoicing.exceptions import InvoiceIssuerError, InvoiceResponseError
from infrastructure.external.invoicing.xml import build_invoice_xml, build_storno_xml


logger = get_logger(__name__)

UPLOAD_FIELD = "action-xmlagentxmlfile"
NUMBER_HEADER = "szlahu_szamlaszam"
ERROR_CODE_HEADER = "szlahu_error_code"
ERROR_HEADER = "szlahu_error"
# Agent key missing/invalid
AUTH_ERROR_CODES = {"3", "4"}


class SzamlazzIssuer:
    provider = "szamlazz"

    def __init__(
        self,
        *,
        config: Optional[SzamlazzSettings] = None,
        timeouts: Optional[HttpTimeouts] = None,
        retry: Optional[HttpRetry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.config = config or invoicing_settings.szamlazz
        if not self.config.agent_key:
            raise RuntimeError("SZAMLAZZ__AGENT_KEY not configured")
        self._timeouts = timeouts or invoicing_settings.timeouts
        self._retry = retry or invoicing_settings.retry
        self._transport = transport
        self._today = today
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._timeouts.total,
                    connect=self._timeouts.connect,
                    read=self._timeouts.read,
                    write=self._timeouts.write,
                ),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def issue(self, record: InvoiceRecord) -> str:
        body = build_invoice_xml(record, self.config, issue_date=self._today())
        number = await self._submit(body, action="issue", payment_id=record.payment_id)
        logger.info("invoice_created", provider=self.provider, payment_id=record.payment_id, invoice_number=number)
        return number

    async def cancel(self, original_invoice_number: str, record: InvoiceRecord) -> str:
        body = build_storno_xml(record, self.config, original_invoice_number, issue_date=self._today())
        number = await self._submit(body, action="cancel", payment_id=record.payment_id)
        logger.info(
            "storno_invoice_created",
            provider=self.provider,
            payment_id=record.payment_id,
            invoice_number=number,
            original_invoice_number=original_invoice_number,
        )
        return number

    async def _post(self, body: bytes) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry.max) + 1),
            wait=wait_exponential(multiplier=self._retry.base_backoff, min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            reraise=True,
        ):
            with attempt:
                return await self.client.post(
                    self.config.api_url,
                    files={UPLOAD_FIELD: ("invoice.xml", body, "text/xml")},
                )

    async def _submit(self, body: bytes, *, action: str, payment_id: str) -> str:
        try:
            response = await self._post(body)
        except httpx.HTTPError as exc:
            # Past connection setup the request may have been processed remotely
            raise InvoiceIssuerError(
                f"Invoicing service unreachable: {exc}",
                provider=self.provider,
                kind="network",
                may_have_issued=not isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)),
                details={"action": action, "payment_id": payment_id},
            ) from exc

        error_code = response.headers.get(ERROR_CODE_HEADER)
        if response.is_error or error_code:
            message = unquote_plus(response.headers.get(ERROR_HEADER, "")) or response.text[:500]
            kind = "auth" if error_code in AUTH_ERROR_CODES or response.status_code in {401, 403} else "service"
            raise InvoiceIssuerError(
                f"Invoicing service error: {message}",
                provider=self.provider,
                kind=kind,
                status_code=response.status_code,
                provider_code=error_code,
                details={"action": action, "payment_id": payment_id},
            )

        number = self._extract_number(response)
        if not number:
            preview = self._text_part(response)[:500]
            logger.error("invoice_number_missing", provider=self.provider, action=action, payment_id=payment_id, preview=preview)
            raise InvoiceResponseError(
                "Invoice number not found in response",
                provider=self.provider,
                preview=preview,
                details={"action": action, "payment_id": payment_id},
            )
        return number

    @staticmethod
    def _text_part(response: httpx.Response) -> str:
        # PDF attachments may follow the text section
        return response.content.split(b"%PDF-")[0].decode("utf-8", errors="ignore")

    def _extract_number(self, response: httpx.Response) -> Optional[str]:
        header = (response.headers.get(NUMBER_HEADER) or "").strip()
        if header:
            return header
        for line in self._text_part(response).splitlines():
            if NUMBER_HEADER in line and "=" in line:
                value = line.split("=", 1)[1].strip()
                if value:
                    return value
        return None
