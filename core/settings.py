"""
Integration settings (payment gateway, invoicing service, ledger, workflow)
using pydantic-settings v2 with nested env keys.

This module is isolated so core.config.Settings stays application-level only.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator


class HttpTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 20.0
    write: float = 10.0
    total: float = 30.0


class HttpRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = 300


class SzamlazzSettings(BaseModel):
    agent_key: Optional[str] = None
    api_url: str = "https://www.szamlazz.hu/szamla/"
    e_invoice: bool = False
    issuer_email: str = ""
    bank: str = ""
    bank_account: str = ""
    language: str = "hu"
    payment_method: str = "Paylink"
    storno_email_subject: str = "Sztornó számla"
    storno_email_body: str = "Tisztelt Ügyfelünk! Mellékeljük sztornó számláját."


class LedgerSettings(BaseModel):
    spreadsheet_id: Optional[str] = None
    service_account_json: Optional[str] = None
    default_sheet: str = "Sheet1"
    api_url: str = "https://sheets.googleapis.com/v4/spreadsheets"
    status_labels: dict[str, str] = Field(
        default_factory=lambda: {
            "Pending": "Függőben",
            "Issued": "Kiállítva",
            "Cancelled": "Sztornózva",
            "Error": "Hiba",
        }
    )

    @property
    def enabled(self) -> bool:
        return bool(self.spreadsheet_id and self.service_account_json)


class ReconciliationSettings(BaseModel):
    default_tax_rate: Decimal = Decimal("27")
    # Custom checkout fields; the postal code field marks an invoice-capable flow
    postal_code_field: str = "irnytszm"
    city_field: str = "vros"
    address_field: str = "cm"
    country: str = "HU"
    service_fee_label: str = "Szervizdíj {rate}% ÁFA"
    marker_mode: Literal["best_effort", "strict"] = "best_effort"

    @field_validator("default_tax_rate")
    @classmethod
    def _non_negative_rate(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v < 0:
            raise ValueError("default_tax_rate must be a finite, non-negative number")
        return v


class InvoicingSettings(BaseSettings):
    timeouts: HttpTimeouts = Field(default_factory=HttpTimeouts)
    retry: HttpRetry = Field(default_factory=HttpRetry)

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    szamlazz: SzamlazzSettings = Field(default_factory=SzamlazzSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


invoicing_settings = InvoicingSettings()
