"""
Invoicing domain entities.

Snapshots of gateway state (payments, refunds, checkout contexts, products)
plus the invoice and ledger shapes derived from them. Amounts are kept in
minor currency units; ``Decimal`` is used wherever a derivation can produce
fractions so that rounding only happens when a value is formatted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional


INVOICE_NUMBER_MARKER = "invoice_number"
REFUND_INVOICE_NUMBER_MARKER = "refund_invoice_number"


class LedgerStatus(str, Enum):
    """Ledger row lifecycle"""
    PENDING = "Pending"
    ISSUED = "Issued"
    CANCELLED = "Cancelled"
    ERROR = "Error"


@dataclass(frozen=True)
class PurchasedLine:
    product_id: str
    quantity: int
    amount: int  # gross, minor units


@dataclass(frozen=True)
class PaymentEvent:
    """Succeeded payment as currently stored by the gateway.

    ``metadata`` is a snapshot of the gateway-side metadata bag taken at fetch
    time; the bag itself lives on the gateway record.
    """

    id: str
    amount: int
    currency: str
    created: datetime
    metadata: Mapping[str, str] = field(default_factory=dict)
    lines: tuple[PurchasedLine, ...] = ()
    status: Optional[str] = None

    @property
    def invoice_number(self) -> Optional[str]:
        return self.metadata.get(INVOICE_NUMBER_MARKER) or None

    @property
    def refund_invoice_number(self) -> Optional[str]:
        return self.metadata.get(REFUND_INVOICE_NUMBER_MARKER) or None

    @property
    def created_date(self) -> date:
        created = self.created
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created.astimezone(timezone.utc).date()


@dataclass(frozen=True)
class RefundEvent:
    id: str
    amount: int
    currency: str
    payment_id: str


@dataclass(frozen=True)
class CustomField:
    key: str
    value: str = ""


@dataclass(frozen=True)
class CustomerIdentity:
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class CheckoutContext:
    """Checkout session that produced a payment: purchased lines and buyer input."""

    id: str
    lines: tuple[PurchasedLine, ...]
    customer: CustomerIdentity = field(default_factory=CustomerIdentity)
    custom_fields: tuple[CustomField, ...] = ()

    def has_field(self, key: str) -> bool:
        return any(f.key == key for f in self.custom_fields)

    def field_value(self, key: str) -> str:
        for f in self.custom_fields:
            if f.key == key:
                return f.value
        return ""


@dataclass(frozen=True)
class ProductInfo:
    """Product as returned by the gateway; tax values are raw, unparsed strings."""

    id: str
    name: str
    tax_rate: Optional[str] = None
    tax_category: Optional[str] = None
    service_fee_percent: Optional[str] = None
    ledger_sheet_name: Optional[str] = None


@dataclass(frozen=True)
class ProductConfig:
    """Declarative per-product invoicing configuration, resolved once per fetch."""

    product_id: str
    name: str
    tax_rate: Decimal
    tax_category: Optional[str] = None
    service_fee_percent: Optional[Decimal] = None
    ledger_sheet_name: Optional[str] = None
    # Set when tax_rate came from the configured fallback
    tax_rate_fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class BillingAddress:
    name: str
    email: str
    postal_code: str
    city: str
    address: str
    country: str

    @property
    def one_line(self) -> str:
        return f"{self.postal_code} {self.city}, {self.address}"


@dataclass(frozen=True)
class InvoiceLine:
    product_id: str
    name: str
    quantity: int
    amount: Decimal  # gross, minor units, unrounded
    tax_rate: Decimal
    tax_category: Optional[str] = None
    is_service_fee: bool = False

    @property
    def net_amount(self) -> Decimal:
        return self.amount / (1 + self.tax_rate / 100)

    @property
    def tax_amount(self) -> Decimal:
        return self.amount - self.net_amount

    @property
    def unit_net_amount(self) -> Decimal:
        return self.net_amount / self.quantity


@dataclass(frozen=True)
class LedgerLine:
    """One ledger entry per purchased line; never split by service fee."""

    product_name: str
    quantity: int
    amount: Decimal  # gross, minor units
    tax_rate: Decimal


@dataclass(frozen=True)
class InvoiceRecord:
    payment_id: str
    billing_address: BillingAddress
    currency: str
    total: int  # minor units
    lines: tuple[InvoiceLine, ...]
    reference_date: date

    @property
    def customer_name(self) -> str:
        return self.billing_address.name

    @property
    def customer_email(self) -> str:
        return self.billing_address.email

    @property
    def is_advance(self) -> bool:
        return any(line.is_service_fee for line in self.lines)


@dataclass(frozen=True)
class LedgerRow:
    date: date
    customer_name: str
    email: str
    amount: Decimal  # gross, minor units
    product_name: str
    quantity: int
    tax_rate: Decimal
    address: str
    status: LedgerStatus
    payment_id: str
    invoice_number: Optional[str] = None
