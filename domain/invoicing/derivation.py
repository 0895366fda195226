"""
Pure derivations from gateway snapshots to invoice and ledger shapes.

Nothing here performs IO. Both the payment path and the refund path build
their lines through :func:`derive_invoice` so the two cannot drift apart.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Sequence

from domain.invoicing.entity import (
    BillingAddress,
    CheckoutContext,
    InvoiceLine,
    InvoiceRecord,
    LedgerLine,
    LedgerRow,
    LedgerStatus,
    ProductConfig,
    ProductInfo,
    PurchasedLine,
)


MINOR_UNITS_PER_MAJOR = Decimal(100)
CENT = Decimal("0.01")
DEFAULT_SHEET_NAME = "Sheet1"
DEFAULT_SERVICE_FEE_LABEL = "Szervizdíj {rate}% ÁFA"


def _parse_decimal(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None:
        return None
    text = str(raw).strip().replace(",", ".")
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def parse_tax_rate(raw: Optional[str], default: Decimal) -> tuple[Decimal, Optional[str]]:
    """Return ``(rate, fallback_reason)``; reason is None when ``raw`` was usable."""
    if raw is None or not str(raw).strip():
        return default, "missing"
    value = _parse_decimal(raw)
    if value is None or value < 0:
        return default, f"invalid:{raw!r}"
    return value, None


def resolve_product_config(product: ProductInfo, *, default_tax_rate: Decimal) -> ProductConfig:
    rate, reason = parse_tax_rate(product.tax_rate, default_tax_rate)
    fee = _parse_decimal(product.service_fee_percent)
    if fee is not None and fee <= 0:
        fee = None
    return ProductConfig(
        product_id=product.id,
        name=product.name,
        tax_rate=rate,
        tax_category=(product.tax_category or None),
        service_fee_percent=fee,
        ledger_sheet_name=(product.ledger_sheet_name or None),
        tax_rate_fallback_reason=reason,
    )


def split_gross(gross: Decimal, rate: Decimal) -> tuple[Decimal, Decimal]:
    """Split a gross amount into ``(net, tax)`` without rounding."""
    net = gross / (1 + rate / 100)
    return net, gross - net


def format_rate(rate: Decimal) -> str:
    """27 -> '27', 5.5 -> '5.5'"""
    normalized = rate.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")


def to_major(amount: Decimal | int) -> Decimal:
    """Minor units to major units, rounded to cents. Formatting boundary only."""
    return (Decimal(amount) / MINOR_UNITS_PER_MAJOR).quantize(CENT)


def derive_invoice_lines(
    line: PurchasedLine,
    config: ProductConfig,
    *,
    fee_label: str = DEFAULT_SERVICE_FEE_LABEL,
) -> list[InvoiceLine]:
    gross = Decimal(line.amount)
    quantity = line.quantity or 1
    if config.service_fee_percent is None:
        return [
            InvoiceLine(
                product_id=config.product_id,
                name=config.name,
                quantity=quantity,
                amount=gross,
                tax_rate=config.tax_rate,
                tax_category=config.tax_category,
            )
        ]

    base = gross / (1 + config.service_fee_percent / 100)
    fee = gross - base
    return [
        InvoiceLine(
            product_id=config.product_id,
            name=config.name,
            quantity=quantity,
            amount=base,
            tax_rate=config.tax_rate,
            tax_category=config.tax_category,
        ),
        InvoiceLine(
            product_id=f"{config.product_id}_service_fee",
            name=fee_label.format(rate=format_rate(config.tax_rate)),
            quantity=1,
            amount=fee,
            tax_rate=config.tax_rate,
            tax_category=config.tax_category,
            is_service_fee=True,
        ),
    ]


def derive_ledger_line(line: PurchasedLine, config: ProductConfig) -> LedgerLine:
    return LedgerLine(
        product_name=config.name,
        quantity=line.quantity or 1,
        amount=Decimal(line.amount),
        tax_rate=config.tax_rate,
    )


def map_billing_address(
    context: CheckoutContext,
    *,
    postal_code_field: str,
    city_field: str,
    address_field: str,
    country: str,
) -> BillingAddress:
    return BillingAddress(
        name=context.customer.name,
        email=context.customer.email,
        postal_code=context.field_value(postal_code_field),
        city=context.field_value(city_field),
        address=context.field_value(address_field),
        country=country,
    )


@dataclass(frozen=True)
class DerivedInvoice:
    record: InvoiceRecord
    ledger_lines: tuple[LedgerLine, ...]
    sheet_name: str

    def ledger_rows(self, *, status: LedgerStatus, invoice_number: Optional[str] = None) -> list[LedgerRow]:
        address = self.record.billing_address
        return [
            LedgerRow(
                date=self.record.reference_date,
                customer_name=address.name,
                email=address.email,
                amount=item.amount,
                product_name=item.product_name,
                quantity=item.quantity,
                tax_rate=item.tax_rate,
                address=address.one_line,
                status=status,
                payment_id=self.record.payment_id,
                invoice_number=invoice_number,
            )
            for item in self.ledger_lines
        ]


def derive_invoice(
    *,
    payment_id: str,
    currency: str,
    total: int,
    reference_date: date,
    billing_address: BillingAddress,
    lines: Sequence[PurchasedLine],
    configs: Sequence[ProductConfig],
    fee_label: str = DEFAULT_SERVICE_FEE_LABEL,
    default_sheet_name: str = DEFAULT_SHEET_NAME,
) -> DerivedInvoice:
    """Assemble the invoice record and ledger lines; ``configs`` pairs with ``lines``."""
    if len(lines) != len(configs):
        raise ValueError("each purchased line needs exactly one product config")

    invoice_lines: list[InvoiceLine] = []
    ledger_lines: list[LedgerLine] = []
    for line, config in zip(lines, configs):
        invoice_lines.extend(derive_invoice_lines(line, config, fee_label=fee_label))
        ledger_lines.append(derive_ledger_line(line, config))

    # The first product decides which sheet the whole payment lands on
    sheet_name = (configs[0].ledger_sheet_name if configs else None) or default_sheet_name

    record = InvoiceRecord(
        payment_id=payment_id,
        billing_address=billing_address,
        currency=currency.upper(),
        total=total,
        lines=tuple(invoice_lines),
        reference_date=reference_date,
    )
    return DerivedInvoice(record=record, ledger_lines=tuple(ledger_lines), sheet_name=sheet_name)
