from datetime import date
from decimal import Decimal

import pytest

from domain.invoicing.derivation import (
    derive_invoice,
    derive_invoice_lines,
    format_rate,
    map_billing_address,
    parse_tax_rate,
    resolve_product_config,
    to_major,
)
from domain.invoicing.entity import LedgerStatus, ProductInfo, PurchasedLine
from tests.invoicing.fakes import invoice_capable_context


DEFAULT_RATE = Decimal("27")


def _config(**kwargs):
    product = ProductInfo(id="prod_1", name="Belépőjegy", **kwargs)
    return resolve_product_config(product, default_tax_rate=DEFAULT_RATE)


def test_service_fee_splits_line_but_not_ledger():
    line = PurchasedLine(product_id="prod_1", quantity=1, amount=12700)
    config = _config(tax_rate="27", service_fee_percent="20")

    lines = derive_invoice_lines(line, config)

    assert len(lines) == 2
    base, fee = lines
    assert base.amount + fee.amount == Decimal(12700)
    assert fee.is_service_fee and not base.is_service_fee
    assert fee.product_id == "prod_1_service_fee"
    assert fee.name == "Szervizdíj 27% ÁFA"
    # base = gross / 1.2
    assert to_major(base.amount) == Decimal("105.83")
    assert to_major(fee.amount) == Decimal("21.17")

    context = invoice_capable_context("cs_1", (line,))
    address = map_billing_address(context, postal_code_field="irnytszm", city_field="vros", address_field="cm", country="HU")
    derived = derive_invoice(
        payment_id="pay_1",
        currency="huf",
        total=12700,
        reference_date=date(2024, 3, 15),
        billing_address=address,
        lines=[line],
        configs=[config],
    )
    rows = derived.ledger_rows(status=LedgerStatus.PENDING)
    assert len(rows) == 1
    assert rows[0].amount == Decimal(12700)
    assert derived.record.is_advance
    assert derived.record.currency == "HUF"


@pytest.mark.parametrize("gross,rate", [(12700, "27"), (999, "5"), (1, "18"), (5000, "0")])
def test_net_and_tax_consistent_with_gross(gross, rate):
    line = PurchasedLine(product_id="prod_1", quantity=3, amount=gross)
    (invoice_line,) = derive_invoice_lines(line, _config(tax_rate=rate))

    net = invoice_line.net_amount
    assert net + invoice_line.tax_amount == Decimal(gross)
    rebuilt = net * (1 + Decimal(rate) / 100)
    assert abs(rebuilt - Decimal(gross)) < Decimal("0.000001")
    assert abs(invoice_line.unit_net_amount * 3 - net) < Decimal("0.000001")


@pytest.mark.parametrize("raw,reason_prefix", [(None, "missing"), ("", "missing"), ("abc", "invalid"), ("-5", "invalid"), ("NaN", "invalid")])
def test_unusable_tax_rate_falls_back_to_default(raw, reason_prefix):
    rate, reason = parse_tax_rate(raw, DEFAULT_RATE)
    assert rate == DEFAULT_RATE
    assert reason.startswith(reason_prefix)


def test_tax_rate_accepts_decimal_comma():
    rate, reason = parse_tax_rate("5,5", DEFAULT_RATE)
    assert rate == Decimal("5.5")
    assert reason is None
    assert format_rate(rate) == "5.5"
    assert format_rate(Decimal("27.00")) == "27"


def test_non_positive_or_invalid_service_fee_is_ignored():
    assert _config(service_fee_percent="0").service_fee_percent is None
    assert _config(service_fee_percent="x").service_fee_percent is None
    assert _config(service_fee_percent="12.5").service_fee_percent == Decimal("12.5")


def test_first_product_selects_sheet():
    lines = [
        PurchasedLine(product_id="prod_a", quantity=1, amount=1000),
        PurchasedLine(product_id="prod_b", quantity=2, amount=2000),
    ]
    configs = [
        resolve_product_config(ProductInfo(id="prod_a", name="A", ledger_sheet_name="Fesztivál"), default_tax_rate=DEFAULT_RATE),
        resolve_product_config(ProductInfo(id="prod_b", name="B", ledger_sheet_name="Other"), default_tax_rate=DEFAULT_RATE),
    ]
    context = invoice_capable_context("cs_1", tuple(lines))
    address = map_billing_address(context, postal_code_field="irnytszm", city_field="vros", address_field="cm", country="HU")

    derived = derive_invoice(
        payment_id="pay_2",
        currency="HUF",
        total=3000,
        reference_date=date(2024, 3, 15),
        billing_address=address,
        lines=lines,
        configs=configs,
    )

    assert derived.sheet_name == "Fesztivál"
    assert address.one_line == "1051 Budapest, Nádor utca 7."
    assert not derived.record.is_advance


def test_mismatched_configs_rejected():
    with pytest.raises(ValueError):
        derive_invoice(
            payment_id="pay_3",
            currency="HUF",
            total=100,
            reference_date=date(2024, 1, 1),
            billing_address=None,
            lines=[PurchasedLine("p", 1, 100)],
            configs=[],
        )
