"""
Számla Agent XML request bodies for invoices and storno invoices.

Amounts arrive unrounded in minor units; this is the formatting boundary
where they are rounded to two decimals of the major unit.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
import xml.etree.ElementTree as ET

from core.settings import SzamlazzSettings
from domain.invoicing.derivation import format_rate, to_major
from domain.invoicing.entity import InvoiceLine, InvoiceRecord


INVOICE_NS = "http://www.szamlazz.hu/xmlszamla"
INVOICE_XSD = "https://www.szamlazz.hu/szamla/docs/xsds/agent/xmlszamla.xsd"
STORNO_NS = "http://www.szamlazz.hu/xmlszamlast"
STORNO_XSD = "https://www.szamlazz.hu/szamla/docs/xsds/agentst/xmlszamlast.xsd"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

RESPONSE_VERSION = "1"
CENT = Decimal("0.01")


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def _root(tag: str, namespace: str, xsd: str) -> ET.Element:
    return ET.Element(
        tag,
        {
            "xmlns": namespace,
            "xmlns:xsi": XSI_NS,
            "xsi:schemaLocation": f"{namespace} {xsd}",
        },
    )


def _children(parent: ET.Element, tag: str, values: list[tuple[str, str]]) -> ET.Element:
    node = ET.SubElement(parent, tag)
    for name, value in values:
        ET.SubElement(node, name).text = value
    return node


def _settings_block(root: ET.Element, cfg: SzamlazzSettings) -> None:
    _children(
        root,
        "beallitasok",
        [
            ("szamlaagentkulcs", cfg.agent_key or ""),
            ("eszamla", _flag(cfg.e_invoice)),
            ("szamlaLetoltes", "false"),
            ("valaszVerzio", RESPONSE_VERSION),
        ],
    )


def _item(parent: ET.Element, line: InvoiceLine) -> None:
    gross = to_major(line.amount)
    net = to_major(line.net_amount)
    unit_net = (line.unit_net_amount / 100).quantize(CENT)
    _children(
        parent,
        "tetel",
        [
            ("megnevezes", line.name),
            ("mennyiseg", str(line.quantity)),
            ("mennyisegiEgyseg", "db"),
            ("nettoEgysegar", _money(unit_net)),
            ("afakulcs", line.tax_category or format_rate(line.tax_rate)),
            ("nettoErtek", _money(net)),
            # Derived from the rounded values so net + tax == gross on the document
            ("afaErtek", _money(gross - net)),
            ("bruttoErtek", _money(gross)),
        ],
    )


def build_invoice_xml(record: InvoiceRecord, cfg: SzamlazzSettings, *, issue_date: date) -> bytes:
    root = _root("xmlszamla", INVOICE_NS, INVOICE_XSD)
    _settings_block(root, cfg)
    reference = record.reference_date.isoformat()
    _children(
        root,
        "fejlec",
        [
            ("keltDatum", issue_date.isoformat()),
            ("teljesitesDatum", reference),
            ("fizetesiHataridoDatum", reference),
            ("fizmod", cfg.payment_method),
            ("penznem", record.currency.upper()),
            ("szamlaNyelve", cfg.language),
            ("elolegszamla", _flag(record.is_advance)),
            ("fizetve", "true"),
        ],
    )
    _children(root, "elado", [("bank", cfg.bank), ("bankszamlaszam", cfg.bank_account)])
    address = record.billing_address
    _children(
        root,
        "vevo",
        [
            ("nev", address.name),
            ("irsz", address.postal_code),
            ("telepules", address.city),
            ("cim", address.address),
            ("email", address.email),
            ("sendEmail", "true"),
            ("adoalany", "-1"),
        ],
    )
    items = ET.SubElement(root, "tetelek")
    for line in record.lines:
        _item(items, line)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def build_storno_xml(
    record: InvoiceRecord,
    cfg: SzamlazzSettings,
    original_invoice_number: str,
    *,
    issue_date: date,
) -> bytes:
    root = _root("xmlszamlast", STORNO_NS, STORNO_XSD)
    _settings_block(root, cfg)
    _children(
        root,
        "fejlec",
        [
            ("szamlaszam", original_invoice_number),
            ("keltDatum", issue_date.isoformat()),
            ("teljesitesDatum", record.reference_date.isoformat()),
            ("tipus", "SS"),
        ],
    )
    _children(
        root,
        "elado",
        [
            ("emailReplyto", cfg.issuer_email),
            ("emailTargy", cfg.storno_email_subject),
            ("emailSzoveg", cfg.storno_email_body),
        ],
    )
    _children(root, "vevo", [("email", record.billing_address.email)])
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
