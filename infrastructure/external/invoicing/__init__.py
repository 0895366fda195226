"""
Factory for invoice issuer clients.
"""
from __future__ import annotations

from typing import Optional

from application.ports.invoice_issuer import InvoiceIssuer


def get_invoice_issuer(provider: Optional[str] = None) -> InvoiceIssuer:
    name = (provider or "szamlazz").lower()
    if name in {"szamlazz", "szamlazz.hu"}:
        from .szamlazz_client import SzamlazzIssuer
        return SzamlazzIssuer()
    raise ValueError(f"Unsupported invoicing provider: {name}")
