"""Invoicing domain: gateway snapshots, derived invoice/ledger shapes, outcomes."""
