"""Pytest bootstrap configuration.

Ensure integration settings are populated before test collection and module
imports that instantiate settings at import time.
"""
import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("STRIPE__SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE__WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("SZAMLAZZ__AGENT_KEY", "agent-key-test")
# Ledger stays disabled unless a test builds SheetsLedger explicitly
os.environ.pop("LEDGER__SPREADSHEET_ID", None)
os.environ.pop("LEDGER__SERVICE_ACCOUNT_JSON", None)
