"""
Factory for the ledger mirror; returns None when the ledger is not configured.
"""
from __future__ import annotations

from typing import Optional

from application.ports.ledger import Ledger
from core.logging_config import get_logger
from core.settings import invoicing_settings


logger = get_logger(__name__)


def get_ledger() -> Optional[Ledger]:
    cfg = invoicing_settings.ledger
    if not cfg.enabled:
        logger.info("ledger_disabled", reason="LEDGER__SPREADSHEET_ID or LEDGER__SERVICE_ACCOUNT_JSON not set")
        return None
    from .sheets_client import ServiceAccountTokenProvider, SheetsLedger
    return SheetsLedger(token_provider=ServiceAccountTokenProvider.from_json(cfg.service_account_json))
