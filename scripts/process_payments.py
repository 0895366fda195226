#!/usr/bin/env python3
"""Replay the invoicing workflow for given payment (or refund) ids.

Usage (from the repository root)::

    python -m scripts.process_payments pi_123 pi_456
    python -m scripts.process_payments --refund re_789
    python -m scripts.process_payments --enqueue pi_123

Ids are processed one after another in this process; exit status is non-zero
when any of them failed. With ``--enqueue`` they are pushed to the Celery
queue instead.
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Callable, Optional, Sequence

from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger


logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue invoices (or storno invoices) for gateway payments")
    parser.add_argument("ids", nargs="+", help="payment intent ids, or refund ids with --refund")
    parser.add_argument("--refund", action="store_true", help="treat ids as refund ids and issue storno invoices")
    parser.add_argument("--enqueue", action="store_true", help="schedule Celery tasks instead of processing inline")
    return parser


async def process_ids(
    service: ReconciliationService,
    ids: Sequence[str],
    *,
    refund: bool = False,
) -> list[tuple[str, bool, str]]:
    """Process ids sequentially; one failure does not stop the rest."""
    report: list[tuple[str, bool, str]] = []
    for item in ids:
        try:
            outcome = await (service.process_refund(item) if refund else service.process_payment(item))
        except Exception as exc:  # noqa: BLE001
            logger.error("manual_replay_failed", id=item, refund=refund, error=str(exc))
            report.append((item, False, f"{type(exc).__name__}: {exc}"))
            continue
        detail = outcome.action.value
        if outcome.invoice_number:
            detail += f" {outcome.invoice_number}"
        if outcome.reason:
            detail += f" ({outcome.reason.value})"
        if not outcome.mirror.ok and outcome.mirror.error:
            detail += f" [ledger: {outcome.mirror.error}]"
        report.append((item, True, detail))
    return report


async def _run_inline(ids: Sequence[str], refund: bool, factory: Callable[[], ReconciliationService]):
    service = factory()
    try:
        return await process_ids(service, ids, refund=refund)
    finally:
        await service.aclose()


def _enqueue(ids: Sequence[str], refund: bool) -> list[tuple[str, bool, str]]:
    from infrastructure.tasks.utils.dispatcher import TaskDispatcher

    dispatcher = TaskDispatcher()
    report = []
    for item in ids:
        task_id = dispatcher.enqueue_refund(item) if refund else dispatcher.enqueue_payment(item)
        report.append((item, True, f"enqueued {task_id}"))
    return report


def main(
    argv: Optional[Sequence[str]] = None,
    service_factory: Optional[Callable[[], ReconciliationService]] = None,
) -> int:
    args = build_parser().parse_args(argv)
    if args.enqueue:
        report = _enqueue(args.ids, args.refund)
    else:
        if service_factory is None:
            from infrastructure.bootstrap import build_reconciliation_service
            service_factory = build_reconciliation_service
        report = asyncio.run(_run_inline(args.ids, args.refund, service_factory))

    failures = 0
    for item, ok, detail in report:
        print(f"{'OK ' if ok else 'ERR'} {item}: {detail}")
        failures += 0 if ok else 1
    if failures:
        print(f"{failures} of {len(report)} failed", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
