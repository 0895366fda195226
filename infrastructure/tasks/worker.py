"""Convenience entry point for running the invoicing Celery worker.

Equivalent to ``celery -A infrastructure.tasks worker -Q invoicing,default``;
handy for local runs and Procfile-style deployments.
"""
from __future__ import annotations

import sys

from .config.celery import celery_app


def main(argv: list[str] | None = None) -> None:
    args = ["worker", "--loglevel=INFO", "--queues=invoicing,default", "--hostname=invoicing@%h"]
    celery_app.worker_main(argv=args + list(argv if argv is not None else sys.argv[1:]))


if __name__ == "__main__":
    main()
