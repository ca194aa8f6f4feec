"""Run an RQ worker bound to the configured queue."""
from __future__ import annotations

from mailroom.queue.worker import run_worker
from mailroom.utils.logger import configure_logging


def run() -> None:
    """Configure logging, then block processing delivery and campaign jobs."""

    configure_logging()
    run_worker()


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
