#!/usr/bin/env python3
"""Daemon entrypoint — runs AQI checks on a fixed interval until interrupted.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import structlog

from src.core.config import load_settings
from src.core.logging import setup_logging
from src.monitor.factory import create_notifier_stack, create_scheduler

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start the scheduler and run until SIGINT/SIGTERM."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    logger.info(
        "notifier_starting",
        city=settings.scheduler.city or settings.waqi.default_city,
        interval_minutes=settings.scheduler.interval_minutes,
        session=settings.waha.session_name,
    )

    stack = create_notifier_stack(settings)
    scheduler = create_scheduler(stack, settings)

    session = await stack.notifier.delivery.session_status()
    if not session.ready:
        logger.warning(
            "whatsapp_session_not_ready",
            status=session.status.value,
            error=session.error,
        )

    await scheduler.start()

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("notifier_shutting_down")
    await scheduler.stop()
    await stack.close()

    logger.info(
        "notifier_stopped",
        cycles_run=scheduler.cycles_run,
        cycles_skipped=scheduler.cycles_skipped,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run periodic AQI checks and WhatsApp notifications.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
