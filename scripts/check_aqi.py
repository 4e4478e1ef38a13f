#!/usr/bin/env python3
"""Run one AQI check-and-notify cycle and print a summary.

Meant for cron-style schedulers and manual runs. Exit code is 0 when the
cycle completed (including "no notification needed") and 1 when fetching
failed, no recipients were configured or an unexpected error occurred.

The caller must make sure two invocations never overlap (for example
``flock -n /tmp/aqi-check.lock python scripts/check_aqi.py``).

Usage::

    # Check the default city
    python scripts/check_aqi.py

    # Another city, bypassing quiet hours / level flags / rate limit
    python scripts/check_aqi.py --city singapore --force

    # Custom config file
    python scripts/check_aqi.py --config config/settings.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

import structlog

from src.alerts.classification import ClassificationTable
from src.core.config import load_settings
from src.core.logging import setup_logging
from src.monitor.factory import create_notifier_stack
from src.monitor.formatters import TIME_FORMAT
from src.monitor.types import CycleReport

logger = structlog.get_logger(__name__)


def _short(recipient: str) -> str:
    return recipient[:8] + "..." if len(recipient) > 8 else recipient


def render_report(report: CycleReport) -> list[str]:
    """Human-readable lines describing a cycle report."""
    if not report.success:
        lines = [f"❌ AQI check failed: {report.message}"]
    else:
        lines = []

    reading = report.reading
    if reading is not None:
        lines.append("")
        lines.append(f"📍 City: {reading.city}")
        lines.append(f"📊 Current AQI: {reading.aqi}")
        lines.append(f"🎯 Level: {ClassificationTable.display_name(reading.level)}")
        if reading.observed_at is not None:
            lines.append(f"🕐 Reading Time: {reading.observed_at.strftime(TIME_FORMAT)}")
        if reading.temperature is not None:
            lines.append(f"🌡️ Temperature: {reading.temperature}°C")
        if reading.humidity is not None:
            lines.append(f"💧 Humidity: {reading.humidity}%")

    if not report.success:
        return lines

    if report.deliveries:
        lines.append("")
        lines.append("📱 Notifications sent:")
        for delivery in report.deliveries:
            status = "✅" if delivery.success else "❌"
            lines.append(f"  {status} {_short(delivery.recipient)}")
            if not delivery.success and delivery.error:
                lines.append(f"    Error: {delivery.error}")
    else:
        reason = report.verdict.detail if report.verdict is not None else ""
        suffix = f" ({reason})" if reason else ""
        lines.append(f"ℹ️ No notifications were sent{suffix}")

    lines.append("")
    lines.append("✅ AQI check completed successfully")
    return lines


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    print("🌬️ Starting AQI check...")

    stack = create_notifier_stack(settings)
    try:
        report = await stack.notifier.run_cycle(city=args.city, force=args.force)
    except Exception as exc:
        logger.exception("check_unexpected_error")
        print(f"💥 Unexpected error: {exc}", file=sys.stderr)
        return 1
    finally:
        await stack.close()

    for line in render_report(report):
        print(line)

    return 0 if report.success else 1


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Check current AQI levels and send notifications if needed.",
    )
    parser.add_argument(
        "--city",
        default=None,
        help="City to check (default: waqi.default_city from config)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Force notification regardless of quiet hours, thresholds and rate limit",
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
