#!/usr/bin/env python3
"""Inspect and edit notifier settings, notification history and AQI statistics.

Values are JSON.

Usage::

    python scripts/settings.py show
    python scripts/settings.py set recipients '["+60123456789", "+60198765432"]'
    python scripts/settings.py set quiet_hours '{"enabled": true, "start": "22:00", "end": "07:00", "timezone": "Asia/Kuala_Lumpur"}'
    python scripts/settings.py set thresholds '{"moderate": {"notify": true}}'
    python scripts/settings.py reset rate_limit_minutes
    python scripts/settings.py history --limit 20
    python scripts/settings.py stats --days 7
"""

from __future__ import annotations

import argparse
import json
import os
import sys

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from src.alerts.classification import ClassificationTable
from src.core.config import Settings, load_settings
from src.core.logging import setup_logging
from src.monitor.factory import create_notifier_stack
from src.monitor.notifier import AqiNotifier
from src.storage.database import Database
from src.storage.history import HistoryStore
from src.storage.settings import KNOWN_KEYS, SettingsStore


def _notifier_view(settings: Settings, db: Database) -> AqiNotifier:
    """An AqiNotifier for settings and history access; its HTTP clients stay unopened."""
    return create_notifier_stack(settings, database=db).notifier


def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, fmt="console")

    table = ClassificationTable(settings.classification.levels)
    with Database(settings.storage.database_path) as db:
        store = SettingsStore(db)
        history = HistoryStore(db, table)
        notifier = _notifier_view(settings, db)

        if args.command == "show":
            print(json.dumps({key: notifier.get_setting(key) for key in KNOWN_KEYS}, indent=2))
            return 0

        if args.command == "get":
            print(json.dumps(notifier.get_setting(args.key), indent=2))
            return 0

        if args.command == "set":
            try:
                value = json.loads(args.value)
            except ValueError as exc:
                print(f"❌ Value is not valid JSON: {exc}", file=sys.stderr)
                return 1
            if not notifier.update_setting(args.key, value, args.description):
                print(f"❌ Failed to update {args.key}", file=sys.stderr)
                return 1
            print(f"✅ {args.key} updated")
            return 0

        if args.command == "reset":
            return 0 if store.delete(args.key) else 1

        if args.command == "history":
            for record in history.recent_notifications(args.limit):
                print(
                    f"{record.sent_at.isoformat()}  {record.status.value:<6}"
                    f"  {record.city}  AQI {record.aqi} ({record.level})"
                    f"  → {record.recipient}"
                )
            return 0

        stats = notifier.statistics(args.days)
        print(json.dumps(stats.model_dump(mode="json", exclude={"readings"}), indent=2))
        return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage AQI notifier settings.")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default="WARNING", help="Log level override")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("show", help="Print every setting with defaults applied")
    get = sub.add_parser("get", help="Print one setting")
    get.add_argument("key")
    set_ = sub.add_parser("set", help="Store a JSON value")
    set_.add_argument("key")
    set_.add_argument("value")
    set_.add_argument("--description", default=None)
    reset = sub.add_parser("reset", help="Delete a setting so it falls back to its default")
    reset.add_argument("key")
    hist = sub.add_parser("history", help="Recent notification records")
    hist.add_argument("--limit", type=int, default=50)
    stats = sub.add_parser("stats", help="AQI statistics")
    stats.add_argument("--days", type=int, default=7)
    args = parser.parse_args()

    sys.exit(run(args))


if __name__ == "__main__":
    main()
