#!/usr/bin/env python3
"""WhatsApp session management — status, start/stop/restart, QR pairing, test message.

Usage::

    python scripts/whatsapp.py status
    python scripts/whatsapp.py restart
    python scripts/whatsapp.py qr --output qr.png
    python scripts/whatsapp.py test +60 12-345 6789
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import binascii
import json
import os
import sys

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from src.core.config import load_settings
from src.core.logging import setup_logging
from src.monitor.delivery import DeliveryEngine
from src.waha.client import WahaClient


async def _qr(engine: DeliveryEngine, output: str | None) -> int:
    qr = await engine.qr_code()
    if not qr.success or not qr.image:
        print(f"❌ Failed to get QR code: {qr.error}", file=sys.stderr)
        return 1
    if output is None:
        print(qr.image)
        return 0
    try:
        payload = base64.b64decode(qr.image.split(",", 1)[-1])
    except (binascii.Error, ValueError) as exc:
        print(f"❌ QR code is not valid base64: {exc}", file=sys.stderr)
        return 1
    with open(output, "wb") as f:
        f.write(payload)
    print(f"✅ QR code written to {output}")
    return 0


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, fmt="console")

    engine = DeliveryEngine(
        channel=WahaClient(settings.waha),
        config=settings.delivery,
        chat_suffix=settings.waha.chat_suffix,
    )
    try:
        if args.command == "status":
            print(json.dumps(await engine.session_info(), indent=2))
            return 0
        if args.command == "qr":
            return await _qr(engine, args.output)
        if args.command == "test":
            result = await engine.send_test_message(" ".join(args.recipient))
            if result.success:
                print(f"✅ Test message sent (id={result.message_id})")
                return 0
            print(f"❌ Test message failed: {result.error}", file=sys.stderr)
            return 1

        actions = {
            "start": engine.start_session,
            "stop": engine.stop_session,
            "restart": engine.restart_session,
        }
        response = await actions[args.command]()
        status = "✅" if response.success else "❌"
        print(f"{status} {response.message}")
        if response.error:
            print(f"    Error: {response.error}", file=sys.stderr)
        return 0 if response.success else 1
    finally:
        await engine.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage the WAHA WhatsApp session.")
    parser.add_argument("--config", default=None, help="Path to settings YAML")
    parser.add_argument("--log-level", default="WARNING", help="Log level override")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Show session status")
    sub.add_parser("start", help="Start the session")
    sub.add_parser("stop", help="Stop the session")
    sub.add_parser("restart", help="Stop, pause, and start the session")
    qr = sub.add_parser("qr", help="Fetch the pairing QR code")
    qr.add_argument("--output", default=None, help="Write the decoded image to this file")
    test = sub.add_parser("test", help="Send a test message")
    test.add_argument("recipient", nargs="+", help="Phone number or chat id")
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
