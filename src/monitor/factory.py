"""Convenience factory for wiring the notifier stack from settings."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from src.alerts.classification import ClassificationTable
from src.alerts.gate import NotificationGate
from src.core.config import Settings
from src.feeds.base import MetricSource
from src.feeds.waqi import WaqiSource
from src.monitor.delivery import DeliveryEngine, Sleeper
from src.monitor.notifier import AqiNotifier
from src.monitor.scheduler import CheckScheduler
from src.storage.database import Database
from src.storage.history import HistoryStore
from src.storage.settings import SettingsStore
from src.waha.client import MessagingChannel, WahaClient


@dataclass
class NotifierStack:
    """Everything a CLI or daemon needs, plus a single ``close()``."""

    notifier: AqiNotifier
    source: MetricSource
    channel: MessagingChannel
    database: Database

    async def close(self) -> None:
        await self.source.close()
        await self.channel.close()
        self.database.close()


def create_notifier_stack(
    settings: Settings,
    source: MetricSource | None = None,
    channel: MessagingChannel | None = None,
    database: Database | None = None,
    sleep: Sleeper = asyncio.sleep,
) -> NotifierStack:
    """Build the notifier and its collaborators from config.

    Collaborators may be passed in to replace the real WAQI / WAHA / SQLite
    implementations.
    """
    table = ClassificationTable(settings.classification.levels)

    db = database or Database(settings.storage.database_path)
    db.connect()
    settings_store = SettingsStore(db)
    history = HistoryStore(db, table)

    metric_source = source or WaqiSource(settings.waqi, table)
    messaging = channel or WahaClient(settings.waha)

    gate = NotificationGate(
        settings_store=settings_store,
        history=history,
        table=table,
        defaults=settings.notifications,
    )
    delivery = DeliveryEngine(
        channel=messaging,
        config=settings.delivery,
        chat_suffix=settings.waha.chat_suffix,
        sleep=sleep,
    )
    notifier = AqiNotifier(
        source=metric_source,
        gate=gate,
        delivery=delivery,
        settings_store=settings_store,
        history=history,
        table=table,
        defaults=settings.notifications,
    )
    return NotifierStack(
        notifier=notifier,
        source=metric_source,
        channel=messaging,
        database=db,
    )


def create_scheduler(stack: NotifierStack, settings: Settings) -> CheckScheduler:
    return CheckScheduler(
        notifier=stack.notifier,
        interval_secs=settings.scheduler.interval_minutes * 60.0,
        city=settings.scheduler.city,
        run_on_start=settings.scheduler.run_on_start,
    )
