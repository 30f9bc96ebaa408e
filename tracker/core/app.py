from __future__ import annotations

import logging

from core.config import AppConfig
from database.repositories import NotificationRepository, TicketRepository
from database.storage import StorageBackend, build_storage
from services.escalation_service import EscalationMonitor
from services.notification_service import NotificationService
from services.notification_sink import NotificationSink, build_sink
from services.ticket_service import TicketService
from utils.time import Clock, utc_now

LOGGER = logging.getLogger(__name__)


class TrackerApp:
    """Owns storage, repositories and services for one process."""

    def __init__(
        self,
        config: AppConfig,
        storage: StorageBackend | None = None,
        sink: NotificationSink | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config
        self.storage = storage if storage is not None else build_storage(config.storage)
        self.sink = sink if sink is not None else build_sink(config.notifications)
        self.clock = clock

        self.ticket_repo = TicketRepository(self.storage)
        self.notification_repo = NotificationRepository(self.storage)

        self.ticket_service = TicketService(self.ticket_repo, clock=clock)
        self.notification_service = NotificationService(
            self.notification_repo,
            self.sink,
            config.notifications,
            clock=clock,
        )
        self.escalation_monitor = EscalationMonitor(
            self.ticket_service,
            self.notification_service,
            interval_seconds=config.escalation.interval_seconds,
        )
        self._started = False

    async def start(self, run_monitor: bool | None = None) -> None:
        if self._started:
            return
        await self.storage.connect()
        if self.config.seed_demo_data:
            await self.ticket_service.initialize_demo_data()
        if run_monitor if run_monitor is not None else self.config.escalation.enabled:
            self.escalation_monitor.start()
        self._started = True
        LOGGER.info("Tracker started. storage=%s", self.config.storage.backend)

    async def close(self) -> None:
        await self.escalation_monitor.stop()
        await self.sink.close()
        await self.storage.close()
        self._started = False
        LOGGER.info("Tracker stopped")
