from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from database.models import Notification, Ticket
from services.notification_service import NotificationService
from services.ticket_service import TicketService

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EscalationRun:
    escalated: list[Ticket] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)


class EscalationMonitor:
    """Periodically scans for overdue tickets and records a breach notice for each."""

    def __init__(
        self,
        ticket_service: TicketService,
        notification_service: NotificationService,
        interval_seconds: float = 60,
    ) -> None:
        self.ticket_service = ticket_service
        self.notification_service = notification_service
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> EscalationRun:
        run = EscalationRun(escalated=await self.ticket_service.check_for_escalations())
        for ticket in run.escalated:
            run.notifications.append(await self.notification_service.record_escalation(ticket))
        if run.escalated:
            LOGGER.info("Escalation scan flagged %s ticket(s)", len(run.escalated))
        return run

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:  # keep polling after a failed scan
                LOGGER.exception("Escalation scan failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="escalation-monitor")
        LOGGER.info("Escalation monitor started. interval=%ss", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        LOGGER.info("Escalation monitor stopped")
