from __future__ import annotations

import logging
from datetime import datetime

from core.config import NotificationConfig
from database.models import Notification, Ticket
from database.repositories import NotificationRepository
from services.notification_sink import NotificationSink
from utils.constants import NOTIFICATION_ID_PREFIX, TICKET_STATUS_RESOLVED
from utils.ids import generate_id
from utils.time import Clock, hours_between, utc_now, window_start

LOGGER = logging.getLogger(__name__)


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M %Z")


def render_ticket_created(ticket: Ticket) -> str:
    return f"""
Dear Support Team,

A new {ticket.priority} incident has been created and requires your attention.

Ticket Details:
- ID: {ticket.id}
- Title: {ticket.title}
- Priority: {ticket.priority}
- Reporter: {ticket.reported_by}
- SLA Deadline: {_format_timestamp(ticket.sla_deadline)}

Description:
{ticket.description}

Please review and take appropriate action.

Best regards,
Incident Management System
""".strip()


def render_ticket_updated(ticket: Ticket, previous_status: str) -> str:
    if ticket.status == TICKET_STATUS_RESOLVED:
        guidance = (
            "Your issue has been resolved. If you continue to experience problems, please reopen this ticket."
        )
    else:
        guidance = "We are continuing to work on your issue and will keep you updated."
    return f"""
Dear {ticket.reported_by},

Your ticket has been updated with a new status.

Ticket Details:
- ID: {ticket.id}
- Title: {ticket.title}
- Previous Status: {previous_status}
- Current Status: {ticket.status}
- Assigned To: {ticket.assigned_to or "Unassigned"}

{guidance}

You can view the full ticket details in the support portal.

Best regards,
Support Team
""".strip()


def render_escalation(ticket: Ticket, now: datetime) -> str:
    return f"""
URGENT: SLA BREACH ALERT

Ticket {ticket.id} has exceeded its SLA deadline and requires immediate attention.

Critical Details:
- Title: {ticket.title}
- Priority: {ticket.priority}
- Current Status: {ticket.status}
- SLA Deadline: {_format_timestamp(ticket.sla_deadline)}
- Time Overdue: {hours_between(ticket.sla_deadline, now)} hours

Immediate action is required to prevent further customer impact.

Please review and escalate as necessary.

Incident Management System
""".strip()


class NotificationService:
    """Append-only log of notification records.

    Each ``record_*`` call persists the record first and then hands the message
    to the sink; a failed delivery is logged but the record is kept.
    """

    def __init__(
        self,
        notification_repo: NotificationRepository,
        sink: NotificationSink,
        config: NotificationConfig,
        clock: Clock = utc_now,
    ) -> None:
        self.notification_repo = notification_repo
        self.sink = sink
        self.config = config
        self.clock = clock

    async def _record(self, to: str, subject: str, body: str) -> Notification:
        async with self.notification_repo.lock:
            notifications = await self.notification_repo.load()
            taken = {item.id for item in notifications}
            now = self.clock()
            notification_id = generate_id(NOTIFICATION_ID_PREFIX, now)
            while notification_id in taken:
                notification_id = generate_id(NOTIFICATION_ID_PREFIX, now)
            notification = Notification(
                id=notification_id,
                to=to,
                subject=subject,
                body=body,
                sent_at=now,
                acknowledged=False,
            )
            notifications.append(notification)
            await self.notification_repo.save(notifications)

        delivered = await self.sink.send(to, subject, body)
        if not delivered:
            LOGGER.warning(
                "Notification recorded but not delivered. id=%s to=%s",
                notification.id,
                to,
                extra={"notification_id": notification.id},
            )
        return notification

    async def record_ticket_created(self, ticket: Ticket) -> Notification:
        return await self._record(
            to=ticket.assigned_to or self.config.support_address,
            subject=f"New {ticket.priority} Incident: {ticket.title}",
            body=render_ticket_created(ticket),
        )

    async def record_ticket_updated(self, ticket: Ticket, previous_status: str) -> Notification:
        return await self._record(
            to=ticket.reported_by,
            subject=f"Ticket {ticket.id} Status Updated: {ticket.status}",
            body=render_ticket_updated(ticket, previous_status),
        )

    async def record_escalation(self, ticket: Ticket) -> Notification:
        return await self._record(
            to=self.config.manager_address,
            subject=f"SLA Breach - Ticket {ticket.id} Escalated",
            body=render_escalation(ticket, self.clock()),
        )

    async def acknowledge_notification(self, notification_id: str) -> bool:
        async with self.notification_repo.lock:
            notifications = await self.notification_repo.load()
            for notification in notifications:
                if notification.id == notification_id:
                    notification.acknowledged = True
                    await self.notification_repo.save(notifications)
                    return True
        return False

    async def get_all_notifications(self) -> list[Notification]:
        return await self.notification_repo.load()

    async def get_recent_notifications(self, hours: float = 24) -> list[Notification]:
        cutoff = window_start(self.clock(), hours)
        recent = [item for item in await self.notification_repo.load() if item.sent_at > cutoff]
        return sorted(recent, key=lambda item: item.sent_at, reverse=True)

    async def get_unacknowledged_notifications(self) -> list[Notification]:
        return [item for item in await self.notification_repo.load() if not item.acknowledged]
