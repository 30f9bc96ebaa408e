from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from utils.constants import INACTIVE_STATUSES


@dataclass(slots=True)
class Comment:
    id: str
    ticket_id: str
    author: str
    content: str
    created_at: datetime
    internal: bool = False


@dataclass(slots=True)
class Ticket:
    id: str
    title: str
    description: str
    priority: str
    status: str
    reported_by: str
    created_at: datetime
    updated_at: datetime
    sla_deadline: datetime
    category: str = ""
    assigned_to: str | None = None
    resolved_at: datetime | None = None
    tags: list[str] = field(default_factory=list)
    escalated: bool = False
    comments: list[Comment] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def is_overdue(self, now: datetime) -> bool:
        return self.is_active and now > self.sla_deadline


@dataclass(slots=True)
class Notification:
    id: str
    to: str
    subject: str
    body: str
    sent_at: datetime
    acknowledged: bool = False


@dataclass(slots=True)
class TicketStats:
    total: int
    open: int
    in_progress: int
    resolved: int
    closed: int
    overdue: int
    escalated: int
    by_priority: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "open": self.open,
            "inProgress": self.in_progress,
            "resolved": self.resolved,
            "closed": self.closed,
            "overdue": self.overdue,
            "escalated": self.escalated,
            "byPriority": dict(self.by_priority),
        }
