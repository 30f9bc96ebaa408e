from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from core.errors import ValidationError
from database.models import Comment, Ticket, TicketStats
from database.repositories import TicketRepository
from utils.constants import (
    DEMO_TICKETS,
    PRIORITY_LEVELS,
    SLA_HOURS,
    TICKET_ID_PREFIX,
    TICKET_STATUS_CLOSED,
    TICKET_STATUS_IN_PROGRESS,
    TICKET_STATUS_OPEN,
    TICKET_STATUS_RESOLVED,
    TICKET_STATUSES,
)
from utils.ids import generate_id
from utils.time import Clock, utc_now

LOGGER = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "priority",
        "status",
        "assigned_to",
        "reported_by",
        "category",
        "tags",
        "escalated",
    }
)
IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at", "sla_deadline", "resolved_at", "comments"})


def calculate_sla_deadline(priority: str, created_at: datetime) -> datetime:
    return created_at + timedelta(hours=SLA_HOURS[priority])


def normalize_tags(value: Iterable[str] | str | None) -> list[str]:
    if value is None:
        return []
    parts = value.split(",") if isinstance(value, str) else list(value)
    return [str(tag).strip() for tag in parts if str(tag).strip()]


def filter_tickets(
    tickets: Iterable[Ticket],
    *,
    status: str | None = None,
    priority: str | None = None,
    query: str | None = None,
) -> list[Ticket]:
    needle = (query or "").strip().lower()
    result: list[Ticket] = []
    for ticket in tickets:
        if status and ticket.status != status:
            continue
        if priority and ticket.priority != priority:
            continue
        if needle and not any(
            needle in value.lower()
            for value in (ticket.title, ticket.description, ticket.id, ticket.reported_by)
        ):
            continue
        result.append(ticket)
    return result


def _validate_priority(priority: Any) -> str:
    if priority not in PRIORITY_LEVELS:
        raise ValidationError(f"Unknown priority {priority!r}; expected one of {', '.join(PRIORITY_LEVELS)}.")
    return str(priority)


def _validate_status(status: Any) -> str:
    if status not in TICKET_STATUSES:
        raise ValidationError(f"Unknown status {status!r}; expected one of {', '.join(TICKET_STATUSES)}.")
    return str(status)


def _require_text(value: Any, field: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(f"Field `{field}` is required.")
    return text


def _find_index(tickets: list[Ticket], ticket_id: str) -> int | None:
    for index, ticket in enumerate(tickets):
        if ticket.id == ticket_id:
            return index
    return None


class TicketService:
    """Sole owner of the persisted ticket collection.

    Every write reloads the full collection, mutates it in memory and writes it
    back while holding the repository lock. Lookups of unknown ids return
    ``None`` (or ``False`` for deletes) instead of raising.
    """

    def __init__(self, ticket_repo: TicketRepository, clock: Clock = utc_now) -> None:
        self.ticket_repo = ticket_repo
        self.clock = clock

    def _new_id(self, taken: set[str]) -> str:
        while True:
            candidate = generate_id(TICKET_ID_PREFIX, self.clock())
            if candidate not in taken:
                return candidate

    async def create_ticket(
        self,
        *,
        title: str,
        description: str,
        priority: str,
        reported_by: str,
        status: str = TICKET_STATUS_OPEN,
        assigned_to: str | None = None,
        category: str = "",
        tags: Iterable[str] | str | None = None,
    ) -> Ticket:
        priority = _validate_priority(priority)
        status = _validate_status(status)
        title = _require_text(title, "title")
        description = _require_text(description, "description")
        reported_by = _require_text(reported_by, "reported_by")

        async with self.ticket_repo.lock:
            tickets = await self.ticket_repo.load()
            now = self.clock()
            ticket = Ticket(
                id=self._new_id({item.id for item in tickets}),
                title=title,
                description=description,
                priority=priority,
                status=status,
                reported_by=reported_by,
                assigned_to=(assigned_to or "").strip() or None,
                created_at=now,
                updated_at=now,
                sla_deadline=calculate_sla_deadline(priority, now),
                category=category.strip(),
                tags=normalize_tags(tags),
                escalated=False,
                comments=[],
            )
            tickets.append(ticket)
            await self.ticket_repo.save(tickets)

        LOGGER.info(
            "Ticket created. id=%s priority=%s sla_deadline=%s",
            ticket.id,
            ticket.priority,
            ticket.sla_deadline.isoformat(),
            extra={"ticket_id": ticket.id},
        )
        return ticket

    async def get_all_tickets(self) -> list[Ticket]:
        return await self.ticket_repo.load()

    async def get_ticket_by_id(self, ticket_id: str) -> Ticket | None:
        for ticket in await self.ticket_repo.load():
            if ticket.id == ticket_id:
                return ticket
        return None

    def _merge(self, ticket: Ticket, fields: Mapping[str, Any]) -> Ticket:
        now = self.clock()
        merged = replace(ticket, **fields, updated_at=now)
        # The flag only ever moves from False to True.
        merged.escalated = ticket.escalated or merged.escalated
        if merged.status == TICKET_STATUS_RESOLVED and ticket.resolved_at is None:
            merged.resolved_at = now
        return merged

    def _clean_changes(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        immutable = sorted(set(changes) & IMMUTABLE_FIELDS)
        if immutable:
            raise ValidationError(f"Fields cannot be changed: {', '.join(immutable)}.")
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown ticket fields: {', '.join(unknown)}.")

        clean: dict[str, Any] = {}
        for key, value in changes.items():
            if key == "priority":
                clean[key] = _validate_priority(value)
            elif key == "status":
                clean[key] = _validate_status(value)
            elif key in {"title", "description", "reported_by"}:
                clean[key] = _require_text(value, key)
            elif key == "assigned_to":
                clean[key] = (value or "").strip() or None
            elif key == "category":
                clean[key] = str(value or "").strip()
            elif key == "tags":
                clean[key] = normalize_tags(value)
            elif key == "escalated":
                clean[key] = bool(value)
        return clean

    async def update_ticket(self, ticket_id: str, changes: Mapping[str, Any]) -> Ticket | None:
        clean = self._clean_changes(changes)
        async with self.ticket_repo.lock:
            tickets = await self.ticket_repo.load()
            index = _find_index(tickets, ticket_id)
            if index is None:
                return None
            previous = tickets[index]
            updated = self._merge(previous, clean)
            tickets[index] = updated
            await self.ticket_repo.save(tickets)

        if previous.status != updated.status:
            LOGGER.info(
                "Ticket status changed. id=%s from=%s to=%s",
                ticket_id,
                previous.status,
                updated.status,
                extra={"ticket_id": ticket_id},
            )
        return updated

    async def delete_ticket(self, ticket_id: str) -> bool:
        async with self.ticket_repo.lock:
            tickets = await self.ticket_repo.load()
            remaining = [ticket for ticket in tickets if ticket.id != ticket_id]
            if len(remaining) == len(tickets):
                return False
            await self.ticket_repo.save(remaining)
        LOGGER.info("Ticket deleted. id=%s", ticket_id)
        return True

    async def add_comment(self, ticket_id: str, *, author: str, content: str, internal: bool = False) -> Comment | None:
        author = _require_text(author, "author")
        content = _require_text(content, "content")
        async with self.ticket_repo.lock:
            tickets = await self.ticket_repo.load()
            index = _find_index(tickets, ticket_id)
            if index is None:
                return None
            ticket = tickets[index]
            comment = Comment(
                id=self._new_id({item.id for item in ticket.comments}),
                ticket_id=ticket_id,
                author=author,
                content=content,
                created_at=self.clock(),
                internal=bool(internal),
            )
            tickets[index] = self._merge(ticket, {"comments": [*ticket.comments, comment]})
            await self.ticket_repo.save(tickets)
        return comment

    async def _escalate_if_due(self, ticket_id: str) -> Ticket | None:
        async with self.ticket_repo.lock:
            tickets = await self.ticket_repo.load()
            index = _find_index(tickets, ticket_id)
            if index is None:
                return None
            ticket = tickets[index]
            if ticket.escalated or not ticket.is_overdue(self.clock()):
                return None
            escalated = self._merge(ticket, {"escalated": True})
            tickets[index] = escalated
            await self.ticket_repo.save(tickets)
        return escalated

    async def check_for_escalations(self) -> list[Ticket]:
        """Flag active tickets past their SLA deadline.

        Returns only the tickets escalated by this call. Each ticket is
        committed on its own, so a storage failure part way through keeps the
        escalations already written.
        """
        now = self.clock()
        newly_escalated: list[Ticket] = []
        for ticket in await self.ticket_repo.load():
            if ticket.escalated or not ticket.is_overdue(now):
                continue
            escalated = await self._escalate_if_due(ticket.id)
            if escalated is not None:
                LOGGER.warning(
                    "Ticket escalated. id=%s priority=%s sla_deadline=%s",
                    escalated.id,
                    escalated.priority,
                    escalated.sla_deadline.isoformat(),
                    extra={"ticket_id": escalated.id},
                )
                newly_escalated.append(escalated)
        return newly_escalated

    async def get_ticket_stats(self) -> TicketStats:
        tickets = await self.ticket_repo.load()
        now = self.clock()
        return TicketStats(
            total=len(tickets),
            open=sum(1 for t in tickets if t.status == TICKET_STATUS_OPEN),
            in_progress=sum(1 for t in tickets if t.status == TICKET_STATUS_IN_PROGRESS),
            resolved=sum(1 for t in tickets if t.status == TICKET_STATUS_RESOLVED),
            closed=sum(1 for t in tickets if t.status == TICKET_STATUS_CLOSED),
            overdue=sum(1 for t in tickets if t.is_overdue(now)),
            escalated=sum(1 for t in tickets if t.escalated),
            by_priority={level: sum(1 for t in tickets if t.priority == level) for level in PRIORITY_LEVELS},
        )

    async def initialize_demo_data(self) -> list[Ticket]:
        if await self.ticket_repo.load():
            return []
        created = [await self.create_ticket(**dict(data)) for data in DEMO_TICKETS]
        LOGGER.info("Seeded %s demo tickets", len(created))
        return created
