from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from typing import Any

from core.errors import RecordDecodeError
from database.models import Comment, Notification, Ticket
from database.storage import StorageBackend
from utils.constants import NOTIFICATIONS_STORAGE_KEY, TICKETS_STORAGE_KEY
from utils.time import parse_iso, to_iso

LOGGER = logging.getLogger(__name__)


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"))


def _json_load_list(value: str | None, key: str) -> list[Any]:
    if value is None:
        return []
    try:
        data = json.loads(value)
    except json.JSONDecodeError:
        LOGGER.warning("Collection %s is not valid JSON; treating as empty", key)
        return []
    if not isinstance(data, list):
        LOGGER.warning("Collection %s is not a list; treating as empty", key)
        return []
    return data


def _required(row: dict[str, Any], field: str) -> Any:
    if field not in row or row[field] is None:
        raise KeyError(field)
    return row[field]


def comment_to_record(comment: Comment) -> dict[str, Any]:
    return {
        "id": comment.id,
        "ticketId": comment.ticket_id,
        "author": comment.author,
        "content": comment.content,
        "createdAt": to_iso(comment.created_at),
        "internal": comment.internal,
    }


def comment_from_record(row: dict[str, Any]) -> Comment:
    return Comment(
        id=str(_required(row, "id")),
        ticket_id=str(_required(row, "ticketId")),
        author=str(row.get("author", "")),
        content=str(row.get("content", "")),
        created_at=parse_iso(_required(row, "createdAt")),
        internal=bool(row.get("internal", False)),
    )


def ticket_to_record(ticket: Ticket) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": ticket.id,
        "title": ticket.title,
        "description": ticket.description,
        "priority": ticket.priority,
        "status": ticket.status,
        "reportedBy": ticket.reported_by,
        "createdAt": to_iso(ticket.created_at),
        "updatedAt": to_iso(ticket.updated_at),
        "category": ticket.category,
        "tags": list(ticket.tags),
        "slaDeadline": to_iso(ticket.sla_deadline),
        "escalated": ticket.escalated,
        "comments": [comment_to_record(comment) for comment in ticket.comments],
    }
    # Unset optional fields are omitted, matching the browser-stored shape.
    if ticket.assigned_to is not None:
        record["assignedTo"] = ticket.assigned_to
    if ticket.resolved_at is not None:
        record["resolvedAt"] = to_iso(ticket.resolved_at)
    return record


def ticket_from_record(row: dict[str, Any]) -> Ticket:
    if not isinstance(row, dict):
        raise RecordDecodeError(f"Ticket record must be an object, got {type(row).__name__}")
    try:
        resolved_raw = row.get("resolvedAt")
        comments_raw = row.get("comments") or []
        return Ticket(
            id=str(_required(row, "id")),
            title=str(_required(row, "title")),
            description=str(row.get("description", "")),
            priority=str(_required(row, "priority")),
            status=str(_required(row, "status")),
            reported_by=str(_required(row, "reportedBy")),
            assigned_to=str(row["assignedTo"]) if row.get("assignedTo") else None,
            created_at=parse_iso(_required(row, "createdAt")),
            updated_at=parse_iso(_required(row, "updatedAt")),
            resolved_at=parse_iso(resolved_raw) if resolved_raw else None,
            category=str(row.get("category", "")),
            tags=[str(tag) for tag in row.get("tags") or []],
            sla_deadline=parse_iso(_required(row, "slaDeadline")),
            escalated=bool(row.get("escalated", False)),
            comments=[comment_from_record(item) for item in comments_raw],
        )
    except KeyError as exc:
        raise RecordDecodeError(f"Ticket record {row.get('id')!r} is missing field {exc.args[0]!r}") from exc
    except (TypeError, ValueError, AttributeError) as exc:
        raise RecordDecodeError(f"Ticket record {row.get('id')!r} is malformed: {exc}") from exc


def notification_to_record(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "to": notification.to,
        "subject": notification.subject,
        "body": notification.body,
        "sentAt": to_iso(notification.sent_at),
        "acknowledged": notification.acknowledged,
    }


def notification_from_record(row: dict[str, Any]) -> Notification:
    if not isinstance(row, dict):
        raise RecordDecodeError(f"Notification record must be an object, got {type(row).__name__}")
    try:
        return Notification(
            id=str(_required(row, "id")),
            to=str(_required(row, "to")),
            subject=str(row.get("subject", "")),
            body=str(row.get("body", "")),
            sent_at=parse_iso(_required(row, "sentAt")),
            acknowledged=bool(row.get("acknowledged", False)),
        )
    except KeyError as exc:
        raise RecordDecodeError(
            f"Notification record {row.get('id')!r} is missing field {exc.args[0]!r}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise RecordDecodeError(f"Notification record {row.get('id')!r} is malformed: {exc}") from exc


class TicketRepository:
    """Whole-collection persistence for tickets under a single storage key.

    Callers doing read-modify-write must hold ``lock`` across ``load`` and
    ``save``.
    """

    def __init__(self, storage: StorageBackend, key: str = TICKETS_STORAGE_KEY) -> None:
        self.storage = storage
        self.key = key
        self.lock = asyncio.Lock()

    async def load(self) -> list[Ticket]:
        rows = _json_load_list(await self.storage.get(self.key), self.key)
        return [ticket_from_record(row) for row in rows]

    async def save(self, tickets: Iterable[Ticket]) -> None:
        await self.storage.set(self.key, _json_dump([ticket_to_record(ticket) for ticket in tickets]))


class NotificationRepository:
    def __init__(self, storage: StorageBackend, key: str = NOTIFICATIONS_STORAGE_KEY) -> None:
        self.storage = storage
        self.key = key
        self.lock = asyncio.Lock()

    async def load(self) -> list[Notification]:
        rows = _json_load_list(await self.storage.get(self.key), self.key)
        return [notification_from_record(row) for row in rows]

    async def save(self, notifications: Iterable[Notification]) -> None:
        await self.storage.set(
            self.key,
            _json_dump([notification_to_record(notification) for notification in notifications]),
        )
