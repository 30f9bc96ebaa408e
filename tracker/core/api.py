from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from pydantic import BaseModel, ConfigDict, Field

from core.app import TrackerApp
from core.errors import NotificationNotFoundError, TicketNotFoundError, register_error_handlers
from database.repositories import comment_to_record, notification_to_record, ticket_to_record
from services.ticket_service import filter_tickets
from utils.constants import DEFAULT_COMMENT_AUTHOR, MAX_RECENT_WINDOW_HOURS, TICKET_STATUS_OPEN


class TicketCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    priority: str
    reported_by: str = Field(alias="reportedBy")
    status: str = TICKET_STATUS_OPEN
    assigned_to: str | None = Field(default=None, alias="assignedTo")
    category: str = ""
    tags: list[str] | str = Field(default_factory=list)


class TicketUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    title: str | None = None
    description: str | None = None
    priority: str | None = None
    status: str | None = None
    assigned_to: str | None = Field(default=None, alias="assignedTo")
    reported_by: str | None = Field(default=None, alias="reportedBy")
    category: str | None = None
    tags: list[str] | str | None = None


class CommentCreateRequest(BaseModel):
    author: str = DEFAULT_COMMENT_AUTHOR
    content: str
    internal: bool = False


def create_api_app(tracker: TrackerApp, manage_lifecycle: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await tracker.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await tracker.close()

    app = FastAPI(title="Incident Tracker API", version="1.0.0", lifespan=lifespan)
    register_error_handlers(app)

    async def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        expected = tracker.config.api.api_key
        if expected and x_api_key != expected:
            raise HTTPException(status_code=401, detail="Unauthorized")

    secured = [Depends(require_api_key)]

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "storage": tracker.config.storage.backend,
            "escalation_monitor": tracker.escalation_monitor.running,
        }

    @app.get("/tickets", dependencies=secured)
    async def list_tickets(
        status: str | None = None,
        priority: str | None = None,
        q: str | None = None,
    ) -> dict[str, Any]:
        tickets = await tracker.ticket_service.get_all_tickets()
        items = filter_tickets(tickets, status=status, priority=priority, query=q)
        return {"items": [ticket_to_record(ticket) for ticket in items], "total": len(tickets)}

    @app.post("/tickets", status_code=201, dependencies=secured)
    async def create_ticket(payload: TicketCreateRequest) -> dict[str, Any]:
        ticket = await tracker.ticket_service.create_ticket(**payload.model_dump())
        await tracker.notification_service.record_ticket_created(ticket)
        return ticket_to_record(ticket)

    @app.get("/tickets/{ticket_id}", dependencies=secured)
    async def get_ticket(ticket_id: str) -> dict[str, Any]:
        ticket = await tracker.ticket_service.get_ticket_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError()
        return ticket_to_record(ticket)

    @app.patch("/tickets/{ticket_id}", dependencies=secured)
    async def update_ticket(ticket_id: str, payload: TicketUpdateRequest) -> dict[str, Any]:
        previous = await tracker.ticket_service.get_ticket_by_id(ticket_id)
        if previous is None:
            raise TicketNotFoundError()
        updated = await tracker.ticket_service.update_ticket(ticket_id, payload.model_dump(exclude_unset=True))
        if updated is None:
            raise TicketNotFoundError()
        if updated.status != previous.status:
            await tracker.notification_service.record_ticket_updated(updated, previous.status)
        return ticket_to_record(updated)

    @app.delete("/tickets/{ticket_id}", status_code=204, dependencies=secured)
    async def delete_ticket(ticket_id: str) -> Response:
        if not await tracker.ticket_service.delete_ticket(ticket_id):
            raise TicketNotFoundError()
        return Response(status_code=204)

    @app.post("/tickets/{ticket_id}/comments", status_code=201, dependencies=secured)
    async def add_comment(ticket_id: str, payload: CommentCreateRequest) -> dict[str, Any]:
        comment = await tracker.ticket_service.add_comment(
            ticket_id,
            author=payload.author,
            content=payload.content,
            internal=payload.internal,
        )
        if comment is None:
            raise TicketNotFoundError()
        return comment_to_record(comment)

    @app.get("/stats", dependencies=secured)
    async def stats() -> dict[str, object]:
        return (await tracker.ticket_service.get_ticket_stats()).to_dict()

    @app.post("/escalations/check", dependencies=secured)
    async def check_escalations() -> dict[str, Any]:
        run = await tracker.escalation_monitor.run_once()
        return {
            "escalated": [ticket_to_record(ticket) for ticket in run.escalated],
            "notifications": [notification_to_record(item) for item in run.notifications],
        }

    @app.get("/notifications/recent", dependencies=secured)
    async def recent_notifications(
        hours: float = Query(default=24, gt=0, le=MAX_RECENT_WINDOW_HOURS),
    ) -> dict[str, Any]:
        items = await tracker.notification_service.get_recent_notifications(hours)
        return {"items": [notification_to_record(item) for item in items]}

    @app.get("/notifications/unacknowledged", dependencies=secured)
    async def unacknowledged_notifications() -> dict[str, Any]:
        items = await tracker.notification_service.get_unacknowledged_notifications()
        return {"items": [notification_to_record(item) for item in items], "count": len(items)}

    @app.post("/notifications/{notification_id}/acknowledge", dependencies=secured)
    async def acknowledge_notification(notification_id: str) -> dict[str, Any]:
        if not await tracker.notification_service.acknowledge_notification(notification_id):
            raise NotificationNotFoundError()
        return {"id": notification_id, "acknowledged": True}

    return app
