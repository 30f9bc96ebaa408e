from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from core.errors import StorageError, ValidationError
from database.models import Ticket
from database.repositories import TicketRepository
from database.storage import MemoryStorage
from services.ticket_service import TicketService, filter_tickets

REPORTER = "a@x.com"


async def _create(service: TicketService, **overrides) -> Ticket:
    fields = {
        "title": "Login page down",
        "description": "Users receive a 502 on /login.",
        "priority": "P1",
        "reported_by": REPORTER,
    }
    fields.update(overrides)
    return await service.create_ticket(**fields)


@pytest.mark.asyncio
@pytest.mark.parametrize(("priority", "hours"), [("P1", 4), ("P2", 24), ("P3", 72), ("P4", 168)])
async def test_sla_deadline_follows_priority(ticket_service, clock, priority: str, hours: int) -> None:
    ticket = await _create(ticket_service, priority=priority)

    assert ticket.created_at == clock.now
    assert ticket.sla_deadline == clock.now + timedelta(hours=hours)


@pytest.mark.asyncio
async def test_create_ticket_sets_initial_state(ticket_service, clock) -> None:
    ticket = await _create(ticket_service, assigned_to="ops@x.com", tags="db, prod, ,auth")

    assert ticket.id.startswith("INC-")
    assert ticket.status == "Open"
    assert ticket.escalated is False
    assert ticket.comments == []
    assert ticket.resolved_at is None
    assert ticket.updated_at == ticket.created_at == datetime(2026, 10, 19, 9, 0, tzinfo=UTC)
    assert ticket.sla_deadline == datetime(2026, 10, 19, 13, 0, tzinfo=UTC)
    assert ticket.tags == ["db", "prod", "auth"]
    assert ticket.assigned_to == "ops@x.com"


@pytest.mark.asyncio
async def test_create_ticket_rejects_missing_fields_and_bad_enums(ticket_service) -> None:
    with pytest.raises(ValidationError):
        await _create(ticket_service, title="   ")
    with pytest.raises(ValidationError):
        await _create(ticket_service, reported_by="")
    with pytest.raises(ValidationError):
        await _create(ticket_service, priority="P9")
    with pytest.raises(ValidationError):
        await _create(ticket_service, status="Pending")
    assert await ticket_service.get_all_tickets() == []


@pytest.mark.asyncio
async def test_ids_are_unique_within_the_same_instant(ticket_service) -> None:
    tickets = [await _create(ticket_service, title=f"Ticket {idx}") for idx in range(25)]

    assert len({ticket.id for ticket in tickets}) == 25
    stored = await ticket_service.get_all_tickets()
    assert [ticket.title for ticket in stored] == [f"Ticket {idx}" for idx in range(25)]


@pytest.mark.asyncio
async def test_get_ticket_by_id_returns_none_when_missing(ticket_service) -> None:
    created = await _create(ticket_service)

    assert (await ticket_service.get_ticket_by_id(created.id)).title == created.title
    assert await ticket_service.get_ticket_by_id("INC-missing") is None


@pytest.mark.asyncio
async def test_update_merges_fields_and_keeps_original_deadline(ticket_service, clock) -> None:
    ticket = await _create(ticket_service, priority="P4")
    clock.advance(minutes=30)

    updated = await ticket_service.update_ticket(ticket.id, {"priority": "P1", "assigned_to": "sre@x.com"})

    assert updated is not None
    assert updated.priority == "P1"
    assert updated.assigned_to == "sre@x.com"
    assert updated.sla_deadline == ticket.sla_deadline
    assert updated.updated_at == clock.now
    assert updated.created_at == ticket.created_at
    assert (await ticket_service.get_ticket_by_id(ticket.id)).priority == "P1"


@pytest.mark.asyncio
async def test_update_missing_ticket_returns_none(ticket_service) -> None:
    assert await ticket_service.update_ticket("INC-missing", {"title": "x"}) is None


@pytest.mark.asyncio
async def test_update_rejects_unknown_and_immutable_fields(ticket_service) -> None:
    ticket = await _create(ticket_service)

    with pytest.raises(ValidationError):
        await ticket_service.update_ticket(ticket.id, {"sla_deadline": ticket.created_at})
    with pytest.raises(ValidationError):
        await ticket_service.update_ticket(ticket.id, {"severity": "high"})
    with pytest.raises(ValidationError):
        await ticket_service.update_ticket(ticket.id, {"status": "Done"})


@pytest.mark.asyncio
async def test_resolved_at_is_set_once(ticket_service, clock) -> None:
    ticket = await _create(ticket_service)

    clock.at(15)
    resolved = await ticket_service.update_ticket(ticket.id, {"status": "Resolved"})
    assert resolved.resolved_at == clock.now
    assert resolved.updated_at == clock.now
    first_resolution = resolved.resolved_at

    clock.at(16)
    reopened = await ticket_service.update_ticket(ticket.id, {"status": "In Progress"})
    assert reopened.resolved_at == first_resolution

    clock.at(17)
    again = await ticket_service.update_ticket(ticket.id, {"status": "Resolved"})
    assert again.resolved_at == first_resolution
    assert again.updated_at == clock.now


@pytest.mark.asyncio
async def test_escalated_flag_never_reverts(ticket_service, clock) -> None:
    ticket = await _create(ticket_service)
    clock.at(14)
    await ticket_service.check_for_escalations()

    updated = await ticket_service.update_ticket(ticket.id, {"escalated": False, "title": "Renamed"})

    assert updated.escalated is True
    assert updated.title == "Renamed"


@pytest.mark.asyncio
async def test_delete_ticket(ticket_service) -> None:
    keep = await _create(ticket_service, title="keep")
    drop = await _create(ticket_service, title="drop")

    assert await ticket_service.delete_ticket(drop.id) is True
    remaining = await ticket_service.get_all_tickets()
    assert [ticket.id for ticket in remaining] == [keep.id]
    assert (await ticket_service.get_ticket_stats()).total == 1

    assert await ticket_service.delete_ticket("INC-missing") is False
    assert [ticket.id for ticket in await ticket_service.get_all_tickets()] == [keep.id]


@pytest.mark.asyncio
async def test_add_comments_in_order_with_visibility(ticket_service, clock) -> None:
    ticket = await _create(ticket_service)
    clock.advance(minutes=5)
    internal = await ticket_service.add_comment(
        ticket.id, author="agent@x.com", content="Checking logs", internal=True
    )
    clock.advance(minutes=5)
    external = await ticket_service.add_comment(ticket.id, author="agent@x.com", content="Working on it")

    stored = await ticket_service.get_ticket_by_id(ticket.id)
    assert len(stored.comments) == 2
    assert [comment.id for comment in stored.comments] == [internal.id, external.id]
    assert [comment.internal for comment in stored.comments] == [True, False]
    assert all(comment.ticket_id == ticket.id for comment in stored.comments)
    assert stored.updated_at == clock.now


@pytest.mark.asyncio
async def test_add_comment_to_missing_ticket_returns_none(ticket_service) -> None:
    assert await ticket_service.add_comment("INC-missing", author="a", content="b") is None


@pytest.mark.asyncio
async def test_escalation_scan_flags_overdue_tickets_once(ticket_service, clock) -> None:
    ticket = await _create(ticket_service)
    assert await ticket_service.check_for_escalations() == []

    clock.at(14)
    escalated = await ticket_service.check_for_escalations()

    assert [item.id for item in escalated] == [ticket.id]
    assert escalated[0].escalated is True
    assert (await ticket_service.get_ticket_by_id(ticket.id)).escalated is True
    assert await ticket_service.check_for_escalations() == []


@pytest.mark.asyncio
async def test_escalation_skips_inactive_and_not_yet_due(ticket_service, clock) -> None:
    resolved = await _create(ticket_service, title="resolved")
    await ticket_service.update_ticket(resolved.id, {"status": "Resolved"})
    closed = await _create(ticket_service, title="closed", status="Closed")
    not_due = await _create(ticket_service, title="p3", priority="P3")
    due = await _create(ticket_service, title="due", status="In Progress")

    clock.at(14)
    escalated = await ticket_service.check_for_escalations()

    assert [ticket.id for ticket in escalated] == [due.id]
    assert {resolved.id, closed.id, not_due.id}.isdisjoint({ticket.id for ticket in escalated})


@pytest.mark.asyncio
async def test_stats_keep_overdue_and_escalated_independent(ticket_service, clock) -> None:
    first = await _create(ticket_service, priority="P1")
    await _create(ticket_service, priority="P2", status="In Progress")
    await _create(ticket_service, priority="P1", status="Closed")

    clock.at(14)
    await ticket_service.check_for_escalations()
    await ticket_service.update_ticket(first.id, {"status": "Resolved"})

    stats = await ticket_service.get_ticket_stats()
    assert stats.total == 3
    assert (stats.open, stats.in_progress, stats.resolved, stats.closed) == (0, 1, 1, 1)
    assert stats.escalated == 1
    assert stats.overdue == 0
    assert stats.by_priority == {"P1": 2, "P2": 1, "P3": 0, "P4": 0}

    clock.advance(days=2)
    assert (await ticket_service.get_ticket_stats()).overdue == 1


@pytest.mark.asyncio
async def test_demo_data_seeds_only_an_empty_store(ticket_service) -> None:
    seeded = await ticket_service.initialize_demo_data()

    assert len(seeded) == 4
    assert seeded[0].title == "Database Connection Timeout"
    assert seeded[2].assigned_to is None
    assert await ticket_service.initialize_demo_data() == []
    assert len(await ticket_service.get_all_tickets()) == 4


@pytest.mark.asyncio
async def test_filter_tickets(ticket_service) -> None:
    await _create(ticket_service, title="VPN outage", priority="P2")
    await _create(ticket_service, title="Printer jam", priority="P4", reported_by="bob@x.com")
    tickets = await ticket_service.get_all_tickets()

    assert [t.title for t in filter_tickets(tickets, priority="P4")] == ["Printer jam"]
    assert [t.title for t in filter_tickets(tickets, query="vpn")] == ["VPN outage"]
    assert [t.title for t in filter_tickets(tickets, query="BOB@")] == ["Printer jam"]
    assert filter_tickets(tickets, status="Closed") == []


class _FailingWriteStorage(MemoryStorage):
    """Raises on the configured write, counted from when ``fail_on_write`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on_write: int | None = None
        self._writes = 0

    async def set(self, key: str, value: str) -> None:
        if self.fail_on_write is not None:
            self._writes += 1
            if self._writes == self.fail_on_write:
                raise StorageError("disk full")
        await super().set(key, value)


@pytest.mark.asyncio
async def test_escalation_scan_keeps_earlier_commits_when_a_write_fails(clock) -> None:
    storage = _FailingWriteStorage()
    service = TicketService(TicketRepository(storage), clock=clock)
    first = await _create(service, title="first")
    second = await _create(service, title="second")

    clock.at(14)
    storage.fail_on_write = 2
    with pytest.raises(StorageError):
        await service.check_for_escalations()

    assert (await service.get_ticket_by_id(first.id)).escalated is True
    assert (await service.get_ticket_by_id(second.id)).escalated is False

    storage.fail_on_write = None
    rerun = await service.check_for_escalations()
    assert [ticket.id for ticket in rerun] == [second.id]
    assert (await service.get_ticket_stats()).escalated == 2
