from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from core.config import AppConfig, NotificationConfig
from database.repositories import NotificationRepository, TicketRepository
from database.storage import MemoryStorage
from services.notification_service import NotificationService
from services.ticket_service import TicketService


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def at(self, hour: int, minute: int = 0) -> datetime:
        self.now = self.now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        return self.now


class RecordingSink:
    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.sent: list[tuple[str, str, str]] = []
        self.closed = False

    async def send(self, recipient: str, subject: str, body: str) -> bool:
        self.sent.append((recipient, subject, body))
        return self.succeed

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 9, 0, tzinfo=UTC))


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def ticket_service(storage: MemoryStorage, clock: FakeClock) -> TicketService:
    return TicketService(TicketRepository(storage), clock=clock)


@pytest.fixture
def notification_service(storage: MemoryStorage, sink: RecordingSink, clock: FakeClock) -> NotificationService:
    return NotificationService(NotificationRepository(storage), sink, NotificationConfig(), clock=clock)


@pytest.fixture
def app_config() -> AppConfig:
    config = AppConfig.defaults()
    config.storage.backend = "memory"
    config.escalation.enabled = False
    config.logging.file_enabled = False
    return config
