from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import packages.db  # noqa: F401  registers the tables on SQLModel.metadata
from app.tickets.models import Actor, ExternalTicket, InternalTicket, Role, TicketClient
from app.tickets.state import TicketStatus, TicketType

BASE_TIME = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    db_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with db_engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
    try:
        yield db_engine
    finally:
        await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def make_actor():
    def factory(
        actor_id: str = "tech-1",
        role: Role = Role.TECHNICIAN,
        *,
        sectors: tuple[str, ...] = ("sector-a",),
        phone: str | None = "+55 (11) 99999-0000",
    ) -> Actor:
        return Actor(id=actor_id, name=actor_id.title(), role=role, sector_ids=sectors, phone=phone)

    return factory


@pytest.fixture
def make_ticket():
    sequence = count(1)

    def factory(
        *,
        status: TicketStatus = TicketStatus.PENDING,
        type: TicketType = TicketType.STANDARD,
        technician_id: str | None = None,
        sector_id: str = "sector-a",
        created_at: datetime = BASE_TIME,
        **overrides,
    ) -> ExternalTicket:
        number = next(sequence)
        values = dict(
            id=f"ticket-{number}",
            client=TicketClient(name=f"Client {number}", phone="11 4002-8922", id=f"client-{number}"),
            sector_id=sector_id,
            creator_id="manager-1",
            description="Air conditioning is leaking",
            type=type,
            status=status,
            created_at=created_at,
            updated_at=created_at,
            technician_id=technician_id,
        )
        values.update(overrides)
        return ExternalTicket(**values)

    return factory


@pytest.fixture
def make_internal_ticket():
    sequence = count(1)

    def factory(
        *,
        status: TicketStatus = TicketStatus.PENDING,
        assignee_id: str | None = None,
        creator_id: str = "manager-1",
        sector_id: str | None = "sector-a",
        created_at: datetime = BASE_TIME,
        **overrides,
    ) -> InternalTicket:
        number = next(sequence)
        values = dict(
            id=f"internal-{number}",
            title=f"Task {number}",
            creator_id=creator_id,
            status=status,
            created_at=created_at,
            updated_at=created_at,
            assignee_id=assignee_id,
            sector_id=sector_id,
        )
        values.update(overrides)
        return InternalTicket(**values)

    return factory
