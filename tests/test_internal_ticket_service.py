from __future__ import annotations

from datetime import timedelta
from unittest.mock import Mock

import pytest
import pytest_asyncio

from app.services.directory import UserRepository
from app.tickets.events import TicketEventBroker
from app.tickets.models import Role
from app.tickets.repository import InternalTicketRepository
from app.tickets.service import (
    InternalTicketService,
    InvalidTicketTransitionError,
    TicketPermissionError,
    TicketValidationError,
)
from app.tickets.state import TicketStatus


@pytest_asyncio.fixture
async def users(session_factory, make_actor):
    repository = UserRepository(session_factory)
    await repository.add(make_actor("tech-2"))
    await repository.add(make_actor("tech-3", sectors=("sector-b",)))
    await repository.add(make_actor("manager-2", Role.MANAGER, sectors=("sector-a",)))
    return repository


@pytest.fixture
def service(session_factory, users, clock):
    return InternalTicketService(
        repository=InternalTicketRepository(session_factory),
        users=users,
        events=Mock(spec=TicketEventBroker),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_technician_owns_the_tasks_they_create(service, make_actor):
    technician = make_actor("tech-1", sectors=("sector-a", "sector-b"))

    ticket = await service.create_ticket(actor=technician, title="  Restock filters ", assignee_id="tech-9")

    assert ticket.title == "Restock filters"
    assert ticket.assignee_id == "tech-1"
    assert ticket.sector_id == "sector-a"
    assert ticket.status is TicketStatus.PENDING
    with pytest.raises(TicketValidationError):
        await service.create_ticket(actor=technician, title=" ")


@pytest.mark.asyncio
async def test_grab_then_complete(service, make_actor, clock):
    manager = make_actor("manager-1", Role.MANAGER, sectors=())
    technician = make_actor("tech-1")
    ticket = await service.create_ticket(actor=manager, title="Inventory", sector_id="sector-a", is_priority=True)
    assert ticket.assignee_id is None

    clock.advance(minutes=5)
    grabbed = await service.grab(ticket.id, actor=technician)
    assert grabbed.assignee_id == "tech-1"
    assert grabbed.status is TicketStatus.PENDING
    assert grabbed.updated_at == clock.now

    with pytest.raises(TicketPermissionError):
        await service.grab(ticket.id, actor=make_actor("tech-2"))
    with pytest.raises(TicketPermissionError):
        await service.complete(ticket.id, actor=make_actor("tech-2"))

    done = await service.complete(ticket.id, actor=technician)
    assert done.status is TicketStatus.DONE
    with pytest.raises(InvalidTicketTransitionError):
        await service.cancel(ticket.id, actor=manager)


@pytest.mark.asyncio
async def test_creator_can_cancel_and_comment(service, make_actor):
    supervisor = make_actor("boss", Role.SUPERVISOR)
    ticket = await service.create_ticket(actor=supervisor, title="Fix the van", description="Brakes squeak")

    commented = await service.add_comment(ticket.id, actor=supervisor, content="Booked for Monday")
    assert [comment.content for comment in commented.comments] == ["Booked for Monday"]

    cancelled = await service.cancel(ticket.id, actor=supervisor)
    assert cancelled.status is TicketStatus.CANCELLED
    assert [call.args[0].action for call in service.events.publish.call_args_list] == ["create", "comment", "cancel"]


@pytest.mark.asyncio
async def test_list_applies_visibility_and_newest_first(service, make_actor, clock):
    manager = make_actor("manager-1", Role.MANAGER, sectors=())
    technician = make_actor("tech-1")

    older = await service.create_ticket(actor=manager, title="Older", sector_id="sector-a")
    clock.advance(hours=1)
    newer = await service.create_ticket(actor=manager, title="Newer", sector_id="sector-a")
    clock.advance(hours=1)
    foreign = await service.create_ticket(actor=manager, title="Foreign", sector_id="sector-b")
    clock.advance(hours=1)
    theirs = await service.create_ticket(actor=manager, title="Theirs", sector_id="sector-a", assignee_id="tech-2")

    listed = await service.list_tickets(technician)
    assert [ticket.id for ticket in listed] == [newer.id, older.id]

    everything = await service.list_tickets(manager)
    assert [ticket.id for ticket in everything] == [theirs.id, foreign.id, newer.id, older.id]
    assert clock.now - older.created_at == timedelta(hours=3)


@pytest.mark.asyncio
async def test_create_checks_sector_and_assignee(service, make_actor):
    supervisor = make_actor("boss", Role.SUPERVISOR)
    manager = make_actor("manager-1", Role.MANAGER, sectors=())

    with pytest.raises(TicketPermissionError):
        await service.create_ticket(actor=supervisor, title="Audit", sector_id="sector-b")
    with pytest.raises(TicketValidationError):
        await service.create_ticket(actor=supervisor, title="Audit", assignee_id="ghost")
    with pytest.raises(TicketValidationError):
        await service.create_ticket(actor=supervisor, title="Audit", assignee_id="tech-3")
    with pytest.raises(TicketValidationError):
        await service.create_ticket(actor=manager, title="Audit", sector_id="sector-a", assignee_id="manager-2")
    with pytest.raises(TicketValidationError):
        await service.create_ticket(actor=manager, title="Audit", assignee_id="tech-2")

    ticket = await service.create_ticket(actor=supervisor, title="Audit", assignee_id="tech-2")
    assert ticket.sector_id == "sector-a"
    assert ticket.assignee_id == "tech-2"
    assert service.events.publish.call_count == 1
