from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from app.notifications import WhatsAppNotifier, ZapiCredentials
from app.services.directory import ClientRepository, UserRepository
from app.services.system_logs import EXTERNAL_TICKET_CREATED, TICKET_TRANSITION, SystemLogRepository
from app.tickets.events import TicketEventBroker
from app.tickets.filters import TicketListPreferences
from app.tickets.models import Client, ExternalTicket, Role, TicketClient
from app.tickets.repository import ExternalTicketRepository
from app.tickets.service import (
    ExternalTicketService,
    InvalidTicketTransitionError,
    TicketNotFoundError,
    TicketPermissionError,
    TicketValidationError,
    classify_ticket_type,
)
from app.tickets.state import TicketAction, TicketStatus, TicketType


def _assert_assignment_invariant(ticket: ExternalTicket) -> None:
    assigned_states = (TicketStatus.IN_PROGRESS, TicketStatus.DONE)
    assert (ticket.technician_id is not None) == (ticket.status in assigned_states)


@pytest.fixture
def people(make_actor):
    return {
        "tech-1": make_actor("tech-1", phone="+55 11 91111-1111"),
        "tech-2": make_actor("tech-2", phone="+55 11 92222-2222"),
        "tech-3": make_actor("tech-3", sectors=("sector-b",)),
        "quiet": make_actor("quiet", phone=None),
        "boss": make_actor("boss", Role.SUPERVISOR),
        "manager": make_actor("manager", Role.MANAGER, sectors=()),
    }


@pytest_asyncio.fixture
async def users(session_factory, people):
    repository = UserRepository(session_factory)
    for actor in people.values():
        await repository.add(actor)
    return repository


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def service(session_factory, users, notifier, clock):
    return ExternalTicketService(
        repository=ExternalTicketRepository(session_factory),
        users=users,
        clients=ClientRepository(session_factory),
        notifier=notifier,
        system_logs=SystemLogRepository(session_factory),
        events=Mock(spec=TicketEventBroker),
        brand="Nexus Service",
        clock=clock,
    )


async def _open(service: ExternalTicketService, actor, **kwargs) -> ExternalTicket:
    kwargs.setdefault("client", TicketClient(name="Padaria Central", phone="1140028922", id="client-1"))
    kwargs.setdefault("sector_id", "sector-a")
    kwargs.setdefault("description", "Freezer is not cooling")
    return await service.create_ticket(actor=actor, **kwargs)


def test_ticket_type_follows_creation_flags():
    assert classify_ticket_type(scheduled=True, urgent=True, contract=True) is TicketType.SCHEDULED
    assert classify_ticket_type(scheduled=False, urgent=True, contract=True) is TicketType.URGENT
    assert classify_ticket_type(scheduled=False, urgent=False, contract=True) is TicketType.CONTRACT
    assert classify_ticket_type(scheduled=False, urgent=False, contract=False) is TicketType.STANDARD


@pytest.mark.asyncio
async def test_create_ticket_starts_pending_and_is_logged(service, people, session_factory, clock):
    ticket = await _open(service, people["tech-1"], urgent=True, requester_name="Joana")

    assert ticket.status is TicketStatus.PENDING
    assert ticket.type is TicketType.URGENT
    assert ticket.technician_id is None
    assert ticket.created_at == clock.now
    assert await service.get_ticket(ticket.id) == ticket

    entries = await SystemLogRepository(session_factory).list(event=EXTERNAL_TICKET_CREATED)
    assert entries[0].details == {"ticketId": ticket.id, "clientName": "Padaria Central"}
    service.events.publish.assert_called_once()


@pytest.mark.asyncio
async def test_create_ticket_outside_own_sector_is_rejected(service, people):
    with pytest.raises(TicketPermissionError):
        await _open(service, people["tech-3"])
    with pytest.raises(TicketValidationError):
        await _open(service, people["tech-1"], description="   ")


@pytest.mark.asyncio
async def test_create_with_assignee_starts_in_progress_and_notifies(service, people, notifier):
    ticket = await _open(service, people["manager"], assignee_id="tech-1")

    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.technician_id == "tech-1"
    notifier.send.assert_awaited_once()
    phone, body = notifier.send.await_args.args
    assert phone == "+55 11 91111-1111"
    assert body.startswith("*Novo Chamado Atribuído no Nexus Service!*")
    assert "*Atribuído por:* Manager" in body


@pytest.mark.asyncio
async def test_technicians_cannot_create_assigned_tickets(service, people):
    with pytest.raises(TicketPermissionError):
        await _open(service, people["tech-1"], assignee_id="tech-2")


@pytest.mark.asyncio
async def test_sla_is_violated_after_client_hours(service, people, session_factory, clock):
    await ClientRepository(session_factory).add(Client(id="client-1", name="Padaria Central", phone="11", sla_hours=4))
    ticket = await _open(service, people["manager"])
    assert ticket.sla_expires_at == clock.now + timedelta(hours=4)

    clock.advance(hours=5)
    listed = await service.list_tickets(people["manager"], TicketListPreferences(status=TicketStatus.PENDING))
    sla = service.sla_status(listed[0])

    assert sla is not None and sla.violated
    assert listed[0].status is TicketStatus.PENDING


@pytest.mark.asyncio
async def test_custom_sla_hours_override_client_hours(service, people, session_factory, clock):
    await ClientRepository(session_factory).add(Client(id="client-1", name="Padaria Central", phone="11", sla_hours=4))
    ticket = await _open(service, people["manager"], sla_hours=8)

    clock.advance(hours=5)
    assert ticket.sla_expires_at == clock.now + timedelta(hours=3)
    assert not service.sla_status(ticket).violated


@pytest.mark.asyncio
async def test_take_assigns_actor_and_notifies_their_phone(service, people, notifier):
    ticket = await _open(service, people["manager"])

    taken = await service.take(ticket.id, actor=people["tech-1"])

    assert taken.status is TicketStatus.IN_PROGRESS
    assert taken.technician_id == "tech-1"
    assert ticket.status is TicketStatus.PENDING
    phone, body = notifier.send.await_args.args
    assert phone == "+55 11 91111-1111"
    assert body.startswith("*Você Pegou um Chamado no Nexus Service!*")
    event = service.events.publish.call_args.args[0]
    assert (event.action, event.status) == ("take", "em andamento")


@pytest.mark.asyncio
async def test_take_survives_a_failed_notification_log(service, people):
    failing_logs = AsyncMock()
    failing_logs.record.side_effect = OperationalError("INSERT INTO system_logs", {}, Exception("disk I/O error"))
    credentials = ZapiCredentials(instance_id="inst-1", instance_token="tok-1", client_token="secret")
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"zaapId": "zaap-1"}))
    service = replace(service, notifier=WhatsAppNotifier(credentials, system_logs=failing_logs, transport=transport))
    ticket = await _open(service, people["manager"])

    taken = await service.take(ticket.id, actor=people["tech-1"])

    assert taken.status is TicketStatus.IN_PROGRESS
    stored = await service.get_ticket(ticket.id)
    assert stored.status is TicketStatus.IN_PROGRESS
    failing_logs.record.assert_awaited_once()


@pytest.mark.asyncio
async def test_take_without_phone_skips_notification(service, people, notifier):
    ticket = await _open(service, people["manager"])
    await service.take(ticket.id, actor=people["quiet"])
    notifier.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_take_rejections(service, people):
    ticket = await _open(service, people["manager"])

    with pytest.raises(TicketPermissionError):
        await service.take(ticket.id, actor=people["tech-3"])

    await service.take(ticket.id, actor=people["tech-1"])
    with pytest.raises(InvalidTicketTransitionError):
        await service.take(ticket.id, actor=people["tech-2"])
    with pytest.raises(TicketNotFoundError):
        await service.take("missing", actor=people["tech-1"])


@pytest.mark.asyncio
async def test_assign_validates_the_assignee(service, people, notifier):
    ticket = await _open(service, people["manager"])

    with pytest.raises(TicketValidationError):
        await service.assign(ticket.id, technician_id="tech-3", actor=people["boss"])
    with pytest.raises(TicketValidationError):
        await service.assign(ticket.id, technician_id="ghost", actor=people["boss"])
    with pytest.raises(TicketPermissionError):
        await service.assign(ticket.id, technician_id="tech-2", actor=people["tech-1"])
    assert (await service.get_ticket(ticket.id)).status is TicketStatus.PENDING

    assigned = await service.assign(ticket.id, technician_id="tech-2", actor=people["boss"])
    assert assigned.technician_id == "tech-2"
    assert notifier.send.await_args.args[0] == "+55 11 92222-2222"
    assert "*Atribuído por:* Boss" in notifier.send.await_args.args[1]


@pytest.mark.asyncio
async def test_finalize_requires_check_in(service, people, clock):
    ticket = await _open(service, people["manager"])
    await service.take(ticket.id, actor=people["tech-1"])

    with pytest.raises(TicketValidationError):
        await service.finalize(ticket.id, actor=people["tech-1"], observations="Replaced compressor")
    assert (await service.get_ticket(ticket.id)).status is TicketStatus.IN_PROGRESS

    await service.check_in(ticket.id, actor=people["tech-1"])
    with pytest.raises(TicketValidationError):
        await service.finalize(ticket.id, actor=people["tech-1"], observations="   ")

    clock.advance(hours=2)
    done = await service.finalize(
        ticket.id,
        actor=people["tech-1"],
        observations=" Replaced compressor ",
        photos=["photo-1"],
        signature="data:image/png;base64,AAA",
    )

    assert done.status is TicketStatus.DONE
    assert done.technical_report.observations == "Replaced compressor"
    assert done.check_out.timestamp == clock.now
    assert done.updated_at == clock.now
    assert await service.get_ticket(ticket.id) == done
    _assert_assignment_invariant(done)


@pytest.mark.asyncio
async def test_check_in_is_idempotent(service, people, clock):
    ticket = await _open(service, people["manager"])

    with pytest.raises(InvalidTicketTransitionError):
        await service.check_in(ticket.id, actor=people["tech-1"])

    await service.take(ticket.id, actor=people["tech-1"])
    with pytest.raises(TicketPermissionError):
        await service.check_in(ticket.id, actor=people["tech-2"])

    first = await service.check_in(ticket.id, actor=people["tech-1"])
    clock.advance(minutes=10)
    second = await service.check_in(ticket.id, actor=people["tech-1"])

    assert first.check_in is not None
    assert second.check_in == first.check_in


@pytest.mark.asyncio
async def test_en_route_is_a_singleton_per_technician(service, people):
    technician = people["tech-1"]
    first, second, third = [await _open(service, people["manager"]) for _ in range(3)]
    for ticket in (first, second, third):
        await service.take(ticket.id, actor=technician)

    await service.set_en_route(first.id, actor=technician)
    routed = await service.set_en_route(third.id, actor=technician)

    assert routed.id == third.id and routed.en_route
    assert (await service.get_ticket(first.id)).en_route is False
    assert (await service.get_ticket(second.id)).en_route is False
    assert (await service.get_ticket(third.id)).en_route is True


@pytest.mark.asyncio
async def test_en_route_rejections(service, people):
    ticket = await _open(service, people["manager"])
    with pytest.raises(TicketPermissionError):
        await service.set_en_route(ticket.id, actor=people["tech-1"])

    await service.take(ticket.id, actor=people["tech-1"])
    with pytest.raises(TicketPermissionError):
        await service.set_en_route(ticket.id, actor=people["tech-2"])

    await service.check_in(ticket.id, actor=people["tech-1"])
    with pytest.raises(InvalidTicketTransitionError):
        await service.set_en_route(ticket.id, actor=people["tech-1"])


@pytest.mark.asyncio
async def test_finalize_clears_en_route(service, people):
    ticket = await _open(service, people["manager"])
    await service.take(ticket.id, actor=people["tech-1"])
    await service.set_en_route(ticket.id, actor=people["tech-1"])
    await service.check_in(ticket.id, actor=people["tech-1"])

    done = await service.finalize(ticket.id, actor=people["tech-1"], observations="ok")
    assert done.en_route is False


@pytest.mark.asyncio
async def test_reopen_turns_ticket_into_a_return_visit(service, people):
    ticket = await _open(service, people["manager"], contract=True)
    await service.take(ticket.id, actor=people["tech-1"])
    await service.check_in(ticket.id, actor=people["tech-1"])
    await service.finalize(ticket.id, actor=people["tech-1"], observations="Fixed")

    reopened = await service.reopen(ticket.id, actor=people["tech-2"])

    assert reopened.status is TicketStatus.PENDING
    assert reopened.type is TicketType.RETURN
    assert reopened.technician_id is None
    assert reopened.check_in is None and reopened.check_out is None
    _assert_assignment_invariant(reopened)

    with pytest.raises(InvalidTicketTransitionError):
        await service.reopen(ticket.id, actor=people["manager"])


@pytest.mark.asyncio
async def test_return_to_pending_releases_the_ticket(service, people):
    ticket = await _open(service, people["manager"])
    await service.take(ticket.id, actor=people["tech-1"])
    await service.check_in(ticket.id, actor=people["tech-1"])

    with pytest.raises(TicketPermissionError):
        await service.return_to_pending(ticket.id, actor=people["tech-2"])

    returned = await service.return_to_pending(ticket.id, actor=people["tech-1"])
    assert returned.status is TicketStatus.PENDING
    assert returned.technician_id is None
    assert returned.check_in is None


@pytest.mark.asyncio
async def test_cancel_clears_assignment_and_is_final(service, people, session_factory):
    ticket = await _open(service, people["manager"])
    await service.take(ticket.id, actor=people["tech-1"])

    with pytest.raises(TicketPermissionError):
        await service.cancel(ticket.id, actor=people["tech-2"])

    cancelled = await service.cancel(ticket.id, actor=people["boss"])
    assert cancelled.status is TicketStatus.CANCELLED
    _assert_assignment_invariant(cancelled)

    with pytest.raises(InvalidTicketTransitionError):
        await service.cancel(ticket.id, actor=people["manager"])
    assert service.available_actions(cancelled, people["manager"]) == []

    transitions = await SystemLogRepository(session_factory).list(event=TICKET_TRANSITION)
    assert [entry.details["action"] for entry in transitions] == ["take", "cancel"]
    assert transitions[-1].details["to"] == "cancelado"


@pytest.mark.asyncio
async def test_comments_and_description_edits(service, people):
    ticket = await _open(service, people["manager"])
    await service.take(ticket.id, actor=people["tech-1"])

    commented = await service.add_comment(ticket.id, actor=people["tech-1"], content="  Parts ordered ")
    assert [comment.content for comment in commented.comments] == ["Parts ordered"]
    with pytest.raises(TicketValidationError):
        await service.add_comment(ticket.id, actor=people["tech-1"], content=" ")
    with pytest.raises(TicketPermissionError):
        await service.add_comment(ticket.id, actor=people["tech-3"], content="hello")

    edited = await service.update_description(ticket.id, actor=people["tech-1"], description="Freezer leaking gas")
    assert edited.description == "Freezer leaking gas"
    assert len(edited.comments) == 1
    with pytest.raises(TicketPermissionError):
        await service.update_description(ticket.id, actor=people["tech-2"], description="Nope")


@pytest.mark.asyncio
async def test_list_orders_pending_queue_by_priority(service, people):
    standard = await _open(service, people["manager"])
    urgent = await _open(service, people["manager"], urgent=True)
    contract = await _open(service, people["manager"], contract=True)

    listed = await service.list_tickets(people["tech-1"])

    assert [ticket.id for ticket in listed] == [contract.id, urgent.id, standard.id]
    assert TicketAction.TAKE in service.available_actions(listed[0], people["tech-1"])
    assert await service.list_tickets(people["tech-3"]) == []
