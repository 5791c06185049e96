from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone, tzinfo
from typing import Callable, Iterator, Sequence
from uuid import uuid4

from opentelemetry import trace

from app.notifications import Notifier, assignment_message, take_message
from app.services.directory import ClientRepository, UserRepository
from app.services.system_logs import EXTERNAL_TICKET_CREATED, TICKET_TRANSITION, SystemLogRepository

from . import policy
from .events import TicketEvent, TicketEventBroker
from .filters import TicketListPreferences, filter_external_tickets, filter_internal_tickets
from .models import Actor, Comment, ExternalTicket, InternalTicket, Role, Stamp, TechnicalReport, TicketClient
from .ranking import sort_external_tickets, sort_internal_tickets
from .repository import ExternalTicketRepository, InternalTicketRepository
from .sla import SlaStatus, compute_sla_expiry, ticket_sla_status
from .state import (
    ExternalTicketStateMachine,
    InternalTicketStateMachine,
    TicketAction,
    TicketStatus,
    TicketType,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

EXTERNAL_COLLECTION = "external-tickets"
INTERNAL_COLLECTION = "internal-tickets"


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


class InvalidTicketTransitionError(TicketServiceError):
    """Raised when an action is not allowed from the ticket's current status."""


class TicketPermissionError(TicketServiceError):
    """Raised when the actor lacks the rights for an action."""


class TicketValidationError(TicketServiceError):
    """Raised when the request is rejected before any write takes place."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_comment(actor: Actor, content: str, now: datetime) -> Comment:
    text = content.strip()
    if not text:
        raise TicketValidationError("Comment content must not be empty")
    return Comment(id=f"comment-{uuid4().hex}", author_id=actor.id, content=text, created_at=now)


@contextmanager
def _span(name: str, ticket_id: str | None, actor: Actor) -> Iterator[None]:
    with tracer.start_as_current_span(name) as span:
        if ticket_id is not None:
            span.set_attribute("ticket.id", ticket_id)
        span.set_attribute("actor.id", actor.id)
        span.set_attribute("actor.role", actor.role.value)
        yield


def classify_ticket_type(*, scheduled: bool, urgent: bool, contract: bool) -> TicketType:
    if scheduled:
        return TicketType.SCHEDULED
    if urgent:
        return TicketType.URGENT
    if contract:
        return TicketType.CONTRACT
    return TicketType.STANDARD


@dataclass(slots=True)
class ExternalTicketService:
    """Lifecycle orchestration for client-facing tickets.

    Every mutating operation resolves the target status through the state
    machine, checks the actor's rights through :mod:`app.tickets.policy` and only
    then writes. The ticket objects handed out are never mutated in place.
    """

    repository: ExternalTicketRepository
    users: UserRepository
    clients: ClientRepository | None = None
    notifier: Notifier | None = None
    system_logs: SystemLogRepository | None = None
    events: TicketEventBroker | None = None
    brand: str = "Nexus Service"
    local_timezone: tzinfo = timezone.utc
    clock: Callable[[], datetime] = _utcnow

    async def ensure_schema(self) -> None:
        await self.repository.ensure_schema()

    async def create_ticket(
        self,
        *,
        actor: Actor,
        client: TicketClient,
        sector_id: str,
        description: str,
        urgent: bool = False,
        contract: bool = False,
        scheduled_to: datetime | None = None,
        requester_name: str | None = None,
        assignee_id: str | None = None,
        sla_hours: float | None = None,
    ) -> ExternalTicket:
        with _span("external_ticket.create", None, actor):
            if not policy.has_sector_access(actor, sector_id):
                raise TicketPermissionError(f"User {actor.id} cannot open tickets for sector {sector_id}")
            if not description.strip():
                raise TicketValidationError("Description must not be empty")

            now = self.clock()
            if sla_hours is None and client.id and self.clients is not None:
                directory_client = await self.clients.get(client.id)
                if directory_client is not None:
                    sla_hours = directory_client.sla_hours

            ticket = ExternalTicket(
                id=str(uuid4()),
                client=client,
                sector_id=sector_id,
                creator_id=actor.id,
                description=description,
                type=classify_ticket_type(scheduled=scheduled_to is not None, urgent=urgent, contract=contract),
                status=ExternalTicketStateMachine.initial_state(),
                created_at=now,
                updated_at=now,
                requester_name=requester_name or None,
                scheduled_to=scheduled_to,
                sla_expires_at=compute_sla_expiry(now, sla_hours),
            )

            assignee: Actor | None = None
            if assignee_id is not None:
                if not policy.can_assign(actor, ticket):
                    raise TicketPermissionError(f"User {actor.id} cannot assign tickets in sector {sector_id}")
                assignee = await self._load_assignee(assignee_id, ticket)
                ticket = replace(
                    ticket,
                    technician_id=assignee.id,
                    status=ExternalTicketStateMachine.target(ticket.status, TicketAction.ASSIGN),
                )

            await self.repository.create(ticket)
            logger.info("External ticket %s created by %s for %s", ticket.id, actor.id, client.name)
            if self.system_logs is not None:
                await self.system_logs.record(
                    EXTERNAL_TICKET_CREATED,
                    user_id=actor.id,
                    details={"ticketId": ticket.id, "clientName": client.name},
                )
            if assignee is not None:
                await self._notify(assignee.phone, assignment_message(ticket, assigned_by=actor.name, brand=self.brand))
            self._publish(ticket, "create")
            return ticket

    async def get_ticket(self, ticket_id: str, *, actor: Actor | None = None) -> ExternalTicket:
        ticket = await self.repository.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        if actor is not None and not policy.can_view(actor, ticket):
            raise TicketPermissionError(f"User {actor.id} cannot view ticket {ticket_id}")
        return ticket

    async def list_tickets(self, actor: Actor, preferences: TicketListPreferences | None = None) -> list[ExternalTicket]:
        preferences = preferences or TicketListPreferences()
        tickets = await self.repository.list()
        visible = filter_external_tickets(tickets, actor, preferences)
        return sort_external_tickets(visible, status_filter=preferences.status, now=self.clock(), tz=self.local_timezone)

    def sla_status(self, ticket: ExternalTicket) -> SlaStatus | None:
        return ticket_sla_status(ticket, self.clock())

    def available_actions(self, ticket: ExternalTicket, actor: Actor) -> list[TicketAction]:
        return policy.available_actions(ticket, actor)

    async def take(self, ticket_id: str, *, actor: Actor) -> ExternalTicket:
        with _span("external_ticket.take", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            status = self._authorize(ticket, TicketAction.TAKE, actor)
            updated = replace(ticket, status=status, technician_id=actor.id, updated_at=self.clock())
            await self._commit(ticket, updated, TicketAction.TAKE, actor)
            await self._notify(actor.phone, take_message(updated, brand=self.brand))
            return updated

    async def assign(self, ticket_id: str, *, technician_id: str, actor: Actor) -> ExternalTicket:
        with _span("external_ticket.assign", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            status = self._authorize(ticket, TicketAction.ASSIGN, actor)
            assignee = await self._load_assignee(technician_id, ticket)
            updated = replace(ticket, status=status, technician_id=assignee.id, updated_at=self.clock())
            await self._commit(ticket, updated, TicketAction.ASSIGN, actor)
            await self._notify(assignee.phone, assignment_message(updated, assigned_by=actor.name, brand=self.brand))
            return updated

    async def cancel(self, ticket_id: str, *, actor: Actor) -> ExternalTicket:
        with _span("external_ticket.cancel", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            status = self._authorize(ticket, TicketAction.CANCEL, actor)
            updated = replace(
                ticket,
                status=status,
                technician_id=None,
                en_route=False,
                en_route_at=None,
                updated_at=self.clock(),
            )
            await self._commit(ticket, updated, TicketAction.CANCEL, actor)
            return updated

    async def return_to_pending(self, ticket_id: str, *, actor: Actor) -> ExternalTicket:
        with _span("external_ticket.return_to_pending", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            status = self._authorize(ticket, TicketAction.RETURN_TO_PENDING, actor)
            updated = replace(
                ticket,
                status=status,
                technician_id=None,
                check_in=None,
                check_out=None,
                en_route=False,
                en_route_at=None,
                updated_at=self.clock(),
            )
            await self._commit(ticket, updated, TicketAction.RETURN_TO_PENDING, actor)
            return updated

    async def reopen(self, ticket_id: str, *, actor: Actor) -> ExternalTicket:
        with _span("external_ticket.reopen", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            status = self._authorize(ticket, TicketAction.REOPEN, actor)
            updated = replace(
                ticket,
                status=status,
                type=TicketType.RETURN,
                technician_id=None,
                check_in=None,
                check_out=None,
                en_route=False,
                en_route_at=None,
                updated_at=self.clock(),
            )
            await self._commit(ticket, updated, TicketAction.REOPEN, actor)
            return updated

    async def check_in(self, ticket_id: str, *, actor: Actor) -> ExternalTicket:
        """Stamp the technician's arrival; repeated calls keep the first stamp."""

        with _span("external_ticket.check_in", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            if ticket.status is not TicketStatus.IN_PROGRESS:
                raise InvalidTicketTransitionError(f"Cannot check in on a ticket that is {ticket.status.value}")
            if not (policy.can_view(actor, ticket) and policy.can_check_in(actor, ticket)):
                raise TicketPermissionError(f"User {actor.id} cannot check in on ticket {ticket_id}")
            if ticket.check_in is not None:
                logger.debug("Ticket %s already checked in at %s", ticket_id, ticket.check_in.timestamp)
                return ticket

            now = self.clock()
            updated = replace(ticket, check_in=Stamp(ticket_id=ticket.id, timestamp=now), updated_at=now)
            await self._save(updated)
            self._publish(updated, "check_in")
            return updated

    async def set_en_route(self, ticket_id: str, *, actor: Actor) -> ExternalTicket:
        """Mark the ticket as the technician's next destination.

        Any other ticket of the same technician loses the flag in the same
        atomic write.
        """

        with _span("external_ticket.set_en_route", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            if not actor.has_role(Role.TECHNICIAN) or ticket.technician_id != actor.id:
                raise TicketPermissionError(f"Only the assigned technician can route to ticket {ticket_id}")
            if not policy.can_set_en_route(actor, ticket):
                raise InvalidTicketTransitionError(
                    f"Ticket {ticket_id} cannot be routed while {ticket.status.value} or after check-in"
                )

            try:
                changed = await self.repository.set_en_route(
                    technician_id=actor.id, ticket_id=ticket_id, at=self.clock()
                )
            except LookupError as exc:
                raise TicketNotFoundError(str(exc)) from exc
            for item in changed:
                self._publish(item, "en_route")
            logger.info("Technician %s en route to ticket %s", actor.id, ticket_id)
            return changed[-1]

    async def finalize(
        self,
        ticket_id: str,
        *,
        actor: Actor,
        observations: str,
        photos: Sequence[str] = (),
        signature: str | None = None,
    ) -> ExternalTicket:
        with _span("external_ticket.finalize", ticket_id, actor):
            ticket = await self.get_ticket(ticket_id)
            status = self._authorize(ticket, TicketAction.FINALIZE, actor)
            text = observations.strip()
            if not text:
                raise TicketValidationError("Observations are required to finalize a ticket")

            now = self.clock()
            updated = replace(
                ticket,
                status=status,
                technical_report=TechnicalReport(observations=text, photos=tuple(photos), signature=signature or None),
                check_out=Stamp(ticket_id=ticket.id, timestamp=now),
                en_route=False,
                en_route_at=None,
                updated_at=now,
            )
            await self._commit(ticket, updated, TicketAction.FINALIZE, actor)
            return updated

    async def add_comment(self, ticket_id: str, *, actor: Actor, content: str) -> ExternalTicket:
        ticket = await self.get_ticket(ticket_id, actor=actor)
        comment = _new_comment(actor, content, self.clock())
        updated = await self.repository.append_comment(ticket.id, comment)
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        self._publish(updated, "comment")
        return updated

    async def update_description(self, ticket_id: str, *, actor: Actor, description: str) -> ExternalTicket:
        ticket = await self.get_ticket(ticket_id)
        if not (policy.can_view(actor, ticket) and policy.can_edit(actor, ticket)):
            raise TicketPermissionError(f"User {actor.id} cannot edit ticket {ticket_id}")
        text = description.strip()
        if not text:
            raise TicketValidationError("Description must not be empty")
        if text == ticket.description:
            return ticket
        updated = replace(ticket, description=text, updated_at=self.clock())
        await self._save(updated)
        self._publish(updated, "edit")
        return updated

    def _authorize(self, ticket: ExternalTicket, action: TicketAction, actor: Actor) -> TicketStatus:
        if not ExternalTicketStateMachine.can_transition(ticket.status, action):
            raise InvalidTicketTransitionError(f"Cannot {action.value} a ticket that is {ticket.status.value}")
        if not policy.is_permitted(ticket, action, actor):
            raise TicketPermissionError(f"User {actor.id} cannot {action.value} ticket {ticket.id}")
        failures = policy.guard_failures(ticket, action)
        if failures:
            raise TicketValidationError("; ".join(failures))
        return ExternalTicketStateMachine.target(ticket.status, action)

    async def _load_assignee(self, user_id: str, ticket: ExternalTicket) -> Actor:
        assignee = await self.users.get(user_id)
        if assignee is None:
            raise TicketValidationError(f"Technician {user_id} not found")
        if not policy.is_eligible_assignee(assignee, ticket):
            raise TicketValidationError(f"Technician {user_id} does not serve sector {ticket.sector_id}")
        return assignee

    async def _commit(
        self,
        previous: ExternalTicket,
        updated: ExternalTicket,
        action: TicketAction,
        actor: Actor,
    ) -> None:
        await self._save(updated)
        logger.info(
            "Ticket %s: %s by %s (%s -> %s)",
            updated.id,
            action.value,
            actor.id,
            previous.status.value,
            updated.status.value,
        )
        if self.system_logs is not None:
            await self.system_logs.record(
                TICKET_TRANSITION,
                user_id=actor.id,
                details={
                    "collection": EXTERNAL_COLLECTION,
                    "ticketId": updated.id,
                    "action": action.value,
                    "from": previous.status.value,
                    "to": updated.status.value,
                },
            )
        self._publish(updated, action.value)

    async def _save(self, ticket: ExternalTicket) -> None:
        saved = await self.repository.update(ticket)
        if saved is None:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")

    async def _notify(self, phone: str | None, body: str) -> None:
        if self.notifier is None or not phone:
            return
        await self.notifier.send(phone, body)

    def _publish(self, ticket: ExternalTicket, action: str) -> None:
        if self.events is None:
            return
        self.events.publish(
            TicketEvent(
                collection=EXTERNAL_COLLECTION,
                ticket_id=ticket.id,
                action=action,
                status=ticket.status.value,
                at=ticket.updated_at,
            )
        )


@dataclass(slots=True)
class InternalTicketService:
    """Lifecycle orchestration for internal tasks."""

    repository: InternalTicketRepository
    users: UserRepository
    system_logs: SystemLogRepository | None = None
    events: TicketEventBroker | None = None
    clock: Callable[[], datetime] = _utcnow

    async def ensure_schema(self) -> None:
        await self.repository.ensure_schema()

    async def create_ticket(
        self,
        *,
        actor: Actor,
        title: str,
        description: str = "",
        is_priority: bool = False,
        scheduled_to: datetime | None = None,
        sector_id: str | None = None,
        assignee_id: str | None = None,
    ) -> InternalTicket:
        if not title.strip():
            raise TicketValidationError("Title must not be empty")
        if sector_id is None and actor.sector_ids:
            sector_id = actor.sector_ids[0]
        if sector_id is not None and not policy.has_sector_access(actor, sector_id):
            raise TicketPermissionError(f"User {actor.id} cannot open tasks in sector {sector_id}")
        # Technicians always own the tasks they open.
        if actor.has_role(Role.TECHNICIAN):
            assignee_id = actor.id
        elif assignee_id:
            await self._check_assignee(assignee_id, sector_id)

        now = self.clock()
        ticket = InternalTicket(
            id=str(uuid4()),
            title=title.strip(),
            description=description,
            creator_id=actor.id,
            status=InternalTicketStateMachine.initial_state(),
            created_at=now,
            updated_at=now,
            assignee_id=assignee_id or None,
            sector_id=sector_id,
            is_priority=is_priority,
            scheduled_to=scheduled_to,
        )
        await self.repository.create(ticket)
        logger.info("Internal ticket %s created by %s", ticket.id, actor.id)
        self._publish(ticket, "create")
        return ticket

    async def get_ticket(self, ticket_id: str, *, actor: Actor | None = None) -> InternalTicket:
        ticket = await self.repository.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        if actor is not None and not policy.can_view_internal(actor, ticket):
            raise TicketPermissionError(f"User {actor.id} cannot view ticket {ticket_id}")
        return ticket

    async def list_tickets(
        self,
        actor: Actor,
        *,
        status: TicketStatus | None = TicketStatus.PENDING,
        sector_id: str | None = None,
    ) -> list[InternalTicket]:
        tickets = await self.repository.list()
        return sort_internal_tickets(filter_internal_tickets(tickets, actor, status=status, sector_id=sector_id))

    async def grab(self, ticket_id: str, *, actor: Actor) -> InternalTicket:
        ticket = await self.get_ticket(ticket_id)
        status = self._authorize(ticket, TicketAction.GRAB, actor)
        updated = replace(ticket, status=status, assignee_id=actor.id, updated_at=self.clock())
        return await self._commit(ticket, updated, TicketAction.GRAB, actor)

    async def complete(self, ticket_id: str, *, actor: Actor) -> InternalTicket:
        ticket = await self.get_ticket(ticket_id)
        status = self._authorize(ticket, TicketAction.COMPLETE, actor)
        updated = replace(ticket, status=status, updated_at=self.clock())
        return await self._commit(ticket, updated, TicketAction.COMPLETE, actor)

    async def cancel(self, ticket_id: str, *, actor: Actor) -> InternalTicket:
        ticket = await self.get_ticket(ticket_id)
        status = self._authorize(ticket, TicketAction.CANCEL, actor)
        updated = replace(ticket, status=status, updated_at=self.clock())
        return await self._commit(ticket, updated, TicketAction.CANCEL, actor)

    async def add_comment(self, ticket_id: str, *, actor: Actor, content: str) -> InternalTicket:
        ticket = await self.get_ticket(ticket_id, actor=actor)
        comment = _new_comment(actor, content, self.clock())
        updated = await self.repository.append_comment(ticket.id, comment)
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        self._publish(updated, "comment")
        return updated

    async def _check_assignee(self, user_id: str, sector_id: str | None) -> None:
        if sector_id is None:
            raise TicketValidationError("Choose a sector before assigning the task")
        assignee = await self.users.get(user_id)
        if assignee is None:
            raise TicketValidationError(f"User {user_id} not found")
        if not policy.serves_sector(assignee, sector_id):
            raise TicketValidationError(f"User {user_id} does not serve sector {sector_id}")

    def _authorize(self, ticket: InternalTicket, action: TicketAction, actor: Actor) -> TicketStatus:
        if not InternalTicketStateMachine.can_transition(ticket.status, action):
            raise InvalidTicketTransitionError(f"Cannot {action.value} a ticket that is {ticket.status.value}")
        if not policy.is_permitted_internal(ticket, action, actor):
            raise TicketPermissionError(f"User {actor.id} cannot {action.value} ticket {ticket.id}")
        return InternalTicketStateMachine.target(ticket.status, action)

    async def _commit(
        self,
        previous: InternalTicket,
        updated: InternalTicket,
        action: TicketAction,
        actor: Actor,
    ) -> InternalTicket:
        with _span(f"internal_ticket.{action.value}", updated.id, actor):
            saved = await self.repository.update(updated)
            if saved is None:
                raise TicketNotFoundError(f"Ticket {updated.id} not found")
        logger.info("Internal ticket %s: %s by %s", updated.id, action.value, actor.id)
        if self.system_logs is not None:
            await self.system_logs.record(
                TICKET_TRANSITION,
                user_id=actor.id,
                details={
                    "collection": INTERNAL_COLLECTION,
                    "ticketId": updated.id,
                    "action": action.value,
                    "from": previous.status.value,
                    "to": updated.status.value,
                },
            )
        self._publish(updated, action.value)
        return updated

    def _publish(self, ticket: InternalTicket, action: str) -> None:
        if self.events is None:
            return
        self.events.publish(
            TicketEvent(
                collection=INTERNAL_COLLECTION,
                ticket_id=ticket.id,
                action=action,
                status=ticket.status.value,
                at=ticket.updated_at,
            )
        )
