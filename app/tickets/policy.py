"""Role and status based eligibility rules for ticket actions.

Every rule is a plain predicate returning ``bool`` so it can be evaluated the
same way by the services (which enforce it before writing) and by any client
that only needs to decide whether to offer an action.
"""

from __future__ import annotations

from typing import Callable, Mapping

from .models import Actor, ExternalTicket, InternalTicket, Role
from .state import ExternalTicketStateMachine, InternalTicketStateMachine, TicketAction, TicketStatus

_FULL_ACCESS = (Role.ADMIN, Role.MANAGER)
_FIELD_ROLES = (Role.TECHNICIAN, Role.SUPERVISOR, Role.ADMIN, Role.MANAGER)


def has_sector_access(actor: Actor, sector_id: str | None) -> bool:
    if actor.has_role(*_FULL_ACCESS):
        return True
    return actor.covers_sector(sector_id)


def can_supervise(actor: Actor, sector_id: str | None) -> bool:
    """Admins and managers anywhere, supervisors inside their own sectors."""

    if actor.has_role(*_FULL_ACCESS):
        return True
    return actor.has_role(Role.SUPERVISOR) and actor.covers_sector(sector_id)


def can_view(actor: Actor, ticket: ExternalTicket) -> bool:
    return has_sector_access(actor, ticket.sector_id)


def can_intervene(actor: Actor, ticket: ExternalTicket) -> bool:
    if ticket.technician_id is not None and actor.id == ticket.technician_id:
        return True
    if can_supervise(actor, ticket.sector_id):
        return True
    # Any technician may reopen a finished ticket.
    return ticket.status is TicketStatus.DONE


def can_take(actor: Actor, ticket: ExternalTicket) -> bool:
    if ticket.status is not TicketStatus.PENDING or ticket.technician_id is not None:
        return False
    return actor.has_role(*_FIELD_ROLES) and has_sector_access(actor, ticket.sector_id)


def can_assign(actor: Actor, ticket: ExternalTicket) -> bool:
    if ticket.status is not TicketStatus.PENDING or ticket.technician_id is not None:
        return False
    return can_supervise(actor, ticket.sector_id)


def serves_sector(assignee: Actor, sector_id: str | None) -> bool:
    """Field staff registered in the sector; no sector means nobody qualifies."""

    if not assignee.has_role(Role.TECHNICIAN, Role.SUPERVISOR):
        return False
    return assignee.covers_sector(sector_id)


def is_eligible_assignee(assignee: Actor, ticket: ExternalTicket) -> bool:
    return serves_sector(assignee, ticket.sector_id)


def can_check_in(actor: Actor, ticket: ExternalTicket) -> bool:
    return ticket.status is TicketStatus.IN_PROGRESS and can_intervene(actor, ticket)


def can_set_en_route(actor: Actor, ticket: ExternalTicket) -> bool:
    return (
        actor.has_role(Role.TECHNICIAN)
        and ticket.technician_id == actor.id
        and ticket.status is TicketStatus.IN_PROGRESS
        and ticket.check_in is None
    )


def can_edit(actor: Actor, ticket: ExternalTicket) -> bool:
    if ticket.status in (TicketStatus.DONE, TicketStatus.CANCELLED):
        return False
    return can_intervene(actor, ticket)


_EXTERNAL_RULES: Mapping[TicketAction, Callable[[Actor, ExternalTicket], bool]] = {
    TicketAction.TAKE: can_take,
    TicketAction.ASSIGN: can_assign,
    TicketAction.CANCEL: can_intervene,
    TicketAction.FINALIZE: can_intervene,
    TicketAction.RETURN_TO_PENDING: can_intervene,
    TicketAction.REOPEN: can_intervene,
}


def is_permitted(ticket: ExternalTicket, action: TicketAction, actor: Actor) -> bool:
    """Whether ``actor`` holds the rights for ``action``, ignoring status guards."""

    rule = _EXTERNAL_RULES.get(action)
    if rule is None or not can_view(actor, ticket):
        return False
    return rule(actor, ticket)


def guard_failures(ticket: ExternalTicket, action: TicketAction) -> list[str]:
    """Preconditions on the ticket itself that block ``action``."""

    failures: list[str] = []
    if action is TicketAction.FINALIZE and ticket.check_in is None:
        failures.append("Ticket cannot be finalized before check-in")
    return failures


def can_transition(ticket: ExternalTicket, action: TicketAction, actor: Actor) -> bool:
    if not ExternalTicketStateMachine.can_transition(ticket.status, action):
        return False
    if not is_permitted(ticket, action, actor):
        return False
    return not guard_failures(ticket, action)


def available_actions(ticket: ExternalTicket, actor: Actor) -> list[TicketAction]:
    return [
        action
        for action in ExternalTicketStateMachine.allowed_actions(ticket.status)
        if can_transition(ticket, action, actor)
    ]


def can_view_internal(actor: Actor, ticket: InternalTicket) -> bool:
    if actor.has_role(*_FULL_ACCESS):
        return True
    if actor.has_role(Role.SUPERVISOR):
        return actor.covers_sector(ticket.sector_id)
    if actor.has_role(Role.TECHNICIAN):
        if actor.id in (ticket.assignee_id, ticket.creator_id):
            return True
        return ticket.assignee_id is None and actor.covers_sector(ticket.sector_id)
    return False


def can_grab_internal(actor: Actor, ticket: InternalTicket) -> bool:
    if ticket.status is not TicketStatus.PENDING or ticket.assignee_id is not None:
        return False
    return actor.has_role(Role.TECHNICIAN, Role.SUPERVISOR) and can_view_internal(actor, ticket)


def can_close_internal(actor: Actor, ticket: InternalTicket) -> bool:
    if actor.id in (ticket.assignee_id, ticket.creator_id):
        return True
    return can_supervise(actor, ticket.sector_id)


_INTERNAL_RULES: Mapping[TicketAction, Callable[[Actor, InternalTicket], bool]] = {
    TicketAction.GRAB: can_grab_internal,
    TicketAction.COMPLETE: can_close_internal,
    TicketAction.CANCEL: can_close_internal,
}


def is_permitted_internal(ticket: InternalTicket, action: TicketAction, actor: Actor) -> bool:
    rule = _INTERNAL_RULES.get(action)
    if rule is None or not can_view_internal(actor, ticket):
        return False
    return rule(actor, ticket)


def can_transition_internal(ticket: InternalTicket, action: TicketAction, actor: Actor) -> bool:
    if not InternalTicketStateMachine.can_transition(ticket.status, action):
        return False
    return is_permitted_internal(ticket, action, actor)
