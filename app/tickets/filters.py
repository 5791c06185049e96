"""List filtering driven by explicit per-screen preferences."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .models import Actor, ExternalTicket, InternalTicket, Role
from .policy import can_view, can_view_internal
from .state import TicketStatus, TicketType


@dataclass(slots=True, frozen=True)
class TicketListPreferences:
    """User-selected view of the ticket list.

    ``status`` of ``None`` means every status. ``my_tickets_only`` left as
    ``None`` follows the default for the chosen status: in-progress and
    completed listings start restricted to the current user unless a
    technician filter is set.
    """

    status: TicketStatus | None = TicketStatus.PENDING
    technician_id: str | None = None
    sector_id: str | None = None
    contract_only: bool = False
    my_tickets_only: bool | None = None
    search: str = ""

    @property
    def effective_technician_id(self) -> str | None:
        if self.status is TicketStatus.PENDING:
            return None
        return self.technician_id

    @property
    def effective_my_tickets_only(self) -> bool:
        if self.effective_technician_id is not None:
            return False
        if self.my_tickets_only is not None:
            return self.my_tickets_only
        return self.status in (TicketStatus.IN_PROGRESS, TicketStatus.DONE)


def matches_search(ticket: ExternalTicket, query: str) -> bool:
    query = query.strip().lower()
    if not query:
        return True
    haystacks = [ticket.client.name, ticket.description, ticket.requester_name or ""]
    return any(query in value.lower() for value in haystacks)


def filter_external_tickets(
    tickets: Iterable[ExternalTicket],
    actor: Actor,
    preferences: TicketListPreferences,
) -> list[ExternalTicket]:
    technician_id = preferences.effective_technician_id
    my_tickets_only = preferences.effective_my_tickets_only
    selected: list[ExternalTicket] = []
    for ticket in tickets:
        if not can_view(actor, ticket):
            continue
        if not matches_search(ticket, preferences.search):
            continue
        if preferences.status is not None and ticket.status is not preferences.status:
            continue
        if technician_id is not None and ticket.technician_id != technician_id:
            continue
        if preferences.sector_id is not None and ticket.sector_id != preferences.sector_id:
            continue
        if preferences.contract_only and ticket.type is not TicketType.CONTRACT:
            continue
        if my_tickets_only and ticket.technician_id != actor.id:
            continue
        selected.append(ticket)
    return selected


def filter_internal_tickets(
    tickets: Iterable[InternalTicket],
    actor: Actor,
    *,
    status: TicketStatus | None = TicketStatus.PENDING,
    sector_id: str | None = None,
) -> list[InternalTicket]:
    selected: list[InternalTicket] = []
    for ticket in tickets:
        if not can_view_internal(actor, ticket):
            continue
        if sector_id is not None and ticket.sector_id != sector_id:
            continue
        if status is not None and ticket.status is not status:
            continue
        if (
            status is TicketStatus.PENDING
            and actor.has_role(Role.TECHNICIAN)
            and ticket.assignee_id not in (None, actor.id)
        ):
            continue
        selected.append(ticket)
    return selected
