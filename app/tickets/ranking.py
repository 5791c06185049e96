"""Display ordering for ticket lists."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Iterable, Mapping

from .models import ExternalTicket, InternalTicket
from .state import TicketStatus, TicketType

SCHEDULED_OVERDUE = -1
SCHEDULED_TODAY = 0
SCHEDULED_FUTURE = 5
UNKNOWN_PRIORITY = 99

TYPE_PRIORITY: Mapping[TicketType, int] = {
    TicketType.RETURN: 1,
    TicketType.CONTRACT: 2,
    TicketType.URGENT: 3,
    TicketType.STANDARD: 4,
}


def to_local(value: datetime, tz: tzinfo) -> datetime:
    """Interpret naive timestamps as local wall-clock time in ``tz``."""

    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def priority_class(ticket: ExternalTicket, *, now: datetime, tz: tzinfo = timezone.utc) -> int:
    """Rank used as the primary sort key; lower values are served first."""

    if ticket.type is TicketType.SCHEDULED and ticket.scheduled_to is not None:
        scheduled = to_local(ticket.scheduled_to, tz)
        current = to_local(now, tz)
        if scheduled.date() == current.date():
            return SCHEDULED_TODAY
        if scheduled < current:
            return SCHEDULED_OVERDUE
        return SCHEDULED_FUTURE
    return TYPE_PRIORITY.get(ticket.type, UNKNOWN_PRIORITY)


def sort_external_tickets(
    tickets: Iterable[ExternalTicket],
    *,
    status_filter: TicketStatus | None,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> list[ExternalTicket]:
    """Order tickets for display.

    Completed listings show the most recently finished tickets first. Every
    other listing is ordered by priority class, oldest ticket first within a
    class.
    """

    if status_filter is TicketStatus.DONE:
        return sorted(tickets, key=lambda ticket: ticket.updated_at, reverse=True)
    return sorted(tickets, key=lambda ticket: (priority_class(ticket, now=now, tz=tz), ticket.created_at))


def sort_internal_tickets(tickets: Iterable[InternalTicket]) -> list[InternalTicket]:
    return sorted(tickets, key=lambda ticket: ticket.created_at, reverse=True)
