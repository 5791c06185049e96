"""Ticket lifecycle domain: models, states, rules and orderings.

Services live in :mod:`app.tickets.service` and
:mod:`app.tickets.preventive` and are imported from there.
"""

from .events import TicketEvent, TicketEventBroker
from .filters import TicketListPreferences
from .models import Actor, Comment, ExternalTicket, InternalTicket, Role, TicketClient
from .sla import SlaStatus
from .state import (
    ExternalTicketStateMachine,
    InternalTicketStateMachine,
    TicketAction,
    TicketStatus,
    TicketType,
)

__all__ = [
    "Actor",
    "Comment",
    "ExternalTicket",
    "ExternalTicketStateMachine",
    "InternalTicket",
    "InternalTicketStateMachine",
    "Role",
    "SlaStatus",
    "TicketAction",
    "TicketClient",
    "TicketEvent",
    "TicketEventBroker",
    "TicketListPreferences",
    "TicketStatus",
    "TicketType",
]
