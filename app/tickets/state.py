from __future__ import annotations

from enum import Enum
from typing import Mapping


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    PENDING = "pendente"
    IN_PROGRESS = "em andamento"
    DONE = "concluído"
    CANCELLED = "cancelado"


class TicketType(str, Enum):
    """Service classification of an external ticket."""

    STANDARD = "padrão"
    CONTRACT = "contrato"
    URGENT = "urgente"
    SCHEDULED = "agendado"
    RETURN = "retorno"


class TicketAction(str, Enum):
    """Lifecycle actions an actor may trigger on a ticket."""

    TAKE = "take"
    ASSIGN = "assign"
    CANCEL = "cancel"
    FINALIZE = "finalize"
    RETURN_TO_PENDING = "return_to_pending"
    REOPEN = "reopen"
    GRAB = "grab"
    COMPLETE = "complete"


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    Transitions are keyed by ``(current status, action)`` and resolve to the
    status the ticket ends up in. Actions that do not change the status (such as
    grabbing an internal ticket) map a status onto itself.
    """

    _TRANSITIONS: Mapping[TicketStatus, Mapping[TicketAction, TicketStatus]] = {}

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.PENDING

    @classmethod
    def allowed_actions(cls, current: TicketStatus) -> frozenset[TicketAction]:
        return frozenset(cls._TRANSITIONS.get(current, {}))

    @classmethod
    def can_transition(cls, current: TicketStatus, action: TicketAction) -> bool:
        return action in cls._TRANSITIONS.get(current, {})

    @classmethod
    def target(cls, current: TicketStatus, action: TicketAction) -> TicketStatus:
        cls.assert_transition(current, action)
        return cls._TRANSITIONS[current][action]

    @classmethod
    def assert_transition(cls, current: TicketStatus, action: TicketAction) -> None:
        if not cls.can_transition(current, action):
            raise ValueError(f"Invalid ticket transition: {action.value} from {current.value!r}")


class ExternalTicketStateMachine(TicketStateMachine):
    """Client-facing tickets: take, work on site, finalize with a report."""

    _TRANSITIONS = {
        TicketStatus.PENDING: {
            TicketAction.TAKE: TicketStatus.IN_PROGRESS,
            TicketAction.ASSIGN: TicketStatus.IN_PROGRESS,
            TicketAction.CANCEL: TicketStatus.CANCELLED,
        },
        TicketStatus.IN_PROGRESS: {
            TicketAction.FINALIZE: TicketStatus.DONE,
            TicketAction.RETURN_TO_PENDING: TicketStatus.PENDING,
            TicketAction.CANCEL: TicketStatus.CANCELLED,
        },
        TicketStatus.DONE: {
            TicketAction.REOPEN: TicketStatus.PENDING,
        },
        TicketStatus.CANCELLED: {},
    }


class InternalTicketStateMachine(TicketStateMachine):
    """Internal tasks close directly, without check-in or report."""

    _TRANSITIONS = {
        TicketStatus.PENDING: {
            TicketAction.GRAB: TicketStatus.PENDING,
            TicketAction.COMPLETE: TicketStatus.DONE,
            TicketAction.CANCEL: TicketStatus.CANCELLED,
        },
        TicketStatus.DONE: {},
        TicketStatus.CANCELLED: {},
    }
