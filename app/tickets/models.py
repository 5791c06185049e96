from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Sequence

from .state import TicketStatus, TicketType


class Role(str, Enum):
    """Roles recognised by the lifecycle policies."""

    ADMIN = "admin"
    MANAGER = "gerente"
    SUPERVISOR = "encarregado"
    TECHNICIAN = "tecnico"


@dataclass(slots=True)
class Actor:
    """User performing an action on a ticket."""

    id: str
    name: str
    role: Role
    sector_ids: tuple[str, ...] = ()
    phone: str | None = None
    email: str | None = None

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles

    def covers_sector(self, sector_id: str | None) -> bool:
        return sector_id is not None and sector_id in self.sector_ids


@dataclass(slots=True)
class Comment:
    """Append-only note attached to a ticket."""

    id: str
    author_id: str
    content: str
    created_at: datetime


@dataclass(slots=True)
class TicketClient:
    """Snapshot of the client stored on an external ticket."""

    name: str
    phone: str = ""
    is_whats: bool = False
    id: str = ""
    address: str | None = None


@dataclass(slots=True)
class Stamp:
    """Check-in or check-out marker for a ticket visit."""

    ticket_id: str
    timestamp: datetime


@dataclass(slots=True)
class TechnicalReport:
    """Observations, photos and signature collected when finishing a visit."""

    observations: str
    photos: Sequence[str] = ()
    signature: str | None = None


@dataclass(slots=True)
class ExternalTicket:
    """Client-facing service request routed to a field technician."""

    id: str
    client: TicketClient
    sector_id: str
    creator_id: str
    description: str
    type: TicketType
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    technician_id: str | None = None
    requester_name: str | None = None
    scheduled_to: datetime | None = None
    sla_expires_at: datetime | None = None
    en_route: bool = False
    en_route_at: datetime | None = None
    check_in: Stamp | None = None
    check_out: Stamp | None = None
    technical_report: TechnicalReport | None = None
    comments: Sequence[Comment] = ()


@dataclass(slots=True)
class InternalTicket:
    """Internal task or reminder, optionally assigned within a sector."""

    id: str
    title: str
    creator_id: str
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    description: str = ""
    assignee_id: str | None = None
    sector_id: str | None = None
    is_priority: bool = False
    scheduled_to: datetime | None = None
    comments: Sequence[Comment] = ()


@dataclass(slots=True)
class ClientAddress:
    street: str
    neighborhood: str
    city: str
    state: str
    number: str | None = None
    complement: str | None = None

    def format(self) -> str:
        return f"{self.street}, {self.number or 'S/N'} - {self.neighborhood}, {self.city} - {self.state}"


@dataclass(slots=True)
class PreventiveContract:
    sector_ids: tuple[str, ...]
    frequency_days: int

    @property
    def is_valid(self) -> bool:
        return bool(self.sector_ids) and self.frequency_days > 0


@dataclass(slots=True)
class Client:
    """Customer record with the SLA and maintenance commitments."""

    id: str
    name: str
    phone: str
    status: str = "active"
    address: ClientAddress | None = None
    sla_hours: int | None = None
    preventive_contract: PreventiveContract | None = None


@dataclass(slots=True)
class SystemLog:
    """Operational event recorded alongside ticket changes."""

    id: str
    event: str
    timestamp: datetime
    user_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
