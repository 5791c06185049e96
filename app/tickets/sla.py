from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from .models import ExternalTicket
from .state import TicketStatus


@dataclass(slots=True, frozen=True)
class SlaStatus:
    """Derived countdown for a pending ticket; never persisted."""

    expires_at: datetime
    remaining: timedelta
    violated: bool

    @property
    def remaining_seconds(self) -> int:
        return max(0, int(self.remaining.total_seconds()))


def compute_sla_expiry(created_at: datetime, sla_hours: float | None) -> datetime | None:
    """Expiry timestamp for a ticket opened at ``created_at``."""

    if not sla_hours or sla_hours <= 0:
        return None
    return created_at + timedelta(hours=sla_hours)


def sla_status(expires_at: datetime, now: datetime) -> SlaStatus:
    return SlaStatus(expires_at=expires_at, remaining=expires_at - now, violated=now > expires_at)


def ticket_sla_status(ticket: ExternalTicket, now: datetime) -> SlaStatus | None:
    """Countdown shown while a ticket waits in the pending queue."""

    if ticket.sla_expires_at is None or ticket.status is not TicketStatus.PENDING:
        return None
    return sla_status(ticket.sla_expires_at, now)
