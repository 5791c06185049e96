"""Scheduled creation of contract maintenance tickets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from app.services.directory import ClientRepository

from .events import TicketEvent, TicketEventBroker
from .models import Client, ExternalTicket, TicketClient
from .repository import ExternalTicketRepository
from .sla import compute_sla_expiry
from .state import ExternalTicketStateMachine, TicketType

logger = logging.getLogger(__name__)

SYSTEM_CREATOR_ID = "system"
PREVENTIVE_REQUESTER = "Sistema (Preventiva Automática)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PreventiveRunResult:
    created_ticket_ids: list[str] = field(default_factory=list)
    checked_clients: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created_ticket_ids)


@dataclass(slots=True)
class PreventiveMaintenanceService:
    """Open a pending ``contrato`` ticket whenever a contract visit is due.

    A visit is due for a client and sector when the latest ``contrato`` or
    ``padrão`` ticket there is at least ``frequency_days`` old, or when there
    is none at all.
    """

    tickets: ExternalTicketRepository
    clients: ClientRepository
    events: TicketEventBroker | None = None
    clock: Callable[[], datetime] = _utcnow

    async def generate(self) -> PreventiveRunResult:
        logger.info("Checking preventive maintenance contracts")
        clients = await self.clients.list_with_preventive_contract()
        result = PreventiveRunResult(checked_clients=len(clients))
        now = self.clock()

        for client in clients:
            contract = client.preventive_contract
            if contract is None or not contract.is_valid:
                continue
            for sector_id in contract.sector_ids:
                last = await self.tickets.find_last_preventive(client_id=client.id, sector_id=sector_id)
                if last is not None and (now - last.created_at).days < contract.frequency_days:
                    continue

                ticket = self._build_ticket(client, sector_id, contract.frequency_days, now)
                try:
                    await self.tickets.create(ticket)
                except SQLAlchemyError:
                    logger.exception("Failed to create preventive ticket for client %s in sector %s", client.id, sector_id)
                    continue
                logger.info("Preventive ticket %s created for %s in sector %s", ticket.id, client.name, sector_id)
                result.created_ticket_ids.append(ticket.id)
                if self.events is not None:
                    self.events.publish(
                        TicketEvent(
                            collection="external-tickets",
                            ticket_id=ticket.id,
                            action="create",
                            status=ticket.status.value,
                            at=now,
                        )
                    )

        if result.created_ticket_ids:
            logger.info("%d preventive tickets created", result.created_count)
        else:
            logger.info("No preventive ticket was due")
        return result

    @staticmethod
    def _build_ticket(client: Client, sector_id: str, frequency_days: int, now: datetime) -> ExternalTicket:
        return ExternalTicket(
            id=str(uuid4()),
            client=TicketClient(
                id=client.id,
                name=client.name,
                phone=client.phone,
                is_whats=False,
                address=client.address.format() if client.address else None,
            ),
            sector_id=sector_id,
            creator_id=SYSTEM_CREATOR_ID,
            description=(
                "Manutenção preventiva programada conforme contrato "
                f"(Frequência: {frequency_days} dias)."
            ),
            type=TicketType.CONTRACT,
            status=ExternalTicketStateMachine.initial_state(),
            created_at=now,
            updated_at=now,
            requester_name=PREVENTIVE_REQUESTER,
            sla_expires_at=compute_sla_expiry(now, client.sla_hours),
        )
