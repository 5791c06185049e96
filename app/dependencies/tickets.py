from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from app.dependencies.auth import role_required
from app.tickets.events import TicketEventBroker
from app.tickets.models import Actor, Role
from app.tickets.preventive import PreventiveMaintenanceService
from app.tickets.service import ExternalTicketService, InternalTicketService

require_manager = role_required(Role.ADMIN, Role.MANAGER)

ManagerUser = Annotated[Actor, Depends(require_manager)]


def _from_state(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{label} is not configured")
    return value


async def get_external_ticket_service(request: Request) -> ExternalTicketService:
    return _from_state(request, "external_ticket_service", "External ticket service")


async def get_internal_ticket_service(request: Request) -> InternalTicketService:
    return _from_state(request, "internal_ticket_service", "Internal ticket service")


async def get_preventive_service(request: Request) -> PreventiveMaintenanceService:
    return _from_state(request, "preventive_service", "Preventive maintenance")


async def get_event_broker(request: Request) -> TicketEventBroker:
    return _from_state(request, "ticket_events", "Ticket event stream")


ExternalTicketServiceDep = Annotated[ExternalTicketService, Depends(get_external_ticket_service)]
InternalTicketServiceDep = Annotated[InternalTicketService, Depends(get_internal_ticket_service)]
PreventiveServiceDep = Annotated[PreventiveMaintenanceService, Depends(get_preventive_service)]
EventBrokerDep = Annotated[TicketEventBroker, Depends(get_event_broker)]
