from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.api.routes.schemas import (
    CommentRequest,
    ExternalTicketResponse,
    SlaModel,
    StatusFilter,
    TicketClientModel,
    http_error,
    resolve_status_filter,
)
from app.core.config import get_settings
from app.dependencies.auth import CurrentUser
from app.dependencies.tickets import EventBrokerDep, ExternalTicketServiceDep
from app.tickets.events import iter_sse
from app.tickets.filters import TicketListPreferences
from app.tickets.models import Actor, ExternalTicket, TicketClient
from app.tickets.service import EXTERNAL_COLLECTION, ExternalTicketService, TicketServiceError
from app.tickets.sla import SlaStatus
from app.tickets.state import TicketStatus

router = APIRouter(prefix="/external-tickets", tags=["external-tickets"])


class ExternalTicketCreateRequest(BaseModel):
    client: TicketClientModel
    sector_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    urgent: bool = False
    contract: bool = False
    scheduled_to: datetime | None = None
    requester_name: str | None = Field(default=None, max_length=255)
    assignee_id: str | None = None
    sla_hours: float | None = Field(default=None, gt=0)


class AssignRequest(BaseModel):
    technician_id: str = Field(..., min_length=1)


class FinalizeRequest(BaseModel):
    observations: str = Field(..., min_length=1)
    photos: list[str] = Field(default_factory=list)
    signature: str | None = None


class DescriptionUpdateRequest(BaseModel):
    description: str = Field(..., min_length=1)


def _sla_model(sla: SlaStatus) -> SlaModel:
    interval = get_settings().sla_refresh_interval_seconds
    return SlaModel.model_validate(sla).model_copy(update={"refresh_interval_seconds": interval})


def _to_response(ticket: ExternalTicket, service: ExternalTicketService, actor: Actor) -> ExternalTicketResponse:
    response = ExternalTicketResponse.model_validate(ticket)
    sla = service.sla_status(ticket)
    return response.model_copy(
        update={
            "sla": _sla_model(sla) if sla is not None else None,
            "available_actions": service.available_actions(ticket, actor),
        }
    )


@router.get("/events", summary="Live stream of external ticket changes")
async def stream_events(broker: EventBrokerDep, _: CurrentUser) -> StreamingResponse:
    return StreamingResponse(iter_sse(broker, EXTERNAL_COLLECTION), media_type="text/event-stream")


@router.get("", response_model=list[ExternalTicketResponse])
async def list_tickets(
    service: ExternalTicketServiceDep,
    user: CurrentUser,
    status_filter: StatusFilter = Query(default=TicketStatus.PENDING, alias="status"),
    technician_id: str | None = Query(default=None),
    sector_id: str | None = Query(default=None),
    contract_only: bool = Query(default=False),
    my_tickets_only: bool | None = Query(default=None),
    search: str = Query(default="", max_length=255),
) -> list[ExternalTicketResponse]:
    preferences = TicketListPreferences(
        status=resolve_status_filter(status_filter),
        technician_id=technician_id,
        sector_id=sector_id,
        contract_only=contract_only,
        my_tickets_only=my_tickets_only,
        search=search,
    )
    tickets = await service.list_tickets(user, preferences)
    return [_to_response(ticket, service, user) for ticket in tickets]


@router.post("", response_model=ExternalTicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: ExternalTicketCreateRequest,
    service: ExternalTicketServiceDep,
    user: CurrentUser,
) -> ExternalTicketResponse:
    try:
        ticket = await service.create_ticket(
            actor=user,
            client=TicketClient(**payload.client.model_dump()),
            sector_id=payload.sector_id,
            description=payload.description,
            urgent=payload.urgent,
            contract=payload.contract,
            scheduled_to=payload.scheduled_to,
            requester_name=payload.requester_name,
            assignee_id=payload.assignee_id,
            sla_hours=payload.sla_hours,
        )
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.get("/{ticket_id}", response_model=ExternalTicketResponse)
async def get_ticket(ticket_id: str, service: ExternalTicketServiceDep, user: CurrentUser) -> ExternalTicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/take", response_model=ExternalTicketResponse)
async def take_ticket(ticket_id: str, service: ExternalTicketServiceDep, user: CurrentUser) -> ExternalTicketResponse:
    try:
        ticket = await service.take(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/assign", response_model=ExternalTicketResponse)
async def assign_ticket(
    ticket_id: str,
    payload: AssignRequest,
    service: ExternalTicketServiceDep,
    user: CurrentUser,
) -> ExternalTicketResponse:
    try:
        ticket = await service.assign(ticket_id, technician_id=payload.technician_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/cancel", response_model=ExternalTicketResponse)
async def cancel_ticket(ticket_id: str, service: ExternalTicketServiceDep, user: CurrentUser) -> ExternalTicketResponse:
    try:
        ticket = await service.cancel(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/return", response_model=ExternalTicketResponse)
async def return_ticket(ticket_id: str, service: ExternalTicketServiceDep, user: CurrentUser) -> ExternalTicketResponse:
    try:
        ticket = await service.return_to_pending(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/reopen", response_model=ExternalTicketResponse)
async def reopen_ticket(ticket_id: str, service: ExternalTicketServiceDep, user: CurrentUser) -> ExternalTicketResponse:
    try:
        ticket = await service.reopen(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/check-in", response_model=ExternalTicketResponse)
async def check_in(ticket_id: str, service: ExternalTicketServiceDep, user: CurrentUser) -> ExternalTicketResponse:
    try:
        ticket = await service.check_in(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/en-route", response_model=ExternalTicketResponse)
async def set_en_route(ticket_id: str, service: ExternalTicketServiceDep, user: CurrentUser) -> ExternalTicketResponse:
    try:
        ticket = await service.set_en_route(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/finalize", response_model=ExternalTicketResponse)
async def finalize_ticket(
    ticket_id: str,
    payload: FinalizeRequest,
    service: ExternalTicketServiceDep,
    user: CurrentUser,
) -> ExternalTicketResponse:
    try:
        ticket = await service.finalize(
            ticket_id,
            actor=user,
            observations=payload.observations,
            photos=payload.photos,
            signature=payload.signature,
        )
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.post("/{ticket_id}/comments", response_model=ExternalTicketResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentRequest,
    service: ExternalTicketServiceDep,
    user: CurrentUser,
) -> ExternalTicketResponse:
    try:
        ticket = await service.add_comment(ticket_id, actor=user, content=payload.content)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)


@router.patch("/{ticket_id}/description", response_model=ExternalTicketResponse)
async def update_description(
    ticket_id: str,
    payload: DescriptionUpdateRequest,
    service: ExternalTicketServiceDep,
    user: CurrentUser,
) -> ExternalTicketResponse:
    try:
        ticket = await service.update_description(ticket_id, actor=user, description=payload.description)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket, service, user)
