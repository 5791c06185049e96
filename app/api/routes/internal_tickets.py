from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.api.routes.schemas import (
    CommentRequest,
    InternalTicketResponse,
    StatusFilter,
    http_error,
    resolve_status_filter,
)
from app.dependencies.auth import CurrentUser
from app.dependencies.tickets import EventBrokerDep, InternalTicketServiceDep
from app.tickets.events import iter_sse
from app.tickets.models import InternalTicket
from app.tickets.service import INTERNAL_COLLECTION, TicketServiceError
from app.tickets.state import TicketStatus

router = APIRouter(prefix="/internal-tickets", tags=["internal-tickets"])


class InternalTicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    is_priority: bool = False
    scheduled_to: datetime | None = None
    sector_id: str | None = None
    assignee_id: str | None = None


def _to_response(ticket: InternalTicket) -> InternalTicketResponse:
    return InternalTicketResponse.model_validate(ticket)


@router.get("/events", summary="Live stream of internal ticket changes")
async def stream_events(broker: EventBrokerDep, _: CurrentUser) -> StreamingResponse:
    return StreamingResponse(iter_sse(broker, INTERNAL_COLLECTION), media_type="text/event-stream")


@router.get("", response_model=list[InternalTicketResponse])
async def list_tickets(
    service: InternalTicketServiceDep,
    user: CurrentUser,
    status_filter: StatusFilter = Query(default=TicketStatus.PENDING, alias="status"),
    sector_id: str | None = Query(default=None),
) -> list[InternalTicketResponse]:
    tickets = await service.list_tickets(user, status=resolve_status_filter(status_filter), sector_id=sector_id)
    return [_to_response(ticket) for ticket in tickets]


@router.post("", response_model=InternalTicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: InternalTicketCreateRequest,
    service: InternalTicketServiceDep,
    user: CurrentUser,
) -> InternalTicketResponse:
    try:
        ticket = await service.create_ticket(
            actor=user,
            title=payload.title,
            description=payload.description,
            is_priority=payload.is_priority,
            scheduled_to=payload.scheduled_to,
            sector_id=payload.sector_id,
            assignee_id=payload.assignee_id,
        )
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/grab", response_model=InternalTicketResponse)
async def grab_ticket(ticket_id: str, service: InternalTicketServiceDep, user: CurrentUser) -> InternalTicketResponse:
    try:
        ticket = await service.grab(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/complete", response_model=InternalTicketResponse)
async def complete_ticket(
    ticket_id: str,
    service: InternalTicketServiceDep,
    user: CurrentUser,
) -> InternalTicketResponse:
    try:
        ticket = await service.complete(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/cancel", response_model=InternalTicketResponse)
async def cancel_ticket(ticket_id: str, service: InternalTicketServiceDep, user: CurrentUser) -> InternalTicketResponse:
    try:
        ticket = await service.cancel(ticket_id, actor=user)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/comments", response_model=InternalTicketResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentRequest,
    service: InternalTicketServiceDep,
    user: CurrentUser,
) -> InternalTicketResponse:
    try:
        ticket = await service.add_comment(ticket_id, actor=user, content=payload.content)
    except TicketServiceError as exc:
        raise http_error(exc) from exc
    return _to_response(ticket)
