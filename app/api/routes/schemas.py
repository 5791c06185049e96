"""Request and response bodies shared by the ticket routers."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Union

from fastapi import HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.tickets.service import (
    InvalidTicketTransitionError,
    TicketNotFoundError,
    TicketPermissionError,
    TicketServiceError,
    TicketValidationError,
)
from app.tickets.state import TicketAction, TicketStatus, TicketType

ALL_STATUSES = "all"
StatusFilter = Union[TicketStatus, Literal["all"]]

_STATUS_CODES: dict[type[TicketServiceError], int] = {
    TicketNotFoundError: 404,
    TicketPermissionError: 403,
    InvalidTicketTransitionError: 409,
    TicketValidationError: 422,
}


def http_error(exc: TicketServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def resolve_status_filter(value: StatusFilter) -> TicketStatus | None:
    """Map the `all` listing to no status restriction."""

    if value == ALL_STATUSES:
        return None
    return TicketStatus(value)


class TicketClientModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = ""
    name: str = Field(..., min_length=1, max_length=255)
    phone: str = ""
    is_whats: bool = False
    address: str | None = None


class StampModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: str
    timestamp: datetime


class TechnicalReportModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    observations: str
    photos: list[str]
    signature: str | None


class CommentModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    author_id: str
    content: str
    created_at: datetime


class SlaModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    expires_at: datetime
    remaining_seconds: int
    violated: bool
    refresh_interval_seconds: int = 60


class ExternalTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    client: TicketClientModel
    sector_id: str
    creator_id: str
    description: str
    type: TicketType
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    technician_id: str | None
    requester_name: str | None
    scheduled_to: datetime | None
    sla_expires_at: datetime | None
    en_route: bool
    en_route_at: datetime | None
    check_in: StampModel | None
    check_out: StampModel | None
    technical_report: TechnicalReportModel | None
    comments: list[CommentModel]
    sla: SlaModel | None = None
    available_actions: list[TicketAction] = Field(default_factory=list)


class InternalTicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    creator_id: str
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    assignee_id: str | None
    sector_id: str | None
    is_priority: bool
    scheduled_to: datetime | None
    comments: list[CommentModel]


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
