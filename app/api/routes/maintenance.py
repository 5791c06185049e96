from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from app.dependencies.tickets import ManagerUser, PreventiveServiceDep

router = APIRouter(prefix="/maintenance", tags=["maintenance"])


class PreventiveRunResponse(BaseModel):
    message: str
    created_ticket_ids: list[str]
    created_tickets_count: int
    checked_clients_count: int


@router.post("/preventive", response_model=PreventiveRunResponse, summary="Generate due preventive tickets")
async def run_preventive_maintenance(service: PreventiveServiceDep, _: ManagerUser) -> PreventiveRunResponse:
    result = await service.generate()
    return PreventiveRunResponse(
        message="Preventive maintenance check finished",
        created_ticket_ids=result.created_ticket_ids,
        created_tickets_count=result.created_count,
        checked_clients_count=result.checked_clients,
    )
