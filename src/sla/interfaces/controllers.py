"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA definitions, the live breaching view and
compliance statistics.

Controllers are thin - they delegate to application services.
"""

from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status

from src.sla.application import (
    SLAService,
    SLACreateRequest,
    SLAUpdateRequest,
    SLAResponse,
    SLADeleteResponse,
    BreachingTicketResponse,
    SLAStatisticsResponse,
    ErrorResponse,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/slas", tags=["SLA"])


# ========== Example payloads for Swagger ==========

SLA_CREATE_EXAMPLE = {
    "name": "Standard Support",
    "description": "Default SLA for normal-priority tickets",
    "response_time": 3600,
    "resolution_time": 28800,
    "category": "general",
    "priority": 1
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "SLA not found"},
}


# ========== Dependencies ==========

def get_sla_service(request: Request) -> SLAService:
    """SLA service wired at startup."""
    return request.app.state.sla_service


# ========== Route Handlers ==========

@router.get(
    "",
    response_model=List[SLAResponse],
    summary="List SLAs",
    description="All SLA definitions, highest priority first."
)
async def list_slas(service: SLAService = Depends(get_sla_service)):
    return [SLAResponse.from_domain(sla) for sla in await service.list_slas()]


@router.get(
    "/breaching",
    response_model=List[BreachingTicketResponse],
    summary="Tickets currently breaching their SLA",
    description="""
    Active tickets past their response or resolution deadline.

    Recomputed from the live ticket set on every call; breach records
    written by the detector are not consulted.
    """
)
async def get_breaching_tickets(service: SLAService = Depends(get_sla_service)):
    breaching = await service.get_breaching_tickets()
    return [BreachingTicketResponse.from_domain(b) for b in breaching]


@router.get(
    "/statistics",
    response_model=List[SLAStatisticsResponse],
    summary="SLA compliance statistics",
    description="""
    Per-SLA totals and compliance rate.

    `compliance_rate` is the share of tickets completed within the SLA's
    resolution time, as a percentage with two decimals.
    """
)
async def get_sla_statistics(
    since: Optional[datetime] = Query(None, description="Only tickets created at or after this instant"),
    service: SLAService = Depends(get_sla_service)
):
    statistics = await service.get_statistics(since=since)
    return [SLAStatisticsResponse(**s.to_dict()) for s in statistics]


@router.get(
    "/{sla_id}",
    response_model=SLAResponse,
    responses=ERROR_RESPONSES,
    summary="Get SLA"
)
async def get_sla(sla_id: int, service: SLAService = Depends(get_sla_service)):
    return SLAResponse.from_domain(await service.get_sla(sla_id))


@router.post(
    "",
    response_model=SLAResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="Create SLA",
    description="""
    Create an SLA definition.

    Times are whole seconds from ticket creation; `resolution_time` must be
    greater than or equal to `response_time`.
    """,
    openapi_extra={
        "requestBody": {"content": {"application/json": {"example": SLA_CREATE_EXAMPLE}}}
    }
)
async def create_sla(
    request: SLACreateRequest,
    service: SLAService = Depends(get_sla_service)
):
    sla = await service.create_sla(**request.model_dump())
    return SLAResponse.from_domain(sla)


@router.put(
    "/{sla_id}",
    response_model=SLAResponse,
    responses=ERROR_RESPONSES,
    summary="Update SLA"
)
async def update_sla(
    sla_id: int,
    request: SLAUpdateRequest,
    service: SLAService = Depends(get_sla_service)
):
    sla = await service.update_sla(sla_id, **request.model_dump(exclude_unset=True))
    return SLAResponse.from_domain(sla)


@router.delete(
    "/{sla_id}",
    response_model=SLADeleteResponse,
    responses=ERROR_RESPONSES,
    summary="Delete SLA",
    description="Tickets using this SLA have their SLA reference cleared first."
)
async def delete_sla(sla_id: int, service: SLAService = Depends(get_sla_service)):
    detached = await service.delete_sla(sla_id)
    return SLADeleteResponse(id=sla_id, tickets_detached=detached)


# Export router for inclusion in main app
sla_router = router
