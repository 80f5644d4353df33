"""
Assignment Controllers (API Routes)
====================================

FastAPI routes for auto-assignment, breach reassignment and ticket
automation.

Controllers are thin - they delegate to application services.
"""

from typing import List

from fastapi import APIRouter, Depends, Request

from src.assignment.application import (
    AssignmentCoordinator,
    AutomationService,
    AssignmentOutcomeResponse,
    SweepSummaryResponse,
    AssignmentDecisionResponse,
    AutomationOutcomeResponse,
    RuleSetResponse,
)
from src.sla.application import ErrorResponse
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

assignment_router = APIRouter(prefix="/assignments", tags=["Assignment"])
automation_router = APIRouter(prefix="/automation", tags=["Automation"])

NOT_FOUND = {404: {"model": ErrorResponse, "description": "Ticket not found"}}


# ========== Dependencies ==========

def get_coordinator(request: Request) -> AssignmentCoordinator:
    return request.app.state.assignment_coordinator


def get_automation_service(request: Request) -> AutomationService:
    return request.app.state.automation_service


# ========== Assignment ==========

@assignment_router.post(
    "/tickets/{ticket_id}/auto-assign",
    response_model=AssignmentOutcomeResponse,
    responses=NOT_FOUND,
    summary="Auto-assign a ticket",
    description="""
    Assign an unassigned active ticket.

    A matching automation rule that assigns by role takes precedence;
    otherwise the best-scoring agent is chosen if the score reaches the
    acceptance threshold (default 50). Below the threshold the ticket stays
    unassigned.
    """
)
async def auto_assign(
    ticket_id: int,
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    outcome = await coordinator.auto_assign(ticket_id)
    return AssignmentOutcomeResponse.from_domain(outcome)


@assignment_router.post(
    "/reassign-breaching",
    response_model=SweepSummaryResponse,
    summary="Reassign tickets that breached their SLA",
    description="""
    Moves each active breaching ticket to a strictly better-scoring agent.

    Shares the scheduled breach_reassignment job's lock: if a sweep is
    already running the request is skipped.
    """
)
async def reassign_breaching(
    request: Request,
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    ran, summary = await request.app.state.scheduler.run_exclusive(
        "breach_reassignment", coordinator.reassign_breaching
    )
    if not ran:
        return SweepSummaryResponse(status="skipped")
    return SweepSummaryResponse(**summary.to_dict())


@assignment_router.get(
    "/tickets/{ticket_id}/decisions",
    response_model=List[AssignmentDecisionResponse],
    responses=NOT_FOUND,
    summary="Assignment audit trail"
)
async def list_decisions(
    ticket_id: int,
    coordinator: AssignmentCoordinator = Depends(get_coordinator)
):
    decisions = await coordinator.list_decisions(ticket_id)
    return [AssignmentDecisionResponse.from_domain(d) for d in decisions]


# ========== Automation ==========

@automation_router.post(
    "/tickets/{ticket_id}/run",
    response_model=AutomationOutcomeResponse,
    responses=NOT_FOUND,
    summary="Run automation rules for a ticket",
    description="Applies the first matching rule not yet applied to the ticket."
)
async def run_automation(
    ticket_id: int,
    service: AutomationService = Depends(get_automation_service)
):
    outcome = await service.run_for_ticket(ticket_id)
    return AutomationOutcomeResponse.from_domain(outcome)


@automation_router.get(
    "/rules",
    response_model=RuleSetResponse,
    summary="Active automation rules"
)
async def list_rules(request: Request):
    rules = request.app.state.rules_provider.get_rules()
    return RuleSetResponse(rules=[r.model_dump(mode="json") for r in rules.rules])
