"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from src.config import BreachType


# ========== Type Aliases for Literals ==========
TicketStatusStr = Literal["todo", "in_progress", "completed", "archived"]
TicketPriorityStr = Literal["low", "normal", "high"]
BreachTypeStr = Literal["response", "resolution"]


# ========== Request DTOs ==========

class SLACreateRequest(BaseModel):
    """Request model for creating an SLA."""
    name: str = Field(..., min_length=1, max_length=255, description="SLA name")
    description: Optional[str] = Field(None, description="Free-form description")
    response_time: int = Field(..., gt=0, description="Seconds allowed until first response")
    resolution_time: int = Field(..., gt=0, description="Seconds allowed until resolution")
    category: Optional[str] = Field(None, description="Ticket category this SLA targets")
    priority: int = Field(default=1, ge=1, description="Higher values are listed first")

    @model_validator(mode="after")
    def validate_interval(self) -> "SLACreateRequest":
        """Resolution can never come before response."""
        if self.resolution_time < self.response_time:
            raise ValueError("resolution_time must be greater than or equal to response_time")
        return self


class SLAUpdateRequest(BaseModel):
    """Request model for updating an SLA. Omitted fields are kept."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    response_time: Optional[int] = Field(None, gt=0)
    resolution_time: Optional[int] = Field(None, gt=0)
    category: Optional[str] = None
    priority: Optional[int] = Field(None, ge=1)


# ========== Response DTOs ==========

class SLAResponse(BaseModel):
    """Response model for an SLA definition."""
    id: int
    name: str
    description: Optional[str] = None
    response_time: int
    resolution_time: int
    category: Optional[str] = None
    priority: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, sla: Any) -> "SLAResponse":
        return cls(
            id=sla.id,
            name=sla.name,
            description=sla.description,
            response_time=sla.response_time,
            resolution_time=sla.resolution_time,
            category=sla.category,
            priority=sla.priority,
            created_at=sla.created_at,
            updated_at=sla.updated_at,
        )


class SLADeleteResponse(BaseModel):
    id: int
    tickets_detached: int = Field(..., description="Tickets whose SLA reference was cleared")


class DeadlineResponse(BaseModel):
    """Deadline state of one SLA clock."""
    due: datetime
    breached: bool
    time_left_seconds: int = Field(..., description="Negative once overdue")


class BreachingTicketResponse(BaseModel):
    """A ticket currently past at least one SLA deadline."""
    ticket_id: int
    title: str
    status: TicketStatusStr
    priority: TicketPriorityStr
    category: Optional[str] = None
    assigned_to: Optional[int] = None
    created_at: datetime
    sla_id: int
    sla_name: str
    response: DeadlineResponse
    resolution: DeadlineResponse
    breached_types: List[BreachTypeStr] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, breaching: Any) -> "BreachingTicketResponse":
        ticket, sla, deadlines = breaching.ticket, breaching.sla, breaching.deadlines
        now = breaching.evaluated_at

        def clock(breach_type) -> DeadlineResponse:
            return DeadlineResponse(
                due=deadlines.due(breach_type),
                breached=deadlines.is_breached(breach_type),
                time_left_seconds=deadlines.time_left(breach_type, now),
            )

        return cls(
            ticket_id=ticket.id,
            title=ticket.title,
            status=ticket.status.value,
            priority=ticket.priority.value,
            category=ticket.category,
            assigned_to=ticket.assigned_to,
            created_at=ticket.created_at,
            sla_id=sla.id,
            sla_name=sla.name,
            response=clock(BreachType.RESPONSE),
            resolution=clock(BreachType.RESOLUTION),
            breached_types=[t.value for t in deadlines.breached_types()],
        )


class SLAStatisticsResponse(BaseModel):
    """Compliance aggregate for one SLA."""
    sla_id: int
    name: str
    response_time: int
    resolution_time: int
    total_tickets: int
    completed_tickets: int
    on_time_tickets: int
    compliance_rate: float = Field(..., description="Percentage of tickets completed on time")


class ErrorResponse(BaseModel):
    """Uniform error body."""
    kind: str
    message: str
    details: Optional[Dict[str, Any]] = None
