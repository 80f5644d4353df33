"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: Orchestrate business logic and coordinate with repositories
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and repository interfaces,
but not on concrete infrastructure implementations.
"""

from src.sla.application.dto import (
    SLACreateRequest,
    SLAUpdateRequest,
    SLAResponse,
    SLADeleteResponse,
    DeadlineResponse,
    BreachingTicketResponse,
    SLAStatisticsResponse,
    ErrorResponse,
)
from src.sla.application.services import (
    SLAService,
    BreachDetector,
    BreachScanSummary,
    BreachingTicket,
    ReportGenerator,
    ReportSummary,
    TaskStore,
    TicketQuery,
    notify_safely,
    ticket_payload,
    ITicketRepository,
    ISLARepository,
    IAgentRepository,
    IBreachRepository,
    IAuditRepository,
    INotificationService,
)

__all__ = [
    # DTOs
    "SLACreateRequest",
    "SLAUpdateRequest",
    "SLAResponse",
    "SLADeleteResponse",
    "DeadlineResponse",
    "BreachingTicketResponse",
    "SLAStatisticsResponse",
    "ErrorResponse",
    # Services
    "SLAService",
    "BreachDetector",
    "BreachScanSummary",
    "BreachingTicket",
    "ReportGenerator",
    "ReportSummary",
    "TaskStore",
    "TicketQuery",
    "notify_safely",
    "ticket_payload",
    # Repository Interfaces
    "ITicketRepository",
    "ISLARepository",
    "IAgentRepository",
    "IBreachRepository",
    "IAuditRepository",
    "INotificationService",
]
