"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer (the Task Store)
- External: External service integrations (notification webhook, job scheduler)
"""

from src.sla.infrastructure.models import (
    AgentModel,
    AssignmentDecisionModel,
    AutomationLogModel,
    BreachRecordModel,
    CommentModel,
    SLAModel,
    TicketModel,
)
from src.sla.infrastructure.repositories import (
    SQLAlchemyAgentRepository,
    SQLAlchemyAuditRepository,
    SQLAlchemyBreachRepository,
    SQLAlchemySLARepository,
    SQLAlchemyTicketRepository,
    build_task_store,
)
from src.sla.infrastructure.external import (
    CircuitBreaker,
    JobScheduler,
    NOTIFICATION_TEMPLATES,
    WebhookNotificationService,
    render_template,
)

__all__ = [
    "AgentModel",
    "AssignmentDecisionModel",
    "AutomationLogModel",
    "BreachRecordModel",
    "CommentModel",
    "SLAModel",
    "TicketModel",
    "SQLAlchemyAgentRepository",
    "SQLAlchemyAuditRepository",
    "SQLAlchemyBreachRepository",
    "SQLAlchemySLARepository",
    "SQLAlchemyTicketRepository",
    "build_task_store",
    "CircuitBreaker",
    "JobScheduler",
    "NOTIFICATION_TEMPLATES",
    "WebhookNotificationService",
    "render_template",
]
