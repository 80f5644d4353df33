"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: Core business objects with identity (Ticket, SLA, Agent, BreachRecord, ...)
- Value Objects: Immutable objects defined by attributes (SLADeadlines, SLAStatistics)
- Domain Services: Stateless business logic (DeadlineCalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from src.sla.domain.entities import (
    Agent,
    AgentWorkload,
    AssignmentDecision,
    AutomationLogEntry,
    BreachRecord,
    Comment,
    SLA,
    Ticket,
    utcnow,
)
from src.sla.domain.value_objects import (
    DeadlineCalculator,
    SLADeadlines,
    SLAStatistics,
    compile_sla_statistics,
)

__all__ = [
    # Entities
    "Agent",
    "AgentWorkload",
    "AssignmentDecision",
    "AutomationLogEntry",
    "BreachRecord",
    "Comment",
    "SLA",
    "Ticket",
    "utcnow",
    # Value Objects & Services
    "DeadlineCalculator",
    "SLADeadlines",
    "SLAStatistics",
    "compile_sla_statistics",
]
