"""
Assignment Application Layer
=============================

Contains:
- Services: rule application, auto-assignment and breach reassignment
- DTOs: response models for the assignment API
"""

from src.assignment.application.dto import (
    AssignmentOutcomeResponse,
    SweepSummaryResponse,
    AssignmentDecisionResponse,
    AutomationOutcomeResponse,
    RuleSetResponse,
)
from src.assignment.application.services import (
    AssignmentCoordinator,
    AssignmentMethod,
    AssignmentOutcome,
    AssignmentStatus,
    AutomationOutcome,
    AutomationService,
    AutomationStatus,
    AutomationSweepSummary,
    IRuleSetProvider,
    RoleResolver,
    StaticRuleSetProvider,
    SweepSummary,
)

__all__ = [
    # DTOs
    "AssignmentOutcomeResponse",
    "SweepSummaryResponse",
    "AssignmentDecisionResponse",
    "AutomationOutcomeResponse",
    "RuleSetResponse",
    # Services
    "AssignmentCoordinator",
    "AssignmentMethod",
    "AssignmentOutcome",
    "AssignmentStatus",
    "AutomationOutcome",
    "AutomationService",
    "AutomationStatus",
    "AutomationSweepSummary",
    "IRuleSetProvider",
    "RoleResolver",
    "StaticRuleSetProvider",
    "SweepSummary",
]
