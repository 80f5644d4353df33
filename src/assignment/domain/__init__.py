"""
Assignment Domain Layer
=======================

Pure business logic for routing:
- Scoring: suitability score, ranking and acceptance threshold
- Rules: declarative automation rule table and its evaluator
"""

from src.assignment.domain.rules import (
    Action,
    AddLabelAction,
    ArchiveAction,
    AssignToRoleAction,
    AutomationRule,
    CategoryCondition,
    Condition,
    DaysSinceCompletionCondition,
    DEFAULT_RULE_SET,
    EscalateToRoleAction,
    KeywordCondition,
    PriorityCondition,
    RuleContext,
    RuleEngine,
    RuleSet,
    SendNotificationAction,
    SetDueDateOffsetAction,
    SLABreachedCondition,
    StatusCondition,
)
from src.assignment.domain.scoring import (
    ACCEPTANCE_THRESHOLD,
    ScoreBreakdown,
    ScoredCandidate,
    SuitabilityScorer,
    rank_candidates,
    select_best,
)

__all__ = [
    # Rules
    "Action",
    "AddLabelAction",
    "ArchiveAction",
    "AssignToRoleAction",
    "AutomationRule",
    "CategoryCondition",
    "Condition",
    "DaysSinceCompletionCondition",
    "DEFAULT_RULE_SET",
    "EscalateToRoleAction",
    "KeywordCondition",
    "PriorityCondition",
    "RuleContext",
    "RuleEngine",
    "RuleSet",
    "SendNotificationAction",
    "SetDueDateOffsetAction",
    "SLABreachedCondition",
    "StatusCondition",
    # Scoring
    "ACCEPTANCE_THRESHOLD",
    "ScoreBreakdown",
    "ScoredCandidate",
    "SuitabilityScorer",
    "rank_candidates",
    "select_best",
]
