"""
Assignment Application DTOs
============================

Response models for the assignment and automation endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


AssignmentStatusStr = Literal["assigned", "skipped", "unassigned", "conflict"]
AssignmentMethodStr = Literal["rule", "score"]
AutomationStatusStr = Literal["applied", "no_match", "already_applied", "conflict"]


class AssignmentOutcomeResponse(BaseModel):
    """Result of one auto-assignment attempt."""
    ticket_id: int
    status: AssignmentStatusStr
    method: Optional[AssignmentMethodStr] = None
    agent_id: Optional[int] = None
    score: Optional[int] = Field(None, description="Suitability score for score-based assignments")
    rule_name: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_domain(cls, outcome: Any) -> "AssignmentOutcomeResponse":
        return cls(
            ticket_id=outcome.ticket_id,
            status=outcome.status.value,
            method=outcome.method.value if outcome.method else None,
            agent_id=outcome.agent_id,
            score=outcome.score,
            rule_name=outcome.rule_name,
            reason=outcome.reason,
        )


class SweepSummaryResponse(BaseModel):
    """Counts for one breach reassignment sweep; all zero when skipped."""
    status: str = Field(default="completed", description="completed, or skipped if a sweep was in flight")
    scanned: int = 0
    reassigned: int = 0
    unchanged: int = 0
    conflicts: int = 0
    failed: int = 0


class AssignmentDecisionResponse(BaseModel):
    id: int
    ticket_id: int
    agent_id: int
    reason: str
    score: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, decision: Any) -> "AssignmentDecisionResponse":
        return cls(
            id=decision.id,
            ticket_id=decision.ticket_id,
            agent_id=decision.agent_id,
            reason=decision.reason,
            score=decision.score,
            created_at=decision.created_at,
        )


class AutomationOutcomeResponse(BaseModel):
    """Result of evaluating the automation rules for one ticket."""
    ticket_id: int
    status: AutomationStatusStr
    rule_name: Optional[str] = None
    changed_fields: List[str] = Field(default_factory=list)
    assigned_agent_id: Optional[int] = None
    notifications_sent: int = 0

    @classmethod
    def from_domain(cls, outcome: Any) -> "AutomationOutcomeResponse":
        return cls(
            ticket_id=outcome.ticket_id,
            status=outcome.status.value,
            rule_name=outcome.rule_name,
            changed_fields=sorted(outcome.changes),
            assigned_agent_id=outcome.assigned_agent_id,
            notifications_sent=outcome.notifications_sent,
        )


class RuleSetResponse(BaseModel):
    """Active automation rules in precedence order."""
    rules: List[Dict[str, Any]]
