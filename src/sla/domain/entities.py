"""
SLA Domain Entities
====================

Pure Python domain entities for SLA monitoring and assignment.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from src.config import (
    ACTIVE_STATUSES,
    AgentRole,
    BreachCloseReason,
    BreachType,
    TicketPriority,
    TicketStatus,
)
from src.core import ValidationException


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class Ticket:
    """
    Ticket entity representing a support ticket on the board.

    ``sla_breached`` is an overlay flag independent of ``status``; the
    engine never writes a "breached" status.
    """

    id: Optional[int]
    title: str
    description: str = ""
    status: TicketStatus = TicketStatus.TODO
    priority: TicketPriority = TicketPriority.NORMAL
    category: Optional[str] = None
    skills: List[str] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    due_date: Optional[datetime] = None

    # SLA / assignment
    sla_id: Optional[int] = None
    assigned_to: Optional[int] = None
    sla_breached: bool = False

    def __post_init__(self):
        """Validate ticket on initialization."""
        if self.created_at.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")
        if self.completed_at and self.completed_at < self.created_at:
            raise ValueError("completed_at cannot be before created_at")

    @property
    def is_active(self) -> bool:
        """Check if ticket is still being worked on."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == TicketStatus.COMPLETED

    def days_since_completion(self, now: datetime) -> Optional[float]:
        """Fractional days since completion, None unless completed."""
        if not self.is_completed or self.completed_at is None:
            return None
        return (now - self.completed_at).total_seconds() / 86400

    def snapshot(self) -> dict:
        """Values of the contended fields, used as a conditional-update guard."""
        return {
            "assigned_to": self.assigned_to,
            "status": self.status,
            "sla_breached": self.sla_breached,
        }


@dataclass
class SLA:
    """
    Service level agreement attached to tickets.

    Times are whole seconds measured from ticket creation.
    """

    id: Optional[int]
    name: str
    response_time: int
    resolution_time: int
    description: Optional[str] = None
    category: Optional[str] = None
    priority: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.name:
            raise ValidationException("SLA name is required")
        if self.response_time <= 0 or self.resolution_time <= 0:
            raise ValidationException(
                "response_time and resolution_time must be positive integers",
                {"response_time": self.response_time, "resolution_time": self.resolution_time}
            )
        if self.resolution_time < self.response_time:
            raise ValidationException(
                "resolution_time must be greater than or equal to response_time",
                {"response_time": self.response_time, "resolution_time": self.resolution_time}
            )
        if self.priority < 1:
            raise ValidationException("priority must be a positive integer")


@dataclass
class AgentWorkload:
    """Workload snapshot, recomputed on every request."""

    pending_count: int = 0
    in_progress_count: int = 0
    avg_age_seconds: float = 0.0

    @property
    def total(self) -> int:
        return self.pending_count + self.in_progress_count


@dataclass
class Agent:
    """A user who can own tickets."""

    id: int
    name: str
    email: str
    role: AgentRole = AgentRole.AGENT
    senior: bool = False
    skills: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)


@dataclass
class BreachRecord:
    """
    One breach episode for a (ticket, breach type) pair.

    The episode stays open until the ticket leaves the breaching
    condition (completed, reassigned, or SLA removed). ``notified_at`` is
    set once the assignee has been alerted; until then every scan retries.
    """

    id: Optional[int]
    ticket_id: int
    breach_type: BreachType
    detected_at: datetime
    time_overdue_seconds: int
    closed_at: Optional[datetime] = None
    close_reason: Optional[BreachCloseReason] = None
    notified_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None


@dataclass
class AssignmentDecision:
    """Append-only audit of an assignment made by the engine."""

    ticket_id: int
    agent_id: int
    reason: str
    score: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class AutomationLogEntry:
    """Append-only record of an automation rule application."""

    ticket_id: int
    rule_name: str
    actions: List[dict] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class Comment:
    """System comment attached to a ticket's history."""

    ticket_id: int
    content: str
    author_id: Optional[int] = None
    comment_type: str = "system"
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None
