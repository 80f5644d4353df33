"""
SLA Value Objects
==================

Immutable value objects for SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from src.config import BreachType, TicketStatus
from src.core import ValidationException
from src.sla.domain.entities import SLA, Ticket


@dataclass(frozen=True)
class SLADeadlines:
    """
    Response and resolution deadlines for one ticket at one instant.

    Breach flags are strict: a ticket evaluated exactly at its deadline is
    not yet breached.
    """
    response_due: datetime
    resolution_due: datetime
    response_breached: bool
    resolution_breached: bool

    @property
    def is_any_breached(self) -> bool:
        return self.response_breached or self.resolution_breached

    def due(self, breach_type: BreachType) -> datetime:
        if breach_type == BreachType.RESPONSE:
            return self.response_due
        return self.resolution_due

    def is_breached(self, breach_type: BreachType) -> bool:
        if breach_type == BreachType.RESPONSE:
            return self.response_breached
        return self.resolution_breached

    def breached_types(self) -> List[BreachType]:
        """Breached clocks, response first."""
        return [t for t in (BreachType.RESPONSE, BreachType.RESOLUTION) if self.is_breached(t)]

    def time_left(self, breach_type: BreachType, now: datetime) -> int:
        """Signed seconds until the deadline (negative once overdue)."""
        return int((self.due(breach_type) - now).total_seconds())

    def time_overdue(self, breach_type: BreachType, now: datetime) -> int:
        """Seconds past the deadline, 0 when not overdue."""
        return max(0, -self.time_left(breach_type, now))


class DeadlineCalculator:
    """
    Pure functions for SLA deadline calculations.

    Stateless utility class - all deadline arithmetic lives here.
    """

    @staticmethod
    def calculate(
        created_at: datetime,
        response_time: int,
        resolution_time: int,
        now: datetime
    ) -> SLADeadlines:
        """
        Calculate SLA deadlines for a ticket.

        Args:
            created_at: When the ticket was created (aware datetime)
            response_time: Seconds allowed until first response
            resolution_time: Seconds allowed until resolution
            now: Evaluation instant

        Returns:
            SLADeadlines with due timestamps and breach flags
        """
        response_due = created_at + timedelta(seconds=response_time)
        resolution_due = created_at + timedelta(seconds=resolution_time)
        return SLADeadlines(
            response_due=response_due,
            resolution_due=resolution_due,
            response_breached=now > response_due,
            resolution_breached=now > resolution_due,
        )

    @staticmethod
    def for_ticket(ticket: Ticket, sla: Optional[SLA], now: datetime) -> SLADeadlines:
        """Deadlines for ``ticket`` under ``sla``; callers skip SLA-less tickets."""
        if sla is None:
            raise ValidationException(
                f"Ticket {ticket.id} has no SLA to evaluate",
                {"ticket_id": ticket.id}
            )
        return DeadlineCalculator.calculate(
            ticket.created_at, sla.response_time, sla.resolution_time, now
        )

    @staticmethod
    def is_on_time(ticket: Ticket, sla: SLA) -> bool:
        """Whether a completed ticket finished within its resolution time."""
        if ticket.status != TicketStatus.COMPLETED or ticket.completed_at is None:
            return False
        elapsed = (ticket.completed_at - ticket.created_at).total_seconds()
        return elapsed <= sla.resolution_time


@dataclass(frozen=True)
class SLAStatistics:
    """Compliance aggregate for one SLA."""
    sla_id: int
    name: str
    response_time: int
    resolution_time: int
    total_tickets: int
    completed_tickets: int
    on_time_tickets: int

    @property
    def compliance_rate(self) -> float:
        """Percentage of tickets completed on time, two decimals."""
        if self.total_tickets == 0:
            return 0.0
        return round(self.on_time_tickets / self.total_tickets * 100, 2)

    def to_dict(self) -> dict:
        return {
            "sla_id": self.sla_id,
            "name": self.name,
            "response_time": self.response_time,
            "resolution_time": self.resolution_time,
            "total_tickets": self.total_tickets,
            "completed_tickets": self.completed_tickets,
            "on_time_tickets": self.on_time_tickets,
            "compliance_rate": self.compliance_rate,
        }


def compile_sla_statistics(slas: Iterable[SLA], tickets: Iterable[Ticket]) -> List[SLAStatistics]:
    """
    Aggregate compliance per SLA.

    Every SLA gets a row, including SLAs with no tickets. Tickets whose
    ``sla_id`` matches no SLA are ignored.
    """
    by_sla: Dict[int, List[Ticket]] = {}
    for ticket in tickets:
        if ticket.sla_id is not None:
            by_sla.setdefault(ticket.sla_id, []).append(ticket)

    statistics = []
    for sla in slas:
        members = by_sla.get(sla.id, [])
        statistics.append(SLAStatistics(
            sla_id=sla.id,
            name=sla.name,
            response_time=sla.response_time,
            resolution_time=sla.resolution_time,
            total_tickets=len(members),
            completed_tickets=sum(1 for t in members if t.status == TicketStatus.COMPLETED),
            on_time_tickets=sum(1 for t in members if DeadlineCalculator.is_on_time(t, sla)),
        ))
    return statistics
