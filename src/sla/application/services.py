"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (repositories), not concrete implementations
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from src.config import (
    ACTIVE_STATUSES,
    AgentRole,
    BreachCloseReason,
    TicketStatus,
    VALID_BREACH_TYPES,
)
from src.core import NotificationException, ResourceNotFoundException
from src.shared.infrastructure.logging import get_logger, log_latency
from src.shared.infrastructure.workers import process_isolated
from src.sla.domain import (
    Agent,
    AgentWorkload,
    AssignmentDecision,
    AutomationLogEntry,
    BreachRecord,
    Comment,
    DeadlineCalculator,
    SLA,
    SLADeadlines,
    SLAStatistics,
    Ticket,
    compile_sla_statistics,
    utcnow,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]


# ========== Repository Interfaces (Dependency Inversion) ==========

@dataclass
class TicketQuery:
    """Filters for listing tickets; ``None`` means "don't filter"."""
    statuses: Optional[List[TicketStatus]] = None
    sla_id: Optional[int] = None
    assigned_to: Optional[int] = None
    sla_breached: Optional[bool] = None
    has_sla: Optional[bool] = None
    created_since: Optional[datetime] = None


class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by ID."""

    @abstractmethod
    async def list(self, query: Optional[TicketQuery] = None) -> List[Ticket]:
        """List tickets matching ``query``, ordered by ID."""

    @abstractmethod
    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""

    @abstractmethod
    async def conditional_update(
        self,
        ticket_id: int,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any]
    ) -> bool:
        """
        Apply ``changes`` only if every field in ``expected`` still holds.

        Returns False when the ticket is gone or was changed concurrently.
        """

    @abstractmethod
    async def get_workload(self, agent_id: int, now: datetime) -> AgentWorkload:
        """Compute the agent's current workload."""

    @abstractmethod
    async def get_workloads(self, agent_ids: List[int], now: datetime) -> Dict[int, AgentWorkload]:
        """Workloads for several agents in one query; every id gets an entry."""


class ISLARepository(ABC):
    """Interface for SLA data access."""

    @abstractmethod
    async def list(self) -> List[SLA]:
        """All SLAs ordered by priority descending."""

    @abstractmethod
    async def get(self, sla_id: int) -> Optional[SLA]:
        """Get SLA by ID."""

    @abstractmethod
    async def create(self, sla: SLA) -> SLA:
        """Create new SLA."""

    @abstractmethod
    async def update(self, sla: SLA) -> SLA:
        """Update existing SLA."""

    @abstractmethod
    async def delete(self, sla_id: int) -> int:
        """
        Delete an SLA after nulling ``sla_id`` on dependent tickets.

        Both steps happen in one transaction. Returns the number of
        tickets detached.
        """


class IAgentRepository(ABC):
    """Interface for agent (user) data access. Read-only."""

    @abstractmethod
    async def get(self, agent_id: int) -> Optional[Agent]:
        """Get agent by ID."""

    @abstractmethod
    async def list(
        self,
        role: Optional[AgentRole] = None,
        senior: Optional[bool] = None
    ) -> List[Agent]:
        """List agents ordered by ID."""


class IBreachRepository(ABC):
    """Interface for breach episode data access."""

    @abstractmethod
    async def open(self, record: BreachRecord) -> Optional[BreachRecord]:
        """
        Open a breach episode.

        Returns None when an open episode already exists for the same
        (ticket, breach type).
        """

    @abstractmethod
    async def list_open(self, ticket_id: Optional[int] = None) -> List[BreachRecord]:
        """Open episodes, optionally for one ticket."""

    @abstractmethod
    async def close(self, record_id: int, closed_at: datetime, reason: BreachCloseReason) -> bool:
        """Close one episode. False if it was already closed."""

    @abstractmethod
    async def close_for_ticket(
        self,
        ticket_id: int,
        closed_at: datetime,
        reason: BreachCloseReason
    ) -> int:
        """Close every open episode of a ticket."""

    @abstractmethod
    async def mark_notified(self, record_id: int, notified_at: datetime) -> bool:
        """Record that the episode was announced. False if already marked."""


class IAuditRepository(ABC):
    """Interface for the append-only audit trail."""

    @abstractmethod
    async def add_decision(self, decision: AssignmentDecision) -> AssignmentDecision:
        """Append an assignment decision."""

    @abstractmethod
    async def list_decisions(self, ticket_id: int) -> List[AssignmentDecision]:
        """Decisions for a ticket, oldest first."""

    @abstractmethod
    async def add_comment(self, comment: Comment) -> Comment:
        """Append a system comment."""

    @abstractmethod
    async def list_comments(self, ticket_id: int) -> List[Comment]:
        """Comments for a ticket, oldest first."""

    @abstractmethod
    async def add_automation_log(self, entry: AutomationLogEntry) -> AutomationLogEntry:
        """Append an automation log entry."""

    @abstractmethod
    async def list_automation_logs(self, ticket_id: int) -> List[AutomationLogEntry]:
        """Automation log for a ticket, oldest first."""

    @abstractmethod
    async def has_automation_entry(self, ticket_id: int, rule_name: str) -> bool:
        """Whether ``rule_name`` was already applied to the ticket."""


class INotificationService(ABC):
    """Interface for outgoing notifications."""

    @abstractmethod
    async def send(self, to: str, subject: str, template_name: str, data: Dict[str, Any]) -> bool:
        """
        Render ``template_name`` with ``data`` and deliver it to ``to``.

        Returns False when no transport is configured.

        Raises:
            NotificationException: delivery failed
        """


@dataclass
class TaskStore:
    """The persistence collaborators, grouped for injection."""
    tickets: ITicketRepository
    slas: ISLARepository
    agents: IAgentRepository
    breaches: IBreachRepository
    audit: IAuditRepository


async def notify_safely(
    notifier: INotificationService,
    *,
    to: str,
    subject: str,
    template_name: str,
    data: Dict[str, Any],
    ticket_id: Optional[int] = None
) -> bool:
    """Send a notification; failures are logged and reported as False."""
    try:
        return await notifier.send(to, subject, template_name, data)
    except NotificationException as e:
        logger.warning(
            "Notification failed",
            extra={
                "ticket_id": ticket_id,
                "template": template_name,
                "error": e.message,
            }
        )
        return False


def ticket_payload(ticket: Ticket) -> Dict[str, Any]:
    """Fields templates may reference."""
    return {
        "ticket_id": ticket.id,
        "title": ticket.title,
        "description": ticket.description,
        "priority": ticket.priority.value,
        "category": ticket.category,
        "status": ticket.status.value,
    }


# ========== Application Services ==========

@dataclass
class BreachingTicket:
    """A ticket currently past at least one SLA deadline."""
    ticket: Ticket
    sla: SLA
    deadlines: SLADeadlines
    evaluated_at: datetime


class SLAService:
    """
    SLA definitions, live breach view and compliance statistics.

    Coordinates between domain logic and data access.
    """

    def __init__(self, store: TaskStore, clock: Clock = utcnow):
        self._store = store
        self._clock = clock

    async def list_slas(self) -> List[SLA]:
        return await self._store.slas.list()

    async def get_sla(self, sla_id: int) -> SLA:
        sla = await self._store.slas.get(sla_id)
        if sla is None:
            raise ResourceNotFoundException("SLA", sla_id)
        return sla

    async def create_sla(
        self,
        name: str,
        response_time: int,
        resolution_time: int,
        description: Optional[str] = None,
        category: Optional[str] = None,
        priority: int = 1
    ) -> SLA:
        """Validate and persist a new SLA."""
        now = self._clock()
        sla = SLA(
            id=None,
            name=name,
            description=description,
            response_time=response_time,
            resolution_time=resolution_time,
            category=category,
            priority=priority,
            created_at=now,
            updated_at=now,
        )
        created = await self._store.slas.create(sla)
        logger.info("SLA created", extra={"sla_id": created.id, "sla_name": created.name})
        return created

    async def update_sla(self, sla_id: int, **fields: Any) -> SLA:
        """
        Update an SLA. Fields passed as None keep their current value.

        Interval invariants are re-checked on the merged result.
        """
        current = await self.get_sla(sla_id)
        changes = {k: v for k, v in fields.items() if v is not None}
        updated = replace(current, **changes, updated_at=self._clock())
        updated = await self._store.slas.update(updated)
        logger.info("SLA updated", extra={"sla_id": sla_id, "fields": sorted(changes)})
        return updated

    async def delete_sla(self, sla_id: int) -> int:
        """Delete an SLA; dependent tickets lose their SLA reference first."""
        await self.get_sla(sla_id)
        detached = await self._store.slas.delete(sla_id)
        logger.info("SLA deleted", extra={"sla_id": sla_id, "tickets_detached": detached})
        return detached

    async def get_breaching_tickets(self) -> List[BreachingTicket]:
        """
        Tickets past a deadline right now.

        Recomputed from the live ticket set, not read from breach records.
        """
        now = self._clock()
        slas = {sla.id: sla for sla in await self._store.slas.list()}
        tickets = await self._store.tickets.list(TicketQuery(statuses=ACTIVE_STATUSES, has_sla=True))

        breaching = []
        for ticket in tickets:
            sla = slas.get(ticket.sla_id)
            if sla is None:
                continue
            deadlines = DeadlineCalculator.for_ticket(ticket, sla, now)
            if deadlines.is_any_breached:
                breaching.append(BreachingTicket(ticket, sla, deadlines, now))
        return breaching

    async def get_statistics(self, since: Optional[datetime] = None) -> List[SLAStatistics]:
        slas = await self._store.slas.list()
        tickets = await self._store.tickets.list(TicketQuery(has_sla=True, created_since=since))
        return compile_sla_statistics(slas, tickets)


@dataclass
class TicketScanResult:
    ticket_id: int
    opened: List[BreachRecord] = field(default_factory=list)
    closed: int = 0
    flagged: bool = False
    notified: int = 0


@dataclass
class BreachScanSummary:
    tickets_scanned: int = 0
    breaches_opened: int = 0
    episodes_closed: int = 0
    tickets_flagged: int = 0
    flags_cleared: int = 0
    notifications_sent: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return dict(self.__dict__)


class BreachDetector:
    """
    Scans SLA-bound tickets, records breach episodes and alerts assignees.

    Safe to re-run: an episode already open for (ticket, breach type) is
    never recorded twice and is announced at most once. Each phase runs
    per item, so one failing ticket or episode never aborts the scan.
    """

    def __init__(
        self,
        store: TaskStore,
        notifier: INotificationService,
        max_concurrency: int = 5,
        clock: Clock = utcnow
    ):
        self._store = store
        self._notifier = notifier
        self._max_concurrency = max_concurrency
        self._clock = clock

    async def run(self) -> BreachScanSummary:
        """Run one full scan."""
        now = self._clock()
        summary = BreachScanSummary()

        with log_latency(logger, "breach_scan"):
            stale = await process_isolated(
                await self._store.breaches.list_open(),
                lambda record: self._close_if_stale(record, now),
                operation="breach_close_stale",
                max_concurrency=self._max_concurrency,
            )
            completed = await process_isolated(
                await self._store.tickets.list(
                    TicketQuery(statuses=[TicketStatus.COMPLETED], sla_breached=True)
                ),
                self._clear_flag,
                operation="breach_clear_flag",
                max_concurrency=self._max_concurrency,
            )

            slas = {sla.id: sla for sla in await self._store.slas.list()}
            tickets = await self._store.tickets.list(
                TicketQuery(statuses=ACTIVE_STATUSES, has_sla=True)
            )
            batch = await process_isolated(
                tickets,
                lambda ticket: self._scan_ticket(ticket, slas, now),
                operation="breach_scan_ticket",
                max_concurrency=self._max_concurrency,
            )

        summary.episodes_closed = sum(stale.results)
        summary.flags_cleared = sum(completed.results)
        summary.tickets_scanned = len(tickets)
        summary.failed = stale.failed + completed.failed + batch.failed
        for result in batch.results:
            summary.breaches_opened += len(result.opened)
            summary.episodes_closed += result.closed
            summary.tickets_flagged += int(result.flagged)
            summary.notifications_sent += result.notified

        logger.info("Breach scan finished", extra=summary.to_dict())
        return summary

    async def _scan_ticket(self, ticket: Ticket, slas: Dict[int, SLA], now: datetime) -> TicketScanResult:
        sla = slas.get(ticket.sla_id)
        if sla is None:
            raise ResourceNotFoundException("SLA", ticket.sla_id, {"ticket_id": ticket.id})

        deadlines = DeadlineCalculator.for_ticket(ticket, sla, now)
        open_records = {r.breach_type: r for r in await self._store.breaches.list_open(ticket.id)}
        result = TicketScanResult(ticket_id=ticket.id)

        for breach_type in VALID_BREACH_TYPES:
            existing = open_records.get(breach_type)
            if deadlines.is_breached(breach_type):
                if existing is not None:
                    continue
                record = await self._store.breaches.open(BreachRecord(
                    id=None,
                    ticket_id=ticket.id,
                    breach_type=breach_type,
                    detected_at=now,
                    time_overdue_seconds=deadlines.time_overdue(breach_type, now),
                ))
                if record is not None:
                    result.opened.append(record)
                    open_records[breach_type] = record
                    logger.info(
                        "SLA breach recorded",
                        extra={"ticket_id": ticket.id, "breach_type": breach_type.value}
                    )
            elif existing is not None:
                # Deadline moved out (SLA times were extended)
                del open_records[breach_type]
                if await self._store.breaches.close(existing.id, now, BreachCloseReason.RESOLVED):
                    result.closed += 1

        if deadlines.is_any_breached and not ticket.sla_breached:
            result.flagged = await self._store.tickets.conditional_update(
                ticket.id, ticket.snapshot(), {"sla_breached": True}
            )
            if not result.flagged:
                logger.warning(
                    "Breach flag write dropped after concurrent update",
                    extra={"ticket_id": ticket.id}
                )

        # Episodes a previous scan recorded but never announced are retried here
        for breach_type in VALID_BREACH_TYPES:
            record = open_records.get(breach_type)
            if record is None or record.notified_at is not None:
                continue
            if await self._notify_assignee(ticket, record, deadlines, now):
                await self._store.breaches.mark_notified(record.id, now)
                result.notified += 1
        return result

    async def _notify_assignee(
        self,
        ticket: Ticket,
        record: BreachRecord,
        deadlines: SLADeadlines,
        now: datetime
    ) -> bool:
        if ticket.assigned_to is None:
            logger.info(
                "Breach on unassigned ticket, no one to notify",
                extra={"ticket_id": ticket.id, "breach_type": record.breach_type.value}
            )
            return False

        agent = await self._store.agents.get(ticket.assigned_to)
        if agent is None:
            logger.warning(
                "Assignee not found, breach notification skipped",
                extra={"ticket_id": ticket.id, "agent_id": ticket.assigned_to}
            )
            return False

        return await notify_safely(
            self._notifier,
            to=agent.email,
            subject=f"SLA Breach Alert: {ticket.title}",
            template_name="sla_breach",
            data={
                **ticket_payload(ticket),
                "assignee": agent.name,
                "breach_type": record.breach_type.value,
                "due": deadlines.due(record.breach_type).isoformat(),
                "time_overdue_seconds": record.time_overdue_seconds,
                "detected_at": record.detected_at.isoformat(),
            },
            ticket_id=ticket.id,
        )

    async def _close_if_stale(self, record: BreachRecord, now: datetime) -> int:
        """Close an open episode whose ticket left the breaching condition."""
        ticket = await self._store.tickets.get(record.ticket_id)
        if ticket is None or not ticket.is_active:
            reason = BreachCloseReason.RESOLVED
        elif ticket.sla_id is None:
            reason = BreachCloseReason.SLA_REMOVED
        else:
            return 0
        return int(await self._store.breaches.close(record.id, now, reason))

    async def _clear_flag(self, ticket: Ticket) -> int:
        """Completed tickets drop the breach overlay."""
        return int(await self._store.tickets.conditional_update(
            ticket.id, ticket.snapshot(), {"sla_breached": False}
        ))


@dataclass
class ReportSummary:
    statistics: List[SLAStatistics]
    recipients: int = 0
    sent: int = 0


class ReportGenerator:
    """
    Daily SLA compliance report for administrators. Read-only.
    """

    def __init__(
        self,
        store: TaskStore,
        notifier: INotificationService,
        window: timedelta = timedelta(days=1),
        clock: Clock = utcnow
    ):
        self._store = store
        self._notifier = notifier
        self._window = window
        self._clock = clock

    async def build_report(self, since: Optional[datetime] = None) -> List[SLAStatistics]:
        slas = await self._store.slas.list()
        tickets = await self._store.tickets.list(TicketQuery(has_sla=True, created_since=since))
        return compile_sla_statistics(slas, tickets)

    async def run(self) -> ReportSummary:
        now = self._clock()
        since = now - self._window
        statistics = await self.build_report(since=since)
        summary = ReportSummary(statistics=statistics)

        admins = await self._store.agents.list(role=AgentRole.ADMIN)
        if not admins:
            logger.info("No administrators to receive the SLA report")
            return summary

        data = {
            "generated_at": now.isoformat(),
            "window_start": since.isoformat(),
            "statistics": [s.to_dict() for s in statistics],
        }
        summary.recipients = len(admins)
        for admin in admins:
            if await notify_safely(
                self._notifier,
                to=admin.email,
                subject="Daily SLA Compliance Report",
                template_name="daily_sla_report",
                data=data,
            ):
                summary.sent += 1

        logger.info(
            "SLA report sent",
            extra={"slas": len(statistics), "recipients": summary.recipients, "sent": summary.sent}
        )
        return summary
