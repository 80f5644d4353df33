"""
Assignment Application Services
================================

Rule application, score-based assignment and breach reassignment.

Following SOLID principles:
- Single Responsibility: AutomationService applies rules, AssignmentCoordinator places tickets
- Dependency Inversion: Depend on store interfaces and injected role lookups
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from src.assignment.domain import (
    ACCEPTANCE_THRESHOLD,
    AddLabelAction,
    ArchiveAction,
    AssignToRoleAction,
    AutomationRule,
    DEFAULT_RULE_SET,
    EscalateToRoleAction,
    RuleContext,
    RuleEngine,
    RuleSet,
    ScoredCandidate,
    SendNotificationAction,
    SetDueDateOffsetAction,
    rank_candidates,
    select_best,
)
from src.config import (
    ACTIVE_STATUSES,
    AgentRole,
    AutomationRole,
    BreachCloseReason,
    TicketStatus,
)
from src.core import ResourceNotFoundException
from src.shared.infrastructure.logging import get_logger, log_latency
from src.shared.infrastructure.workers import process_isolated
from src.sla.application.services import (
    INotificationService,
    TaskStore,
    TicketQuery,
    notify_safely,
    ticket_payload,
)
from src.sla.domain import (
    Agent,
    AssignmentDecision,
    AutomationLogEntry,
    Comment,
    DeadlineCalculator,
    SLADeadlines,
    Ticket,
    utcnow,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]
RoleQuery = Callable[[], Awaitable[Optional[Agent]]]

AUTO_ASSIGN_COMMENT = "Task automatically assigned based on SLA and agent availability"
REASSIGN_COMMENT = "Task reassigned due to SLA breach"
AUTO_ASSIGN_REASON = "auto_assignment"
REASSIGN_REASON = "sla_breach_reassignment"


# ========== Collaborator Interfaces ==========

class IRuleSetProvider(ABC):
    """Source of the current automation rule table."""

    @abstractmethod
    def get_rules(self) -> RuleSet:
        """Current rule table, in precedence order."""


class StaticRuleSetProvider(IRuleSetProvider):
    """Fixed rule table; defaults to the built-in rules."""

    def __init__(self, rule_set: RuleSet = DEFAULT_RULE_SET):
        self._rule_set = rule_set

    def get_rules(self) -> RuleSet:
        return self._rule_set


class RoleResolver:
    """
    Maps an automation role to the agent who takes it.

    Each role is backed by an async query; the mapping is injected so the
    lookup can be replaced without touching the rule engine.
    """

    def __init__(self, queries: Mapping[AutomationRole, RoleQuery]):
        self._queries = dict(queries)

    @classmethod
    def from_store(cls, store: TaskStore) -> "RoleResolver":
        """Default lookups: first matching agent by ID."""

        async def first(role: AgentRole, senior: Optional[bool] = None) -> Optional[Agent]:
            agents = await store.agents.list(role=role, senior=senior)
            return agents[0] if agents else None

        return cls({
            AutomationRole.SENIOR_AGENT: lambda: first(AgentRole.AGENT, senior=True),
            AutomationRole.TECH_SUPPORT_TEAM: lambda: first(AgentRole.TECH_SUPPORT),
            AutomationRole.MANAGER: lambda: first(AgentRole.MANAGER),
        })

    async def resolve(self, role: AutomationRole) -> Optional[Agent]:
        query = self._queries.get(role)
        if query is None:
            logger.warning("No lookup registered for role", extra={"role": role.value})
            return None
        return await query()


# ========== Automation ==========

class AutomationStatus(str, Enum):
    APPLIED = "applied"
    NO_MATCH = "no_match"
    ALREADY_APPLIED = "already_applied"
    CONFLICT = "conflict"


@dataclass
class AutomationOutcome:
    ticket_id: int
    status: AutomationStatus
    rule_name: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    assigned_agent_id: Optional[int] = None
    notifications_sent: int = 0


@dataclass
class _PlannedNotification:
    agent: Agent
    subject: str
    template_name: str
    data: Dict[str, Any]


@dataclass
class _AutomationPlan:
    changes: Dict[str, Any] = field(default_factory=dict)
    assignee: Optional[Agent] = None
    notifications: List[_PlannedNotification] = field(default_factory=list)


@dataclass
class AutomationSweepSummary:
    scanned: int = 0
    applied: int = 0
    no_match: int = 0
    already_applied: int = 0
    conflicts: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return dict(self.__dict__)


class AutomationService:
    """
    Evaluates the rule table against tickets and applies the selected rule.

    All field changes of one rule go through a single conditional update,
    so a rule is applied entirely or not at all.
    """

    def __init__(
        self,
        store: TaskStore,
        rules: IRuleSetProvider,
        roles: RoleResolver,
        notifier: INotificationService,
        max_concurrency: int = 5,
        clock: Clock = utcnow
    ):
        self._store = store
        self._rules = rules
        self._roles = roles
        self._notifier = notifier
        self._max_concurrency = max_concurrency
        self._clock = clock

    async def build_context(self, ticket: Ticket, now: datetime) -> RuleContext:
        """Ticket plus derived breach state: stored flag OR live response breach."""
        breached = False
        if ticket.is_active:
            breached = ticket.sla_breached
            if not breached and ticket.sla_id is not None:
                sla = await self._store.slas.get(ticket.sla_id)
                if sla is not None:
                    breached = DeadlineCalculator.for_ticket(ticket, sla, now).response_breached
        return RuleContext(ticket=ticket, sla_breached=breached, now=now)

    async def applied_rules(self, ticket_id: int) -> List[str]:
        return [entry.rule_name for entry in await self._store.audit.list_automation_logs(ticket_id)]

    async def select_rule(self, ticket: Ticket, now: datetime) -> Optional[AutomationRule]:
        """First matching rule that was not applied to this ticket before."""
        ctx = await self.build_context(ticket, now)
        applied = await self.applied_rules(ticket.id)
        return RuleEngine(self._rules.get_rules()).select(ctx, exclude=applied)

    async def run_for_ticket(self, ticket_id: int) -> AutomationOutcome:
        """Evaluate and apply automation for one ticket."""
        ticket = await self._store.tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return await self._evaluate(ticket)

    async def run_sweep(self) -> AutomationSweepSummary:
        """Evaluate every non-archived ticket."""
        tickets = await self._store.tickets.list(
            TicketQuery(statuses=[*ACTIVE_STATUSES, TicketStatus.COMPLETED])
        )
        with log_latency(logger, "automation_sweep", tickets=len(tickets)):
            batch = await process_isolated(
                tickets,
                self._evaluate,
                operation="automation_ticket",
                max_concurrency=self._max_concurrency,
            )

        summary = AutomationSweepSummary(scanned=len(tickets), failed=batch.failed)
        for outcome in batch.results:
            if outcome.status == AutomationStatus.APPLIED:
                summary.applied += 1
            elif outcome.status == AutomationStatus.NO_MATCH:
                summary.no_match += 1
            elif outcome.status == AutomationStatus.ALREADY_APPLIED:
                summary.already_applied += 1
            else:
                summary.conflicts += 1

        logger.info("Automation sweep finished", extra=summary.to_dict())
        return summary

    async def _evaluate(self, ticket: Ticket) -> AutomationOutcome:
        now = self._clock()
        rule = await self.select_rule(ticket, now)
        if rule is None:
            return AutomationOutcome(ticket_id=ticket.id, status=AutomationStatus.NO_MATCH)
        return await self.apply(ticket, rule, now)

    async def _plan(self, ticket: Ticket, rule: AutomationRule, now: datetime) -> _AutomationPlan:
        plan = _AutomationPlan()
        labels = list(ticket.labels)
        payload = ticket_payload(ticket)

        for action in rule.actions:
            if isinstance(action, (AssignToRoleAction, EscalateToRoleAction)):
                agent = await self._roles.resolve(action.role)
                if agent is None:
                    logger.warning(
                        "No agent available for role",
                        extra={"ticket_id": ticket.id, "rule": rule.name, "role": action.role.value}
                    )
                    continue
                if agent.id != ticket.assigned_to:
                    plan.changes["assigned_to"] = agent.id
                    plan.assignee = agent
                if isinstance(action, EscalateToRoleAction):
                    plan.notifications.append(_PlannedNotification(
                        agent=agent,
                        subject=f"Ticket Escalated: {ticket.title}",
                        template_name="escalation",
                        data={**payload, "assignee": agent.name, "rule_name": rule.name},
                    ))
                elif agent.id != ticket.assigned_to:
                    plan.notifications.append(_PlannedNotification(
                        agent=agent,
                        subject=f"New Task Assignment: {ticket.title}",
                        template_name="task_assigned",
                        data={**payload, "assignee": agent.name, "reason": f"rule:{rule.name}"},
                    ))
            elif isinstance(action, AddLabelAction):
                if action.label not in labels:
                    labels.append(action.label)
                    plan.changes["labels"] = labels
            elif isinstance(action, SetDueDateOffsetAction):
                plan.changes["due_date"] = now + timedelta(hours=action.hours)
            elif isinstance(action, ArchiveAction):
                if ticket.is_completed:
                    plan.changes["status"] = TicketStatus.ARCHIVED
                else:
                    logger.info(
                        "Archive skipped for ticket that is not completed",
                        extra={"ticket_id": ticket.id, "rule": rule.name}
                    )
            elif isinstance(action, SendNotificationAction):
                # Goes to whoever held the ticket when the rule fired
                current = await self._store.agents.get(ticket.assigned_to) if ticket.assigned_to else None
                if current is None:
                    logger.info(
                        "Automation notification skipped, ticket unassigned",
                        extra={"ticket_id": ticket.id, "rule": rule.name}
                    )
                    continue
                plan.notifications.append(_PlannedNotification(
                    agent=current,
                    subject=f"Task Automation: {ticket.title}",
                    template_name="automation_update",
                    data={
                        **payload,
                        "rule_name": rule.name,
                        "actions": [a.kind for a in rule.actions],
                    },
                ))
        return plan

    async def apply(
        self,
        ticket: Ticket,
        rule: AutomationRule,
        now: Optional[datetime] = None
    ) -> AutomationOutcome:
        """
        Apply every action of ``rule`` to ``ticket`` as one batch.

        Nothing is written when the ticket changed since it was read, or
        when the rule was already applied to it.
        """
        now = now or self._clock()
        if await self._store.audit.has_automation_entry(ticket.id, rule.name):
            return AutomationOutcome(
                ticket_id=ticket.id,
                status=AutomationStatus.ALREADY_APPLIED,
                rule_name=rule.name,
            )

        plan = await self._plan(ticket, rule, now)

        if plan.changes:
            updated = await self._store.tickets.conditional_update(
                ticket.id, ticket.snapshot(), plan.changes
            )
            if not updated:
                logger.warning(
                    "Automation dropped after concurrent update",
                    extra={"ticket_id": ticket.id, "rule": rule.name}
                )
                return AutomationOutcome(
                    ticket_id=ticket.id,
                    status=AutomationStatus.CONFLICT,
                    rule_name=rule.name,
                )

        await self._store.audit.add_automation_log(AutomationLogEntry(
            ticket_id=ticket.id,
            rule_name=rule.name,
            actions=[a.model_dump(mode="json") for a in rule.actions],
            created_at=now,
        ))
        await self._store.audit.add_comment(Comment(
            ticket_id=ticket.id,
            content=f"Automation rule {rule.name} applied",
            created_at=now,
        ))
        if plan.assignee is not None:
            await self._store.audit.add_decision(AssignmentDecision(
                ticket_id=ticket.id,
                agent_id=plan.assignee.id,
                reason=f"rule:{rule.name}",
                created_at=now,
            ))

        sent = 0
        for notification in plan.notifications:
            if await notify_safely(
                self._notifier,
                to=notification.agent.email,
                subject=notification.subject,
                template_name=notification.template_name,
                data=notification.data,
                ticket_id=ticket.id,
            ):
                sent += 1

        logger.info(
            "Automation rule applied",
            extra={"ticket_id": ticket.id, "rule": rule.name, "fields": sorted(plan.changes)}
        )
        return AutomationOutcome(
            ticket_id=ticket.id,
            status=AutomationStatus.APPLIED,
            rule_name=rule.name,
            changes=plan.changes,
            assigned_agent_id=plan.assignee.id if plan.assignee else None,
            notifications_sent=sent,
        )


# ========== Assignment ==========

class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    SKIPPED = "skipped"
    UNASSIGNED = "unassigned"
    CONFLICT = "conflict"


class AssignmentMethod(str, Enum):
    RULE = "rule"
    SCORE = "score"


@dataclass
class AssignmentOutcome:
    ticket_id: int
    status: AssignmentStatus
    method: Optional[AssignmentMethod] = None
    agent_id: Optional[int] = None
    score: Optional[int] = None
    rule_name: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class SweepSummary:
    scanned: int = 0
    reassigned: int = 0
    unchanged: int = 0
    conflicts: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return dict(self.__dict__)


class AssignmentCoordinator:
    """
    Places unassigned tickets and moves breaching ones to a better agent.

    Every assignment is a conditional update guarded by the ticket's
    previous assignee, status and breach flag.
    """

    def __init__(
        self,
        store: TaskStore,
        automation: AutomationService,
        notifier: INotificationService,
        threshold: int = ACCEPTANCE_THRESHOLD,
        max_concurrency: int = 5,
        clock: Clock = utcnow
    ):
        self._store = store
        self._automation = automation
        self._notifier = notifier
        self._threshold = threshold
        self._max_concurrency = max_concurrency
        self._clock = clock

    async def _deadlines(self, ticket: Ticket, now: datetime) -> Optional[SLADeadlines]:
        if ticket.sla_id is None:
            return None
        sla = await self._store.slas.get(ticket.sla_id)
        if sla is None:
            return None
        return DeadlineCalculator.for_ticket(ticket, sla, now)

    async def rank(self, ticket: Ticket, now: Optional[datetime] = None) -> List[ScoredCandidate]:
        """Score every ``agent``-role agent for ``ticket``, best first."""
        now = now or self._clock()
        agents = await self._store.agents.list(role=AgentRole.AGENT)
        workloads = await self._store.tickets.get_workloads([agent.id for agent in agents], now)
        deadlines = await self._deadlines(ticket, now)
        return rank_candidates(ticket, [(agent, workloads[agent.id]) for agent in agents], deadlines)

    async def find_best_agent(
        self,
        ticket: Ticket,
        now: Optional[datetime] = None
    ) -> Optional[ScoredCandidate]:
        """Top-ranked agent if it clears the acceptance threshold."""
        return self._select(ticket, await self.rank(ticket, now))

    def _select(self, ticket: Ticket, ranked: List[ScoredCandidate]) -> Optional[ScoredCandidate]:
        best = select_best(ranked, self._threshold)
        if best is None:
            logger.info(
                "No agent cleared the assignment threshold",
                extra={
                    "ticket_id": ticket.id,
                    "threshold": self._threshold,
                    "best_score": ranked[0].score if ranked else None,
                }
            )
        return best

    async def auto_assign(self, ticket_id: int) -> AssignmentOutcome:
        """
        Assign an unassigned active ticket.

        A matching automation rule that assigns by role wins; otherwise
        the best-scoring agent is taken if it clears the threshold.
        """
        ticket = await self._store.tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        if ticket.assigned_to is not None or not ticket.is_active:
            return AssignmentOutcome(
                ticket_id=ticket.id,
                status=AssignmentStatus.SKIPPED,
                agent_id=ticket.assigned_to,
                reason="already assigned" if ticket.assigned_to is not None else "not active",
            )

        now = self._clock()
        outcome, ticket = await self._assign_by_rule(ticket, now)
        if outcome is not None:
            return outcome

        best = await self.find_best_agent(ticket, now)
        if best is None:
            return AssignmentOutcome(
                ticket_id=ticket.id,
                status=AssignmentStatus.UNASSIGNED,
                method=AssignmentMethod.SCORE,
                reason="no agent above threshold",
            )

        if not await self._store.tickets.conditional_update(
            ticket.id, ticket.snapshot(), {"assigned_to": best.agent.id}
        ):
            logger.warning("Auto-assignment dropped after concurrent update", extra={"ticket_id": ticket.id})
            return AssignmentOutcome(
                ticket_id=ticket.id,
                status=AssignmentStatus.CONFLICT,
                method=AssignmentMethod.SCORE,
            )

        logger.info(
            "Ticket auto-assigned",
            extra={"ticket_id": ticket.id, "agent_id": best.agent.id, "score": best.score}
        )
        await self._record_assignment(
            ticket,
            best,
            reason=AUTO_ASSIGN_REASON,
            comment=AUTO_ASSIGN_COMMENT,
            subject=f"New Task Assignment: {ticket.title}",
            template_name="task_assigned",
            data={**ticket_payload(ticket), "assignee": best.agent.name, "reason": AUTO_ASSIGN_REASON},
            now=now,
        )
        return AssignmentOutcome(
            ticket_id=ticket.id,
            status=AssignmentStatus.ASSIGNED,
            method=AssignmentMethod.SCORE,
            agent_id=best.agent.id,
            score=best.score,
            reason=AUTO_ASSIGN_REASON,
        )

    async def _assign_by_rule(
        self,
        ticket: Ticket,
        now: datetime
    ) -> Tuple[Optional[AssignmentOutcome], Ticket]:
        """Apply the selected rule when it assigns by role."""
        rule = await self._automation.select_rule(ticket, now)
        if rule is None or rule.assignment_role is None:
            return None, ticket

        applied = await self._automation.apply(ticket, rule, now)
        if applied.status == AutomationStatus.CONFLICT:
            return AssignmentOutcome(
                ticket_id=ticket.id,
                status=AssignmentStatus.CONFLICT,
                method=AssignmentMethod.RULE,
                rule_name=rule.name,
            ), ticket
        if applied.assigned_agent_id is not None:
            return AssignmentOutcome(
                ticket_id=ticket.id,
                status=AssignmentStatus.ASSIGNED,
                method=AssignmentMethod.RULE,
                agent_id=applied.assigned_agent_id,
                rule_name=rule.name,
                reason=f"rule:{rule.name}",
            ), ticket

        # Rule applied but nobody holds the role; fall back to scoring
        refreshed = await self._store.tickets.get(ticket.id)
        return None, refreshed or ticket

    async def reassign_breaching(self) -> SweepSummary:
        """
        Move every active breaching ticket to a strictly better agent.

        Tickets without an SLA are left out, and so are tickets held by
        someone outside the scoring pool (escalated to a manager or routed
        to tech support by a rule).
        """
        tickets = await self._store.tickets.list(
            TicketQuery(statuses=ACTIVE_STATUSES, sla_breached=True, has_sla=True)
        )
        with log_latency(logger, "reassign_breaching", tickets=len(tickets)):
            batch = await process_isolated(
                tickets,
                self._reassign,
                operation="reassign_ticket",
                max_concurrency=self._max_concurrency,
            )

        summary = SweepSummary(scanned=len(tickets), failed=batch.failed)
        for status in batch.results:
            if status == AssignmentStatus.ASSIGNED:
                summary.reassigned += 1
            elif status == AssignmentStatus.CONFLICT:
                summary.conflicts += 1
            else:
                summary.unchanged += 1

        logger.info("Breach reassignment finished", extra=summary.to_dict())
        return summary

    async def _reassign(self, ticket: Ticket) -> AssignmentStatus:
        now = self._clock()
        ranked = await self.rank(ticket, now)
        current = next((c for c in ranked if c.agent.id == ticket.assigned_to), None)
        if ticket.assigned_to is not None and current is None:
            logger.info(
                "Breaching ticket held outside the scoring pool, left as is",
                extra={"ticket_id": ticket.id, "agent_id": ticket.assigned_to}
            )
            return AssignmentStatus.SKIPPED

        best = self._select(ticket, ranked)
        # A tie with the holder is not an improvement
        if best is None or (current is not None and best.score <= current.score):
            return AssignmentStatus.SKIPPED

        if not await self._store.tickets.conditional_update(
            ticket.id,
            ticket.snapshot(),
            {"assigned_to": best.agent.id, "status": TicketStatus.IN_PROGRESS},
        ):
            logger.warning("Reassignment dropped after concurrent update", extra={"ticket_id": ticket.id})
            return AssignmentStatus.CONFLICT

        logger.info(
            "Breaching ticket reassigned",
            extra={
                "ticket_id": ticket.id,
                "from_agent_id": ticket.assigned_to,
                "agent_id": best.agent.id,
                "score": best.score,
                "previous_score": current.score if current else None,
            }
        )
        try:
            # The new assignee gets a fresh breach episode on the next scan
            await self._store.breaches.close_for_ticket(ticket.id, now, BreachCloseReason.REASSIGNED)
        finally:
            await self._record_assignment(
                ticket,
                best,
                reason=REASSIGN_REASON,
                comment=REASSIGN_COMMENT,
                subject=f"Task Reassigned: {ticket.title}",
                template_name="task_reassigned",
                data={**ticket_payload(ticket), "assignee": best.agent.name},
                now=now,
            )
        return AssignmentStatus.ASSIGNED

    async def _record_assignment(
        self,
        ticket: Ticket,
        candidate: ScoredCandidate,
        *,
        reason: str,
        comment: str,
        subject: str,
        template_name: str,
        data: Dict[str, Any],
        now: datetime
    ) -> None:
        """
        Audit trail and notification for a committed assignment.

        Each step is attempted even when an earlier one raises; the error
        still propagates to the caller.
        """
        try:
            await self._store.audit.add_decision(AssignmentDecision(
                ticket_id=ticket.id,
                agent_id=candidate.agent.id,
                reason=reason,
                score=candidate.score,
                created_at=now,
            ))
        finally:
            try:
                await self._store.audit.add_comment(Comment(
                    ticket_id=ticket.id,
                    content=comment,
                    created_at=now,
                ))
            finally:
                await notify_safely(
                    self._notifier,
                    to=candidate.agent.email,
                    subject=subject,
                    template_name=template_name,
                    data=data,
                    ticket_id=ticket.id,
                )

    async def list_decisions(self, ticket_id: int) -> List[AssignmentDecision]:
        if await self._store.tickets.get(ticket_id) is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return await self._store.audit.list_decisions(ticket_id)
