"""
SLA Infrastructure Repositories
=================================

Concrete implementations of repository interfaces using SQLAlchemy.

This layer contains the data access logic - how we store and retrieve
entities from the database. Each method opens its own session from the
injected factory, so concurrent workers never share one.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import (
    ACTIVE_STATUSES,
    AgentRole,
    BreachCloseReason,
    BreachType,
    TicketPriority,
    TicketStatus,
)
from src.core import RepositoryException
from src.shared.infrastructure.logging import get_logger
from src.sla.application.services import (
    IAgentRepository,
    IAuditRepository,
    IBreachRepository,
    ISLARepository,
    ITicketRepository,
    TaskStore,
    TicketQuery,
)
from src.sla.domain import (
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
from src.sla.infrastructure.models import (
    AgentModel,
    AssignmentDecisionModel,
    AutomationLogModel,
    BreachRecordModel,
    CommentModel,
    SLAModel,
    TicketModel,
)

logger = get_logger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]

# Columns the engine is allowed to write on a ticket
_MUTABLE_TICKET_FIELDS = {
    "assigned_to",
    "status",
    "sla_breached",
    "labels",
    "due_date",
    "completed_at",
}


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


# ========== Model <-> Entity Mapping ==========

def _ticket_from_model(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        title=model.title,
        description=model.description or "",
        status=TicketStatus(model.status),
        priority=TicketPriority(model.priority),
        category=model.category,
        skills=list(model.skills or []),
        labels=list(model.labels or []),
        created_at=model.created_at,
        updated_at=model.updated_at,
        completed_at=model.completed_at,
        due_date=model.due_date,
        sla_id=model.sla_id,
        assigned_to=model.assigned_to,
        sla_breached=bool(model.sla_breached),
    )


def _sla_from_model(model: SLAModel) -> SLA:
    return SLA(
        id=model.id,
        name=model.name,
        description=model.description,
        response_time=model.response_time,
        resolution_time=model.resolution_time,
        category=model.category,
        priority=model.priority,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _agent_from_model(model: AgentModel) -> Agent:
    return Agent(
        id=model.id,
        name=model.name,
        email=model.email,
        role=AgentRole(model.role),
        senior=bool(model.senior),
        skills=list(model.skills or []),
        categories=list(model.categories or []),
    )


def _breach_from_model(model: BreachRecordModel) -> BreachRecord:
    return BreachRecord(
        id=model.id,
        ticket_id=model.ticket_id,
        breach_type=BreachType(model.breach_type),
        detected_at=model.detected_at,
        time_overdue_seconds=model.time_overdue_seconds,
        closed_at=model.closed_at,
        close_reason=BreachCloseReason(model.close_reason) if model.close_reason else None,
        notified_at=model.notified_at,
    )


class _SessionRepository:
    """Shared session handling for the SQLAlchemy repositories."""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    @staticmethod
    def _wrap(operation: str, error: SQLAlchemyError) -> RepositoryException:
        logger.error(
            "Database operation failed",
            extra={"operation": operation, "error": str(error)}
        )
        return RepositoryException(f"{operation} failed", {"error": str(error)})


class SQLAlchemyTicketRepository(_SessionRepository, ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    async def get(self, ticket_id: int) -> Optional[Ticket]:
        try:
            async with self._session_factory() as session:
                model = await session.get(TicketModel, ticket_id)
                return _ticket_from_model(model) if model else None
        except SQLAlchemyError as e:
            raise self._wrap("get_ticket", e) from e

    async def list(self, query: Optional[TicketQuery] = None) -> List[Ticket]:
        """List tickets with filters."""
        query = query or TicketQuery()
        conditions = []
        if query.statuses is not None:
            conditions.append(TicketModel.status.in_([_db_value(s) for s in query.statuses]))
        if query.sla_id is not None:
            conditions.append(TicketModel.sla_id == query.sla_id)
        if query.assigned_to is not None:
            conditions.append(TicketModel.assigned_to == query.assigned_to)
        if query.sla_breached is not None:
            conditions.append(TicketModel.sla_breached == query.sla_breached)
        if query.has_sla is True:
            conditions.append(TicketModel.sla_id.is_not(None))
        elif query.has_sla is False:
            conditions.append(TicketModel.sla_id.is_(None))
        if query.created_since is not None:
            conditions.append(TicketModel.created_at >= query.created_since)

        stmt = select(TicketModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(TicketModel.id.asc())

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_ticket_from_model(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._wrap("list_tickets", e) from e

    async def create(self, ticket: Ticket) -> Ticket:
        """Create new ticket."""
        model = TicketModel(
            title=ticket.title,
            description=ticket.description,
            status=_db_value(ticket.status),
            priority=_db_value(ticket.priority),
            category=ticket.category,
            skills=list(ticket.skills),
            labels=list(ticket.labels),
            created_at=ticket.created_at,
            updated_at=ticket.updated_at or ticket.created_at,
            completed_at=ticket.completed_at,
            due_date=ticket.due_date,
            sla_id=ticket.sla_id,
            assigned_to=ticket.assigned_to,
            sla_breached=ticket.sla_breached,
        )
        try:
            async with self._session_factory() as session:
                session.add(model)
                await session.commit()
                return _ticket_from_model(model)
        except SQLAlchemyError as e:
            raise self._wrap("create_ticket", e) from e

    async def conditional_update(
        self,
        ticket_id: int,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any]
    ) -> bool:
        """UPDATE ... WHERE every expected column still has its previous value."""
        unknown = set(changes) - _MUTABLE_TICKET_FIELDS
        if unknown:
            raise RepositoryException(f"Ticket fields not writable: {sorted(unknown)}")

        conditions = [TicketModel.id == ticket_id]
        for name, value in expected.items():
            column = getattr(TicketModel, name)
            conditions.append(column.is_(None) if value is None else column == _db_value(value))

        values: Dict[str, Any] = {name: _db_value(v) for name, v in changes.items()}
        values["updated_at"] = utcnow()

        stmt = (
            update(TicketModel)
            .where(and_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise self._wrap("update_ticket", e) from e

    async def get_workload(self, agent_id: int, now: datetime) -> AgentWorkload:
        return (await self.get_workloads([agent_id], now))[agent_id]

    async def get_workloads(self, agent_ids: List[int], now: datetime) -> Dict[int, AgentWorkload]:
        """One pass over active tickets, grouped by assignee."""
        if not agent_ids:
            return {}
        stmt = select(TicketModel.assigned_to, TicketModel.status, TicketModel.created_at).where(
            and_(
                TicketModel.assigned_to.in_(agent_ids),
                TicketModel.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise self._wrap("get_workloads", e) from e

        grouped: Dict[int, List[Any]] = {agent_id: [] for agent_id in agent_ids}
        for agent_id, status, created_at in rows:
            grouped[agent_id].append((status, created_at))

        workloads = {}
        for agent_id, tickets in grouped.items():
            ages = [(now - created_at).total_seconds() for _, created_at in tickets]
            workloads[agent_id] = AgentWorkload(
                pending_count=sum(1 for status, _ in tickets if status == TicketStatus.TODO.value),
                in_progress_count=sum(1 for status, _ in tickets if status == TicketStatus.IN_PROGRESS.value),
                avg_age_seconds=sum(ages) / len(ages) if ages else 0.0,
            )
        return workloads


class SQLAlchemySLARepository(_SessionRepository, ISLARepository):
    """SQLAlchemy implementation of SLA repository."""

    async def list(self) -> List[SLA]:
        stmt = select(SLAModel).order_by(SLAModel.priority.desc(), SLAModel.id.asc())
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_sla_from_model(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._wrap("list_slas", e) from e

    async def get(self, sla_id: int) -> Optional[SLA]:
        try:
            async with self._session_factory() as session:
                model = await session.get(SLAModel, sla_id)
                return _sla_from_model(model) if model else None
        except SQLAlchemyError as e:
            raise self._wrap("get_sla", e) from e

    async def create(self, sla: SLA) -> SLA:
        model = SLAModel(
            name=sla.name,
            description=sla.description,
            response_time=sla.response_time,
            resolution_time=sla.resolution_time,
            category=sla.category,
            priority=sla.priority,
            created_at=sla.created_at,
            updated_at=sla.updated_at,
        )
        try:
            async with self._session_factory() as session:
                session.add(model)
                await session.commit()
                return _sla_from_model(model)
        except SQLAlchemyError as e:
            raise self._wrap("create_sla", e) from e

    async def update(self, sla: SLA) -> SLA:
        try:
            async with self._session_factory() as session:
                model = await session.get(SLAModel, sla.id)
                if model is None:
                    raise RepositoryException(f"SLA {sla.id} not found")
                model.name = sla.name
                model.description = sla.description
                model.response_time = sla.response_time
                model.resolution_time = sla.resolution_time
                model.category = sla.category
                model.priority = sla.priority
                model.updated_at = sla.updated_at
                await session.commit()
                return _sla_from_model(model)
        except SQLAlchemyError as e:
            raise self._wrap("update_sla", e) from e

    async def delete(self, sla_id: int) -> int:
        """Detach dependent tickets, then delete, in one transaction."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    detached = await session.execute(
                        update(TicketModel)
                        .where(TicketModel.sla_id == sla_id)
                        .values(sla_id=None, updated_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    await session.execute(delete(SLAModel).where(SLAModel.id == sla_id))
                return detached.rowcount
        except SQLAlchemyError as e:
            raise self._wrap("delete_sla", e) from e


class SQLAlchemyAgentRepository(_SessionRepository, IAgentRepository):
    """Read-only agent directory."""

    async def get(self, agent_id: int) -> Optional[Agent]:
        try:
            async with self._session_factory() as session:
                model = await session.get(AgentModel, agent_id)
                return _agent_from_model(model) if model else None
        except SQLAlchemyError as e:
            raise self._wrap("get_agent", e) from e

    async def list(
        self,
        role: Optional[AgentRole] = None,
        senior: Optional[bool] = None
    ) -> List[Agent]:
        stmt = select(AgentModel)
        if role is not None:
            stmt = stmt.where(AgentModel.role == _db_value(role))
        if senior is not None:
            stmt = stmt.where(AgentModel.senior == senior)
        stmt = stmt.order_by(AgentModel.id.asc())
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_agent_from_model(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._wrap("list_agents", e) from e


class SQLAlchemyBreachRepository(_SessionRepository, IBreachRepository):
    """
    SQLAlchemy implementation of breach episode repository.

    The partial unique index on open (ticket, breach type) backs the
    application-level check against concurrent detectors.
    """

    async def open(self, record: BreachRecord) -> Optional[BreachRecord]:
        breach_type = _db_value(record.breach_type)
        try:
            async with self._session_factory() as session:
                existing = await session.execute(
                    select(BreachRecordModel.id).where(
                        and_(
                            BreachRecordModel.ticket_id == record.ticket_id,
                            BreachRecordModel.breach_type == breach_type,
                            BreachRecordModel.closed_at.is_(None),
                        )
                    )
                )
                if existing.first() is not None:
                    return None

                model = BreachRecordModel(
                    ticket_id=record.ticket_id,
                    breach_type=breach_type,
                    detected_at=record.detected_at,
                    time_overdue_seconds=record.time_overdue_seconds,
                )
                session.add(model)
                await session.commit()
                return _breach_from_model(model)
        except IntegrityError:
            # Another worker opened the same episode first
            logger.info(
                "Breach episode already open",
                extra={"ticket_id": record.ticket_id, "breach_type": breach_type}
            )
            return None
        except SQLAlchemyError as e:
            raise self._wrap("open_breach", e) from e

    async def list_open(self, ticket_id: Optional[int] = None) -> List[BreachRecord]:
        stmt = select(BreachRecordModel).where(BreachRecordModel.closed_at.is_(None))
        if ticket_id is not None:
            stmt = stmt.where(BreachRecordModel.ticket_id == ticket_id)
        stmt = stmt.order_by(BreachRecordModel.id.asc())
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_breach_from_model(m) for m in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._wrap("list_open_breaches", e) from e

    async def close(self, record_id: int, closed_at: datetime, reason: BreachCloseReason) -> bool:
        stmt = (
            update(BreachRecordModel)
            .where(and_(BreachRecordModel.id == record_id, BreachRecordModel.closed_at.is_(None)))
            .values(closed_at=closed_at, close_reason=_db_value(reason))
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise self._wrap("close_breach", e) from e

    async def close_for_ticket(
        self,
        ticket_id: int,
        closed_at: datetime,
        reason: BreachCloseReason
    ) -> int:
        stmt = (
            update(BreachRecordModel)
            .where(and_(BreachRecordModel.ticket_id == ticket_id, BreachRecordModel.closed_at.is_(None)))
            .values(closed_at=closed_at, close_reason=_db_value(reason))
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            raise self._wrap("close_ticket_breaches", e) from e

    async def mark_notified(self, record_id: int, notified_at: datetime) -> bool:
        stmt = (
            update(BreachRecordModel)
            .where(and_(BreachRecordModel.id == record_id, BreachRecordModel.notified_at.is_(None)))
            .values(notified_at=notified_at)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise self._wrap("mark_breach_notified", e) from e


class SQLAlchemyAuditRepository(_SessionRepository, IAuditRepository):
    """Append-only decisions, comments and automation log."""

    async def _add(self, operation: str, model: Any) -> Any:
        try:
            async with self._session_factory() as session:
                session.add(model)
                await session.commit()
                return model
        except SQLAlchemyError as e:
            raise self._wrap(operation, e) from e

    async def _all(self, operation: str, stmt) -> List[Any]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise self._wrap(operation, e) from e

    async def add_decision(self, decision: AssignmentDecision) -> AssignmentDecision:
        model = await self._add("add_decision", AssignmentDecisionModel(
            ticket_id=decision.ticket_id,
            agent_id=decision.agent_id,
            reason=decision.reason,
            score=decision.score,
            created_at=decision.created_at,
        ))
        decision.id = model.id
        return decision

    async def list_decisions(self, ticket_id: int) -> List[AssignmentDecision]:
        models = await self._all(
            "list_decisions",
            select(AssignmentDecisionModel)
            .where(AssignmentDecisionModel.ticket_id == ticket_id)
            .order_by(AssignmentDecisionModel.id.asc())
        )
        return [
            AssignmentDecision(
                id=m.id,
                ticket_id=m.ticket_id,
                agent_id=m.agent_id,
                reason=m.reason,
                score=m.score,
                created_at=m.created_at,
            )
            for m in models
        ]

    async def add_comment(self, comment: Comment) -> Comment:
        model = await self._add("add_comment", CommentModel(
            ticket_id=comment.ticket_id,
            author_id=comment.author_id,
            content=comment.content,
            comment_type=comment.comment_type,
            created_at=comment.created_at,
        ))
        comment.id = model.id
        return comment

    async def list_comments(self, ticket_id: int) -> List[Comment]:
        models = await self._all(
            "list_comments",
            select(CommentModel)
            .where(CommentModel.ticket_id == ticket_id)
            .order_by(CommentModel.id.asc())
        )
        return [
            Comment(
                id=m.id,
                ticket_id=m.ticket_id,
                author_id=m.author_id,
                content=m.content,
                comment_type=m.comment_type,
                created_at=m.created_at,
            )
            for m in models
        ]

    async def add_automation_log(self, entry: AutomationLogEntry) -> AutomationLogEntry:
        model = await self._add("add_automation_log", AutomationLogModel(
            ticket_id=entry.ticket_id,
            rule_name=entry.rule_name,
            actions=list(entry.actions),
            created_at=entry.created_at,
        ))
        entry.id = model.id
        return entry

    async def list_automation_logs(self, ticket_id: int) -> List[AutomationLogEntry]:
        models = await self._all(
            "list_automation_logs",
            select(AutomationLogModel)
            .where(AutomationLogModel.ticket_id == ticket_id)
            .order_by(AutomationLogModel.id.asc())
        )
        return [
            AutomationLogEntry(
                id=m.id,
                ticket_id=m.ticket_id,
                rule_name=m.rule_name,
                actions=list(m.actions or []),
                created_at=m.created_at,
            )
            for m in models
        ]

    async def has_automation_entry(self, ticket_id: int, rule_name: str) -> bool:
        stmt = select(func.count(AutomationLogModel.id)).where(
            and_(AutomationLogModel.ticket_id == ticket_id, AutomationLogModel.rule_name == rule_name)
        )
        try:
            async with self._session_factory() as session:
                return (await session.execute(stmt)).scalar_one() > 0
        except SQLAlchemyError as e:
            raise self._wrap("has_automation_entry", e) from e


def build_task_store(session_factory: SessionFactory) -> TaskStore:
    """Wire every SQLAlchemy repository onto one session factory."""
    return TaskStore(
        tickets=SQLAlchemyTicketRepository(session_factory),
        slas=SQLAlchemySLARepository(session_factory),
        agents=SQLAlchemyAgentRepository(session_factory),
        breaches=SQLAlchemyBreachRepository(session_factory),
        audit=SQLAlchemyAuditRepository(session_factory),
    )
