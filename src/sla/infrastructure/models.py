"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the ticket store.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database import Base, UTCDateTime
from src.config import AgentRole, TicketPriority, TicketStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SLAModel(Base):
    """
    Database model for SLA entity.

    Maps to the 'slas' table.
    """
    __tablename__ = "slas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Seconds from ticket creation
    response_time: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_time: Mapped[int] = mapped_column(Integer, nullable=False)

    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


class AgentModel(Base):
    """
    Database model for agents (users who can own tickets).

    Maps to the 'agents' table.
    """
    __tablename__ = "agents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[AgentRole] = mapped_column(String(50), nullable=False, default=AgentRole.AGENT, index=True)
    senior: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    categories: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)


class TicketModel(Base):
    """
    Database model for Ticket entity.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.TODO, index=True)
    priority: Mapped[TicketPriority] = mapped_column(String(50), nullable=False, default=TicketPriority.NORMAL)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    labels: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # SLA / assignment
    sla_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("slas.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_to: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("agents.id"), nullable=True, index=True
    )
    sla_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class BreachRecordModel(Base):
    """
    Database model for breach episodes.

    Maps to the 'sla_breaches' table. At most one open row per
    (ticket, breach type), enforced by a partial unique index.
    """
    __tablename__ = "sla_breaches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    breach_type: Mapped[str] = mapped_column(String(50), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    time_overdue_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    close_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notified_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index(
            "uq_sla_breaches_open",
            "ticket_id",
            "breach_type",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )


class AssignmentDecisionModel(Base):
    """
    Append-only assignment audit.

    Maps to the 'assignment_decisions' table.
    """
    __tablename__ = "assignment_decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id: Mapped[int] = mapped_column(Integer, ForeignKey("agents.id"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)


class AutomationLogModel(Base):
    """
    Append-only automation log.

    Maps to the 'automation_logs' table.
    """
    __tablename__ = "automation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    rule_name: Mapped[str] = mapped_column(String(100), nullable=False)
    actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)

    __table_args__ = (
        Index("ix_automation_logs_ticket_rule", "ticket_id", "rule_name"),
    )


class CommentModel(Base):
    """
    System comments on a ticket.

    Maps to the 'comments' table.
    """
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("agents.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    comment_type: Mapped[str] = mapped_column(String(50), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
