"""
Suitability Scoring
===================

Pure scoring of a candidate agent against a ticket, plus deterministic
ranking and threshold selection.

Score = 100
      + 10 per shared skill
      + 20 if the ticket category is one of the agent's categories
      - 5 per pending ticket (capped at 50)
      + priority boost (high 30, normal 20, low 10)
      - 50 if the ticket's SLA response deadline has already passed
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from src.config import TicketPriority
from src.sla.domain import Agent, AgentWorkload, SLADeadlines, Ticket

BASE_SCORE = 100
SKILL_MATCH_POINTS = 10
CATEGORY_MATCH_POINTS = 20
PENDING_TICKET_PENALTY = 5
MAX_WORKLOAD_PENALTY = 50
SLA_OVERDUE_PENALTY = 50
ACCEPTANCE_THRESHOLD = 50

PRIORITY_BOOST = {
    TicketPriority.HIGH: 30,
    TicketPriority.NORMAL: 20,
    TicketPriority.LOW: 10,
}


@dataclass(frozen=True)
class ScoreBreakdown:
    """Individual score components; ``total`` is their sum."""
    base: int
    skill_match: int
    category_match: int
    workload_penalty: int
    priority_boost: int
    sla_penalty: int

    @property
    def total(self) -> int:
        return (
            self.base
            + self.skill_match
            + self.category_match
            + self.workload_penalty
            + self.priority_boost
            + self.sla_penalty
        )


@dataclass(frozen=True)
class ScoredCandidate:
    agent: Agent
    workload: AgentWorkload
    breakdown: ScoreBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.total


class SuitabilityScorer:
    """
    Stateless scoring functions.

    Identical inputs always produce identical scores; nothing here reads
    the clock or the store.
    """

    @staticmethod
    def breakdown(
        ticket: Ticket,
        agent: Agent,
        workload: AgentWorkload,
        deadlines: Optional[SLADeadlines] = None
    ) -> ScoreBreakdown:
        """
        Score one agent for one ticket.

        Args:
            ticket: Ticket to place
            agent: Candidate agent with skills and categories resolved
            workload: Agent's current workload snapshot
            deadlines: Ticket deadlines if it has an SLA, evaluated at "now"
        """
        shared_skills = set(ticket.skills) & set(agent.skills)
        category_match = ticket.category is not None and ticket.category in agent.categories
        return ScoreBreakdown(
            base=BASE_SCORE,
            skill_match=SKILL_MATCH_POINTS * len(shared_skills),
            category_match=CATEGORY_MATCH_POINTS if category_match else 0,
            workload_penalty=-min(workload.pending_count * PENDING_TICKET_PENALTY, MAX_WORKLOAD_PENALTY),
            priority_boost=PRIORITY_BOOST.get(ticket.priority, PRIORITY_BOOST[TicketPriority.LOW]),
            sla_penalty=-SLA_OVERDUE_PENALTY if deadlines is not None and deadlines.response_breached else 0,
        )

    @staticmethod
    def score(
        ticket: Ticket,
        agent: Agent,
        workload: AgentWorkload,
        deadlines: Optional[SLADeadlines] = None
    ) -> int:
        return SuitabilityScorer.breakdown(ticket, agent, workload, deadlines).total


def rank_candidates(
    ticket: Ticket,
    candidates: Iterable[Tuple[Agent, AgentWorkload]],
    deadlines: Optional[SLADeadlines] = None
) -> List[ScoredCandidate]:
    """
    Score and sort candidates, best first.

    The sort is stable, so agents with equal scores keep the order in
    which they were enumerated.
    """
    scored = [
        ScoredCandidate(agent, workload, SuitabilityScorer.breakdown(ticket, agent, workload, deadlines))
        for agent, workload in candidates
    ]
    return sorted(scored, key=lambda c: c.score, reverse=True)


def select_best(
    ranked: List[ScoredCandidate],
    threshold: int = ACCEPTANCE_THRESHOLD
) -> Optional[ScoredCandidate]:
    """Top candidate if it clears ``threshold``, else None."""
    if not ranked or ranked[0].score < threshold:
        return None
    return ranked[0]
