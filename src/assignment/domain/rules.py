"""
Automation Rules
================

Declarative automation rule table and its evaluator.

Rules are data: each one is an ordered list of condition descriptors and an
ordered list of action descriptors, both tagged by ``kind``. The table order
is the precedence order, and :class:`RuleEngine` selects the first rule
whose conditions all hold. Adding a rule never requires new control flow.

The models are Pydantic so the same table can be loaded from YAML.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Callable, Collection, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.config import AutomationRole, TicketPriority, TicketStatus
from src.sla.domain import Ticket


class _Descriptor(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ========== Conditions ==========

class PriorityCondition(_Descriptor):
    """Ticket priority equals one of ``values``."""
    kind: Literal["priority"] = "priority"
    values: List[TicketPriority] = Field(min_length=1)

    @field_validator("values", mode="before")
    @classmethod
    def accept_single_value(cls, v):
        return [v] if isinstance(v, str) else v


class CategoryCondition(_Descriptor):
    """Ticket category is one of ``categories``."""
    kind: Literal["category"] = "category"
    categories: List[str] = Field(min_length=1)

    @field_validator("categories", mode="before")
    @classmethod
    def accept_single_value(cls, v):
        return [v] if isinstance(v, str) else v


class KeywordCondition(_Descriptor):
    """Any keyword occurs in the title or description, ignoring case."""
    kind: Literal["keywords"] = "keywords"
    keywords: List[str] = Field(min_length=1)


class SLABreachedCondition(_Descriptor):
    kind: Literal["sla_breached"] = "sla_breached"
    expected: bool = True


class StatusCondition(_Descriptor):
    kind: Literal["status"] = "status"
    status: TicketStatus


class DaysSinceCompletionCondition(_Descriptor):
    """Completed at least ``days`` ago. Never matches an open ticket."""
    kind: Literal["days_since_completion"] = "days_since_completion"
    days: float = Field(ge=0)


Condition = Annotated[
    Union[
        PriorityCondition,
        CategoryCondition,
        KeywordCondition,
        SLABreachedCondition,
        StatusCondition,
        DaysSinceCompletionCondition,
    ],
    Field(discriminator="kind"),
]


# ========== Actions ==========

class AssignToRoleAction(_Descriptor):
    kind: Literal["assign_to_role"] = "assign_to_role"
    role: AutomationRole


class AddLabelAction(_Descriptor):
    kind: Literal["add_label"] = "add_label"
    label: str = Field(min_length=1)


class SetDueDateOffsetAction(_Descriptor):
    """Set ``due_date`` to now plus ``hours``."""
    kind: Literal["set_due_date_offset"] = "set_due_date_offset"
    hours: int = Field(gt=0)


class EscalateToRoleAction(_Descriptor):
    kind: Literal["escalate_to_role"] = "escalate_to_role"
    role: AutomationRole


class SendNotificationAction(_Descriptor):
    kind: Literal["send_notification"] = "send_notification"


class ArchiveAction(_Descriptor):
    kind: Literal["archive"] = "archive"


Action = Annotated[
    Union[
        AssignToRoleAction,
        AddLabelAction,
        SetDueDateOffsetAction,
        EscalateToRoleAction,
        SendNotificationAction,
        ArchiveAction,
    ],
    Field(discriminator="kind"),
]


class AutomationRule(_Descriptor):
    name: str = Field(min_length=1)
    conditions: List[Condition] = Field(min_length=1)
    actions: List[Action] = Field(min_length=1)

    @property
    def assignment_role(self) -> Optional[AutomationRole]:
        """Role this rule assigns or escalates to, if any."""
        for action in self.actions:
            if isinstance(action, (AssignToRoleAction, EscalateToRoleAction)):
                return action.role
        return None


class RuleSet(_Descriptor):
    """Ordered rule table; earlier rules take precedence."""
    rules: List[AutomationRule] = Field(default_factory=list)

    @field_validator("rules")
    @classmethod
    def unique_names(cls, v: List[AutomationRule]) -> List[AutomationRule]:
        names = [r.name for r in v]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"duplicate rule names: {sorted(duplicates)}")
        return v

    def get(self, name: str) -> Optional[AutomationRule]:
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None


# ========== Evaluation ==========

@dataclass(frozen=True)
class RuleContext:
    """
    What a rule sees: the ticket plus its derived breach state.

    ``sla_breached`` is the stored flag OR a live response-deadline breach,
    and always False once the ticket is no longer active.
    """
    ticket: Ticket
    sla_breached: bool
    now: datetime


def _match_priority(c: PriorityCondition, ctx: RuleContext) -> bool:
    return ctx.ticket.priority in c.values


def _match_category(c: CategoryCondition, ctx: RuleContext) -> bool:
    return ctx.ticket.category is not None and ctx.ticket.category in c.categories


def _match_keywords(c: KeywordCondition, ctx: RuleContext) -> bool:
    haystacks = [ctx.ticket.title.lower(), (ctx.ticket.description or "").lower()]
    return any(k.lower() in h for k in c.keywords for h in haystacks)


def _match_sla_breached(c: SLABreachedCondition, ctx: RuleContext) -> bool:
    return ctx.sla_breached == c.expected


def _match_status(c: StatusCondition, ctx: RuleContext) -> bool:
    return ctx.ticket.status == c.status


def _match_days_since_completion(c: DaysSinceCompletionCondition, ctx: RuleContext) -> bool:
    days = ctx.ticket.days_since_completion(ctx.now)
    return days is not None and days >= c.days


_CONDITION_EVALUATORS: Dict[str, Callable[..., bool]] = {
    "priority": _match_priority,
    "category": _match_category,
    "keywords": _match_keywords,
    "sla_breached": _match_sla_breached,
    "status": _match_status,
    "days_since_completion": _match_days_since_completion,
}


class RuleEngine:
    """
    Selects at most one rule per evaluation: the first full match wins.

    Evaluation is synchronous and free of side effects; applying the
    selected rule is the caller's job.
    """

    def __init__(self, rule_set: RuleSet):
        self._rule_set = rule_set

    @property
    def rules(self) -> List[AutomationRule]:
        return list(self._rule_set.rules)

    @staticmethod
    def condition_holds(condition: Condition, ctx: RuleContext) -> bool:
        return _CONDITION_EVALUATORS[condition.kind](condition, ctx)

    @classmethod
    def rule_matches(cls, rule: AutomationRule, ctx: RuleContext) -> bool:
        return all(cls.condition_holds(c, ctx) for c in rule.conditions)

    def select(self, ctx: RuleContext, exclude: Collection[str] = ()) -> Optional[AutomationRule]:
        """First rule, not named in ``exclude``, whose conditions all hold."""
        for rule in self._rule_set.rules:
            if rule.name not in exclude and self.rule_matches(rule, ctx):
                return rule
        return None

    def matching(self, ctx: RuleContext) -> List[AutomationRule]:
        """Every matching rule in precedence order, for diagnostics."""
        return [r for r in self._rule_set.rules if self.rule_matches(r, ctx)]


DEFAULT_RULE_SET = RuleSet(rules=[
    AutomationRule(
        name="HIGH_PRIORITY",
        conditions=[
            PriorityCondition(values=[TicketPriority.HIGH]),
            CategoryCondition(categories=["critical", "emergency"]),
        ],
        actions=[
            AssignToRoleAction(role=AutomationRole.SENIOR_AGENT),
            AddLabelAction(label="urgent"),
            SetDueDateOffsetAction(hours=24),
        ],
    ),
    AutomationRule(
        name="TECH_SUPPORT",
        conditions=[
            CategoryCondition(categories=["technical_support"]),
            KeywordCondition(keywords=["error", "bug", "system failure"]),
        ],
        actions=[
            AssignToRoleAction(role=AutomationRole.TECH_SUPPORT_TEAM),
            AddLabelAction(label="technical"),
            SetDueDateOffsetAction(hours=48),
        ],
    ),
    AutomationRule(
        name="SLA_BREACH",
        conditions=[
            SLABreachedCondition(expected=True),
            PriorityCondition(values=[TicketPriority.HIGH, TicketPriority.NORMAL]),
        ],
        actions=[
            EscalateToRoleAction(role=AutomationRole.MANAGER),
            AddLabelAction(label="escalated"),
            SendNotificationAction(),
        ],
    ),
    AutomationRule(
        name="AUTO_CLOSE",
        conditions=[
            StatusCondition(status=TicketStatus.COMPLETED),
            DaysSinceCompletionCondition(days=7),
        ],
        actions=[
            ArchiveAction(),
            AddLabelAction(label="archived"),
        ],
    ),
])
