"""
Unit tests for the automation rule table and evaluator.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from src.assignment.domain import (
    DEFAULT_RULE_SET,
    AddLabelAction,
    AutomationRule,
    KeywordCondition,
    RuleContext,
    RuleEngine,
    RuleSet,
)
from src.config import AutomationRole, TicketPriority, TicketStatus
from src.sla.domain import Ticket
from tests.helpers import T0


@pytest.fixture
def rule_engine():
    return RuleEngine(DEFAULT_RULE_SET)


def context(ticket, sla_breached=False, now=T0):
    return RuleContext(ticket=ticket, sla_breached=sla_breached, now=now)


class TestDefaultRules:
    """Precedence and conditions of the built-in table."""

    @pytest.mark.unit
    def test_high_priority_critical(self, rule_engine):
        ticket = Ticket(id=1, title="Outage", priority=TicketPriority.HIGH, category="critical", created_at=T0)

        rule = rule_engine.select(context(ticket))

        assert rule.name == "HIGH_PRIORITY"
        assert rule.assignment_role == AutomationRole.SENIOR_AGENT

    @pytest.mark.unit
    def test_first_match_wins_over_later_rules(self, rule_engine):
        """A breached high/critical ticket matches HIGH_PRIORITY and SLA_BREACH; only the first is chosen."""
        ticket = Ticket(id=1, title="Outage", priority=TicketPriority.HIGH, category="emergency", created_at=T0)
        ctx = context(ticket, sla_breached=True)

        assert [r.name for r in rule_engine.matching(ctx)] == ["HIGH_PRIORITY", "SLA_BREACH"]
        assert rule_engine.select(ctx).name == "HIGH_PRIORITY"

    @pytest.mark.unit
    def test_excluded_rules_are_skipped(self, rule_engine):
        ticket = Ticket(id=1, title="Outage", priority=TicketPriority.HIGH, category="emergency", created_at=T0)

        rule = rule_engine.select(context(ticket, sla_breached=True), exclude={"HIGH_PRIORITY"})

        assert rule.name == "SLA_BREACH"

    @pytest.mark.unit
    @pytest.mark.parametrize("title,description", [
        ("Login ERROR on submit", ""),
        ("Checkout broken", "looks like a Bug in the cart"),
        ("Everything down", "total system failure"),
    ])
    def test_tech_support_keywords_ignore_case(self, rule_engine, title, description):
        ticket = Ticket(id=1, title=title, description=description, category="technical_support", created_at=T0)

        assert rule_engine.select(context(ticket)).name == "TECH_SUPPORT"

    @pytest.mark.unit
    def test_tech_support_needs_keyword(self, rule_engine):
        ticket = Ticket(id=1, title="Password reset", category="technical_support", created_at=T0)

        assert rule_engine.select(context(ticket)) is None

    @pytest.mark.unit
    def test_low_priority_breach_not_escalated(self, rule_engine):
        ticket = Ticket(id=1, title="Typo", priority=TicketPriority.LOW, created_at=T0)

        assert rule_engine.select(context(ticket, sla_breached=True)) is None

    @pytest.mark.unit
    def test_auto_close_after_seven_days(self, rule_engine):
        ticket = Ticket(
            id=1,
            title="Done",
            status=TicketStatus.COMPLETED,
            created_at=T0,
            completed_at=T0 + timedelta(hours=1),
        )

        too_soon = context(ticket, now=T0 + timedelta(days=7))
        old_enough = context(ticket, now=T0 + timedelta(days=7, hours=1))

        assert rule_engine.select(too_soon) is None
        assert rule_engine.select(old_enough).name == "AUTO_CLOSE"

    @pytest.mark.unit
    def test_days_since_completion_never_matches_open_ticket(self):
        ticket = Ticket(id=1, title="Open", created_at=T0)

        assert ticket.days_since_completion(T0 + timedelta(days=30)) is None


class TestRuleSetValidation:
    """Loading rule tables from plain data."""

    @pytest.mark.unit
    def test_from_dict(self):
        rules = RuleSet.model_validate({
            "rules": [{
                "name": "VIP",
                "conditions": [{"kind": "priority", "values": "high"}],
                "actions": [{"kind": "add_label", "label": "vip"}],
            }]
        })

        assert rules.get("VIP").actions == [AddLabelAction(label="vip")]
        assert rules.get("missing") is None

    @pytest.mark.unit
    def test_duplicate_names_rejected(self):
        rule = AutomationRule(
            name="DUP",
            conditions=[KeywordCondition(keywords=["x"])],
            actions=[AddLabelAction(label="y")],
        )

        with pytest.raises(ValidationError):
            RuleSet(rules=[rule, rule])

    @pytest.mark.unit
    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            RuleSet.model_validate({
                "rules": [{
                    "name": "BAD",
                    "conditions": [{"kind": "moon_phase", "phase": "full"}],
                    "actions": [{"kind": "add_label", "label": "y"}],
                }]
            })

    @pytest.mark.unit
    def test_rule_without_actions_rejected(self):
        with pytest.raises(ValidationError):
            AutomationRule(name="EMPTY", conditions=[KeywordCondition(keywords=["x"])], actions=[])
