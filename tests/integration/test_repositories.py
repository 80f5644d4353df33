"""
Integration tests for the SQLAlchemy repositories against SQLite.
"""

from datetime import timedelta

import pytest

from src.config import BreachCloseReason, BreachType, TicketStatus
from src.core import RepositoryException
from src.sla.application import TicketQuery
from src.sla.domain import BreachRecord
from tests.helpers import T0


def breach(ticket_id, breach_type=BreachType.RESPONSE, detected_at=T0):
    return BreachRecord(
        id=None,
        ticket_id=ticket_id,
        breach_type=breach_type,
        detected_at=detected_at,
        time_overdue_seconds=60,
    )


class TestTicketRepository:
    """Tests for SQLAlchemyTicketRepository."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_round_trip_keeps_timezone(self, store, add_ticket):
        created = await add_ticket(skills=["sql"], labels=["vip"], category="infra")

        loaded = await store.tickets.get(created.id)

        assert loaded.created_at == T0
        assert loaded.created_at.tzinfo is not None
        assert loaded.skills == ["sql"]
        assert loaded.labels == ["vip"]
        assert loaded.status == TicketStatus.TODO

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_conditional_update_rejects_stale_snapshot(self, store, add_agent, add_ticket):
        ana = await add_agent("Ana")
        ben = await add_agent("Ben")
        ticket = await add_ticket()
        stale = ticket.snapshot()

        assert await store.tickets.conditional_update(ticket.id, stale, {"assigned_to": ana.id}) is True
        assert await store.tickets.conditional_update(ticket.id, stale, {"assigned_to": ben.id}) is False

        assert (await store.tickets.get(ticket.id)).assigned_to == ana.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_conditional_update_refuses_unknown_columns(self, store, add_ticket):
        ticket = await add_ticket()

        with pytest.raises(RepositoryException):
            await store.tickets.conditional_update(ticket.id, {}, {"title": "renamed"})

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_filters(self, store, add_sla, add_ticket):
        sla = await add_sla()
        with_sla = await add_ticket("With SLA", sla_id=sla.id)
        await add_ticket("No SLA")
        await add_ticket("Done", sla_id=sla.id, status=TicketStatus.COMPLETED, completed_at=T0)

        active_with_sla = await store.tickets.list(
            TicketQuery(statuses=[TicketStatus.TODO, TicketStatus.IN_PROGRESS], has_sla=True)
        )

        assert [t.id for t in active_with_sla] == [with_sla.id]
        assert len(await store.tickets.list(TicketQuery(has_sla=False))) == 1
        assert len(await store.tickets.list(TicketQuery(created_since=T0 + timedelta(seconds=1)))) == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_workload_counts_active_tickets_only(self, store, add_agent, add_ticket):
        ana = await add_agent("Ana")
        await add_ticket("a", assigned_to=ana.id)
        await add_ticket("b", assigned_to=ana.id, created_at=T0 + timedelta(hours=1))
        await add_ticket("c", assigned_to=ana.id, status=TicketStatus.IN_PROGRESS)
        await add_ticket("d", assigned_to=ana.id, status=TicketStatus.COMPLETED, completed_at=T0)

        workload = await store.tickets.get_workload(ana.id, T0 + timedelta(hours=2))

        assert workload.pending_count == 2
        assert workload.in_progress_count == 1
        assert workload.total == 3
        assert workload.avg_age_seconds == pytest.approx((7200 + 3600 + 7200) / 3)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_workloads_for_several_agents_in_one_call(self, store, add_agent, add_ticket):
        ana = await add_agent("Ana")
        ben = await add_agent("Ben")
        await add_ticket("a", assigned_to=ana.id)
        await add_ticket("b", assigned_to=ana.id, status=TicketStatus.IN_PROGRESS)

        workloads = await store.tickets.get_workloads([ana.id, ben.id], T0 + timedelta(hours=1))

        assert workloads[ana.id].pending_count == 1
        assert workloads[ana.id].in_progress_count == 1
        assert workloads[ben.id].total == 0
        assert workloads[ben.id].avg_age_seconds == 0.0
        assert await store.tickets.get_workloads([], T0) == {}


class TestSLARepository:
    """Tests for SQLAlchemySLARepository."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_orders_by_priority(self, store, add_sla):
        await add_sla("Bronze", priority=1)
        await add_sla("Gold", priority=3)
        await add_sla("Silver", priority=2)

        assert [s.name for s in await store.slas.list()] == ["Gold", "Silver", "Bronze"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_delete_detaches_tickets(self, store, add_sla, add_ticket):
        sla = await add_sla()
        first = await add_ticket("first", sla_id=sla.id)
        await add_ticket("second", sla_id=sla.id)

        detached = await store.slas.delete(sla.id)

        assert detached == 2
        assert await store.slas.get(sla.id) is None
        assert (await store.tickets.get(first.id)).sla_id is None


class TestBreachRepository:
    """Tests for SQLAlchemyBreachRepository."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_one_open_episode_per_ticket_and_type(self, store, add_ticket):
        ticket = await add_ticket()

        first = await store.breaches.open(breach(ticket.id))
        duplicate = await store.breaches.open(breach(ticket.id))
        other_type = await store.breaches.open(breach(ticket.id, BreachType.RESOLUTION))

        assert first is not None and first.is_open
        assert duplicate is None
        assert other_type is not None
        assert len(await store.breaches.list_open(ticket.id)) == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_closed_episode_allows_a_new_one(self, store, add_ticket):
        ticket = await add_ticket()
        first = await store.breaches.open(breach(ticket.id))

        assert await store.breaches.close(first.id, T0 + timedelta(hours=1), BreachCloseReason.RESOLVED) is True
        assert await store.breaches.close(first.id, T0 + timedelta(hours=2), BreachCloseReason.RESOLVED) is False

        reopened = await store.breaches.open(breach(ticket.id, detected_at=T0 + timedelta(hours=3)))
        assert reopened is not None
        assert reopened.id != first.id

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_close_for_ticket(self, store, add_ticket):
        ticket = await add_ticket()
        other = await add_ticket("other")
        await store.breaches.open(breach(ticket.id))
        await store.breaches.open(breach(ticket.id, BreachType.RESOLUTION))
        await store.breaches.open(breach(other.id))

        closed = await store.breaches.close_for_ticket(ticket.id, T0, BreachCloseReason.REASSIGNED)

        assert closed == 2
        assert await store.breaches.list_open(ticket.id) == []
        assert len(await store.breaches.list_open()) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_mark_notified_once(self, store, add_ticket):
        ticket = await add_ticket()
        record = await store.breaches.open(breach(ticket.id))
        assert record.notified_at is None

        assert await store.breaches.mark_notified(record.id, T0 + timedelta(hours=1)) is True
        assert await store.breaches.mark_notified(record.id, T0 + timedelta(hours=2)) is False

        [stored] = await store.breaches.list_open(ticket.id)
        assert stored.notified_at == T0 + timedelta(hours=1)
