"""
Integration tests for BreachDetector.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from src.config import BreachCloseReason, BreachType, TicketStatus
from src.core import RepositoryException
from src.sla.application import BreachDetector, SLAService
from src.sla.domain import BreachRecord
from src.sla.infrastructure.models import BreachRecordModel
from tests.helpers import T0, FakeNotifier


@pytest.fixture
def detector(store, notifier, clock):
    return BreachDetector(store, notifier, clock=clock)


async def close_reasons(session_factory, ticket_id):
    async with session_factory() as session:
        result = await session.execute(
            select(BreachRecordModel.close_reason)
            .where(BreachRecordModel.ticket_id == ticket_id)
            .order_by(BreachRecordModel.id)
        )
        return list(result.scalars().all())


class TestBreachDetection:
    """Recording breach episodes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_response_breach_recorded_and_assignee_alerted(
        self, store, detector, notifier, add_agent, add_sla, add_ticket
    ):
        """One hour response, eight hour resolution, evaluated two hours in."""
        ana = await add_agent("Ana")
        sla = await add_sla(response_time=3600, resolution_time=28800)
        ticket = await add_ticket(sla_id=sla.id, assigned_to=ana.id)

        summary = await detector.run()

        assert summary.tickets_scanned == 1
        assert summary.breaches_opened == 1
        assert summary.tickets_flagged == 1
        assert summary.notifications_sent == 1

        [record] = await store.breaches.list_open(ticket.id)
        assert record.breach_type == BreachType.RESPONSE
        assert record.time_overdue_seconds == 3600

        stored = await store.tickets.get(ticket.id)
        assert stored.sla_breached is True
        assert stored.status == TicketStatus.TODO

        [sent] = notifier.sent
        assert sent["to"] == "ana@example.com"
        assert sent["template"] == "sla_breach"
        assert sent["subject"] == "SLA Breach Alert: Cannot log in"
        assert sent["data"]["breach_type"] == "response"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_rerun_records_and_notifies_nothing_new(
        self, store, detector, notifier, add_agent, add_sla, add_ticket
    ):
        ana = await add_agent("Ana")
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id, assigned_to=ana.id)

        await detector.run()
        again = await detector.run()

        assert again.breaches_opened == 0
        assert again.notifications_sent == 0
        assert again.tickets_flagged == 0
        assert len(await store.breaches.list_open(ticket.id)) == 1
        assert len(notifier.sent) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_resolution_breach_opens_second_episode(
        self, store, detector, notifier, clock, add_agent, add_sla, add_ticket
    ):
        ana = await add_agent("Ana")
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id, assigned_to=ana.id)
        await detector.run()

        clock.advance(hours=7)
        summary = await detector.run()

        assert summary.breaches_opened == 1
        types = {r.breach_type for r in await store.breaches.list_open(ticket.id)}
        assert types == {BreachType.RESPONSE, BreachType.RESOLUTION}
        assert [n["data"]["breach_type"] for n in notifier.sent] == ["response", "resolution"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unassigned_ticket_recorded_without_notification(
        self, store, detector, notifier, add_sla, add_ticket
    ):
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id)

        summary = await detector.run()

        assert summary.breaches_opened == 1
        assert summary.notifications_sent == 0
        assert notifier.sent == []
        assert (await store.tickets.get(ticket.id)).sla_breached is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_tickets_within_deadline_or_without_sla_untouched(
        self, store, detector, add_sla, add_ticket
    ):
        relaxed = await add_sla("Relaxed", response_time=86400, resolution_time=86400 * 3)
        await add_ticket("Fresh", sla_id=relaxed.id)
        await add_ticket("No SLA", created_at=T0 - timedelta(days=30))

        summary = await detector.run()

        assert summary.tickets_scanned == 1
        assert summary.breaches_opened == 0
        assert await store.breaches.list_open() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_notification_failure_does_not_lose_the_episode(
        self, store, clock, add_agent, add_sla, add_ticket
    ):
        ana = await add_agent("Ana")
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id, assigned_to=ana.id)

        summary = await BreachDetector(store, FakeNotifier(fail=True), clock=clock).run()

        assert summary.breaches_opened == 1
        assert summary.notifications_sent == 0
        assert summary.failed == 0
        assert len(await store.breaches.list_open(ticket.id)) == 1


class TestEpisodeLifecycle:
    """Closing episodes and clearing the breach flag."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_completion_closes_episode_and_clears_flag(
        self, store, detector, session_factory, clock, add_sla, add_ticket
    ):
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id)
        await detector.run()

        flagged = await store.tickets.get(ticket.id)
        await store.tickets.conditional_update(
            ticket.id,
            flagged.snapshot(),
            {"status": TicketStatus.COMPLETED, "completed_at": clock()},
        )
        summary = await detector.run()

        assert summary.episodes_closed == 1
        assert summary.flags_cleared == 1
        assert await store.breaches.list_open(ticket.id) == []
        assert (await store.tickets.get(ticket.id)).sla_breached is False
        assert await close_reasons(session_factory, ticket.id) == [BreachCloseReason.RESOLVED.value]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_deleted_sla_closes_episode(
        self, store, detector, session_factory, add_sla, add_ticket
    ):
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id)
        await detector.run()

        await store.slas.delete(sla.id)
        summary = await detector.run()

        assert summary.episodes_closed == 1
        assert await close_reasons(session_factory, ticket.id) == [BreachCloseReason.SLA_REMOVED.value]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_extended_sla_closes_episode(
        self, store, detector, session_factory, clock, add_sla, add_ticket
    ):
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id)
        await detector.run()

        await SLAService(store, clock=clock).update_sla(sla.id, response_time=86400, resolution_time=86400)
        summary = await detector.run()

        assert summary.episodes_closed == 1
        assert await store.breaches.list_open(ticket.id) == []
        assert await close_reasons(session_factory, ticket.id) == [BreachCloseReason.RESOLVED.value]


class TestFailureIsolation:
    """A store error on one item never aborts the scan."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cleanup_error_on_one_episode_is_isolated(
        self, store, detector, monkeypatch, add_sla, add_ticket
    ):
        sla = await add_sla()
        flaky = await add_ticket("Flaky", sla_id=sla.id)
        other = await add_ticket("Other", sla_id=sla.id)
        await store.breaches.open(BreachRecord(
            id=None,
            ticket_id=flaky.id,
            breach_type=BreachType.RESPONSE,
            detected_at=T0,
            time_overdue_seconds=0,
        ))

        get_ticket = store.tickets.get

        async def failing_get(ticket_id):
            if ticket_id == flaky.id:
                raise RepositoryException("transient")
            return await get_ticket(ticket_id)

        monkeypatch.setattr(store.tickets, "get", failing_get)

        summary = await detector.run()

        assert summary.failed == 1
        assert summary.tickets_scanned == 2
        [record] = await store.breaches.list_open(other.id)
        assert record.breach_type == BreachType.RESPONSE
        assert (await get_ticket(other.id)).sla_breached is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_flag_cleanup_error_is_isolated(
        self, store, detector, monkeypatch, add_sla, add_ticket
    ):
        sla = await add_sla()
        await add_ticket("Done", sla_id=sla.id, status=TicketStatus.COMPLETED,
                         completed_at=T0, sla_breached=True)
        other = await add_ticket("Other", sla_id=sla.id)

        update = store.tickets.conditional_update

        async def failing_update(ticket_id, expected, changes):
            if changes == {"sla_breached": False}:
                raise RepositoryException("transient")
            return await update(ticket_id, expected, changes)

        monkeypatch.setattr(store.tickets, "conditional_update", failing_update)

        summary = await detector.run()

        assert summary.failed == 1
        assert summary.flags_cleared == 0
        assert summary.breaches_opened == 1
        assert len(await store.breaches.list_open(other.id)) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_episode_announced_after_failed_flag_write(
        self, store, detector, notifier, monkeypatch, add_agent, add_sla, add_ticket
    ):
        """The next scan alerts the assignee for an episode a failed scan recorded."""
        ana = await add_agent("Ana")
        sla = await add_sla()
        ticket = await add_ticket(sla_id=sla.id, assigned_to=ana.id)

        async def failing_update(ticket_id, expected, changes):
            raise RepositoryException("transient")

        monkeypatch.setattr(store.tickets, "conditional_update", failing_update)
        first = await detector.run()
        monkeypatch.undo()

        assert first.failed == 1
        assert first.notifications_sent == 0
        assert len(await store.breaches.list_open(ticket.id)) == 1

        second = await detector.run()

        assert second.breaches_opened == 0
        assert second.tickets_flagged == 1
        assert second.notifications_sent == 1
        assert notifier.recipients("sla_breach") == ["ana@example.com"]
        [record] = await store.breaches.list_open(ticket.id)
        assert record.notified_at is not None

        third = await detector.run()
        assert third.notifications_sent == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_notification_retried_on_next_scan(
        self, store, notifier, clock, add_agent, add_sla, add_ticket
    ):
        ana = await add_agent("Ana")
        sla = await add_sla()
        await add_ticket(sla_id=sla.id, assigned_to=ana.id)

        await BreachDetector(store, FakeNotifier(fail=True), clock=clock).run()
        retried = await BreachDetector(store, notifier, clock=clock).run()

        assert retried.breaches_opened == 0
        assert retried.notifications_sent == 1
        assert notifier.recipients("sla_breach") == ["ana@example.com"]
