"""
Integration tests for SLAService and ReportGenerator.
"""

from datetime import timedelta

import pytest

from src.config import AgentRole, BreachType, TicketStatus
from src.core import ResourceNotFoundException, ValidationException
from src.sla.application import ReportGenerator, SLAService
from tests.helpers import T0, FakeNotifier


@pytest.fixture
def service(store, clock):
    return SLAService(store, clock=clock)


class TestSLADefinitions:
    """Create, update and delete SLAs."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_and_get(self, service, clock):
        created = await service.create_sla("Gold", 900, 14400, category="billing", priority=3)

        loaded = await service.get_sla(created.id)

        assert loaded.name == "Gold"
        assert loaded.response_time == 900
        assert loaded.category == "billing"
        assert loaded.created_at == clock()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_rejects_inverted_times(self, service):
        with pytest.raises(ValidationException):
            await service.create_sla("Broken", 7200, 3600)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(self, service, clock):
        sla = await service.create_sla("Gold", 900, 14400, description="Top tier")
        clock.advance(minutes=5)

        updated = await service.update_sla(sla.id, resolution_time=20000, description=None)

        assert updated.resolution_time == 20000
        assert updated.response_time == 900
        assert updated.description == "Top tier"
        assert updated.updated_at == clock()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_update_revalidates_merged_times(self, service):
        sla = await service.create_sla("Gold", 900, 14400)

        with pytest.raises(ValidationException):
            await service.update_sla(sla.id, response_time=20000)
        assert (await service.get_sla(sla.id)).response_time == 900

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_missing_sla(self, service):
        with pytest.raises(ResourceNotFoundException):
            await service.get_sla(42)
        with pytest.raises(ResourceNotFoundException):
            await service.update_sla(42, name="x")
        with pytest.raises(ResourceNotFoundException):
            await service.delete_sla(42)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_delete_reports_detached_tickets(self, store, service, add_ticket):
        sla = await service.create_sla("Gold", 900, 14400)
        ticket = await add_ticket(sla_id=sla.id)

        assert await service.delete_sla(sla.id) == 1
        assert (await store.tickets.get(ticket.id)).sla_id is None
        assert await service.list_slas() == []


class TestBreachingView:
    """Tests for SLAService.get_breaching_tickets."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_only_active_overdue_tickets(self, service, add_sla, add_ticket):
        tight = await add_sla("Tight", 3600, 28800)
        loose = await add_sla("Loose", 86400, 86400 * 2)
        overdue = await add_ticket("Overdue", sla_id=tight.id)
        await add_ticket("In time", sla_id=loose.id)
        await add_ticket("Closed", sla_id=tight.id, status=TicketStatus.COMPLETED, completed_at=T0)

        breaching = await service.get_breaching_tickets()

        assert [b.ticket.id for b in breaching] == [overdue.id]
        assert breaching[0].sla.name == "Tight"
        assert breaching[0].deadlines.breached_types() == [BreachType.RESPONSE]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_does_not_depend_on_breach_flag(self, service, add_sla, add_ticket):
        tight = await add_sla()
        await add_ticket("Flag not yet set", sla_id=tight.id, sla_breached=False)

        assert len(await service.get_breaching_tickets()) == 1


class TestStatisticsAndReport:
    """Compliance statistics and the daily report."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_statistics_per_sla(self, service, add_sla, add_ticket):
        gold = await add_sla("Gold", 3600, 28800, priority=2)
        await add_sla("Silver", 7200, 86400)
        await add_ticket("fast", sla_id=gold.id, status=TicketStatus.COMPLETED,
                         completed_at=T0 + timedelta(hours=1))
        await add_ticket("slow", sla_id=gold.id, status=TicketStatus.COMPLETED,
                         completed_at=T0 + timedelta(hours=10))
        await add_ticket("open", sla_id=gold.id)

        gold_stats, silver_stats = await service.get_statistics()

        assert gold_stats.name == "Gold"
        assert gold_stats.total_tickets == 3
        assert gold_stats.completed_tickets == 2
        assert gold_stats.on_time_tickets == 1
        assert gold_stats.compliance_rate == 33.33
        assert silver_stats.total_tickets == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_statistics_since(self, service, add_sla, add_ticket):
        sla = await add_sla()
        await add_ticket("old", sla_id=sla.id, created_at=T0 - timedelta(days=3))
        await add_ticket("new", sla_id=sla.id)

        [stats] = await service.get_statistics(since=T0 - timedelta(days=1))

        assert stats.total_tickets == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_report_goes_to_every_admin(self, store, notifier, clock, add_agent, add_sla, add_ticket):
        await add_agent("Root", role=AgentRole.ADMIN)
        await add_agent("Ops", role=AgentRole.ADMIN)
        await add_agent("Ana")
        sla = await add_sla()
        await add_ticket(sla_id=sla.id)
        await add_ticket("last week", sla_id=sla.id, created_at=T0 - timedelta(days=7))

        summary = await ReportGenerator(store, notifier, clock=clock).run()

        assert summary.recipients == 2
        assert summary.sent == 2
        assert notifier.recipients("daily_sla_report") == ["root@example.com", "ops@example.com"]
        data = notifier.sent[0]["data"]
        assert data["window_start"] == (clock() - timedelta(days=1)).isoformat()
        assert data["statistics"][0]["total_tickets"] == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_report_without_admins_or_transport(self, store, clock, add_agent, add_sla):
        await add_sla()

        quiet = await ReportGenerator(store, FakeNotifier(), clock=clock).run()
        assert quiet.recipients == 0

        await add_agent("Root", role=AgentRole.ADMIN)
        failing = await ReportGenerator(store, FakeNotifier(fail=True), clock=clock).run()
        assert failing.recipients == 1
        assert failing.sent == 0
