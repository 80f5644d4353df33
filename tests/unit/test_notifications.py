"""
Unit tests for notification templates and the webhook transport.
"""

import json

import httpx
import pytest

from src.core import NotificationException
from src.sla.infrastructure import CircuitBreaker, WebhookNotificationService, render_template

BREACH_DATA = {
    "ticket_id": 12,
    "title": "<script>alert(1)</script>",
    "breach_type": "response",
    "assignee": "Ana",
    "priority": "high",
}


def service(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotificationService(
        "http://relay.test/send",
        "support@example.com",
        backoff_seconds=0,
        http_client=client,
        **kwargs
    )


class TestTemplates:
    """Tests for render_template."""

    @pytest.mark.unit
    def test_values_are_escaped(self):
        body = render_template("sla_breach", BREACH_DATA)

        assert "&lt;script&gt;" in body
        assert "<script>" not in body

    @pytest.mark.unit
    def test_unknown_template(self):
        with pytest.raises(NotificationException):
            render_template("birthday", {})

    @pytest.mark.unit
    def test_missing_field(self):
        with pytest.raises(NotificationException) as exc_info:
            render_template("task_assigned", {"title": "No id"})

        assert "ticket_id" in exc_info.value.message

    @pytest.mark.unit
    def test_report_lists_every_sla(self):
        body = render_template("daily_sla_report", {
            "window_start": "2024-01-14T10:00:00+00:00",
            "statistics": [
                {"name": "Gold", "total_tickets": 3, "completed_tickets": 2,
                 "on_time_tickets": 1, "compliance_rate": 33.33},
                {"name": "Silver", "total_tickets": 0, "completed_tickets": 0,
                 "on_time_tickets": 0, "compliance_rate": 0.0},
            ],
        })

        assert "Gold" in body and "33.33%" in body
        assert "Silver" in body


class TestWebhookNotificationService:
    """Tests for WebhookNotificationService."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_posts_rendered_payload(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        notifier = service(handler)

        assert await notifier.send("ana@example.com", "SLA Breach Alert: x", "sla_breach", BREACH_DATA) is True

        [request] = requests
        payload = json.loads(request.content)
        assert payload["to"] == "ana@example.com"
        assert payload["from"] == "support@example.com"
        assert payload["template"] == "sla_breach"
        assert "SLA Breach Alert" in payload["html"]
        await notifier.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        statuses = iter([503, 500, 200])

        def handler(request):
            return httpx.Response(next(statuses))

        notifier = service(handler)

        assert await notifier.send("a@example.com", "s", "sla_breach", BREACH_DATA) is True
        await notifier.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        notifier = service(handler, max_retries=2)

        with pytest.raises(NotificationException):
            await notifier.send("a@example.com", "s", "sla_breach", BREACH_DATA)
        assert len(calls) == 2
        await notifier.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=300)
        notifier = service(handler, max_retries=1, circuit_breaker=breaker)

        with pytest.raises(NotificationException):
            await notifier.send("a@example.com", "s", "sla_breach", BREACH_DATA)
        with pytest.raises(NotificationException):
            await notifier.send("a@example.com", "s", "sla_breach", BREACH_DATA)

        assert len(calls) == 1
        await notifier.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unconfigured_webhook_skips(self):
        notifier = WebhookNotificationService(None, "support@example.com")

        assert await notifier.send("a@example.com", "s", "sla_breach", BREACH_DATA) is False
