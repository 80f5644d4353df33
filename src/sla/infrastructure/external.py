"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- Webhook (mail relay) notifications with circuit breaker and retry
- APScheduler-backed job scheduler with single-flight per job
"""

import asyncio
import html
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.core import NotificationException, ResourceNotFoundException
from src.shared.infrastructure.logging import get_logger, log_latency
from src.sla.application.services import INotificationService

logger = get_logger(__name__)


# ========== Templates ==========

def _e(value: Any) -> str:
    return html.escape("" if value is None else str(value))


def _render_sla_breach(data: Dict[str, Any]) -> str:
    return (
        "<h2>SLA Breach Alert</h2>"
        f"<p>Hello {_e(data.get('assignee'))},</p>"
        f"<p>The {_e(data['breach_type'])} deadline for ticket "
        f"<strong>#{_e(data['ticket_id'])} {_e(data['title'])}</strong> has passed.</p>"
        "<ul>"
        f"<li>Priority: {_e(data.get('priority'))}</li>"
        f"<li>Due: {_e(data.get('due'))}</li>"
        f"<li>Overdue by: {_e(data.get('time_overdue_seconds'))} seconds</li>"
        "</ul>"
        "<p>Please take immediate action.</p>"
    )


def _render_task_assigned(data: Dict[str, Any]) -> str:
    return (
        "<h2>New Task Assignment</h2>"
        f"<p>Hello {_e(data.get('assignee'))},</p>"
        f"<p>Ticket <strong>#{_e(data['ticket_id'])} {_e(data['title'])}</strong> "
        "has been assigned to you.</p>"
        f"<p>Priority: {_e(data.get('priority'))}</p>"
        f"<p>Reason: {_e(data.get('reason'))}</p>"
    )


def _render_task_reassigned(data: Dict[str, Any]) -> str:
    return (
        "<h2>Task Reassigned</h2>"
        f"<p>Hello {_e(data.get('assignee'))},</p>"
        f"<p>Ticket <strong>#{_e(data['ticket_id'])} {_e(data['title'])}</strong> "
        "has been reassigned to you because its SLA was breached.</p>"
        f"<p>Priority: {_e(data.get('priority'))}</p>"
    )


def _render_automation_update(data: Dict[str, Any]) -> str:
    actions = "".join(f"<li>{_e(a)}</li>" for a in data.get("actions", []))
    return (
        "<h2>Automation Update</h2>"
        f"<p>Rule <strong>{_e(data['rule_name'])}</strong> was applied to ticket "
        f"<strong>#{_e(data['ticket_id'])} {_e(data['title'])}</strong>.</p>"
        f"<ul>{actions}</ul>"
    )


def _render_escalation(data: Dict[str, Any]) -> str:
    return (
        "<h2>Ticket Escalated</h2>"
        f"<p>Hello {_e(data.get('assignee'))},</p>"
        f"<p>Ticket <strong>#{_e(data['ticket_id'])} {_e(data['title'])}</strong> "
        f"was escalated to you by rule {_e(data.get('rule_name'))}.</p>"
        f"<p>Priority: {_e(data.get('priority'))}</p>"
    )


def _render_daily_sla_report(data: Dict[str, Any]) -> str:
    rows = "".join(
        "<tr>"
        f"<td>{_e(s['name'])}</td>"
        f"<td>{_e(s['total_tickets'])}</td>"
        f"<td>{_e(s['completed_tickets'])}</td>"
        f"<td>{_e(s['on_time_tickets'])}</td>"
        f"<td>{_e(s['compliance_rate'])}%</td>"
        "</tr>"
        for s in data.get("statistics", [])
    )
    return (
        "<h2>Daily SLA Compliance Report</h2>"
        f"<p>Tickets created since {_e(data.get('window_start'))}</p>"
        "<table><tr><th>SLA</th><th>Total</th><th>Completed</th>"
        "<th>On time</th><th>Compliance</th></tr>"
        f"{rows}</table>"
    )


NOTIFICATION_TEMPLATES: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "sla_breach": _render_sla_breach,
    "task_assigned": _render_task_assigned,
    "task_reassigned": _render_task_reassigned,
    "automation_update": _render_automation_update,
    "escalation": _render_escalation,
    "daily_sla_report": _render_daily_sla_report,
}


def render_template(template_name: str, data: Dict[str, Any]) -> str:
    """
    Render a notification body.

    Raises:
        NotificationException: unknown template or missing field
    """
    renderer = NOTIFICATION_TEMPLATES.get(template_name)
    if renderer is None:
        raise NotificationException(f"Unknown notification template: {template_name}")
    try:
        return renderer(data)
    except KeyError as e:
        raise NotificationException(
            f"Template {template_name} is missing field {e.args[0]}"
        ) from e


# ========== Circuit Breaker ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


# ========== Notification Transport ==========

class WebhookNotificationService(INotificationService):
    """
    Delivers rendered notifications to a mail-relay webhook.

    Handles delivery with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        sender: str,
        timeout_seconds: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._webhook_url = webhook_url
        self._sender = sender
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._backoff_seconds = backoff_seconds
        self._http_client = http_client
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    async def send(self, to: str, subject: str, template_name: str, data: Dict[str, Any]) -> bool:
        body = render_template(template_name, data)

        if not self._webhook_url:
            logger.debug(
                "Notification webhook not configured, skipping",
                extra={"template": template_name}
            )
            return False

        if not self._circuit_breaker.allow_request():
            raise NotificationException("circuit breaker open, notification rejected")

        payload = {
            "from": self._sender,
            "to": to,
            "subject": subject,
            "html": body,
            "template": template_name,
        }

        last_error = "no attempt made"
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)
                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification sent",
                        extra={"template": template_name, "attempt": attempt + 1}
                    )
                    return True
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Notification webhook returned an error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(
                    "Notification request failed",
                    extra={"error": last_error, "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_seconds * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise NotificationException(f"delivery of {template_name} failed: {last_error}")

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# ========== Job Scheduler ==========

JobFunc = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledJob:
    """A registered job and its run bookkeeping."""
    name: str
    func: JobFunc
    trigger: str
    trigger_args: Dict[str, Any]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    runs: int = 0
    skipped: int = 0
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.lock.locked()


class JobScheduler:
    """
    Wrapper for APScheduler running the engine's periodic jobs.

    At most one run per job name is in flight. A tick (or ad-hoc run)
    that finds the job already running is skipped, never queued.
    """

    def __init__(self):
        self._jobs: Dict[str, ScheduledJob] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    def register(self, name: str, func: JobFunc, trigger: str, **trigger_args: Any) -> None:
        """Register ``func`` under ``name`` with an APScheduler trigger ("interval", "cron")."""
        if name in self._jobs:
            raise ValueError(f"Job {name} is already registered")
        self._jobs[name] = ScheduledJob(name=name, func=func, trigger=trigger, trigger_args=trigger_args)

    def get_job(self, name: str) -> ScheduledJob:
        job = self._jobs.get(name)
        if job is None:
            raise ResourceNotFoundException("Job", name)
        return job

    @property
    def job_names(self) -> List[str]:
        return list(self._jobs)

    async def run_job(self, name: str) -> bool:
        """
        Run a job now unless it is already in flight.

        Returns True if the job ran (even if it failed), False if skipped.
        """
        self.get_job(name)
        try:
            ran, _ = await self.run_exclusive(name)
        except Exception:
            # Job boundary: the next tick must still run
            logger.exception("Job failed", extra={"job": name})
            return True
        return ran

    async def run_exclusive(self, name: str, func: Optional[JobFunc] = None) -> Tuple[bool, Any]:
        """
        Run ``func`` (the job's own function by default) under the job's lock.

        Returns ``(False, None)`` when a run of the job is in flight,
        otherwise ``(True, result)``. Errors are recorded on the job and
        propagate to the caller.
        """
        job = self.get_job(name)
        if job.lock.locked():
            job.skipped += 1
            logger.info("Job already running, skipping tick", extra={"job": name})
            return False, None

        async with job.lock:
            job.runs += 1
            job.last_started_at = datetime.now(timezone.utc)
            try:
                with log_latency(logger, f"job:{name}"):
                    result = await (func or job.func)()
                job.last_error = None
                return True, result
            except Exception as e:
                job.last_error = str(e) or e.__class__.__name__
                raise
            finally:
                job.last_finished_at = datetime.now(timezone.utc)

    async def start(self) -> None:
        """Start the scheduler with every registered job."""
        if self._running:
            logger.warning("Job scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        for job in self._jobs.values():
            self._scheduler.add_job(
                self.run_job,
                job.trigger,
                args=[job.name],
                id=job.name,
                name=job.name,
                misfire_grace_time=60,
                coalesce=True,
                max_instances=1,
                replace_existing=True,
                **job.trigger_args
            )

        self._scheduler.start()
        self._running = True

        logger.info("Job scheduler started", extra={"jobs": self.job_names})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Job scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def describe(self) -> List[Dict[str, Any]]:
        """Registered jobs with their run state."""
        described = []
        for job in self._jobs.values():
            next_run = None
            if self._scheduler is not None:
                scheduled = self._scheduler.get_job(job.name)
                next_run = getattr(scheduled, "next_run_time", None)
            described.append({
                "name": job.name,
                "trigger": job.trigger,
                "trigger_args": job.trigger_args,
                "running": job.is_running,
                "runs": job.runs,
                "skipped": job.skipped,
                "last_started_at": job.last_started_at,
                "last_finished_at": job.last_finished_at,
                "last_error": job.last_error,
                "next_run_time": next_run,
            })
        return described
