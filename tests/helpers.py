"""Shared test doubles and constants."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from src.core import NotificationException
from src.sla.application import INotificationService

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class FakeNotifier(INotificationService):
    """Records every send; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send(self, to: str, subject: str, template_name: str, data: Dict[str, Any]) -> bool:
        if self.fail:
            raise NotificationException("relay unavailable")
        self.sent.append({"to": to, "subject": subject, "template": template_name, "data": data})
        return True

    def templates(self) -> List[str]:
        return [n["template"] for n in self.sent]

    def recipients(self, template_name: Optional[str] = None) -> List[str]:
        return [n["to"] for n in self.sent if template_name is None or n["template"] == template_name]


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)
