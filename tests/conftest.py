"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from src.config import AgentRole
from src.infrastructure.database import create_session_maker, create_tables
from src.sla.domain import SLA, Agent, Ticket
from src.sla.infrastructure import build_task_store
from src.sla.infrastructure.models import AgentModel
from tests.helpers import T0, FakeNotifier, FixedClock


# ========== Store ==========

@pytest.fixture
async def engine(tmp_path):
    """SQLite database file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_maker(engine)


@pytest.fixture
def store(session_factory):
    return build_task_store(session_factory)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(T0 + timedelta(hours=2))


# ========== Factories ==========

@pytest.fixture
def add_agent(session_factory):
    """Agents are read-only to the engine, so they are seeded directly."""

    async def create_agent(
        name: str,
        role: AgentRole = AgentRole.AGENT,
        senior: bool = False,
        skills: tuple = (),
        categories: tuple = (),
    ) -> Agent:
        model = AgentModel(
            name=name,
            email=f"{name.lower()}@example.com",
            role=role.value,
            senior=senior,
            skills=list(skills),
            categories=list(categories),
        )
        async with session_factory() as session:
            session.add(model)
            await session.commit()
        return Agent(
            id=model.id,
            name=name,
            email=model.email,
            role=role,
            senior=senior,
            skills=list(skills),
            categories=list(categories),
        )

    return create_agent


@pytest.fixture
def add_sla(store):
    async def create_sla(
        name: str = "Standard",
        response_time: int = 3600,
        resolution_time: int = 28800,
        **kwargs: Any,
    ) -> SLA:
        return await store.slas.create(SLA(
            id=None,
            name=name,
            response_time=response_time,
            resolution_time=resolution_time,
            created_at=T0,
            **kwargs,
        ))

    return create_sla


@pytest.fixture
def add_ticket(store):
    async def create_ticket(title: str = "Cannot log in", created_at: datetime = T0, **kwargs: Any) -> Ticket:
        return await store.tickets.create(Ticket(id=None, title=title, created_at=created_at, **kwargs))

    return create_ticket
