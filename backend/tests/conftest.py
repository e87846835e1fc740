"""Shared pytest fixtures for the orchestration core test suite.

Provides:
- An event emitter that records every emitted event
- A Tenant Registry with a controllable clock
- An Automation Engine bound to that registry (timers cancelled on teardown)
"""

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

# Override settings BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from app.config import Settings  # noqa: E402
from automation.engine import AutomationEngine  # noqa: E402
from core.events import EventEmitter  # noqa: E402
from tenants.registry import TenantRegistry  # noqa: E402


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def events() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorded_events(events):
    """List of (event, payload) tuples for everything emitted on ``events``."""
    recorded = []
    events.subscribe("*", lambda event, payload: recorded.append((event, payload)))
    return recorded


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Tenancy fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tenant_registry(events, settings, clock) -> TenantRegistry:
    return TenantRegistry(events=events, settings=settings, clock=clock)


@pytest.fixture
def tenant(tenant_registry):
    """A starter-plan tenant."""
    return tenant_registry.create_tenant("Acme Corp", slug="acme", plan="starter")


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tenant_registry, events, settings):
    """Automation engine wired to the tenant registry."""
    automation_engine = AutomationEngine(
        tenant_registry=tenant_registry,
        events=events,
        settings=settings,
    )
    yield automation_engine
    await automation_engine.shutdown()
