"""Shared test fixtures for the scheduling engine tests.

This module provides:
- A fixed clock (Monday 2030-01-07 07:00 UTC) so rankings are reproducible
- A default config with deterministic retry delays
- Event builders and in-memory / failing calendar providers

Usage:
    def test_something(engine_factory, make_event):
        engine = engine_factory(events=[make_event("e1", 10, 11)])
        ...
"""

from datetime import datetime, timedelta

import pytest
import pytz

from models.entities import ExistingEvent, TimeInterval
from services.calendar_provider import InMemoryCalendarProvider
from services.config import SchedulingConfig
from services.retry import RetryPolicy
from services.scheduling_engine import SchedulingEngine


# ─────────────────────────────────────────────────────────────────────────────
# Time
# ─────────────────────────────────────────────────────────────────────────────

MONDAY = datetime(2030, 1, 7, tzinfo=pytz.UTC)
NOW = MONDAY.replace(hour=7)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


# ─────────────────────────────────────────────────────────────────────────────
# Providers
# ─────────────────────────────────────────────────────────────────────────────


class FlakyProvider(InMemoryCalendarProvider):
    """In-memory calendar that raises queued errors before answering."""

    def __init__(self, events=None, list_failures=(), create_failures=()):
        super().__init__(events)
        self.list_failures = list(list_failures)
        self.create_failures = list(create_failures)
        self.list_calls = 0
        self.create_calls = 0

    def list_events(self, window_start, window_end):
        self.list_calls += 1
        if self.list_failures:
            raise self.list_failures.pop(0)
        return super().list_events(window_start, window_end)

    def create_event(self, interval, metadata):
        self.create_calls += 1
        if self.create_failures:
            raise self.create_failures.pop(0)
        return super().create_event(interval, metadata)


class RacingProvider(InMemoryCalendarProvider):
    """
    Simulates concurrent bookings.

    The first ``list_events`` call (the search) is answered normally. The
    next ``races`` calls (re-verifications) first book another event over
    the interval being verified.
    """

    def __init__(self, events=None, races: int = 1, buffer_minutes: int = 15):
        super().__init__(events)
        self.races = races
        self.pad = timedelta(minutes=2 * buffer_minutes)
        self.list_calls = 0
        self.stolen: list[ExistingEvent] = []

    def list_events(self, window_start, window_end):
        self.list_calls += 1
        if self.list_calls > 1 and self.races > 0:
            self.races -= 1
            thief = ExistingEvent(
                id=f"race_{self.list_calls}",
                interval=TimeInterval(window_start + self.pad, window_end - self.pad),
                title="Booked elsewhere",
            )
            self.add_event(thief)
            self.stolen.append(thief)
        return super().list_events(window_start, window_end)


@pytest.fixture
def make_event():
    """Build an event on the test Monday from hours (floats allowed)."""
    def _make(event_id: str, start_hour: float, end_hour: float, status: str = "confirmed", day: int = 0):
        start = MONDAY + timedelta(days=day, hours=start_hour)
        end = MONDAY + timedelta(days=day, hours=end_hour)
        return ExistingEvent(event_id, TimeInterval(start, end), status, title=event_id)
    return _make


@pytest.fixture
def flaky_provider():
    return FlakyProvider


@pytest.fixture
def racing_provider():
    return RacingProvider


# ─────────────────────────────────────────────────────────────────────────────
# Config and engine
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def config() -> SchedulingConfig:
    return SchedulingConfig(
        timezone="UTC",
        working_hours_start="09:00",
        working_hours_end="18:00",
        retry=RetryPolicy(max_attempts=3, base_delay=0.5, multiplier=2.0, max_delay=2.0, jitter=0.0),
    )


@pytest.fixture
def sleeps() -> list:
    """Records requested backoff delays instead of sleeping."""
    return []


@pytest.fixture
def engine_factory(config, clock, sleeps):
    def _factory(events=None, provider=None, **overrides):
        if provider is None:
            provider = InMemoryCalendarProvider(events or [])
        engine_config = config
        if overrides:
            engine_config = SchedulingConfig(**{**config.__dict__, **overrides})
        return SchedulingEngine(provider, engine_config, clock=clock, sleep=sleeps.append)
    return _factory
