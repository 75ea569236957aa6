"""Calendar data provider contract and an in-memory implementation."""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional

import pytz

from models.entities import EventMetadata, ExistingEvent, TimeInterval, ensure_utc
from models.errors import PermanentProviderError

logger = logging.getLogger(__name__)


class CalendarProvider(ABC):
    """
    Source of truth for a single user's calendar.

    Implementations raise TransientProviderError or PermanentProviderError
    (or raw httpx errors) so the retry executor can classify failures.
    """

    @abstractmethod
    def list_events(self, window_start: datetime, window_end: datetime) -> list[ExistingEvent]:
        """Return events intersecting [window_start, window_end)."""

    @abstractmethod
    def create_event(self, interval: TimeInterval, metadata: EventMetadata) -> ExistingEvent:
        """Create an event. Repeating a call with the same idempotency key is a no-op."""


class InMemoryCalendarProvider(CalendarProvider):
    """Calendar kept in process memory. Used for demos and tests."""

    def __init__(self, events: Optional[Iterable[ExistingEvent]] = None):
        self._lock = threading.Lock()
        self._events: dict[str, ExistingEvent] = {}
        self._by_key: dict[str, str] = {}  # idempotency key -> event id
        for event in events or []:
            self._events[event.id] = event

    @property
    def events(self) -> list[ExistingEvent]:
        with self._lock:
            return sorted(self._events.values(), key=lambda e: e.start)

    def add_event(self, event: ExistingEvent) -> ExistingEvent:
        """Insert an event directly, bypassing idempotency handling."""
        with self._lock:
            self._events[event.id] = event
        return event

    def cancel_event(self, event_id: str) -> ExistingEvent:
        with self._lock:
            event = self._events.get(event_id)
            if event is None:
                raise PermanentProviderError(
                    f"Event {event_id} not found", operation="cancel_event", status_code=404
                )
            cancelled = ExistingEvent(event.id, event.interval, "cancelled", event.title)
            self._events[event_id] = cancelled
            return cancelled

    def list_events(self, window_start: datetime, window_end: datetime) -> list[ExistingEvent]:
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)
        with self._lock:
            found = [
                e for e in self._events.values()
                if e.start < window_end and e.end > window_start
            ]
        return sorted(found, key=lambda e: e.start)

    def create_event(self, interval: TimeInterval, metadata: EventMetadata) -> ExistingEvent:
        with self._lock:
            key = metadata.idempotency_key
            if key and key in self._by_key:
                logger.debug("Idempotent replay of create_event for key %s", key)
                return self._events[self._by_key[key]]

            event = ExistingEvent(
                id=f"evt_{uuid.uuid4().hex[:12]}",
                interval=interval,
                status="confirmed",
                title=metadata.title,
            )
            self._events[event.id] = event
            if key:
                self._by_key[key] = event.id
            return event


def seed_demo_events(
    provider: InMemoryCalendarProvider,
    timezone: str = "UTC",
    days: int = 14,
    start_date: Optional[date] = None,
) -> list[ExistingEvent]:
    """
    Fill a provider with a plausible working calendar.

    Weekdays get a 09:00 standup, a team meeting every other day, a client
    sync every third day and a tentative review every fourth day, all in
    local time.
    """
    tz = pytz.timezone(timezone)
    start_date = start_date or date.today()
    created = []

    def add(event_id: str, day: date, start: time, end: time, title: str, status: str = "confirmed"):
        local_start = tz.localize(datetime.combine(day, start))
        local_end = tz.localize(datetime.combine(day, end))
        created.append(provider.add_event(ExistingEvent(
            id=event_id,
            interval=TimeInterval(local_start, local_end),
            status=status,
            title=title,
        )))

    for day_offset in range(days):
        current = start_date + timedelta(days=day_offset)
        if current.weekday() >= 5:
            continue

        add(f"demo_{day_offset}_standup", current, time(9, 0), time(9, 30), "Daily Standup")
        if day_offset % 2 == 0:
            add(f"demo_{day_offset}_team", current, time(14, 0), time(15, 0), "Team Meeting")
        if day_offset % 3 == 0:
            add(f"demo_{day_offset}_client", current, time(11, 0), time(12, 0), "Client Sync")
        if day_offset % 4 == 1:
            add(f"demo_{day_offset}_review", current, time(16, 0), time(17, 0), "Client Review", "tentative")

    return created
