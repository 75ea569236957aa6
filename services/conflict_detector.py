"""Conflict detection for a proposed interval against the user's calendar."""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from models.entities import ConflictReport, ExistingEvent, TimeInterval
from services.calendar_provider import CalendarProvider
from services.intervals import overlaps, with_buffer
from services.retry import RetryExecutor

logger = logging.getLogger(__name__)


def find_conflicts(
    interval: TimeInterval,
    events: Iterable[ExistingEvent],
    buffer_minutes: int = 0,
    exclude_event_id: Optional[str] = None,
) -> ConflictReport:
    """
    Compare ``interval`` with already-fetched events.

    An event conflicts when it is not cancelled, is not the excluded event,
    and its buffered interval overlaps the buffered proposed interval.
    """
    proposed = with_buffer(interval, buffer_minutes)
    conflicts = []
    conflict_types = {}

    for event in events:
        if event.is_cancelled or event.id == exclude_event_id:
            continue
        if not overlaps(proposed, with_buffer(event.interval, buffer_minutes)):
            continue
        conflicts.append(event)
        conflict_types[event.id] = "direct" if overlaps(interval, event.interval) else "buffer"

    return ConflictReport(
        interval=interval,
        conflicts=tuple(sorted(conflicts, key=lambda e: e.start)),
        buffer_minutes=buffer_minutes,
        conflict_types=conflict_types,
        recommendations=recommendations_for(conflict_types, buffer_minutes),
    )


def recommendations_for(conflict_types: dict[str, str], buffer_minutes: int) -> tuple[str, ...]:
    """Short advice for the kinds of conflict found; empty when there are none."""
    kinds = set(conflict_types.values())
    advice = []
    if "direct" in kinds:
        advice.append("Choose a different time slot; the interval overlaps existing events")
    if "buffer" in kinds:
        advice.append(f"Leave at least {2 * buffer_minutes} minutes between meetings")
    return tuple(advice)


class ConflictDetector:
    """Reads the calendar around a proposed interval and reports overlaps."""

    def __init__(
        self,
        provider: CalendarProvider,
        retry_executor: RetryExecutor,
        buffer_minutes: int = 15,
    ):
        self.provider = provider
        self.retry_executor = retry_executor
        self.buffer_minutes = buffer_minutes

    def search_window(self, interval: TimeInterval) -> tuple[datetime, datetime]:
        """Window that contains every event whose buffer can reach ``interval``."""
        # both sides are buffered, so an event up to two buffers away can collide
        pad = timedelta(minutes=2 * self.buffer_minutes)
        return interval.start - pad, interval.end + pad

    def fetch_events(self, window_start: datetime, window_end: datetime) -> list[ExistingEvent]:
        """List events through the retry executor. Raises ProviderUnavailable when exhausted."""
        return self.retry_executor.execute_with_retry(
            lambda: self.provider.list_events(window_start, window_end),
            "list_events",
            {"window_start": window_start.isoformat(), "window_end": window_end.isoformat()},
        )

    def detect_conflicts(
        self,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> ConflictReport:
        """
        Check a proposed interval.

        Raises InvalidRequest when ``end`` is not after ``start`` (before any
        provider call) and ProviderUnavailable when the calendar cannot be
        read. A report is only returned when the answer is actually known.
        """
        interval = TimeInterval(start, end)
        return self.check_interval(interval, exclude_event_id)

    def check_interval(
        self,
        interval: TimeInterval,
        exclude_event_id: Optional[str] = None,
    ) -> ConflictReport:
        window_start, window_end = self.search_window(interval)
        events = self.fetch_events(window_start, window_end)
        report = find_conflicts(interval, events, self.buffer_minutes, exclude_event_id)

        if report.has_conflict:
            logger.debug(
                "Interval %s - %s conflicts with %s",
                interval.start.isoformat(), interval.end.isoformat(),
                [e.id for e in report.conflicts],
            )
        return report
