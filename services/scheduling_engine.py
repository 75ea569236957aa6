"""Scheduling engine: suggest, auto-schedule and check-conflicts operations."""

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from models.entities import ConflictReport, MeetingRequest, SchedulingResult, SuggestResponse
from models.errors import InvalidRequest
from services.auto_scheduler import AutoScheduler
from services.availability import AvailabilitySearch, utc_now
from services.calendar_provider import CalendarProvider
from services.config import SchedulingConfig
from services.conflict_detector import ConflictDetector
from services.retry import RetryExecutor

logger = logging.getLogger(__name__)


class SchedulingEngine:
    """Entry point used by the HTTP layer and the console for one user's calendar."""

    def __init__(
        self,
        provider: CalendarProvider,
        config: Optional[SchedulingConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Wire the engine components.

        Args:
            provider: Calendar of the authenticated user
            config: Scheduling policy (defaults to SchedulingConfig())
            clock: Source of "now"; fixed clocks make results reproducible
            sleep: Used between retry attempts
        """
        self.config = config or SchedulingConfig()
        self.provider = provider
        self.retry_executor = RetryExecutor(self.config.retry, sleep=sleep)
        self.conflict_detector = ConflictDetector(
            provider, self.retry_executor, self.config.buffer_minutes
        )
        self.availability = AvailabilitySearch(self.conflict_detector, self.config, clock)
        self.auto_scheduler = AutoScheduler(
            self.availability,
            self.conflict_detector,
            provider,
            self.retry_executor,
            self.config,
        )

    def suggest(self, request: MeetingRequest, search_days: Optional[int] = None) -> SuggestResponse:
        """Ranked free slots for a meeting request."""
        if search_days is None:
            search_days = self.config.default_search_days
        if search_days <= 0:
            raise InvalidRequest(f"search_days must be positive, got {search_days}")

        candidates = self.availability.find_optimal_meeting_times(request, search_days)
        logger.info("Suggested %d slot(s) for '%s'", len(candidates), request.title)
        return SuggestResponse(candidates=tuple(candidates), search_days=search_days)

    def auto_schedule(self, request: MeetingRequest) -> SchedulingResult:
        """Book the best slot, falling back to the next ones on write races."""
        return self.auto_scheduler.auto_schedule_meeting(request)

    def check_conflicts(
        self,
        start: datetime,
        end: datetime,
        exclude_event_id: Optional[str] = None,
        include_alternatives: bool = False,
    ) -> ConflictReport:
        """
        Conflicts for an explicit interval.

        Args:
            start: Proposed start
            end: Proposed end, after ``start``
            exclude_event_id: Event being moved; it never conflicts with itself
            include_alternatives: When the interval conflicts, attach up to
                ``max_alternatives`` ranked free slots of the same length
        """
        report = self.conflict_detector.detect_conflicts(start, end, exclude_event_id)
        if include_alternatives and report.has_conflict:
            alternatives = self.availability.find_alternatives(report.interval, exclude_event_id)
            logger.info(
                "Interval %s conflicts; offering %d alternative(s)",
                report.interval.start.isoformat(), len(alternatives),
            )
            report = replace(report, alternatives=tuple(alternatives))
        return report
