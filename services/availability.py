"""Availability search: candidate generation, conflict filtering and scoring."""

import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterator, Optional

import pytz

from models.entities import MeetingRequest, SlotCandidate, TimeInterval
from services.config import SchedulingConfig
from services.conflict_detector import ConflictDetector, find_conflicts
from services.intervals import effective_interval, meeting_interval, overlap_duration, prep_interval

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


class SlotScorer:
    """
    Scores a conflict-free meeting slot on a 0-100 scale.

    Five weighted components, each normalised to 0-1 before weighting:
    preferred-time proximity, priority alignment (urgent requests favour
    the earliest slots), local time-of-day desirability, deadline
    pressure and day of week (early week favoured, Friday avoided).
    Factor tags explain which components fired.
    """

    def __init__(self, config: SchedulingConfig):
        self.config = config
        self.weights = config.weights

    def score(
        self,
        request: MeetingRequest,
        meeting: TimeInterval,
        window_start: datetime,
        window_end: datetime,
    ) -> tuple[float, list[str]]:
        factors: list[str] = []
        total = 0.0

        preferred = self._preferred_fit(request, meeting)
        if preferred >= 1.0:
            factors.append("preferred_time_match")
        elif preferred > 0:
            factors.append("near_preferred_time")
        total += self.weights.preferred_time * preferred

        total += self.weights.priority * self._priority_fit(request, meeting, window_start, window_end, factors)
        total += self.weights.time_of_day * self._time_of_day_fit(meeting, factors)
        total += self.weights.deadline * self._deadline_fit(request, meeting, factors)
        total += self.weights.day_of_week * self._day_of_week_fit(meeting, factors)

        if request.prep:
            factors.append("prep_time")

        weight_total = self.weights.total
        score = 100.0 * total / weight_total if weight_total > 0 else 0.0
        return round(min(100.0, max(0.0, score)), 4), factors

    def _preferred_fit(self, request: MeetingRequest, meeting: TimeInterval) -> float:
        """Best fraction of any preferred meeting interval covered by this slot."""
        best = 0.0
        for preferred_start in request.preferred_times:
            preferred = meeting_interval(request, preferred_start)
            covered = overlap_duration(meeting, preferred) / request.duration
            best = max(best, covered)
        return best

    def _priority_fit(self, request, meeting, window_start, window_end, factors) -> float:
        urgency = self.weights.urgency_by_priority.get(request.priority, 0.0)
        span = (window_end - window_start).total_seconds()
        if span > 0:
            elapsed = (meeting.start - window_start).total_seconds()
            earliness = 1.0 - min(1.0, max(0.0, elapsed / span))
        else:
            earliness = 1.0

        factors.append(f"priority_{request.priority}")
        if request.priority == "urgent" and earliness >= 0.75:
            factors.append("urgent_earliest")
        return (1.0 - urgency) + urgency * earliness

    def _time_of_day_fit(self, meeting: TimeInterval, factors) -> float:
        local = meeting.start.astimezone(self.config.tz)
        hour = local.hour + local.minute / 60
        for band_start, band_end, desirability, tag in self.weights.time_of_day_bands:
            if band_start <= hour < band_end:
                factors.append(tag)
                return desirability
        factors.append("off_peak")
        return self.weights.off_peak_desirability

    def _deadline_fit(self, request: MeetingRequest, meeting: TimeInterval, factors) -> float:
        if request.deadline is None:
            return 1.0
        remaining_hours = (request.deadline - meeting.end).total_seconds() / 3600
        pressure_hours = self.config.deadline_pressure_hours
        if pressure_hours <= 0 or remaining_hours >= pressure_hours:
            return 1.0
        factors.append("deadline_pressure")
        return max(0.0, remaining_hours / pressure_hours)

    def _day_of_week_fit(self, meeting: TimeInterval, factors) -> float:
        weekday = meeting.start.astimezone(self.config.tz).weekday()
        entry = self.weights.day_of_week_desirability.get(weekday)
        if entry is None:
            return self.weights.neutral_day_desirability
        desirability, tag = entry
        factors.append(tag)
        return desirability


class AvailabilitySearch:
    """Finds and ranks conflict-free meeting slots over a search horizon."""

    def __init__(
        self,
        conflict_detector: ConflictDetector,
        config: Optional[SchedulingConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.conflict_detector = conflict_detector
        self.config = config or SchedulingConfig()
        self.clock = clock
        self.scorer = SlotScorer(self.config)

    def search_window(self, request: MeetingRequest, search_days: int) -> Optional[tuple[datetime, datetime]]:
        """[now, now + search_days] clipped to the deadline, or None when empty."""
        start = self.clock().astimezone(pytz.UTC)
        end = start + timedelta(days=search_days)
        if request.deadline is not None and request.deadline < end:
            end = request.deadline
        if end <= start:
            return None
        return start, end

    def find_optimal_meeting_times(
        self,
        request: MeetingRequest,
        search_days: Optional[int] = None,
    ) -> list[SlotCandidate]:
        """
        Rank conflict-free slots for ``request``.

        Args:
            request: Meeting to place
            search_days: Horizon in days from now (defaults to config)

        Returns:
            Up to ``max_results`` candidates, best score first, earliest
            start breaking ties. Empty when nothing is available; that is
            not an error.

        Raises:
            InvalidRequest: the deadline has already passed
            ProviderUnavailable: the calendar could not be read
            PermanentProviderError: the provider rejected the read
        """
        request.check_deadline(self.clock())
        if search_days is None:
            search_days = self.config.default_search_days
        window = self.search_window(request, search_days)
        if window is None:
            logger.info("Search window for '%s' is empty", request.title)
            return []
        window_start, window_end = window

        candidates = self._rank(request, window_start, window_end)
        return candidates[:self.config.max_results]

    def find_alternatives(
        self,
        interval: TimeInterval,
        exclude_event_id: Optional[str] = None,
    ) -> list[SlotCandidate]:
        """
        Free slots of the same length as a conflicting ``interval``.

        The search starts at the beginning of the interval's local day (or
        now, if later) and looks ``alternative_search_days`` ahead. The
        excluded event does not block alternatives.
        """
        minutes = max(1, math.ceil(interval.duration_minutes))
        request = MeetingRequest(title="Alternative", duration_minutes=minutes, priority="low")

        tz = self.config.tz
        local_day = interval.start.astimezone(tz).date()
        day_start = tz.localize(datetime.combine(local_day, time.min)).astimezone(pytz.UTC)
        window_start = max(day_start, self.clock().astimezone(pytz.UTC))
        window_end = window_start + timedelta(days=self.config.alternative_search_days)

        candidates = [
            c for c in self._rank(request, window_start, window_end, exclude_event_id)
            if c.start != interval.start
        ]
        return candidates[:self.config.max_alternatives]

    def _rank(
        self,
        request: MeetingRequest,
        window_start: datetime,
        window_end: datetime,
        exclude_event_id: Optional[str] = None,
    ) -> list[SlotCandidate]:
        """Every conflict-free candidate in the window, best first."""
        starts = list(self.candidate_starts(request, window_start, window_end))
        if not starts:
            return []

        # one read covers every candidate, prep and both buffers included
        pad = timedelta(minutes=2 * self.config.buffer_minutes)
        events = self.conflict_detector.fetch_events(
            window_start - request.prep - pad,
            window_end + pad,
        )

        candidates = []
        for start in starts:
            occupied = effective_interval(request, start)
            report = find_conflicts(occupied, events, self.config.buffer_minutes, exclude_event_id)
            if report.has_conflict:
                continue

            meeting = meeting_interval(request, start)
            score, factors = self.scorer.score(request, meeting, window_start, window_end)
            candidates.append(SlotCandidate(
                interval=meeting,
                score=score,
                factors=tuple(factors),
                prep_interval=prep_interval(request, start),
            ))

        candidates.sort(key=SlotCandidate.sort_key)
        logger.debug(
            "'%s': %d of %d candidate starts are free",
            request.title, len(candidates), len(starts),
        )
        return candidates

    def candidate_starts(
        self,
        request: MeetingRequest,
        window_start: datetime,
        window_end: datetime,
    ) -> Iterator[datetime]:
        """Preferred starts first (in order), then the working-hours grid; no duplicates."""
        seen = set()

        def fits(start: datetime) -> bool:
            occupied = effective_interval(request, start)
            return occupied.start >= window_start and occupied.end <= window_end

        for start in request.preferred_times:
            if start not in seen and fits(start):
                seen.add(start)
                yield start

        for start in self._grid(request, window_start, window_end):
            if start not in seen and fits(start):
                seen.add(start)
                yield start

    def _grid(self, request: MeetingRequest, window_start: datetime, window_end: datetime) -> Iterator[datetime]:
        tz = self.config.tz
        step = timedelta(minutes=self.config.slot_granularity_minutes)
        current: date = window_start.astimezone(tz).date()
        last: date = window_end.astimezone(tz).date()

        while current <= last:
            if request.allow_weekends or current.weekday() in self.config.working_days:
                day_start = tz.localize(datetime.combine(current, self.config.work_start)).astimezone(pytz.UTC)
                day_end = tz.localize(datetime.combine(current, self.config.work_end)).astimezone(pytz.UTC)

                start = day_start
                while start + request.duration <= day_end:
                    if start - request.prep >= day_start:
                        yield start
                    start += step
            current += timedelta(days=1)
