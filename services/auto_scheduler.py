"""Automatic booking of the best available slot."""

import hashlib
import logging
import uuid
from enum import Enum
from typing import Optional

from models.entities import (
    NO_AVAILABILITY,
    PROVIDER_UNAVAILABLE,
    SCHEDULING_CONFLICT,
    EventMetadata,
    ExistingEvent,
    MeetingRequest,
    SchedulingResult,
    SlotCandidate,
)
from models.errors import ProviderUnavailable, SchedulingConflict
from services.availability import AvailabilitySearch
from services.calendar_provider import CalendarProvider
from services.config import SchedulingConfig
from services.conflict_detector import ConflictDetector, find_conflicts
from services.intervals import effective_interval
from services.retry import RetryExecutor

logger = logging.getLogger(__name__)


class SchedulingState(Enum):
    """States of one auto-schedule run."""
    SEARCHING = "searching"
    VERIFYING = "verifying"
    COMMITTING = "committing"
    CONFLICT_RETRY = "conflict_retry"
    COMMITTED = "committed"
    FAILED = "failed"


TRANSITIONS = {
    None: {SchedulingState.SEARCHING},
    SchedulingState.SEARCHING: {SchedulingState.VERIFYING, SchedulingState.FAILED},
    SchedulingState.VERIFYING: {
        SchedulingState.COMMITTING,
        SchedulingState.CONFLICT_RETRY,
        SchedulingState.FAILED,
    },
    SchedulingState.CONFLICT_RETRY: {SchedulingState.VERIFYING, SchedulingState.FAILED},
    SchedulingState.COMMITTING: {
        SchedulingState.COMMITTED,
        SchedulingState.CONFLICT_RETRY,
        SchedulingState.FAILED,
    },
    SchedulingState.COMMITTED: set(),
    SchedulingState.FAILED: set(),
}


def idempotency_key(run_id: str, request: MeetingRequest, candidate: SlotCandidate) -> str:
    """
    Key for one booking attempt within one auto-schedule run.

    Retries of the same write inside a run share the key; separate runs
    never do. Lowercase hex, so it is also a valid Google event id.
    """
    raw = f"{run_id}|{request.title}|{candidate.start.isoformat()}|{candidate.end.isoformat()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:40]


class _Run:
    """Tracks the state path of a single auto-schedule call."""

    def __init__(self, title: str):
        self.id = uuid.uuid4().hex
        self.title = title
        self.state: Optional[SchedulingState] = None
        self.history: list[str] = []

    def to(self, state: SchedulingState):
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal scheduling transition {self.state} -> {state}")
        logger.debug("'%s': %s -> %s", self.title, self.state.value if self.state else "start", state.value)
        self.state = state
        self.history.append(state.value)


class AutoScheduler:
    """
    Picks the top-ranked slot and books it.

    Check-then-commit: the search result is re-verified with a narrow
    conflict check right before the write. A slot taken in between is
    dropped and the next candidate is tried, at most
    ``max_conflict_retries`` times.
    """

    def __init__(
        self,
        availability: AvailabilitySearch,
        conflict_detector: ConflictDetector,
        provider: CalendarProvider,
        retry_executor: RetryExecutor,
        config: Optional[SchedulingConfig] = None,
    ):
        self.availability = availability
        self.conflict_detector = conflict_detector
        self.provider = provider
        self.retry_executor = retry_executor
        self.config = config or SchedulingConfig()

    def auto_schedule_meeting(self, request: MeetingRequest) -> SchedulingResult:
        """
        Search, verify and commit.

        Returns a SchedulingResult for every outcome except permanent
        provider errors and invalid input, which propagate.
        """
        run = _Run(request.title)
        run.to(SchedulingState.SEARCHING)

        horizon = self.config.horizon_days(request.priority)
        try:
            candidates = self.availability.find_optimal_meeting_times(request, horizon)
        except ProviderUnavailable as e:
            run.to(SchedulingState.FAILED)
            logger.error("Auto-schedule of '%s' failed during search: %s", request.title, e)
            return SchedulingResult.failed(
                PROVIDER_UNAVAILABLE,
                f"Calendar is unavailable, could not search for free time: {e}",
                run.history,
            )

        if not candidates:
            run.to(SchedulingState.FAILED)
            logger.info("No availability for '%s' within %d days", request.title, horizon)
            return SchedulingResult.failed(
                NO_AVAILABILITY,
                f"No free {request.duration_minutes}-minute slot in the next {horizon} day(s)",
                run.history,
            )

        best = candidates[0]
        remaining = list(candidates)
        verified = 0

        while remaining:
            candidate = remaining.pop(0)
            verified += 1
            run.to(SchedulingState.VERIFYING)

            try:
                report = self.conflict_detector.check_interval(effective_interval(request, candidate.start))
            except ProviderUnavailable as e:
                run.to(SchedulingState.FAILED)
                return self._unavailable(request, candidate, e, run, verified)

            if report.has_conflict:
                logger.info(
                    "Slot %s for '%s' was taken before commit (by %s)",
                    candidate.start.isoformat(), request.title, [ev.id for ev in report.conflicts],
                )
                run.to(SchedulingState.CONFLICT_RETRY)
                if verified > self.config.max_conflict_retries:
                    break
                remaining = self._still_free(request, remaining, report.conflicts)
                continue

            run.to(SchedulingState.COMMITTING)
            try:
                event = self._commit(run, request, candidate)
            except SchedulingConflict as e:
                logger.info("Provider rejected slot %s for '%s': %s", candidate.start.isoformat(), request.title, e)
                run.to(SchedulingState.CONFLICT_RETRY)
                if verified > self.config.max_conflict_retries:
                    break
                continue
            except ProviderUnavailable as e:
                run.to(SchedulingState.FAILED)
                return self._unavailable(request, candidate, e, run, verified)

            run.to(SchedulingState.COMMITTED)
            logger.info("Booked '%s' at %s as %s", request.title, event.start.isoformat(), event.id)
            return SchedulingResult.committed(event, candidate, run.history, verified)

        run.to(SchedulingState.FAILED)
        logger.warning("Giving up on '%s' after %d conflicting slot(s)", request.title, verified)
        return SchedulingResult.failed(
            SCHEDULING_CONFLICT,
            f"Every slot tried ({verified}) was booked by something else before it could be committed",
            run.history,
            best_candidate=best,
            attempts=verified,
        )

    def _still_free(self, request, candidates, new_events) -> list[SlotCandidate]:
        """Drop candidates that the newly seen events also block."""
        buffer_minutes = self.conflict_detector.buffer_minutes
        return [
            c for c in candidates
            if not find_conflicts(effective_interval(request, c.start), new_events, buffer_minutes).has_conflict
        ]

    def _commit(self, run: _Run, request: MeetingRequest, candidate: SlotCandidate) -> ExistingEvent:
        """
        Write the event through the retry executor.

        Raises SchedulingConflict when the provider hands back a cancelled
        event, which is not a live booking.
        """
        metadata = EventMetadata(
            title=request.title,
            description=request.description,
            location=request.location,
            attendees=request.attendees,
            idempotency_key=idempotency_key(run.id, request, candidate),
        )
        event = self.retry_executor.execute_with_retry(
            lambda: self.provider.create_event(candidate.interval, metadata),
            "create_event",
            {"title": request.title, "start": candidate.start.isoformat(), "key": metadata.idempotency_key},
        )
        if event.is_cancelled:
            raise SchedulingConflict(f"Provider returned cancelled event {event.id} for {metadata.idempotency_key}")
        return event

    def _unavailable(self, request, candidate, error, run, verified) -> SchedulingResult:
        logger.error("Auto-schedule of '%s' failed, calendar unavailable: %s", request.title, error)
        return SchedulingResult.failed(
            PROVIDER_UNAVAILABLE,
            f"Calendar is unavailable; {candidate.start.isoformat()} looked free and can be booked manually",
            run.history,
            best_candidate=candidate,
            attempts=verified,
        )
