"""Tests for services/auto_scheduler.py

Auto-scheduling searches, re-verifies the best slot right before writing
and falls back to the next candidate when the slot was taken meanwhile.
"""

from dataclasses import fields
from datetime import datetime, timedelta

import pytest
import pytz

from models.entities import EventMetadata, ExistingEvent, MeetingRequest, TimeInterval
from models.errors import (
    PermanentProviderError,
    SchedulingConflict,
    TransientProviderError,
)
from services.auto_scheduler import TRANSITIONS, SchedulingState, _Run, idempotency_key
from services.calendar_provider import InMemoryCalendarProvider

MONDAY = datetime(2030, 1, 7, tzinfo=pytz.UTC)


def at(hour: float, day: int = 0) -> datetime:
    return MONDAY + timedelta(days=day, hours=hour)


def sync(**kwargs) -> MeetingRequest:
    kwargs.setdefault("title", "Sync")
    kwargs.setdefault("duration_minutes", 30)
    return MeetingRequest(**kwargs)


class TimeoutAfterWrite(InMemoryCalendarProvider):
    """Stores the event, then loses the response once."""

    def __init__(self, events=None):
        super().__init__(events)
        self.create_calls = 0

    def create_event(self, interval, metadata):
        self.create_calls += 1
        event = super().create_event(interval, metadata)
        if self.create_calls == 1:
            raise TransientProviderError("response lost", operation="create_event")
        return event


class CancelledReplayProvider(InMemoryCalendarProvider):
    """Hands back a cancelled event for the first write, as a stale replay would."""

    def __init__(self, events=None):
        super().__init__(events)
        self.create_calls = 0

    def create_event(self, interval, metadata):
        self.create_calls += 1
        event = super().create_event(interval, metadata)
        if self.create_calls == 1:
            return self.cancel_event(event.id)
        return event


class RejectingProvider(InMemoryCalendarProvider):
    """Refuses the first ``rejections`` writes with a provider-side conflict."""

    def __init__(self, events=None, rejections: int = 1):
        super().__init__(events)
        self.rejections = rejections

    def create_event(self, interval, metadata):
        if self.rejections > 0:
            self.rejections -= 1
            raise SchedulingConflict("slot already taken")
        return super().create_event(interval, metadata)


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────


class TestCommit:
    def test_books_best_slot(self, engine_factory):
        engine = engine_factory()
        result = engine.auto_schedule(sync(attendees=["a@example.com"]))

        assert result.success
        assert list(result.states) == ["searching", "verifying", "committing", "committed"]
        assert result.attempts == 1
        assert result.event.start == at(9)
        assert result.candidate.start == at(9)
        assert [e.id for e in engine.provider.events] == [result.event.id]

    def test_booked_slot_is_conflict_free(self, engine_factory, make_event):
        events = [make_event("standup", 9, 9.5), make_event("client", 11, 12)]
        engine = engine_factory(events=events)
        result = engine.auto_schedule(sync(duration_minutes=45))

        assert result.success
        report = engine.check_conflicts(result.event.start, result.event.end, exclude_event_id=result.event.id)
        assert not report.has_conflict

    def test_no_availability(self, engine_factory):
        result = engine_factory().auto_schedule(sync(deadline=at(8)))

        assert not result.success
        assert result.reason == "no_availability"
        assert list(result.states) == ["searching", "failed"]
        assert result.candidate is None

    def test_recurring_request_books_one_event(self, engine_factory):
        # the flag is informational; no series is created
        engine = engine_factory()
        result = engine.auto_schedule(sync(is_recurring=True))

        assert result.success
        assert [e.id for e in engine.provider.events] == [result.event.id]
        assert "is_recurring" not in {f.name for f in fields(EventMetadata)}

    def test_result_serialises(self, engine_factory):
        data = engine_factory().auto_schedule(sync()).to_dict()
        assert data["success"] is True
        assert data["event"]["start"] == at(9).isoformat()


# ─────────────────────────────────────────────────────────────────────────────
# Conflicts between search and commit
# ─────────────────────────────────────────────────────────────────────────────


class TestConflictRetry:
    def test_falls_back_to_second_candidate(self, engine_factory, racing_provider):
        """Scenario C: the top slot is booked elsewhere before the write."""
        provider = racing_provider(races=1)
        engine = engine_factory(provider=provider)
        request = sync(preferred_times=[at(10), at(15)])

        result = engine.auto_schedule(request)

        assert result.success
        assert provider.stolen[0].start == at(10)
        assert result.event.start == at(15)
        assert list(result.states) == [
            "searching", "verifying", "conflict_retry", "verifying", "committing", "committed",
        ]
        assert result.attempts == 2

    def test_neighbours_of_a_taken_slot_are_skipped(self, engine_factory, racing_provider):
        provider = racing_provider(races=1)
        engine = engine_factory(provider=provider)

        result = engine.auto_schedule(sync())

        # 09:00 taken; 09:15 to 09:45 would sit inside its buffer
        assert result.success
        assert result.event.start == at(10)
        assert result.attempts == 2

    def test_gives_up_after_retry_bound(self, engine_factory, racing_provider):
        # without a buffer each stolen slot only knocks out its direct neighbour,
        # so enough candidates survive to reach the bound
        provider = racing_provider(races=10, buffer_minutes=0)
        engine = engine_factory(provider=provider, buffer_minutes=0)
        best = engine_factory(buffer_minutes=0).suggest(sync(), search_days=14).candidates[0]

        result = engine.auto_schedule(sync())

        assert not result.success
        assert result.reason == "scheduling_conflict"
        assert result.attempts == 1 + engine.config.max_conflict_retries == 4
        assert result.candidate == best
        assert [e.start for e in provider.stolen] == [at(9), at(9.5), at(10), at(10.5)]
        assert result.states.count("conflict_retry") == 4
        assert result.states[-1] == "failed"
        assert len(provider.stolen) == 4
        assert all(e.title == "Booked elsewhere" for e in engine.provider.events)

    def test_provider_side_conflict_is_retried(self, engine_factory):
        provider = RejectingProvider(rejections=1)
        result = engine_factory(provider=provider).auto_schedule(sync())

        assert result.success
        assert list(result.states) == [
            "searching", "verifying", "committing", "conflict_retry",
            "verifying", "committing", "committed",
        ]
        assert result.event.start != at(9)


# ─────────────────────────────────────────────────────────────────────────────
# Provider failures
# ─────────────────────────────────────────────────────────────────────────────


class TestProviderFailures:
    def test_search_unavailable(self, engine_factory, flaky_provider):
        provider = flaky_provider(list_failures=[TransientProviderError("down") for _ in range(3)])
        result = engine_factory(provider=provider).auto_schedule(sync())

        assert not result.success
        assert result.reason == "provider_unavailable"
        assert result.candidate is None
        assert list(result.states) == ["searching", "failed"]

    def test_verify_unavailable_keeps_candidate(self, engine_factory, flaky_provider):
        provider = flaky_provider()
        engine = engine_factory(provider=provider)
        original = provider.list_events

        def list_then_fail(start, end):
            if provider.list_calls >= 1:
                provider.list_failures = [TransientProviderError("down")]
            return original(start, end)

        provider.list_events = list_then_fail
        result = engine.auto_schedule(sync())

        assert not result.success
        assert result.reason == "provider_unavailable"
        assert result.candidate.start == at(9)
        assert list(result.states) == ["searching", "verifying", "failed"]

    def test_commit_unavailable_keeps_candidate(self, engine_factory, flaky_provider, sleeps):
        provider = flaky_provider(create_failures=[TransientProviderError("503", status_code=503) for _ in range(3)])
        result = engine_factory(provider=provider).auto_schedule(sync())

        assert not result.success
        assert result.reason == "provider_unavailable"
        assert result.candidate.start == at(9)
        assert list(result.states) == ["searching", "verifying", "committing", "failed"]
        assert provider.create_calls == 3
        assert sleeps == [0.5, 1.0]
        assert provider.events == []

    def test_permanent_write_error_propagates(self, engine_factory, flaky_provider):
        provider = flaky_provider(create_failures=[PermanentProviderError("forbidden", status_code=403)])
        with pytest.raises(PermanentProviderError):
            engine_factory(provider=provider).auto_schedule(sync())
        assert provider.create_calls == 1

    def test_retried_write_is_not_duplicated(self, engine_factory):
        provider = TimeoutAfterWrite()
        result = engine_factory(provider=provider).auto_schedule(sync())

        assert result.success
        assert provider.create_calls == 2
        assert len(provider.events) == 1
        assert provider.events[0].id == result.event.id

    def test_cancelled_replay_is_not_a_booking(self, engine_factory):
        provider = CancelledReplayProvider()
        result = engine_factory(provider=provider).auto_schedule(sync())

        assert result.success
        assert result.event.status == "confirmed"
        assert list(result.states) == [
            "searching", "verifying", "committing", "conflict_retry",
            "verifying", "committing", "committed",
        ]
        assert provider.create_calls == 2
        assert [e.id for e in provider.events if not e.is_cancelled] == [result.event.id]


class TestRescheduling:
    def test_book_cancel_and_book_again(self, engine_factory):
        engine = engine_factory()
        first = engine.auto_schedule(sync())
        engine.provider.cancel_event(first.event.id)

        second = engine.auto_schedule(sync())

        assert second.success
        assert second.event.status == "confirmed"
        assert second.event.id != first.event.id
        assert second.event.start == first.event.start == at(9)
        live = [e for e in engine.provider.events if not e.is_cancelled]
        assert [e.id for e in live] == [second.event.id]

    def test_same_request_twice_books_twice(self, engine_factory):
        engine = engine_factory()
        first = engine.auto_schedule(sync())
        second = engine.auto_schedule(sync())

        assert first.success and second.success
        assert second.event.id != first.event.id
        assert second.event.start > first.event.start


# ─────────────────────────────────────────────────────────────────────────────
# Horizon and state machine
# ─────────────────────────────────────────────────────────────────────────────


class TestHorizon:
    @pytest.fixture
    def busy_until_wednesday(self):
        return ExistingEvent("offsite", TimeInterval(at(0), at(12, day=2)), title="Offsite")

    def test_urgent_searches_two_days(self, engine_factory, busy_until_wednesday):
        result = engine_factory(events=[busy_until_wednesday]).auto_schedule(sync(priority="urgent"))
        assert not result.success
        assert result.reason == "no_availability"

    def test_low_searches_further(self, engine_factory, busy_until_wednesday):
        result = engine_factory(events=[busy_until_wednesday]).auto_schedule(sync(priority="low"))
        assert result.success
        assert result.event.start >= at(12.5, day=2)


class TestStateMachine:
    def test_terminal_states_have_no_exits(self):
        assert TRANSITIONS[SchedulingState.COMMITTED] == set()
        assert TRANSITIONS[SchedulingState.FAILED] == set()

    def test_illegal_transition_rejected(self):
        run = _Run("Sync")
        run.to(SchedulingState.SEARCHING)
        with pytest.raises(RuntimeError):
            run.to(SchedulingState.COMMITTED)

    def test_idempotency_key_scoped_to_run(self, engine_factory):
        candidate = engine_factory().suggest(sync(), 1).candidates[0]
        key = idempotency_key("run-1", sync(), candidate)

        assert key == idempotency_key("run-1", sync(), candidate)
        assert key != idempotency_key("run-2", sync(), candidate)
        assert key != idempotency_key("run-1", sync(title="Other"), candidate)
        assert len(key) == 40

    def test_runs_get_distinct_ids(self):
        assert _Run("Sync").id != _Run("Sync").id
