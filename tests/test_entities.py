"""Tests for models/entities.py

Value types validate their invariants when constructed, so invalid input
is rejected before any calendar call is made.
"""

from datetime import datetime, timedelta

import pytest
import pytz

from models.entities import (
    ConflictReport,
    ExistingEvent,
    MeetingRequest,
    SchedulingResult,
    SlotCandidate,
    TimeInterval,
)
from models.errors import InvalidRequest

START = datetime(2030, 1, 7, 10, 0, tzinfo=pytz.UTC)


class TestTimeInterval:
    def test_end_must_follow_start(self):
        with pytest.raises(InvalidRequest):
            TimeInterval(START, START)
        with pytest.raises(InvalidRequest):
            TimeInterval(START, START - timedelta(minutes=1))

    def test_naive_datetimes_are_utc(self):
        interval = TimeInterval(datetime(2030, 1, 7, 10), datetime(2030, 1, 7, 11))
        assert interval.start == START
        assert interval.start.tzinfo is not None

    def test_other_timezones_normalised(self):
        berlin = pytz.timezone("Europe/Berlin")
        local = berlin.localize(datetime(2030, 1, 7, 11, 0))
        interval = TimeInterval(local, local + timedelta(hours=1))
        assert interval.start == START
        assert interval.duration_minutes == 60

    def test_rejects_non_datetime(self):
        with pytest.raises(InvalidRequest):
            TimeInterval("2030-01-07T10:00", START)


class TestMeetingRequest:
    def test_minimal_request(self):
        request = MeetingRequest(title="Sync", duration_minutes=30)
        assert request.priority == "medium"
        assert request.attendees == ()
        assert request.duration == timedelta(minutes=30)
        assert request.prep == timedelta(0)

    @pytest.mark.parametrize("duration", [0, -15])
    def test_duration_must_be_positive(self, duration):
        with pytest.raises(InvalidRequest):
            MeetingRequest(title="Sync", duration_minutes=duration)

    def test_duration_must_be_int(self):
        with pytest.raises(InvalidRequest):
            MeetingRequest(title="Sync", duration_minutes=30.5)

    def test_title_required(self):
        with pytest.raises(InvalidRequest):
            MeetingRequest(title="  ", duration_minutes=30)

    def test_unknown_priority(self):
        with pytest.raises(InvalidRequest):
            MeetingRequest(title="Sync", duration_minutes=30, priority="critical")

    def test_negative_prep_rejected(self):
        with pytest.raises(InvalidRequest):
            MeetingRequest(title="Sync", duration_minutes=30, requires_prep=True, prep_time_minutes=-5)

    def test_deadline_checked_against_given_now(self):
        request = MeetingRequest(title="Sync", duration_minutes=30, deadline=datetime(2030, 1, 7, 12))

        assert request.deadline == START + timedelta(hours=2)
        request.check_deadline(START)
        with pytest.raises(InvalidRequest):
            request.check_deadline(START + timedelta(hours=2))
        with pytest.raises(InvalidRequest):
            request.check_deadline(START + timedelta(days=1))

    def test_no_deadline_always_passes(self):
        MeetingRequest(title="Sync", duration_minutes=30).check_deadline(START)

    def test_collections_frozen(self):
        request = MeetingRequest(
            title="Sync",
            duration_minutes=30,
            attendees=["a@example.com"],
            preferred_times=[datetime(2030, 1, 7, 10)],
        )
        assert request.attendees == ("a@example.com",)
        assert request.preferred_times == (START,)

    def test_prep_duration(self):
        request = MeetingRequest(title="Review", duration_minutes=30, requires_prep=True, prep_time_minutes=15)
        assert request.prep == timedelta(minutes=15)


class TestEventsAndCandidates:
    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidRequest):
            ExistingEvent("e1", TimeInterval(START, START + timedelta(hours=1)), status="busy")

    @pytest.mark.parametrize("score", [-1, 100.5])
    def test_score_range(self, score):
        with pytest.raises(InvalidRequest):
            SlotCandidate(TimeInterval(START, START + timedelta(minutes=30)), score=score)

    def test_sort_key_orders_by_score_then_start(self):
        early = SlotCandidate(TimeInterval(START, START + timedelta(minutes=30)), score=80)
        late = SlotCandidate(TimeInterval(START + timedelta(hours=1), START + timedelta(hours=1, minutes=30)), score=80)
        best = SlotCandidate(TimeInterval(START + timedelta(hours=2), START + timedelta(hours=2, minutes=30)), score=90)
        assert sorted([late, early, best], key=SlotCandidate.sort_key) == [best, early, late]


class TestConflictReport:
    def test_has_conflict_follows_conflicts(self):
        interval = TimeInterval(START, START + timedelta(minutes=30))
        event = ExistingEvent("e1", TimeInterval(START, START + timedelta(hours=1)))

        assert not ConflictReport(interval).has_conflict
        report = ConflictReport(interval, conflicts=(event,), conflict_types={"e1": "direct"})
        assert report.has_conflict
        assert report.to_dict()["conflicts"][0]["type"] == "direct"


class TestSchedulingResult:
    def test_failed_result_serialises(self):
        candidate = SlotCandidate(TimeInterval(START, START + timedelta(minutes=30)), score=75, factors=("mid_morning",))
        result = SchedulingResult.failed(
            "provider_unavailable", "Calendar down", ["searching", "failed"], best_candidate=candidate
        )
        data = result.to_dict()
        assert data["success"] is False
        assert data["reason"] == "provider_unavailable"
        assert data["candidate"]["start"] == START.isoformat()
        assert data["states"] == ["searching", "failed"]
