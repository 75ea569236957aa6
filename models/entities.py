"""Domain models for the calendar scheduling engine."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal, Optional

import pytz

from models.errors import InvalidRequest

Priority = Literal["low", "medium", "high", "urgent"]
EventStatus = Literal["confirmed", "tentative", "cancelled"]
FailureReason = Literal["no_availability", "scheduling_conflict", "provider_unavailable"]

PRIORITIES = ("low", "medium", "high", "urgent")
EVENT_STATUSES = ("confirmed", "tentative", "cancelled")

NO_AVAILABILITY = "no_availability"
SCHEDULING_CONFLICT = "scheduling_conflict"
PROVIDER_UNAVAILABLE = "provider_unavailable"


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if not isinstance(value, datetime):
        raise InvalidRequest(f"Expected a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=pytz.UTC)
    return value.astimezone(pytz.UTC)


@dataclass(frozen=True)
class TimeInterval:
    """Half-open time range [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        start = ensure_utc(self.start)
        end = ensure_utc(self.end)
        if end <= start:
            raise InvalidRequest(
                f"Interval end {end.isoformat()} must be after start {start.isoformat()}"
            )
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_minutes(self) -> float:
        return self.duration.total_seconds() / 60

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class MeetingRequest:
    """Request to schedule a meeting, as produced by the suggestion pipeline."""
    title: str
    duration_minutes: int
    priority: Priority = "medium"
    description: Optional[str] = None
    attendees: tuple[str, ...] = ()  # empty means a self-block
    preferred_times: tuple[datetime, ...] = ()  # ordered, evaluated first
    deadline: Optional[datetime] = None
    location: Optional[str] = None
    is_recurring: bool = False  # informational; series are not expanded
    requires_prep: bool = False
    prep_time_minutes: int = 0
    allow_weekends: bool = False

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise InvalidRequest("Meeting title is required")
        if isinstance(self.duration_minutes, bool) or not isinstance(self.duration_minutes, int):
            raise InvalidRequest("Meeting duration must be a whole number of minutes")
        if self.duration_minutes <= 0:
            raise InvalidRequest(f"Meeting duration must be positive, got {self.duration_minutes}")
        if self.priority not in PRIORITIES:
            raise InvalidRequest(f"Unknown priority {self.priority!r}; expected one of {PRIORITIES}")
        if self.requires_prep and self.prep_time_minutes < 0:
            raise InvalidRequest("Prep time cannot be negative")

        object.__setattr__(self, "attendees", tuple(self.attendees))
        object.__setattr__(
            self, "preferred_times", tuple(ensure_utc(t) for t in self.preferred_times)
        )

        # checked against the engine clock when the request is searched
        if self.deadline is not None:
            object.__setattr__(self, "deadline", ensure_utc(self.deadline))

    def check_deadline(self, now: datetime):
        """Raise InvalidRequest when the deadline is not after ``now``."""
        if self.deadline is not None and self.deadline <= ensure_utc(now):
            raise InvalidRequest(f"Deadline {self.deadline.isoformat()} is already in the past")

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)

    @property
    def prep(self) -> timedelta:
        """Protected preparation time placed immediately before the meeting."""
        if not self.requires_prep:
            return timedelta(0)
        return timedelta(minutes=self.prep_time_minutes)


@dataclass(frozen=True)
class ExistingEvent:
    """An event already on the user's calendar."""
    id: str
    interval: TimeInterval
    status: EventStatus = "confirmed"
    title: str = ""

    def __post_init__(self):
        if self.status not in EVENT_STATUSES:
            raise InvalidRequest(f"Unknown event status {self.status!r}")

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "status": self.status, **self.interval.to_dict()}


@dataclass(frozen=True)
class EventMetadata:
    """Everything besides the interval that goes into a new calendar event."""
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: tuple[str, ...] = ()
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class SlotCandidate:
    """A scored meeting slot. The interval excludes any prep time."""
    interval: TimeInterval
    score: float
    factors: tuple[str, ...] = ()
    prep_interval: Optional[TimeInterval] = None

    def __post_init__(self):
        if not 0 <= self.score <= 100:
            raise InvalidRequest(f"Score must be within [0, 100], got {self.score}")

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end

    def sort_key(self) -> tuple[float, datetime]:
        """Score descending, then earliest start."""
        return (-self.score, self.start)

    def to_dict(self) -> dict[str, Any]:
        data = {
            **self.interval.to_dict(),
            "score": round(self.score, 2),
            "factors": list(self.factors),
        }
        if self.prep_interval:
            data["prep"] = self.prep_interval.to_dict()
        return data


@dataclass(frozen=True)
class ConflictReport:
    """Result of checking one proposed interval against the calendar."""
    interval: TimeInterval
    conflicts: tuple[ExistingEvent, ...] = ()
    buffer_minutes: int = 0
    conflict_types: dict[str, str] = field(default_factory=dict)  # event id -> direct|buffer
    recommendations: tuple[str, ...] = ()
    alternatives: tuple["SlotCandidate", ...] = ()  # ranked free slots, only when asked for

    @property
    def has_conflict(self) -> bool:
        return bool(self.conflicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "interval": self.interval.to_dict(),
            "has_conflict": self.has_conflict,
            "buffer_minutes": self.buffer_minutes,
            "conflicts": [
                {**event.to_dict(), "type": self.conflict_types.get(event.id, "direct")}
                for event in self.conflicts
            ],
            "recommendations": list(self.recommendations),
            "alternatives": [c.to_dict() for c in self.alternatives],
        }


@dataclass(frozen=True)
class SuggestResponse:
    """Ranked candidates returned by the suggest operation."""
    candidates: tuple[SlotCandidate, ...]
    search_days: int

    @property
    def count(self) -> int:
        return len(self.candidates)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "search_days": self.search_days,
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass(frozen=True)
class SchedulingResult:
    """Outcome of an auto-schedule attempt."""
    success: bool
    event: Optional[ExistingEvent] = None
    candidate: Optional[SlotCandidate] = None  # committed slot, or best uncommitted one
    reason: Optional[FailureReason] = None
    message: str = ""
    states: tuple[str, ...] = ()
    attempts: int = 0  # candidates verified

    @classmethod
    def committed(cls, event: ExistingEvent, candidate: SlotCandidate, states, attempts: int):
        return cls(
            success=True,
            event=event,
            candidate=candidate,
            message=f"Booked '{event.title}' at {event.start.isoformat()}",
            states=tuple(states),
            attempts=attempts,
        )

    @classmethod
    def failed(
        cls,
        reason: FailureReason,
        message: str,
        states,
        best_candidate: Optional[SlotCandidate] = None,
        attempts: int = 0,
    ):
        return cls(
            success=False,
            candidate=best_candidate,
            reason=reason,
            message=message,
            states=tuple(states),
            attempts=attempts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "event": self.event.to_dict() if self.event else None,
            "candidate": self.candidate.to_dict() if self.candidate else None,
            "reason": self.reason,
            "message": self.message,
            "states": list(self.states),
            "attempts": self.attempts,
        }
