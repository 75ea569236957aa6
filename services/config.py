"""Scheduler configuration loaded from the environment."""

import os
from dataclasses import dataclass, field
from datetime import time
from typing import Optional

import pytz
from dotenv import load_dotenv

from models.errors import ConfigError
from services.retry import RetryPolicy


# (start_hour, end_hour, desirability 0-1, factor tag), local time
DEFAULT_TIME_OF_DAY_BANDS = [
    (9, 11, 1.0, "mid_morning"),
    (11, 13, 0.6, "late_morning"),
    (13, 15, 0.8, "early_afternoon"),
    (15, 17, 0.5, "late_afternoon"),
]
OFF_PEAK_DESIRABILITY = 0.2

# local weekday (Monday=0) -> (desirability 0-1, factor tag); other days are neutral
DEFAULT_DAY_OF_WEEK = {
    0: (1.0, "early_week"),
    1: (1.0, "early_week"),
    4: (0.0, "friday"),
}
NEUTRAL_DAY_DESIRABILITY = 0.5


@dataclass
class ScoringWeights:
    """Relative weights of the slot scoring components. Should sum to 100."""
    preferred_time: float = 40.0
    priority: float = 20.0
    time_of_day: float = 20.0
    deadline: float = 15.0
    day_of_week: float = 5.0
    urgency_by_priority: dict[str, float] = field(default_factory=lambda: {
        "low": 0.0,
        "medium": 0.3,
        "high": 0.6,
        "urgent": 1.0,
    })
    time_of_day_bands: list[tuple[int, int, float, str]] = field(
        default_factory=lambda: list(DEFAULT_TIME_OF_DAY_BANDS)
    )
    off_peak_desirability: float = OFF_PEAK_DESIRABILITY
    day_of_week_desirability: dict[int, tuple[float, str]] = field(
        default_factory=lambda: dict(DEFAULT_DAY_OF_WEEK)
    )
    neutral_day_desirability: float = NEUTRAL_DAY_DESIRABILITY

    @property
    def total(self) -> float:
        return self.preferred_time + self.priority + self.time_of_day + self.deadline + self.day_of_week


@dataclass
class SchedulingConfig:
    """Tunable policy for slot search, scoring and booking."""
    timezone: str = "UTC"
    working_hours_start: str = "09:00"
    working_hours_end: str = "18:00"
    working_days: tuple[int, ...] = (0, 1, 2, 3, 4)  # Monday=0
    slot_granularity_minutes: int = 15
    buffer_minutes: int = 15
    max_results: int = 10
    max_alternatives: int = 5  # offered with a conflicting check
    alternative_search_days: int = 14
    default_search_days: int = 14
    horizon_days_by_priority: dict[str, int] = field(default_factory=lambda: {
        "urgent": 2,
        "high": 7,
        "medium": 14,
        "low": 14,
    })
    max_conflict_retries: int = 3
    deadline_pressure_hours: float = 24.0
    request_timeout_seconds: float = 10.0
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        try:
            pytz.timezone(self.timezone)
        except pytz.UnknownTimeZoneError:
            raise ConfigError(f"Unknown timezone: {self.timezone}")
        if self.work_start >= self.work_end:
            raise ConfigError(
                f"Working hours end ({self.working_hours_end}) must be after start ({self.working_hours_start})"
            )
        if self.slot_granularity_minutes <= 0:
            raise ConfigError("Slot granularity must be positive")
        if self.buffer_minutes < 0:
            raise ConfigError("Buffer minutes cannot be negative")
        if self.max_results <= 0:
            raise ConfigError("max_results must be positive")
        if self.max_alternatives < 0 or self.alternative_search_days <= 0:
            raise ConfigError("Alternative search needs max_alternatives >= 0 and a positive horizon")
        if self.max_conflict_retries < 0:
            raise ConfigError("max_conflict_retries cannot be negative")

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    @property
    def work_start(self) -> time:
        return _parse_clock(self.working_hours_start)

    @property
    def work_end(self) -> time:
        return _parse_clock(self.working_hours_end)

    def horizon_days(self, priority: str) -> int:
        return self.horizon_days_by_priority.get(priority, self.default_search_days)


def _parse_clock(value: str) -> time:
    """Parse "HH:MM" into a time."""
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError):
        raise ConfigError(f"Invalid clock time {value!r}; expected HH:MM")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_config(env_file: Optional[str] = None) -> SchedulingConfig:
    """
    Build a SchedulingConfig from SCHEDULER_* environment variables.

    Values from a .env file are loaded first; variables already set in the
    environment take precedence.
    """
    load_dotenv(env_file)

    retry = RetryPolicy(
        max_attempts=_env_int("SCHEDULER_RETRY_MAX_ATTEMPTS", 3),
        base_delay=_env_float("SCHEDULER_RETRY_BASE_DELAY", 1.0),
        max_delay=_env_float("SCHEDULER_RETRY_MAX_DELAY", 30.0),
    )

    return SchedulingConfig(
        timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"),
        working_hours_start=os.getenv("SCHEDULER_WORKING_HOURS_START", "09:00"),
        working_hours_end=os.getenv("SCHEDULER_WORKING_HOURS_END", "18:00"),
        slot_granularity_minutes=_env_int("SCHEDULER_SLOT_GRANULARITY_MINUTES", 15),
        buffer_minutes=_env_int("SCHEDULER_BUFFER_MINUTES", 15),
        max_results=_env_int("SCHEDULER_MAX_RESULTS", 10),
        max_alternatives=_env_int("SCHEDULER_MAX_ALTERNATIVES", 5),
        request_timeout_seconds=_env_float("SCHEDULER_REQUEST_TIMEOUT", 10.0),
        retry=retry,
    )
