"""Interval helpers: overlap, buffering and merging of time ranges."""

from datetime import datetime, timedelta
from typing import Iterable

from models.entities import MeetingRequest, TimeInterval, ensure_utc


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """Half-open overlap test. Touching endpoints do not overlap."""
    return a.start < b.end and b.start < a.end


def with_buffer(interval: TimeInterval, buffer_minutes: int) -> TimeInterval:
    """Expand an interval by ``buffer_minutes`` on both sides."""
    if buffer_minutes <= 0:
        return interval
    pad = timedelta(minutes=buffer_minutes)
    return TimeInterval(interval.start - pad, interval.end + pad)


def meeting_interval(request: MeetingRequest, start: datetime) -> TimeInterval:
    """The meeting itself, without prep."""
    start = ensure_utc(start)
    return TimeInterval(start, start + request.duration)


def prep_interval(request: MeetingRequest, start: datetime):
    """Protected prep block ending at the meeting start, or None."""
    if request.prep <= timedelta(0):
        return None
    start = ensure_utc(start)
    return TimeInterval(start - request.prep, start)


def effective_interval(request: MeetingRequest, start: datetime) -> TimeInterval:
    """Interval a meeting starting at ``start`` actually occupies, prep included."""
    start = ensure_utc(start)
    return TimeInterval(start - request.prep, start + request.duration)


def merge_intervals(intervals: Iterable[TimeInterval]) -> list[TimeInterval]:
    """Merge overlapping or touching intervals into a sorted, disjoint list."""
    merged: list[TimeInterval] = []
    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = TimeInterval(last.start, interval.end)
        else:
            merged.append(interval)
    return merged


def overlap_duration(a: TimeInterval, b: TimeInterval) -> timedelta:
    start = max(a.start, b.start)
    end = min(a.end, b.end)
    if start >= end:
        return timedelta(0)
    return end - start
