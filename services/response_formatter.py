"""Markdown rendering of scheduling results for the console."""

from typing import Any, Dict, List, Optional

import pytz

from models.entities import ConflictReport, SchedulingResult, SlotCandidate, SuggestResponse

FACTOR_LABELS = {
    "preferred_time_match": "matches preferred time",
    "near_preferred_time": "close to preferred time",
    "urgent_earliest": "earliest option for urgent request",
    "mid_morning": "mid-morning",
    "late_morning": "late morning",
    "early_afternoon": "early afternoon",
    "late_afternoon": "late afternoon",
    "off_peak": "outside peak hours",
    "deadline_pressure": "close to deadline",
    "prep_time": "prep time reserved",
    "early_week": "early in the week",
    "friday": "Friday slot",
}

REASON_TITLES = {
    "no_availability": "No Available Times Found",
    "scheduling_conflict": "Slots Taken Before Booking",
    "provider_unavailable": "Calendar Unavailable",
}


class ResponseFormatter:
    """Formats engine responses in a consistent, structured manner."""

    @staticmethod
    def format_info_line(label: str, value: str, available: bool = True) -> str:
        """Format an info line with availability indicator."""
        icon = "✅" if available else "❌"
        return f"   {icon} **{label}:** {value}"

    @staticmethod
    def describe_factors(factors) -> str:
        labels = [FACTOR_LABELS[f] for f in factors if f in FACTOR_LABELS]
        return ", ".join(labels)

    @staticmethod
    def format_slot_time(candidate: SlotCandidate, timezone: str) -> tuple[str, str]:
        tz = pytz.timezone(timezone)
        local_start = candidate.start.astimezone(tz)
        local_end = candidate.end.astimezone(tz)
        date_str = local_start.strftime('%A, %B %d, %Y')
        time_str = f"{local_start.strftime('%I:%M %p')} - {local_end.strftime('%I:%M %p')}"
        return date_str, time_str

    @staticmethod
    def format_candidates(
        response: SuggestResponse,
        timezone: str = "UTC",
        show_all: bool = False,
    ) -> tuple[str, List[Dict[str, Any]]]:
        """
        Format ranked candidates with button information.

        Returns:
            tuple: (formatted_text, button_info_list)
            button_info_list contains dicts with 'label' and 'index' for each candidate
        """
        if not response.count:
            return (
                ResponseFormatter.format_error(
                    "No Available Times Found",
                    f"No free slot in the next {response.search_days} day(s).",
                    suggestions=[
                        "Try a longer search horizon",
                        "Shorten the meeting",
                        "Allow weekends",
                    ]
                ),
                []
            )

        limit = response.count if show_all else min(5, response.count)
        lines = [
            "**🎯 Available Meeting Times**",
            "",
            f"Found **{response.count}** available time slot(s).",
            "",
        ]
        button_info = []

        for i, candidate in enumerate(response.candidates[:limit], 1):
            date_str, time_str = ResponseFormatter.format_slot_time(candidate, timezone)
            if i == 1:
                lines.append(f"⭐ **Option {i} (Best Match)** · score {candidate.score:.0f}")
            else:
                lines.append(f"**Option {i}** · score {candidate.score:.0f}")
            lines.append(f"   • Date: {date_str}")
            lines.append(f"   • Time: {time_str} ({timezone})")
            if candidate.prep_interval:
                prep_start = candidate.prep_interval.start.astimezone(pytz.timezone(timezone))
                lines.append(f"   • Prep from: {prep_start.strftime('%I:%M %p')}")
            why = ResponseFormatter.describe_factors(candidate.factors)
            if why:
                lines.append(f"   • Why: {why}")
            lines.append("")
            button_info.append({"label": time_str, "index": i - 1})

        if response.count > limit:
            lines.append(f"*+ {response.count - limit} more option(s) available.*")

        return "\n".join(lines), button_info

    @staticmethod
    def format_scheduling_result(result: SchedulingResult, timezone: str = "UTC") -> str:
        """Format an auto-schedule outcome, offering the best slot when booking failed."""
        if result.success:
            date_str, time_str = ResponseFormatter.format_slot_time(result.candidate, timezone)
            return ResponseFormatter.format_success(
                "Meeting Booked",
                result.message,
                details=[
                    f"Date: {date_str}",
                    f"Time: {time_str} ({timezone})",
                    f"Event ID: {result.event.id}",
                ],
            )

        suggestions = []
        if result.candidate:
            date_str, time_str = ResponseFormatter.format_slot_time(result.candidate, timezone)
            suggestions.append(f"Book manually: {date_str}, {time_str}")
        if result.reason == "provider_unavailable":
            suggestions.append("Try again in a few minutes")
        elif result.reason == "no_availability":
            suggestions.append("Lower the priority to search further ahead")

        return ResponseFormatter.format_error(
            REASON_TITLES.get(result.reason, "Scheduling Failed"),
            result.message,
            suggestions=suggestions or None,
        )

    @staticmethod
    def format_conflict_report(report: ConflictReport, timezone: str = "UTC") -> str:
        tz = pytz.timezone(timezone)
        start = report.interval.start.astimezone(tz).strftime('%B %d, %I:%M %p')
        end = report.interval.end.astimezone(tz).strftime('%I:%M %p')

        if not report.has_conflict:
            return ResponseFormatter.format_success(
                "No Conflicts",
                f"{start} - {end} is free (with a {report.buffer_minutes}-minute buffer).",
            )

        lines = []
        for event in report.conflicts:
            kind = report.conflict_types.get(event.id, "direct")
            event_start = event.start.astimezone(tz).strftime('%I:%M %p')
            event_end = event.end.astimezone(tz).strftime('%I:%M %p')
            lines.append(f"{event.title or event.id}: {event_start} - {event_end} ({kind})")
        lines.extend(report.recommendations)
        for alternative in report.alternatives:
            date_str, time_str = ResponseFormatter.format_slot_time(alternative, timezone)
            lines.append(f"Alternative: {date_str}, {time_str}")

        return ResponseFormatter.format_error(
            "Conflicts Found",
            f"{start} - {end} overlaps {len(report.conflicts)} event(s):",
            suggestions=lines,
        )

    @staticmethod
    def format_success(title: str, message: str, details: Optional[List[str]] = None) -> str:
        """Format a success message."""
        lines = [
            f"**✅ {title}**",
            "",
            message
        ]

        if details:
            lines.append("")
            lines.append("**Details:**")
            for detail in details:
                lines.append(f"• {detail}")

        return "\n".join(lines)

    @staticmethod
    def format_error(title: str, message: str, suggestions: Optional[List[str]] = None) -> str:
        """Format an error message."""
        lines = [
            f"**❌ {title}**",
            "",
            message
        ]

        if suggestions:
            lines.append("")
            lines.append("**Suggestions:**")
            for suggestion in suggestions:
                lines.append(f"• {suggestion}")

        return "\n".join(lines)
