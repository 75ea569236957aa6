"""Scheduling console - suggest, auto-schedule and check conflicts."""

import logging
import os
from datetime import date, datetime, timedelta
from typing import Optional

import pytz
import streamlit as st
from dotenv import load_dotenv

from models.entities import MeetingRequest, PRIORITIES
from models.errors import InvalidRequest, PermanentProviderError, ProviderError
from services.calendar_provider import InMemoryCalendarProvider, seed_demo_events
from services.config import load_config
from services.google_calendar_client import GoogleCalendarProvider
from services.response_formatter import ResponseFormatter
from services.scheduling_engine import SchedulingEngine

# ============================================================================
# CONFIGURATION
# ============================================================================

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

st.set_page_config(
    page_title="Scheduling Assistant",
    page_icon="🗓️",
    layout="wide"
)

# ============================================================================
# SERVICE INITIALIZATION
# ============================================================================

@st.cache_resource
def get_engine(_cache_version="v1"):
    """Build the engine against Google Calendar when a token is configured, else a demo calendar."""
    config = load_config()

    if os.getenv("GOOGLE_CALENDAR_ACCESS_TOKEN"):
        provider = GoogleCalendarProvider(timeout=config.request_timeout_seconds)
        source = f"Google Calendar ({provider.calendar_id})"
    else:
        provider = InMemoryCalendarProvider()
        seed_demo_events(provider, config.timezone, days=21)
        source = "Demo calendar"

    return SchedulingEngine(provider, config), source


engine, calendar_source = get_engine()
config = engine.config
tz = pytz.timezone(config.timezone)

# ============================================================================
# SESSION STATE INITIALIZATION
# ============================================================================

if "last_suggestions" not in st.session_state:
    st.session_state.last_suggestions = None
    st.session_state.last_request = None

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def local_datetime(day: date, clock) -> datetime:
    return tz.localize(datetime.combine(day, clock))


def parse_preferred_times(raw: str) -> list[datetime]:
    """Parse one "YYYY-MM-DD HH:MM" local time per line."""
    times = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            times.append(tz.localize(datetime.strptime(line, "%Y-%m-%d %H:%M")))
        except ValueError:
            raise InvalidRequest(f"Could not read preferred time {line!r}; use YYYY-MM-DD HH:MM")
    return times


def build_request(form: dict) -> MeetingRequest:
    deadline: Optional[datetime] = None
    if form["use_deadline"]:
        deadline = local_datetime(form["deadline_date"], form["deadline_time"])

    attendees = [a.strip() for a in form["attendees"].split(",") if a.strip()]

    return MeetingRequest(
        title=form["title"],
        description=form["description"] or None,
        duration_minutes=int(form["duration"]),
        priority=form["priority"],
        attendees=attendees,
        preferred_times=parse_preferred_times(form["preferred"]),
        deadline=deadline,
        location=form["location"] or None,
        requires_prep=form["prep"] > 0,
        prep_time_minutes=int(form["prep"]),
        allow_weekends=form["allow_weekends"],
    )


def request_form(key: str) -> Optional[dict]:
    """Render the meeting request form; returns the values once submitted."""
    with st.form(key):
        col1, col2 = st.columns(2)
        with col1:
            title = st.text_input("Title", value="Project sync")
            duration = st.number_input("Duration (minutes)", min_value=5, max_value=480, value=30, step=5)
            priority = st.selectbox("Priority", PRIORITIES, index=1)
            attendees = st.text_input("Attendees (comma separated emails)")
            location = st.text_input("Location")
        with col2:
            description = st.text_area("Description", height=68)
            preferred = st.text_area("Preferred times (YYYY-MM-DD HH:MM, one per line)", height=68)
            prep = st.number_input("Prep time (minutes)", min_value=0, max_value=240, value=0, step=5)
            allow_weekends = st.checkbox("Allow weekends")
            use_deadline = st.checkbox("Has deadline")
            deadline_date = st.date_input("Deadline date", value=date.today() + timedelta(days=7))
            deadline_time = st.time_input("Deadline time", value=datetime.strptime("17:00", "%H:%M").time())

        submitted = st.form_submit_button("Submit")

    if not submitted:
        return None
    return {
        "title": title,
        "duration": duration,
        "priority": priority,
        "attendees": attendees,
        "location": location,
        "description": description,
        "preferred": preferred,
        "prep": prep,
        "allow_weekends": allow_weekends,
        "use_deadline": use_deadline,
        "deadline_date": deadline_date,
        "deadline_time": deadline_time,
    }


def show_provider_error(error: ProviderError):
    if isinstance(error, PermanentProviderError):
        st.markdown(ResponseFormatter.format_error(
            "Calendar Rejected the Request", str(error),
            suggestions=["Reconnect the calendar account", "Check calendar permissions"],
        ))
    else:
        st.markdown(ResponseFormatter.format_error(
            "Calendar Unavailable", str(error), suggestions=["Try again in a few minutes"],
        ))

# ============================================================================
# SIDEBAR
# ============================================================================

with st.sidebar:
    st.header("🗓️ Scheduler")
    st.markdown(ResponseFormatter.format_info_line("Calendar", calendar_source))
    st.markdown(ResponseFormatter.format_info_line("Timezone", config.timezone))
    st.markdown(ResponseFormatter.format_info_line(
        "Working hours", f"{config.working_hours_start} - {config.working_hours_end}"
    ))
    st.markdown(ResponseFormatter.format_info_line("Buffer", f"{config.buffer_minutes} min"))

# ============================================================================
# MAIN
# ============================================================================

st.title("Scheduling Assistant")
suggest_tab, auto_tab, conflicts_tab = st.tabs(["Suggest times", "Auto-schedule", "Check conflicts"])

with suggest_tab:
    search_days = st.slider("Search horizon (days)", 1, 30, config.default_search_days)
    form = request_form("suggest_form")
    if form:
        try:
            meeting_request = build_request(form)
            with st.spinner("Searching calendar..."):
                response = engine.suggest(meeting_request, search_days)
            st.session_state.last_suggestions = response
            st.session_state.last_request = meeting_request
        except InvalidRequest as e:
            st.markdown(ResponseFormatter.format_error("Invalid Request", str(e)))
        except ProviderError as e:
            show_provider_error(e)

    if st.session_state.last_suggestions is not None:
        text, _buttons = ResponseFormatter.format_candidates(
            st.session_state.last_suggestions, config.timezone, show_all=True
        )
        st.markdown(text)

with auto_tab:
    form = request_form("auto_form")
    if form:
        try:
            meeting_request = build_request(form)
            with st.spinner("Finding and booking the best slot..."):
                result = engine.auto_schedule(meeting_request)
            st.markdown(ResponseFormatter.format_scheduling_result(result, config.timezone))
            with st.expander("Details"):
                st.json(result.to_dict())
        except InvalidRequest as e:
            st.markdown(ResponseFormatter.format_error("Invalid Request", str(e)))
        except ProviderError as e:
            show_provider_error(e)

with conflicts_tab:
    with st.form("conflict_form"):
        day = st.date_input("Date", value=date.today())
        col1, col2 = st.columns(2)
        with col1:
            start_time = st.time_input("Start", value=datetime.strptime("10:00", "%H:%M").time())
        with col2:
            end_time = st.time_input("End", value=datetime.strptime("10:30", "%H:%M").time())
        exclude = st.text_input("Ignore event ID (when moving an existing event)")
        with_alternatives = st.checkbox("Suggest alternatives when busy", value=True)
        check = st.form_submit_button("Check")

    if check:
        try:
            report = engine.check_conflicts(
                local_datetime(day, start_time),
                local_datetime(day, end_time),
                exclude_event_id=exclude.strip() or None,
                include_alternatives=with_alternatives,
            )
            st.markdown(ResponseFormatter.format_conflict_report(report, config.timezone))
        except InvalidRequest as e:
            st.markdown(ResponseFormatter.format_error("Invalid Interval", str(e)))
        except ProviderError as e:
            show_provider_error(e)
