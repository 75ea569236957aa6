"""Google Calendar v3 provider over httpx."""

import logging
import os
from datetime import datetime
from typing import Any, Optional

import httpx

from models.entities import EventMetadata, ExistingEvent, TimeInterval, ensure_utc
from models.errors import PermanentProviderError, TransientProviderError
from services.calendar_provider import CalendarProvider
from services.retry import TRANSIENT, classify_http_status, parse_retry_after

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.googleapis.com/calendar/v3"


def parse_google_datetime(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as returned by the Calendar API."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


class GoogleCalendarProvider(CalendarProvider):
    """Reads and writes one Google calendar with an OAuth bearer token."""

    def __init__(
        self,
        access_token: str = None,
        calendar_id: str = None,
        base_url: str = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the provider.

        Args:
            access_token: OAuth access token (defaults to env var GOOGLE_CALENDAR_ACCESS_TOKEN)
            calendar_id: Calendar to use (defaults to env var GOOGLE_CALENDAR_ID, then "primary")
            base_url: API root (defaults to env var GOOGLE_CALENDAR_BASE_URL)
            timeout: Per-request timeout in seconds
            client: Pre-built httpx client, mainly for tests
        """
        self.access_token = access_token or os.getenv("GOOGLE_CALENDAR_ACCESS_TOKEN", "")
        self.calendar_id = calendar_id or os.getenv("GOOGLE_CALENDAR_ID", "primary")
        self.base_url = (base_url or os.getenv("GOOGLE_CALENDAR_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        if not self.access_token:
            raise PermanentProviderError(
                "GOOGLE_CALENDAR_ACCESS_TOKEN is not set", operation="init", status_code=401
            )
        self._client = client or httpx.Client(timeout=timeout)

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    def _events_url(self, event_id: str = "") -> str:
        url = f"{self.base_url}/calendars/{self.calendar_id}/events"
        return f"{url}/{event_id}" if event_id else url

    def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, url, headers=self._get_headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"{operation} timed out: {e}", operation=operation) from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"{operation} could not reach Google: {e}", operation=operation) from e

        if response.status_code >= 400:
            self._raise_for_status(operation, response)
        return response

    def _raise_for_status(self, operation: str, response: httpx.Response):
        message, reason = "", ""
        try:
            error = response.json().get("error", {})
            message = error.get("message", "")
            errors = error.get("errors") or [{}]
            reason = errors[0].get("reason", "")
        except (ValueError, AttributeError):
            message = response.text[:200]

        status = response.status_code
        text = f"{operation} failed with HTTP {status}: {message or reason or 'no details'}"
        if classify_http_status(status, reason) == TRANSIENT:
            raise TransientProviderError(
                text,
                operation=operation,
                status_code=status,
                retry_after=parse_retry_after(response.headers),
            )
        raise PermanentProviderError(text, operation=operation, status_code=status)

    def _to_event(self, item: dict[str, Any]) -> Optional[ExistingEvent]:
        start = item.get("start", {}).get("dateTime")
        end = item.get("end", {}).get("dateTime")
        if not start or not end:
            # all-day events carry only a date
            return None
        status = item.get("status", "confirmed")
        if status not in ("confirmed", "tentative", "cancelled"):
            status = "confirmed"
        return ExistingEvent(
            id=item["id"],
            interval=TimeInterval(parse_google_datetime(start), parse_google_datetime(end)),
            status=status,
            title=item.get("summary", "Untitled Event"),
        )

    def list_events(self, window_start: datetime, window_end: datetime) -> list[ExistingEvent]:
        params = {
            "timeMin": ensure_utc(window_start).isoformat(),
            "timeMax": ensure_utc(window_end).isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": 250,
        }
        events = []
        while True:
            data = self._request("list_events", "GET", self._events_url(), params=params).json()
            for item in data.get("items", []):
                if item.get("transparency") == "transparent":
                    continue
                event = self._to_event(item)
                if event is not None:
                    events.append(event)

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        return events

    def create_event(self, interval: TimeInterval, metadata: EventMetadata) -> ExistingEvent:
        body: dict[str, Any] = {
            "summary": metadata.title,
            "start": {"dateTime": interval.start.isoformat()},
            "end": {"dateTime": interval.end.isoformat()},
            "reminders": {"useDefault": True},
        }
        if metadata.idempotency_key:
            body["id"] = metadata.idempotency_key
        if metadata.description:
            body["description"] = metadata.description
        if metadata.location:
            body["location"] = metadata.location
        if metadata.attendees:
            body["attendees"] = [{"email": email} for email in metadata.attendees]

        try:
            response = self._request("create_event", "POST", self._events_url(), json=body)
        except PermanentProviderError as e:
            if e.status_code != 409 or not metadata.idempotency_key:
                raise
            # an earlier attempt already created it
            logger.info("Event %s already exists, returning it", metadata.idempotency_key)
            response = self._request(
                "get_event", "GET", self._events_url(metadata.idempotency_key)
            )

        event = self._to_event(response.json())
        if event is None:
            raise PermanentProviderError(
                "Calendar returned an event without start/end times", operation="create_event"
            )
        return event
