"""
Google Calendar Source

Looks up meetings with a counterpart by searching one calendar for events
that list the counterpart as an attendee. Calendar facts are authoritative
over anything the classifier extracted from email text.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from src.crm_sync.base import CalendarSource
from src.crm_sync.models import CalendarEvent
from src.integrations.google.auth import ServiceAccountAuth
from src.integrations.google.errors import translate_google_error
from src.utils.date_utils import UTC, parse_event_time
from src.utils.logging_setup import mask_email

logger = logging.getLogger(__name__)

LOOKAHEAD_DAYS = 60
LOOKBACK_DAYS = 60
MAX_EVENTS = 250


def extract_join_link(event: Dict) -> str:
    """Video link from ``hangoutLink`` or the first conference entry point."""
    if event.get('hangoutLink'):
        return event['hangoutLink']
    for entry_point in event.get('conferenceData', {}).get('entryPoints', []):
        if entry_point.get('uri'):
            return entry_point['uri']
    return ''


def has_attendee(event: Dict, address: str) -> bool:
    address = address.lower()
    return any((a.get('email') or '').lower() == address for a in event.get('attendees', []))


def to_calendar_event(event: Dict) -> Optional[CalendarEvent]:
    """
    Convert an events.list item. Returns None when it has no usable start.

    ``needs_response`` is set when the calendar owner has not answered the
    invitation yet.
    """
    start_info = event.get('start', {})
    start = parse_event_time(start_info.get('dateTime') or start_info.get('date'))
    if start is None:
        return None

    needs_response = any(
        a.get('self') and a.get('responseStatus') == 'needsAction'
        for a in event.get('attendees', [])
    )
    return CalendarEvent(
        start=start,
        title=event.get('summary', ''),
        join_link=extract_join_link(event),
        detail_link=event.get('htmlLink', ''),
        needs_response=needs_response,
        cancelled=event.get('status') == 'cancelled',
    )


class GoogleCalendarSource(CalendarSource):
    """
    CalendarSource backed by the Calendar v3 events API.

    Attributes:
        auth: Service factory
        account: Mailbox whose calendar is read (impersonated)
        calendar_id: Calendar to search, ``primary`` by default
    """

    def __init__(self, auth: ServiceAccountAuth, account: Optional[str] = None,
                 calendar_id: str = 'primary', clock: Optional[Callable[[], datetime]] = None):
        self.auth = auth
        self.account = account
        self.calendar_id = calendar_id
        self.clock = clock or (lambda: datetime.now(UTC))

    async def _meetings_with(self, address: str, time_min: datetime, time_max: datetime) -> List[CalendarEvent]:
        """Events in the window that list ``address`` as an attendee, in start order."""
        request = self.auth.calendar(self.account).events().list(
            calendarId=self.calendar_id,
            timeMin=time_min.isoformat(),
            timeMax=time_max.isoformat(),
            singleEvents=True,
            orderBy='startTime',
            maxResults=MAX_EVENTS,
            q=address,
        )
        try:
            response = await asyncio.to_thread(request.execute)
        except Exception as e:
            raise translate_google_error(e, f"events.list for {mask_email(address)}") from e

        events = []
        for item in response.get('items', []):
            if not has_attendee(item, address):
                continue
            event = to_calendar_event(item)
            if event is not None:
                events.append(event)
        events.sort(key=lambda event: event.start)
        return events

    async def find_next_meeting(self, address: str) -> Optional[CalendarEvent]:
        """Earliest upcoming, non-cancelled meeting within the lookahead window."""
        now = self.clock()
        meetings = await self._meetings_with(address, now, now + timedelta(days=LOOKAHEAD_DAYS))
        upcoming = [m for m in meetings if m.start > now and not m.cancelled]
        return upcoming[0] if upcoming else None

    async def find_last_meeting(self, address: str) -> Optional[CalendarEvent]:
        """Most recent past, non-cancelled meeting within the lookback window."""
        now = self.clock()
        meetings = await self._meetings_with(address, now - timedelta(days=LOOKBACK_DAYS), now)
        past = [m for m in meetings if m.start <= now and not m.cancelled]
        return past[-1] if past else None
