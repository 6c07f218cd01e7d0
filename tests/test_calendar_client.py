"""
Tests for calendar event conversion and meeting lookup.
"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from src.integrations.calendar.client import GoogleCalendarSource, extract_join_link, to_calendar_event
from src.utils.date_utils import UTC

NOW = datetime(2025, 1, 10, 12, 0, tzinfo=UTC)


def event(start, attendee="jane@fund.vc", status="confirmed", self_status="accepted", **extra):
    item = {
        "summary": "Intro",
        "status": status,
        "htmlLink": "https://calendar.google.com/event?eid=1",
        "start": {"dateTime": start.isoformat()},
        "attendees": [
            {"email": "me@firm.com", "self": True, "responseStatus": self_status},
            {"email": attendee},
        ],
    }
    item.update(extra)
    return item


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def calendar(service):
    auth = MagicMock()
    auth.calendar.return_value = service
    return GoogleCalendarSource(auth, account="me@firm.com", clock=lambda: NOW)


def test_join_link_from_conference_data():
    item = {"conferenceData": {"entryPoints": [{"entryPointType": "video", "uri": "https://zoom.us/j/1"}]}}
    assert extract_join_link(item) == "https://zoom.us/j/1"
    assert extract_join_link({"hangoutLink": "https://meet.google.com/x"}) == "https://meet.google.com/x"
    assert extract_join_link({}) == ""


def test_to_calendar_event():
    converted = to_calendar_event(event(NOW + timedelta(days=1), self_status="needsAction",
                                        hangoutLink="https://meet.google.com/abc"))
    assert converted.start == NOW + timedelta(days=1)
    assert converted.needs_response is True
    assert converted.join_link == "https://meet.google.com/abc"
    assert converted.detail_link == "https://calendar.google.com/event?eid=1"
    assert converted.cancelled is False


def test_all_day_event_and_missing_start():
    all_day = to_calendar_event({"start": {"date": "2025-01-14"}})
    assert all_day.start == datetime(2025, 1, 14, tzinfo=UTC)
    assert to_calendar_event({"start": {}}) is None


@pytest.mark.asyncio
async def test_next_meeting_skips_cancelled_and_other_attendees(calendar, service):
    service.events().list().execute.return_value = {"items": [
        event(NOW + timedelta(days=1), status="cancelled"),
        event(NOW + timedelta(days=2), attendee="someone@else.com"),
        event(NOW + timedelta(days=3)),
        event(NOW + timedelta(days=4)),
    ]}

    found = await calendar.find_next_meeting("Jane@Fund.vc")

    assert found.start == NOW + timedelta(days=3)
    kwargs = service.events().list.call_args.kwargs
    assert kwargs["q"] == "Jane@Fund.vc"
    assert kwargs["singleEvents"] is True


@pytest.mark.asyncio
async def test_last_meeting_is_most_recent_past(calendar, service):
    service.events().list().execute.return_value = {"items": [
        event(NOW - timedelta(days=10)),
        event(NOW - timedelta(days=2)),
    ]}

    found = await calendar.find_last_meeting("jane@fund.vc")

    assert found.start == NOW - timedelta(days=2)


@pytest.mark.asyncio
async def test_no_meetings(calendar, service):
    service.events().list().execute.return_value = {}
    assert await calendar.find_next_meeting("jane@fund.vc") is None
