"""
Tests for Gmail message normalization and the history-based delta.
"""

import base64
from datetime import datetime
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from src.crm_sync.errors import AuthenticationError, CursorInvalidatedError, TransportError
from src.crm_sync.models import Direction
from src.integrations.gmail.client import GmailMessageSource, extract_plain_text, parse_gmail_message
from src.utils.date_utils import UTC
from tests.fakes import ME


def encode(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(message_id, sender="Jane Doe <Jane@Fund.vc>", to=ME, cc="", body="Hello there",
                  date="Fri, 10 Jan 2025 09:00:00 +0000", internal_date="1736499600000"):
    headers = [
        {"name": "From", "value": sender},
        {"name": "To", "value": to},
        {"name": "Subject", "value": "Intro"},
    ]
    if cc:
        headers.append({"name": "Cc", "value": cc})
    if date:
        headers.append({"name": "Date", "value": date})
    return {
        "id": message_id,
        "threadId": f"t-{message_id}",
        "internalDate": internal_date,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": headers,
            "parts": [
                {"mimeType": "text/html", "body": {"data": encode("<p>html</p>")}},
                {"mimeType": "text/plain", "body": {"data": encode(body)}},
            ],
        },
    }


def http_error(status):
    return HttpError(httplib2.Response({"status": str(status)}), b"error")


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def source(service):
    auth = MagicMock()
    auth.gmail.return_value = service
    return GmailMessageSource(auth)


class TestParseGmailMessage:

    def test_inbound_message(self):
        message = parse_gmail_message(gmail_message("m1", cc="partner@firm.com"), "Me@Firm.com")

        assert message.id == "m1"
        assert message.thread_id == "t-m1"
        assert message.sender_address == "jane@fund.vc"
        assert message.sender_display_name == "Jane Doe"
        assert message.recipient_header == f"{ME}, partner@firm.com"
        assert message.body == "Hello there"
        assert message.timestamp == datetime(2025, 1, 10, 9, 0, tzinfo=UTC)
        assert message.direction == Direction.INBOUND
        assert message.source_account == ME

    def test_outbound_message(self):
        message = parse_gmail_message(gmail_message("m1", sender=f"Me <{ME}>", to="jane@fund.vc"), ME)
        assert message.direction == Direction.OUTBOUND

    def test_internal_date_fallback(self):
        message = parse_gmail_message(gmail_message("m1", date=""), ME)
        assert message.timestamp == datetime(2025, 1, 10, 9, 0, tzinfo=UTC)

    def test_nested_plain_text_part(self):
        payload = {
            "mimeType": "multipart/mixed",
            "parts": [{"mimeType": "multipart/alternative", "parts": [
                {"mimeType": "text/plain", "body": {"data": encode("nested body")}},
            ]}],
        }
        assert extract_plain_text(payload) == "nested body"


class TestGmailMessageSource:

    @pytest.mark.asyncio
    async def test_bootstrap_returns_profile_position(self, source, service):
        service.users().getProfile().execute.return_value = {"historyId": 100}
        service.users().messages().list().execute.return_value = {"messages": [{"id": "m1"}]}
        service.users().messages().get().execute.return_value = gmail_message("m1")

        messages, position = await source.bootstrap(ME, datetime(2025, 1, 9, tzinfo=UTC))

        assert [m.id for m in messages] == ["m1"]
        assert position == "100"
        list_kwargs = service.users().messages().list.call_args.kwargs
        assert list_kwargs["q"] == f"after:{int(datetime(2025, 1, 9, tzinfo=UTC).timestamp())}"
        assert list_kwargs["maxResults"] == 50

    @pytest.mark.asyncio
    async def test_delta_pages_through_history(self, source, service):
        service.users().history().list().execute.side_effect = [
            {
                "history": [{"messagesAdded": [{"message": {"id": "a"}}, {"message": {"id": "a"}}]}],
                "historyId": "120",
                "nextPageToken": "p2",
            },
            {"history": [{"messagesAdded": [{"message": {"id": "b"}}]}], "historyId": "125"},
        ]
        service.users().messages().get().execute.side_effect = [gmail_message("a"), gmail_message("b")]

        messages, position = await source.delta(ME, "100")

        assert [m.id for m in messages] == ["a", "b"]
        assert position == "125"

    @pytest.mark.asyncio
    async def test_delta_without_changes_keeps_latest_position(self, source, service):
        service.users().history().list().execute.return_value = {"historyId": "130"}

        messages, position = await source.delta(ME, "100")

        assert messages == []
        assert position == "130"

    @pytest.mark.asyncio
    async def test_expired_history_invalidates_cursor(self, source, service):
        service.users().history().list().execute.side_effect = http_error(404)

        with pytest.raises(CursorInvalidatedError):
            await source.delta(ME, "1")

    @pytest.mark.asyncio
    async def test_server_error_is_transport_error(self, source, service):
        service.users().history().list().execute.side_effect = http_error(500)

        with pytest.raises(TransportError) as excinfo:
            await source.delta(ME, "1")
        assert not isinstance(excinfo.value, CursorInvalidatedError)
        assert excinfo.value.status == 500

    @pytest.mark.asyncio
    async def test_forbidden_is_authentication_error(self, source, service):
        service.users().getProfile().execute.side_effect = http_error(403)

        with pytest.raises(AuthenticationError):
            await source.bootstrap(ME, datetime(2025, 1, 9, tzinfo=UTC))

    @pytest.mark.asyncio
    async def test_deleted_message_is_skipped(self, source, service):
        service.users().messages().list().execute.return_value = {"messages": [{"id": "gone"}, {"id": "m2"}]}
        service.users().messages().get().execute.side_effect = [http_error(404), gmail_message("m2")]

        messages = await source.fetch_range(ME, 7)

        assert [m.id for m in messages] == ["m2"]

    @pytest.mark.asyncio
    async def test_bootstrap_pages_through_the_whole_window(self, source, service):
        service.users().getProfile().execute.return_value = {"historyId": 100}
        service.users().messages().list().execute.side_effect = [
            {"messages": [{"id": "m1"}, {"id": "m2"}], "nextPageToken": "p2"},
            {"messages": [{"id": "m3"}]},
        ]
        service.users().messages().get().execute.side_effect = [
            gmail_message("m1"), gmail_message("m2"), gmail_message("m3"),
        ]

        messages, position = await source.bootstrap(ME, datetime(2025, 1, 9, tzinfo=UTC))

        assert [m.id for m in messages] == ["m1", "m2", "m3"]
        assert position == "100"
        assert service.users().messages().list.call_args.kwargs["pageToken"] == "p2"

    @pytest.mark.asyncio
    async def test_message_server_error_fails_the_delta(self, source, service):
        service.users().history().list().execute.return_value = {
            "history": [{"messagesAdded": [{"message": {"id": "a"}}, {"message": {"id": "b"}}]}],
            "historyId": "120",
        }
        service.users().messages().get().execute.side_effect = [http_error(500), gmail_message("b")]

        with pytest.raises(TransportError) as excinfo:
            await source.delta(ME, "100")
        assert excinfo.value.status == 500

    @pytest.mark.asyncio
    async def test_message_auth_error_fails_the_range_fetch(self, source, service):
        service.users().messages().list().execute.return_value = {"messages": [{"id": "m1"}]}
        service.users().messages().get().execute.side_effect = http_error(401)

        with pytest.raises(AuthenticationError):
            await source.fetch_range(ME, 7)
