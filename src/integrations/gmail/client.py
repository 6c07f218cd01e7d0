"""
Gmail Message Source

Reads monitored mailboxes through the Gmail API, one impersonated service
per account, and normalizes messages for the reconciliation engine.

- bootstrap: ``messages.list`` with ``q=after:<epoch>``, paginated to the
  end; the position token is the profile ``historyId`` read before listing,
  so nothing that arrives during the listing is skipped
- delta: ``history.list`` with ``historyTypes=messageAdded``; HTTP 404 means
  the start history ID has expired and is raised as CursorInvalidatedError
- fetch_range: ``messages.list`` paginated to the end

Blocking client calls run in worker threads via ``asyncio.to_thread``.
"""

import asyncio
import base64
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from googleapiclient.errors import HttpError

from src.crm_sync.base import MessageSource
from src.crm_sync.errors import CursorInvalidatedError, TransportError
from src.crm_sync.grouping import parse_address
from src.crm_sync.models import Direction, NormalizedMessage
from src.integrations.google.auth import ServiceAccountAuth
from src.integrations.google.errors import http_status, translate_google_error
from src.utils.date_utils import UTC, parse_email_date
from src.utils.logging_setup import mask_email

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def _get_header(headers: List[Dict], name: str, default: str = '') -> str:
    name = name.lower()
    return next((h['value'] for h in headers if h.get('name', '').lower() == name), default)


def _decode_body(encoded_data: str) -> str:
    if not encoded_data:
        return ''
    try:
        return base64.urlsafe_b64decode(encoded_data + '=' * (-len(encoded_data) % 4)).decode('utf-8', errors='replace')
    except (ValueError, TypeError) as e:
        logger.warning(f"Error decoding content: {str(e)}")
        return ''


def extract_plain_text(payload: Dict) -> str:
    """Depth-first search for the first text/plain part."""
    if payload.get('mimeType') == 'text/plain' and payload.get('body', {}).get('data'):
        return _decode_body(payload['body']['data'])
    for part in payload.get('parts', []) or []:
        text = extract_plain_text(part)
        if text:
            return text
    return ''


def parse_gmail_message(message: Dict, account: str) -> NormalizedMessage:
    """
    Normalize a ``format=full`` Gmail message.

    Direction is inbound unless the sender is the owning account.
    """
    payload = message.get('payload', {})
    headers = payload.get('headers', [])

    sender_name, sender_address = parse_address(_get_header(headers, 'From'))
    recipients = ", ".join(
        value for value in (_get_header(headers, 'To'), _get_header(headers, 'Cc')) if value
    )

    date_header = _get_header(headers, 'Date')
    if date_header:
        timestamp, _ = parse_email_date(date_header)
    elif message.get('internalDate'):
        timestamp = datetime.fromtimestamp(int(message['internalDate']) / 1000, UTC)
    else:
        timestamp = datetime.now(UTC)

    account = account.lower()
    direction = Direction.OUTBOUND if sender_address == account else Direction.INBOUND

    return NormalizedMessage(
        id=message['id'],
        thread_id=message.get('threadId', ''),
        sender_address=sender_address,
        sender_display_name=sender_name,
        recipient_header=recipients,
        subject=_get_header(headers, 'Subject'),
        body=extract_plain_text(payload),
        timestamp=timestamp,
        direction=direction,
        source_account=account,
    )


class GmailMessageSource(MessageSource):
    """
    MessageSource over the Gmail API with service-account impersonation.

    Attributes:
        auth: Service factory
        bootstrap_page_size: Page size used when listing the bootstrap window
    """

    def __init__(self, auth: ServiceAccountAuth, bootstrap_page_size: int = 50):
        self.auth = auth
        self.bootstrap_page_size = bootstrap_page_size

    def _service(self, account: str):
        return self.auth.gmail(account)

    async def _execute(self, request, action: str) -> Dict:
        try:
            return await asyncio.to_thread(request.execute)
        except Exception as e:
            raise translate_google_error(e, action) from e

    async def _current_position(self, account: str) -> str:
        profile = await self._execute(
            self._service(account).users().getProfile(userId='me'),
            f"getProfile for {mask_email(account)}"
        )
        return str(profile['historyId'])

    async def _list_ids(self, account: str, query: str, paginate: bool, max_results: int = PAGE_SIZE) -> List[str]:
        service = self._service(account)
        message_ids: List[str] = []
        page_token = None
        while True:
            response = await self._execute(
                service.users().messages().list(
                    userId='me', q=query, maxResults=max_results, pageToken=page_token
                ),
                f"messages.list for {mask_email(account)}"
            )
            message_ids.extend(m['id'] for m in response.get('messages', []))
            page_token = response.get('nextPageToken')
            if not paginate or not page_token:
                return message_ids

    async def _get_messages(self, account: str, message_ids: Sequence[str]) -> List[NormalizedMessage]:
        """
        Fetch full messages one by one.

        A message deleted since it was listed (404) is left out. Any other
        failure propagates so the account's cursor does not move past it.
        """
        service = self._service(account)
        messages = []
        for message_id in message_ids:
            try:
                raw = await self._execute(
                    service.users().messages().get(userId='me', id=message_id, format='full'),
                    f"messages.get {message_id}"
                )
            except TransportError as e:
                if e.status != 404:
                    raise
                logger.info(f"Message {message_id} no longer exists, skipping")
                continue
            messages.append(parse_gmail_message(raw, account))
        return messages

    async def bootstrap(self, account: str, since: datetime) -> Tuple[List[NormalizedMessage], str]:
        position = await self._current_position(account)
        query = f"after:{int(since.timestamp())}"
        message_ids = await self._list_ids(account, query, paginate=True, max_results=self.bootstrap_page_size)
        logger.info(f"Bootstrap listed {len(message_ids)} message(s) for {mask_email(account)}")
        return await self._get_messages(account, message_ids), position

    async def delta(self, account: str, cursor: str) -> Tuple[List[NormalizedMessage], str]:
        service = self._service(account)
        message_ids: List[str] = []
        seen = set()
        position = cursor
        page_token = None

        while True:
            request = service.users().history().list(
                userId='me',
                startHistoryId=cursor,
                historyTypes=['messageAdded'],
                pageToken=page_token
            )
            try:
                response = await asyncio.to_thread(request.execute)
            except HttpError as e:
                if http_status(e) == 404:
                    raise CursorInvalidatedError(
                        f"History {cursor} expired for {mask_email(account)}", status=404
                    ) from e
                raise translate_google_error(e, f"history.list for {mask_email(account)}") from e
            except Exception as e:
                raise translate_google_error(e, f"history.list for {mask_email(account)}") from e

            for history in response.get('history', []):
                for added in history.get('messagesAdded', []):
                    message_id = added['message']['id']
                    if message_id not in seen:
                        seen.add(message_id)
                        message_ids.append(message_id)

            position = str(response.get('historyId', position))
            page_token = response.get('nextPageToken')
            if not page_token:
                break

        if not message_ids:
            return [], position
        return await self._get_messages(account, message_ids), position

    async def fetch_range(self, account: str, since_days: int) -> List[NormalizedMessage]:
        since = datetime.now(UTC) - timedelta(days=since_days)
        message_ids = await self._list_ids(account, f"after:{int(since.timestamp())}", paginate=True)
        logger.info(f"Found {len(message_ids)} message(s) in the past {since_days} day(s) for {mask_email(account)}")
        return await self._get_messages(account, message_ids)

    async def fetch_thread(self, account: str, thread_id: str) -> List[NormalizedMessage]:
        thread = await self._execute(
            self._service(account).users().threads().get(userId='me', id=thread_id, format='full'),
            f"threads.get {thread_id}"
        )
        return [parse_gmail_message(message, account) for message in thread.get('messages', [])]
