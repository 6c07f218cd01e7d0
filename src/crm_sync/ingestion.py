"""
Cursor-based incremental ingestion.

Per monitored account, the ingestor keeps a cursor marking the last seen
position in the message stream:

- no cursor: bootstrap from a fixed lookback window and store the server's
  current position
- cursor: fetch the delta since it and advance to the new position
- cursor invalidated upstream: forget it and bootstrap once

The in-memory cursor only advances after a successful fetch. Persisting it is
a separate step, ``commit``, which the reconciler runs once the fetched batch
has been reconciled, so a crash or failure before that point replays the
messages on the next run instead of losing them. Delivery is at-least-once
and downstream reconciliation is idempotent.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from src.crm_sync.base import MessageSource
from src.crm_sync.errors import CursorInvalidatedError
from src.crm_sync.models import NormalizedMessage, SyncContext
from src.storage.cursor_store import CursorStore
from src.utils.date_utils import UTC

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_HOURS = 24


class IncrementalIngestor:
    """
    Drives the per-account cursor state machine over a MessageSource.

    Attributes:
        source: Message source collaborator
        lookback: Bootstrap window used when an account has no cursor
        cursor_store: Optional durable cursor persistence
    """

    def __init__(self,
                 source: MessageSource,
                 lookback_hours: int = DEFAULT_LOOKBACK_HOURS,
                 cursor_store: Optional[CursorStore] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.source = source
        self.lookback = timedelta(hours=lookback_hours)
        self.cursor_store = cursor_store
        self.clock = clock or (lambda: datetime.now(UTC))

    def restore(self, context: SyncContext) -> SyncContext:
        """Load persisted cursors for the context's accounts."""
        if self.cursor_store is None:
            return context
        stored = self.cursor_store.load()
        for address in context.monitored_addresses:
            if address in stored and address not in context.cursors:
                context.cursors[address] = stored[address]
        return context

    def _advance(self, account: str, position: str, context: SyncContext) -> None:
        context.cursors[account] = position

    def commit(self, context: SyncContext) -> None:
        """
        Persist the context's cursors.

        Call only after the messages fetched up to these cursors have been
        reconciled. A write failure is logged and the cursors stay in memory.
        """
        if self.cursor_store is None:
            return
        try:
            self.cursor_store.save(context.cursors)
        except OSError as e:
            logger.warning(f"Could not persist cursors: {e}")

    async def _bootstrap(self, account: str, context: SyncContext) -> Tuple[List[NormalizedMessage], str]:
        since = self.clock() - self.lookback
        logger.info(f"Bootstrapping {account} from {since.isoformat()}")
        messages, position = await self.source.bootstrap(account, since)
        self._advance(account, position, context)
        return messages, position

    async def poll(self, account: str, context: SyncContext) -> Tuple[List[NormalizedMessage], str]:
        """
        Fetch new messages for one account and advance its in-memory cursor.

        Args:
            account: Monitored address
            context: Engine context holding the cursor map (mutated in place)

        Returns:
            Tuple of (messages, cursor after the fetch)

        Raises:
            TransportError, AuthenticationError: propagated for this account only
        """
        cursor = context.cursors.get(account)
        if not cursor:
            return await self._bootstrap(account, context)

        try:
            messages, position = await self.source.delta(account, cursor)
        except CursorInvalidatedError:
            logger.warning(f"Cursor for {account} was invalidated upstream, re-bootstrapping")
            context.cursors.pop(account, None)
            return await self._bootstrap(account, context)

        self._advance(account, position, context)
        return messages, position

    async def poll_all(self, context: SyncContext) -> Tuple[List[NormalizedMessage], List[str]]:
        """
        Poll every monitored account sequentially.

        A failure on one account is logged and does not stop the others.

        Returns:
            Tuple of (all messages in account order, accounts that failed)
        """
        all_messages: List[NormalizedMessage] = []
        failed: List[str] = []

        for account in context.monitored_addresses:
            try:
                messages, _ = await self.poll(account, context)
                logger.info(f"Found {len(messages)} new message(s) for {account}")
                all_messages.extend(messages)
            except Exception as e:
                logger.error(f"Error fetching messages for {account}: {str(e)}")
                failed.append(account)

        return all_messages, failed

    async def fetch_range(self, account: str, since_days: int) -> List[NormalizedMessage]:
        """Bulk historical fetch. Ignores and never touches the cursor."""
        return await self.source.fetch_range(account, since_days)

    async def fetch_range_all(self, context: SyncContext, since_days: int) -> List[NormalizedMessage]:
        all_messages: List[NormalizedMessage] = []
        for account in context.monitored_addresses:
            try:
                messages = await self.fetch_range(account, since_days)
                logger.info(f"Fetched {len(messages)} message(s) from the past {since_days} day(s) for {account}")
                all_messages.extend(messages)
            except Exception as e:
                logger.error(f"Error fetching past messages for {account}: {str(e)}")
        return all_messages
