"""
CRM Reconciliation Cycle

Drives one synchronization cycle end to end:

1. Poll every monitored account through the incremental ingestor
2. Group the new messages by counterpart
3. For each counterpart, sequentially: classify the latest message, look up
   calendar facts, resolve the existing record, merge, and apply the write
4. Sort and recolor the store once if anything was written

Failures are scoped: a failing account is skipped during polling and a
failing counterpart is counted and skipped, the rest of the batch goes on.
The same per-counterpart path serves the bulk backfill command.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from src.crm_sync.base import CalendarSource, Classifier, RecordStore
from src.crm_sync.errors import ClassificationParseError, CrmSyncError
from src.crm_sync.grouping import group_by_counterpart, sort_oldest_first
from src.crm_sync.ingestion import IncrementalIngestor
from src.crm_sync.matching import resolve
from src.crm_sync.merge import counterpart_display_name, merge_counterpart
from src.crm_sync.models import (
    CalendarSignal,
    ClassificationSignal,
    CRMRecord,
    CycleStats,
    MergeAction,
    MergeResult,
    NormalizedMessage,
    SyncContext,
)
from src.crm_sync.presentation import sort_and_highlight
from src.utils.date_utils import UTC
from src.utils.logging_setup import mask_email

logger = logging.getLogger(__name__)


class CrmReconciler:
    """
    Reconciliation engine coordinating ingestion, analysis and the store.

    Attributes:
        ingestor: Cursor-based message ingestion
        calendar: Calendar collaborator, authoritative for meeting facts
        classifier: AI classifier producing advisory signals
        store: Record store the CRM lives in
        roster: Member address (lowercase) → member name, for attribution
        require_target_category: Skip counterparts outside the target category
        item_delay: Pause between counterparts during bulk processing
    """

    def __init__(self,
                 ingestor: IncrementalIngestor,
                 calendar: CalendarSource,
                 classifier: Classifier,
                 store: RecordStore,
                 roster: Optional[Dict[str, str]] = None,
                 require_target_category: bool = True,
                 item_delay: float = 0.5,
                 clock: Optional[Callable[[], datetime]] = None):
        self.ingestor = ingestor
        self.calendar = calendar
        self.classifier = classifier
        self.store = store
        self.roster = {address.lower(): name for address, name in (roster or {}).items()}
        self.require_target_category = require_target_category
        self.item_delay = item_delay
        self.clock = clock or (lambda: datetime.now(UTC))

    async def initialize(self, context: SyncContext) -> SyncContext:
        """
        Discover the store schema and restore persisted cursors.

        Raises:
            CrmSyncError: the store could not be read. Fatal at startup.
        """
        context.field_map = await self.store.load_schema()
        if not context.field_map.has("email"):
            logger.warning("Store has no email column; matching falls back to names only")
        self.ingestor.restore(context)
        logger.info(
            f"Reconciler initialized for {len(context.accounts)} account(s), "
            f"{len(context.cursors)} cursor(s) restored"
        )
        return context

    async def _classify(self, message: NormalizedMessage,
                        existing: Optional[CRMRecord]) -> Optional[ClassificationSignal]:
        try:
            return await self.classifier.classify(message, existing)
        except ClassificationParseError as e:
            logger.warning(f"Unparseable classification for message {message.id}: {str(e)}")
            return None

    async def _summarize(self, messages: Sequence[NormalizedMessage]) -> Optional[str]:
        if len(messages) < 2:
            return None
        try:
            return await self.classifier.summarize_thread(messages)
        except Exception as e:
            logger.warning(f"Thread summary failed, using the latest note instead: {str(e)}")
            return None

    async def _lookup_calendar(self, counterpart: str) -> Optional[CalendarSignal]:
        try:
            next_meeting = await self.calendar.find_next_meeting(counterpart)
            last_meeting = await self.calendar.find_last_meeting(counterpart)
            return CalendarSignal(next_meeting=next_meeting, last_meeting=last_meeting)
        except Exception as e:
            logger.warning(f"Calendar lookup failed for {mask_email(counterpart)}: {str(e)}")
            return None

    async def _apply(self, result: MergeResult, records: List[CRMRecord],
                     existing: Optional[CRMRecord]) -> None:
        """Write the merge result and mirror it into the in-cycle record list."""
        field_map = self.store.field_map

        if result.action == MergeAction.CREATE:
            row_index = await self.store.append_record(result.fields)
            result.row_index = row_index
            if field_map is not None:
                records.append(field_map.to_record(field_map.to_row(result.fields), row_index))
            logger.info(f"Added new contact: {result.label} (row {row_index})")

        elif result.action == MergeAction.UPDATE:
            await self.store.update_record(result.row_index, result.fields)
            if existing is not None:
                for field_name, value in result.fields.items():
                    if field_name == "email":
                        value = value.lower()
                    setattr(existing, field_name, value)
            logger.info(f"Updated contact: {result.label} (row {result.row_index})")

    async def process_counterpart(self,
                                  counterpart: str,
                                  messages: Sequence[NormalizedMessage],
                                  records: List[CRMRecord],
                                  context: SyncContext) -> MergeResult:
        """
        Reconcile one counterpart's messages against the store.

        ``records`` is the cycle's view of the store and is kept in step with
        every write, so a counterpart seen twice in one batch resolves to the
        row created for it the first time.

        Args:
            counterpart: External address (lowercase)
            messages: Messages with this counterpart from the current batch
            records: Current records, mutated in place on Create and Update
            context: Engine context

        Returns:
            The applied MergeResult
        """
        ordered = sort_oldest_first(messages)
        latest = ordered[-1]
        display_name = counterpart_display_name(ordered, counterpart)

        existing = resolve(counterpart, display_name, records, context.field_map)
        signal = await self._classify(latest, existing)

        # The classifier may know the person's real name when the header did not
        if existing is None and signal is not None and signal.display_name:
            existing = resolve(counterpart, signal.display_name, records, context.field_map)
            if existing is not None:
                logger.info(f"Matched {mask_email(counterpart)} to {existing.name} by classified name")

        calendar = None
        thread_summary = None
        if signal is not None and signal.relevant:
            thread_summary = await self._summarize(ordered)
            calendar = await self._lookup_calendar(counterpart)

        now = self.clock()
        result = merge_counterpart(
            signal,
            calendar,
            existing,
            counterpart=counterpart,
            messages=ordered,
            roster=self.roster,
            today=now.date(),
            now=now,
            require_target_category=self.require_target_category,
            thread_summary=thread_summary,
        )
        await self._apply(result, records, existing)
        return result

    async def reconcile_messages(self,
                                 messages: Sequence[NormalizedMessage],
                                 context: SyncContext,
                                 item_delay: float = 0.0,
                                 stats: Optional[CycleStats] = None) -> CycleStats:
        """
        Group, reconcile and present one batch of messages.

        Returns:
            CycleStats for the batch
        """
        stats = stats or CycleStats()
        groups = group_by_counterpart(messages, context.monitored_addresses)
        if not groups:
            logger.info("No external counterparts in this batch")
            return stats

        logger.info(f"Processing {len(groups)} counterpart(s) from {len(messages)} message(s)")
        records = await self.store.read_all_records()

        for position, (counterpart, counterpart_messages) in enumerate(groups.items()):
            try:
                result = await self.process_counterpart(counterpart, counterpart_messages, records, context)
                stats.record(result)
            except Exception as e:
                stats.errors += 1
                logger.error(f"Error processing {mask_email(counterpart)}: {str(e)}", exc_info=True)

            if item_delay and position < len(groups) - 1:
                await asyncio.sleep(item_delay)

        if stats.has_writes:
            try:
                await sort_and_highlight(self.store, self.clock().date())
            except Exception as e:
                logger.error(f"Sort and highlight pass failed: {str(e)}", exc_info=True)

        return stats

    async def run_cycle(self, context: SyncContext) -> CycleStats:
        """
        Run one incremental sync cycle over all monitored accounts.

        Cursors are persisted only once the batch has been reconciled. If
        reconciliation raises, the in-memory cursors are rolled back to where
        the cycle started so the batch is fetched again next time.
        """
        started = datetime.now()
        previous_cursors = dict(context.cursors)
        messages, failed_accounts = await self.ingestor.poll_all(context)
        stats = CycleStats(errors=len(failed_accounts))

        if messages:
            try:
                stats = await self.reconcile_messages(messages, context, stats=stats)
            except Exception as e:
                context.cursors.clear()
                context.cursors.update(previous_cursors)
                logger.error(f"Reconciliation failed, cursors left at their previous positions: {str(e)}")
                raise
        else:
            logger.info("No new messages")

        self.ingestor.commit(context)

        elapsed = (datetime.now() - started).total_seconds()
        logger.info(
            f"Cycle complete in {elapsed:.1f}s: {stats.processed} processed, "
            f"{stats.added} added, {stats.updated} updated, "
            f"{stats.skipped} skipped, {stats.errors} error(s)"
        )
        return stats

    async def run_backfill(self, context: SyncContext, days: int, clear: bool = False) -> CycleStats:
        """
        Reprocess the last ``days`` days of mail, ignoring cursors.

        Args:
            context: Engine context
            days: Size of the historical window
            clear: Remove every record (keeping the header) before reprocessing
        """
        if days < 1:
            raise CrmSyncError("Backfill window must be at least one day")

        if clear:
            logger.warning("Clearing all records before backfill")
            await self.store.clear_all_records()

        messages = await self.ingestor.fetch_range_all(context, days)
        stats = await self.reconcile_messages(messages, context, item_delay=self.item_delay)
        logger.info(
            f"Backfill of {days} day(s) complete: {stats.added} added, "
            f"{stats.updated} updated, {stats.skipped} skipped, {stats.errors} error(s)"
        )
        return stats
