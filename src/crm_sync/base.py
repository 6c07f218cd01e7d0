"""
Collaborator contracts for the reconciliation engine.

The engine depends only on these narrow interfaces. Each concrete backend
(Gmail, Google Calendar, Google Sheets, Groq) provides one implementation;
tests provide in-memory fakes.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from src.crm_sync.models import (
    CalendarEvent,
    ClassificationSignal,
    CRMRecord,
    HighlightState,
    NormalizedMessage,
)
from src.crm_sync.schema import FieldMap, discover


class MessageSource:
    """
    Pull-based access to one or more monitored mailboxes.

    ``bootstrap`` and ``delta`` are the two primitives the incremental
    ingestor builds its cursor state machine on.
    """

    async def bootstrap(self, account: str, since: datetime) -> Tuple[List[NormalizedMessage], str]:
        """
        Fetch every message newer than ``since`` and the server's current position.

        Returns:
            Tuple of (messages, position_token). Must always yield a token.
        """
        raise NotImplementedError("Must implement bootstrap")

    async def delta(self, account: str, cursor: str) -> Tuple[List[NormalizedMessage], str]:
        """
        Fetch messages added since ``cursor``.

        Raises:
            CursorInvalidatedError: upstream no longer holds history for ``cursor``
            TransportError: any other failure
        """
        raise NotImplementedError("Must implement delta")

    async def fetch_range(self, account: str, since_days: int) -> List[NormalizedMessage]:
        """Fetch all messages from the last ``since_days`` days, paginating to the end."""
        raise NotImplementedError("Must implement fetch_range")

    async def fetch_thread(self, account: str, thread_id: str) -> List[NormalizedMessage]:
        raise NotImplementedError("Must implement fetch_thread")


class CalendarSource:
    """Meeting lookups keyed by counterpart address."""

    async def find_next_meeting(self, address: str) -> Optional[CalendarEvent]:
        raise NotImplementedError("Must implement find_next_meeting")

    async def find_last_meeting(self, address: str) -> Optional[CalendarEvent]:
        raise NotImplementedError("Must implement find_last_meeting")


class Classifier:
    """AI classifier. Only the structured output contract matters to the engine."""

    async def classify(
        self,
        message: NormalizedMessage,
        existing: Optional[CRMRecord] = None
    ) -> ClassificationSignal:
        """
        Classify the latest message from a counterpart.

        Raises:
            ClassificationParseError: output was not valid structured data
        """
        raise NotImplementedError("Must implement classify")

    async def summarize_thread(self, messages: Sequence[NormalizedMessage]) -> Optional[str]:
        raise NotImplementedError("Must implement summarize_thread")


class RecordStore:
    """
    Tabular record store with a free-form header row.

    Row indices are 1-based sheet rows; row 1 is the header, so the first
    record lives at row 2.
    """

    field_map: Optional[FieldMap] = None

    async def load_schema(self) -> FieldMap:
        """Discover the field map from the current header row and keep it."""
        self.field_map = discover(await self.read_header())
        return self.field_map

    async def read_header(self) -> List[str]:
        raise NotImplementedError("Must implement read_header")

    async def read_all_records(self) -> List[CRMRecord]:
        raise NotImplementedError("Must implement read_all_records")

    async def append_record(self, fields: Dict[str, str]) -> int:
        """Append a record and return the row index assigned to it."""
        raise NotImplementedError("Must implement append_record")

    async def update_record(self, row_index: int, fields: Dict[str, str]) -> None:
        raise NotImplementedError("Must implement update_record")

    async def sort_records(self, spec: Sequence[str]) -> None:
        """Stable-sort all records by the canonical fields in ``spec``, ascending."""
        raise NotImplementedError("Must implement sort_records")

    async def recolor_record(self, row_index: int, state: HighlightState) -> None:
        raise NotImplementedError("Must implement recolor_record")

    async def clear_all_records(self) -> None:
        raise NotImplementedError("Must implement clear_all_records")
