"""
Shared data models for CRM synchronization.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from src.crm_sync.schema import FieldMap

# Sentinel statuses used by the merge step
STATUS_SCHEDULED = "Scheduled"
STATUS_COMPLETED = "Completed"
STATUS_FOLLOW_UP = "Follow-up"
STATUS_NEW_CONTACT = "New Contact"

# Attribution sentinel when zero or several roster members took part
ALL_MEMBERS = "All"


class Direction(Enum):
    """Message direction relative to the monitored account that owns it."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SkipReason(Enum):
    """Why a counterpart produced no write."""
    NOT_RELEVANT = "not_relevant"
    NOT_TARGET_CATEGORY = "not_target_category"
    ANALYSIS_FAILED = "analysis_failed"


class MergeAction(Enum):
    SKIP = "skip"
    UPDATE = "update"
    CREATE = "create"


class HighlightState(Enum):
    """Row highlight states with the background colour the store paints."""
    NEEDS_RESPONSE = "needs_response"
    UPCOMING = "upcoming"
    DEFAULT = "default"

    @property
    def background(self) -> Dict[str, float]:
        return {
            HighlightState.NEEDS_RESPONSE: {"red": 1.0, "green": 0.95, "blue": 0.8},
            HighlightState.UPCOMING: {"red": 0.85, "green": 0.95, "blue": 0.85},
            HighlightState.DEFAULT: {"red": 1.0, "green": 1.0, "blue": 1.0},
        }[self]


@dataclass
class MonitoredAccount:
    """An address under active surveillance. Owns one ingestion cursor."""
    address: str

    def __post_init__(self):
        self.address = self.address.strip().lower()


@dataclass(frozen=True)
class NormalizedMessage:
    """A single message as produced by ingestion. Immutable."""
    id: str
    thread_id: str
    sender_address: str
    sender_display_name: str
    recipient_header: str
    subject: str
    body: str
    timestamp: datetime
    direction: Direction
    source_account: str


@dataclass
class ClassificationSignal:
    """
    Structured, advisory classifier output for one counterpart.

    Meeting facts here are hints only; calendar data overrides them.
    """
    relevant: bool
    is_target_category: bool
    display_name: str = ""
    organization: str = ""
    meeting_status: str = ""
    meeting_date: str = ""
    note_text: str = ""


@dataclass
class CalendarEvent:
    start: datetime
    title: str = ""
    join_link: str = ""
    detail_link: str = ""
    needs_response: bool = False
    cancelled: bool = False


@dataclass
class CalendarSignal:
    """Authoritative meeting facts for a counterpart, when present."""
    next_meeting: Optional[CalendarEvent] = None
    last_meeting: Optional[CalendarEvent] = None


@dataclass
class MeetingFacts:
    """Meeting fields derived from classifier hints and calendar truth."""
    status: str = ""
    meeting_date: str = ""
    meeting_time: str = ""
    join_link: str = ""
    detail_link: str = ""
    needs_response: bool = False


@dataclass
class CRMRecord:
    """
    One row of the store.

    Attributes mirror the canonical fields of the schema. ``raw`` keeps the
    row exactly as read so unmapped columns survive every write.
    """
    row_index: int
    name: str = ""
    email: str = ""
    organization: str = ""
    location: str = ""
    about: str = ""
    meeting_status: str = ""
    meeting_date: str = ""
    meeting_time: str = ""
    last_contact_date: str = ""
    attributed_member: str = ""
    calendar_link: str = ""
    meet_link: str = ""
    needs_response: str = ""
    notes: str = ""
    raw: List[str] = field(default_factory=list)

    def get(self, field_name: str) -> str:
        return getattr(self, field_name, "") or ""


@dataclass
class MergeResult:
    """Write-set computed for one counterpart."""
    action: MergeAction
    reason: Optional[SkipReason] = None
    row_index: Optional[int] = None
    fields: Dict[str, str] = field(default_factory=dict)
    label: str = ""

    @classmethod
    def skip(cls, reason: SkipReason, label: str = "") -> "MergeResult":
        return cls(action=MergeAction.SKIP, reason=reason, label=label)


@dataclass
class CycleStats:
    """Per-cycle counters reported in the cycle summary."""
    processed: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    @property
    def has_writes(self) -> bool:
        return bool(self.added or self.updated)

    def record(self, result: MergeResult) -> None:
        self.processed += 1
        if result.action == MergeAction.CREATE:
            self.added += 1
        elif result.action == MergeAction.UPDATE:
            self.updated += 1
        else:
            self.skipped += 1

    def as_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "added": self.added,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class SyncContext:
    """
    Explicit engine state passed between calls.

    Holds the per-account cursor map and the field map discovered for the
    store, instead of process-wide globals.
    """
    accounts: List[MonitoredAccount] = field(default_factory=list)
    cursors: Dict[str, str] = field(default_factory=dict)
    field_map: Optional["FieldMap"] = None

    @property
    def monitored_addresses(self) -> List[str]:
        return [account.address for account in self.accounts]
