"""
Inbox-to-CRM reconciliation engine.

Turns messages from monitored inboxes, calendar events and classifier
signals into deduplicated, field-merged updates to a spreadsheet CRM.
"""

from .errors import (
    AuthenticationError,
    ClassificationParseError,
    ConfigurationError,
    CrmSyncError,
    CursorInvalidatedError,
    TransportError,
)
from .ingestion import IncrementalIngestor
from .models import CycleStats, MonitoredAccount, NormalizedMessage, SyncContext
from .reconciler import CrmReconciler
from .scheduler import ContinuousSync

__all__ = [
    'AuthenticationError',
    'ClassificationParseError',
    'ConfigurationError',
    'CrmSyncError',
    'CursorInvalidatedError',
    'TransportError',
    'IncrementalIngestor',
    'CycleStats',
    'MonitoredAccount',
    'NormalizedMessage',
    'SyncContext',
    'CrmReconciler',
    'ContinuousSync',
]
