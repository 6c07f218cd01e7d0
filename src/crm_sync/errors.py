"""
Error taxonomy for the CRM synchronization engine.

Only configuration and initialization failures are fatal. Every other error
is scoped to one unit of work (one account poll, one counterpart) and is
caught at that unit's boundary, logged, and counted.
"""


class CrmSyncError(Exception):
    """Base class for all engine errors."""
    pass


class ConfigurationError(CrmSyncError):
    """Missing or invalid settings. Fatal, raised at init time only."""
    pass


class AuthenticationError(CrmSyncError):
    """Credentials rejected or could not be refreshed by a collaborator."""
    pass


class TransportError(CrmSyncError):
    """A collaborator call failed at the network or API level."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class CursorInvalidatedError(TransportError):
    """The upstream discarded the history a stored cursor points into."""
    pass


class ClassificationParseError(CrmSyncError):
    """Classifier output could not be parsed as structured data."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output
