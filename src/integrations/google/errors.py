"""Translation of Google client exceptions into the sync error taxonomy."""

from google.auth.exceptions import GoogleAuthError, RefreshError
from googleapiclient.errors import HttpError

from src.crm_sync.errors import AuthenticationError, CrmSyncError, TransportError


def http_status(error: HttpError) -> int:
    return getattr(error.resp, 'status', None) or getattr(error, 'status_code', 0) or 0


def translate_google_error(error: Exception, action: str) -> CrmSyncError:
    """
    Map an exception raised by a Google client call to a CrmSyncError.

    401/403 responses and token refresh failures become AuthenticationError;
    everything else becomes TransportError carrying the HTTP status if any.
    """
    if isinstance(error, CrmSyncError):
        return error
    if isinstance(error, (RefreshError, GoogleAuthError)):
        return AuthenticationError(f"{action}: {str(error)}")
    if isinstance(error, HttpError):
        status = int(http_status(error))
        if status in (401, 403):
            return AuthenticationError(f"{action}: HTTP {status} {str(error)}")
        return TransportError(f"{action}: HTTP {status} {str(error)}", status=status)
    return TransportError(f"{action}: {str(error)}")
