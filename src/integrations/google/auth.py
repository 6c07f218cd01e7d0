"""
Service Account Authentication for Google APIs

Builds Google API services from a service account key with domain-wide
delegation, impersonating one mailbox per service. Services are cached per
(api, subject) pair so every account gets exactly one client.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build

from src.crm_sync.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

GMAIL_SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']
CALENDAR_SCOPES = ['https://www.googleapis.com/auth/calendar.readonly']
SHEETS_SCOPES = ['https://www.googleapis.com/auth/spreadsheets']


class ServiceAccountAuth:
    """
    Factory for authenticated Google API services.

    Attributes:
        key_path: Path to the service account JSON key
    """

    def __init__(self, key_path: str):
        self.key_path = Path(key_path)
        if not self.key_path.exists():
            raise ConfigurationError(f"Service account key not found: {self.key_path}")
        self._services: Dict[Tuple[str, Optional[str]], Any] = {}

    def credentials(self, scopes: List[str], subject: Optional[str] = None):
        """
        Load credentials, impersonating ``subject`` when given.

        Raises:
            ConfigurationError: The key file is malformed
        """
        try:
            credentials = service_account.Credentials.from_service_account_file(
                str(self.key_path), scopes=scopes
            )
        except (ValueError, KeyError) as e:
            raise ConfigurationError(f"Invalid service account key {self.key_path}: {str(e)}") from e
        if subject:
            credentials = credentials.with_subject(subject)
        return credentials

    def build_service(self, api: str, version: str, scopes: List[str], subject: Optional[str] = None):
        """
        Build (or reuse) an API service.

        Raises:
            AuthenticationError: Credentials were rejected while building the service
        """
        key = (f"{api}:{version}", subject)
        if key in self._services:
            return self._services[key]

        try:
            service = build(api, version, credentials=self.credentials(scopes, subject),
                            cache_discovery=False)
        except GoogleAuthError as e:
            raise AuthenticationError(f"Could not authenticate {api} for {subject or 'service account'}: {str(e)}") from e

        self._services[key] = service
        logger.info(f"Initialized {api} {version} client" + (f" for {subject}" if subject else ""))
        return service

    def gmail(self, subject: str):
        return self.build_service('gmail', 'v1', GMAIL_SCOPES, subject)

    def calendar(self, subject: Optional[str] = None):
        return self.build_service('calendar', 'v3', CALENDAR_SCOPES, subject)

    def sheets(self):
        return self.build_service('sheets', 'v4', SHEETS_SCOPES)
