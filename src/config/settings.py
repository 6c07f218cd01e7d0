"""
Sync Service Configuration

Loads and validates every setting the sync service needs from the
environment (and ``.env``). Missing or malformed values surface as a single
ConfigurationError at startup so the process can exit before touching any
mailbox or sheet.
"""

import logging
from typing import Dict, List

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings

from src.crm_sync.errors import ConfigurationError
from src.crm_sync.models import MonitoredAccount

logger = logging.getLogger(__name__)


class SyncSettings(BaseSettings):
    """
    Sync service settings with validation.

    List-valued settings are plain comma-separated strings in the
    environment and are exposed parsed through properties.
    """
    # Store
    GOOGLE_SHEET_ID: str = Field(
        description="Spreadsheet ID of the CRM sheet"
    )
    GOOGLE_SHEET_NAME: str = Field(
        default="CRM",
        description="Tab holding the CRM records"
    )
    GOOGLE_SERVICE_ACCOUNT_PATH: str = Field(
        default="service-account.json",
        description="Service account key file with domain-wide delegation"
    )
    CALENDAR_ID: str = Field(
        default="primary",
        description="Calendar searched for meetings"
    )
    CALENDAR_ACCOUNT: str = Field(
        default="",
        description="Account whose calendar is read; defaults to the first monitored account"
    )

    # Classifier
    GROQ_API_KEY: SecretStr = Field(
        description="API key for Groq chat completions"
    )
    GROQ_MODEL: str = Field(
        default="llama-3.3-70b-versatile",
        description="Model used for classification and summaries"
    )
    TARGET_CATEGORY: str = Field(
        default="venture capital investor",
        description="Kind of contact the CRM tracks"
    )
    REQUIRE_TARGET_CATEGORY: bool = Field(
        default=True,
        description="Skip relevant contacts outside the target category"
    )

    # Accounts
    MONITORED_EMAILS: str = Field(
        description="Comma-separated mailboxes to monitor"
    )
    ROSTER: str = Field(
        default="",
        description="Comma-separated name:address pairs used for attribution"
    )

    # Scheduling
    SYNC_INTERVAL_MINUTES: float = Field(
        default=5,
        description="Minutes between continuous sync cycles"
    )
    BOOTSTRAP_LOOKBACK_HOURS: int = Field(
        default=24,
        description="History fetched for an account with no cursor"
    )
    BULK_ITEM_DELAY_SECONDS: float = Field(
        default=0.5,
        description="Pause between contacts during bulk processing"
    )
    CURSOR_STATE_PATH: str = Field(
        default="data/state/cursors.json",
        description="Where cursors are persisted; empty disables persistence"
    )
    GROQ_METRICS_PATH: str = Field(
        default="data/state/groq_metrics.json",
        description="Where Groq request metrics are kept; empty keeps them in memory only"
    )

    # Logging
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level"
    )
    LOG_DIR: str = Field(
        default="logs",
        description="Directory for log files"
    )

    @field_validator("MONITORED_EMAILS")
    @classmethod
    def validate_monitored_emails(cls, value: str) -> str:
        """Require at least one well-formed address."""
        addresses = [address.strip() for address in value.split(",") if address.strip()]
        if not addresses:
            raise ValueError("At least one monitored email is required")
        for address in addresses:
            if "@" not in address:
                raise ValueError(f"Invalid monitored email: {address}")
        return value

    @field_validator("ROSTER")
    @classmethod
    def validate_roster(cls, value: str) -> str:
        """Each roster entry must look like ``name:address``."""
        for entry in value.split(","):
            entry = entry.strip()
            if not entry:
                continue
            name, _, address = entry.partition(":")
            if not name.strip() or "@" not in address:
                raise ValueError(f"Invalid roster entry '{entry}', expected name:address")
        return value

    @field_validator("SYNC_INTERVAL_MINUTES", "BULK_ITEM_DELAY_SECONDS")
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Must not be negative")
        return value

    @field_validator("BOOTSTRAP_LOOKBACK_HOURS")
    @classmethod
    def validate_lookback(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Lookback must be at least one hour")
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def monitored_accounts(self) -> List[MonitoredAccount]:
        return [
            MonitoredAccount(address.strip())
            for address in self.MONITORED_EMAILS.split(",")
            if address.strip()
        ]

    @property
    def roster(self) -> Dict[str, str]:
        """Member address (lowercase) → member name."""
        members = {}
        for entry in self.ROSTER.split(","):
            entry = entry.strip()
            if not entry:
                continue
            name, _, address = entry.partition(":")
            members[address.strip().lower()] = name.strip()
        return members

    @property
    def calendar_account(self) -> str:
        return (self.CALENDAR_ACCOUNT or self.monitored_accounts[0].address).strip().lower()

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


def load_settings(**overrides) -> SyncSettings:
    """
    Load and validate settings.

    Args:
        **overrides: Explicit values taking precedence over the environment

    Returns:
        Validated SyncSettings

    Raises:
        ConfigurationError: a required setting is missing or invalid
    """
    try:
        return SyncSettings(**overrides)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
            for error in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e
