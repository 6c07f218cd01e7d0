"""
Encoding-Safe Logging Setup

Configures console and file logging for the sync service. Log lines may
carry contact names and note text in any script, so the formatter falls
back to ASCII substitutes on consoles with limited encoding support.
"""

import logging
import os
import platform
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty third-party loggers kept at WARNING unless debugging
NOISY_LOGGERS = ("googleapiclient.discovery_cache", "googleapiclient.discovery", "httpx", "groq")


class SafeFormatter(logging.Formatter):
    """
    Log formatter with encoding-safe character substitution.

    Replaces common symbols with ASCII alternatives when the console is
    known to choke on them (standard Windows console, or when
    FORCE_ASCII_LOGGING is set).
    """

    SYMBOL_MAP = {
        "✓": "OK",     # check mark
        "→": "->",     # right arrow
        "←": "<-",     # left arrow
        "•": "*",      # bullet
        "—": "-",      # em dash
        "…": "...",    # ellipsis
    }

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None):
        super().__init__(fmt, datefmt)
        self.is_windows = platform.system() == "Windows"
        self.force_ascii = os.environ.get("FORCE_ASCII_LOGGING", "0").lower() in ("1", "true", "yes")
        self.limited_encoding = self._has_limited_encoding()

    def _has_limited_encoding(self) -> bool:
        if self.force_ascii:
            return True
        if self.is_windows:
            # Windows Terminal and an explicit UTF-8 IO encoding both cope fine
            if "WT_SESSION" in os.environ:
                return False
            if os.environ.get("PYTHONIOENCODING", "").lower() == "utf-8":
                return False
            return True
        return False

    def format(self, record: logging.LogRecord) -> str:
        formatted_message = super().format(record)
        if self.limited_encoding:
            for unicode_char, ascii_char in self.SYMBOL_MAP.items():
                formatted_message = formatted_message.replace(unicode_char, ascii_char)
        return formatted_message


def configure_logging(level: str = "INFO", log_dir: str = "logs",
                      log_file: str = "crm_sync.log") -> None:
    """
    Configure root logging with a console handler and a file handler.

    Args:
        level: Level name for the root logger (DEBUG, INFO, ...)
        log_dir: Directory for the log file; created when missing
        log_file: Log file name inside ``log_dir``
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    formatter = SafeFormatter(LOG_FORMAT)

    handlers = [logging.StreamHandler()]
    try:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / log_file, encoding='utf-8'))
    except OSError as e:
        logging.getLogger(__name__).warning(f"Failed to create log file handler: {str(e)}")

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    if numeric_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def mask_email(email: str) -> str:
    """
    Mask an email address for privacy in logs.

    Keeps the first and last character of the local part and the first
    character of the domain: ``jane.doe@example.com`` → ``j******e@e******.com``.
    """
    if not email or '@' not in email:
        return email

    username, domain = email.split('@', 1)
    if len(username) <= 2:
        masked_username = '*' * len(username)
    else:
        masked_username = username[0] + '*' * (len(username) - 2) + username[-1]

    domain_parts = domain.split('.')
    if not domain_parts[0]:
        return f"{masked_username}@{domain}"
    masked_domain = domain_parts[0][0] + '*' * (len(domain_parts[0]) - 1)
    if len(domain_parts) == 1:
        return f"{masked_username}@{masked_domain}"
    return f"{masked_username}@{masked_domain}.{'.'.join(domain_parts[1:])}"
