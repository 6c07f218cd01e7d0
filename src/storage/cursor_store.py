"""
Durable storage for per-account ingestion cursors.

Cursors are kept in a small JSON file so a restart resumes from the last
advanced position instead of replaying the bootstrap lookback window.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)


class CursorStore:
    """
    JSON-file cursor persistence.

    File layout::

        {"cursors": {"me@firm.com": "123456"}, "updated_at": "..."}
    """

    def __init__(self, path: str = "data/state/cursors.json"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def load(self) -> Dict[str, str]:
        """Load stored cursors. A missing or corrupt file yields no cursors."""
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            cursors = {str(k).lower(): str(v) for k, v in data.get("cursors", {}).items() if v}
            logger.info(f"Loaded {len(cursors)} stored cursor(s) from {self.path}")
            return cursors
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable cursor file {self.path}: {e}")
            return {}

    def save(self, cursors: Dict[str, str]) -> None:
        """Write all cursors atomically."""
        payload = {
            "cursors": dict(cursors),
            "updated_at": datetime.now().isoformat()
        }
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)
