"""Durable local storage for the current user's identity.

One JSON file holds the serialized session user. A missing or unreadable
file means "no session".
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class IdentityStorage:
    """Single-key file store for the serialized identity."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()

    def load(self) -> str | None:
        """Return the stored payload, or None when there is none."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read identity file {self.path}: {e}")
            return None

    def save(self, payload: str) -> None:
        """Replace the stored payload atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
