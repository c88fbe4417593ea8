"""
Where the last used postcode lives between requests (and, with a file,
between restarts). The dashboard only sees the ``PreferenceStore`` protocol.
"""

import logging
from pathlib import Path
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    def get(self) -> Optional[str]: ...

    def set(self, value: str) -> None: ...


class MemoryPreferenceStore:
    def __init__(self, value: Optional[str] = None):
        self._value = value

    def get(self) -> Optional[str]:
        return self._value

    def set(self, value: str) -> None:
        self._value = value


class FilePreferenceStore:
    """Keeps the value as the only line of a text file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def get(self) -> Optional[str]:
        try:
            value = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return value or None

    def set(self, value: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{value.strip()}\n", encoding="utf-8")
        logger.debug("Saved preference to %s", self.path)


def build_preference_store(path: Optional[str]) -> PreferenceStore:
    return FilePreferenceStore(path) if path else MemoryPreferenceStore()
