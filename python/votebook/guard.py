"""
Per-device vote guard.

The guard is a single boolean flag kept on the voting device, never synced
to the store. It only stops a device that still remembers it voted; clearing
the flag store or voting from another device gets around it.
"""

from typing import Dict, Optional
from abc import ABC, abstractmethod
from pathlib import Path
import json
import logging
import os
import threading

logger = logging.getLogger(__name__)


class FlagStore(ABC):
    """Get/set access to named boolean flags."""

    @abstractmethod
    def get(self, name: str) -> bool:
        ...

    @abstractmethod
    def set(self, name: str, value: bool) -> None:
        ...


class MemoryFlagStore(FlagStore):
    """Flags that live as long as the process."""

    def __init__(self, initial: Optional[Dict[str, bool]] = None) -> None:
        self._flags: Dict[str, bool] = dict(initial or {})

    def get(self, name: str) -> bool:
        return self._flags.get(name, False)

    def set(self, name: str, value: bool) -> None:
        self._flags[name] = bool(value)

    def __repr__(self) -> str:
        return f"MemoryFlagStore({len(self._flags)} flags)"


class JsonFlagStore(FlagStore):
    """
    Flags persisted to a JSON file.

    The whole mapping is rewritten on every ``set`` via a temporary file and
    ``os.replace``, so a crash leaves either the old or the new file. A
    failed write raises ``OSError`` and leaves the flags unchanged.
    """

    def __init__(self, path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._flags = self._load()

    def _load(self) -> Dict[str, bool]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable flag file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring flag file %s: expected an object", self.path)
            return {}
        return {str(k): bool(v) for k, v in data.items()}

    def get(self, name: str) -> bool:
        return self._flags.get(name, False)

    def set(self, name: str, value: bool) -> None:
        with self._lock:
            flags = dict(self._flags)
            flags[name] = bool(value)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(flags, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
            # Only visible once it is on disk
            self._flags = flags

    def __repr__(self) -> str:
        return f"JsonFlagStore({str(self.path)!r})"


class LocalVoteGuard:
    """
    Remembers whether this device already voted.

    Args:
        flags: Where the flag is kept.
        device_id: Scopes the flag when several devices share one store.
    """

    FLAG = "voted"

    def __init__(self, flags: FlagStore, device_id: Optional[str] = None) -> None:
        self._flags = flags
        self.device_id = device_id
        self.name = f"{device_id}:{self.FLAG}" if device_id else self.FLAG

    def is_set(self) -> bool:
        return self._flags.get(self.name)

    def mark(self) -> None:
        self._flags.set(self.name, True)
        logger.debug("Vote guard %s set", self.name)

    def __repr__(self) -> str:
        return f"LocalVoteGuard({self.name!r}, set={self.is_set()})"
