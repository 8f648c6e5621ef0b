import logging
import threading
from typing import Optional

from .constants import STORAGE_KEY
from .logging import log_event
from .models import SessionState
from .state_snapshot import SnapshotError, dump_snapshot, load_snapshot
from .storage_interface import StateStore


class MemoryStateStore(StateStore):
    """In-memory snapshot store for testing and throwaway runs.

    Holds the serialized document rather than the object, so callers never
    share mutable state with the store and legacy documents can be seeded.
    """

    def __init__(self, storage_key: str = STORAGE_KEY):
        self.storage_key = storage_key
        self._documents: dict[str, str] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    def load(self) -> Optional[SessionState]:
        with self._lock:
            raw = self._documents.get(self.storage_key)
        if raw is None:
            return None
        try:
            return load_snapshot(raw)
        except SnapshotError as e:
            log_event(
                "state.load_failed",
                component="storage",
                operation="load",
                backend="memory",
                error=str(e),
                level=logging.WARNING,
            )
            return None

    def save(self, state: SessionState) -> None:
        document = dump_snapshot(state)
        with self._lock:
            self._documents[self.storage_key] = document
            self.save_count += 1

    def clear(self) -> None:
        with self._lock:
            self._documents.pop(self.storage_key, None)

    def put_raw(self, document: str) -> None:
        """Seed the store with an arbitrary document, as an older release would have written it."""
        with self._lock:
            self._documents[self.storage_key] = document
