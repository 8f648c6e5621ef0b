from abc import ABC, abstractmethod
from typing import Optional

from .models import SessionState


class StateStore(ABC):
    """Abstract interface for the persisted quiz snapshot."""

    @abstractmethod
    def load(self) -> Optional[SessionState]:
        """Load the snapshot. Returns None when nothing usable is stored."""
        pass

    @abstractmethod
    def save(self, state: SessionState) -> None:
        """Overwrite the stored snapshot with `state`."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove the stored snapshot."""
        pass
