"""
Process-wide holder of the current inventory snapshot.
"""
import logging
import threading
from typing import Optional

from .models import Snapshot

logger = logging.getLogger(__name__)

STATE_EMPTY = "empty"
STATE_POPULATED = "populated"


class SnapshotStore:
    """
    Holds exactly one current Snapshot.

    Publishing swaps a single reference under a lock. Readers take that
    reference without locking, so get() never waits on a refresh and never
    sees a half-merged snapshot. The store starts Empty and stays Populated
    after the first publish.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._current: Optional[Snapshot] = None
        self._generation = 0

    def get(self) -> Optional[Snapshot]:
        """Return the last published snapshot, or None while Empty."""
        return self._current

    def publish(self, snapshot: Snapshot) -> None:
        if snapshot is None:
            raise ValueError("Cannot publish an empty snapshot reference")
        with self._lock:
            self._current = snapshot
            self._generation += 1
            generation = self._generation
        logger.debug(f"Published snapshot #{generation} generated at {snapshot.generated_at}")

    @property
    def state(self) -> str:
        return STATE_EMPTY if self._current is None else STATE_POPULATED

    @property
    def generation(self) -> int:
        """Number of snapshots published so far."""
        return self._generation


_default_store: Optional[SnapshotStore] = None
_default_store_lock = threading.Lock()


def get_default_store() -> SnapshotStore:
    """Process-wide store shared by the HTTP API and the CLI."""
    global _default_store
    with _default_store_lock:
        if _default_store is None:
            _default_store = SnapshotStore()
        return _default_store
