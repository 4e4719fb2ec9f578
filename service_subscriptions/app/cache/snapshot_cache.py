"""
Snapshot cache holding the latest complete membership map.
"""

import threading
from datetime import datetime
from types import MappingProxyType
from typing import Optional

from shared.errors import SnapshotNotReadyError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..patreon.models import Patron, Snapshot, utcnow


class SnapshotCache:
    """Single slot holding the most recent snapshot.

    Snapshots are immutable, so readers only need the lock long enough to
    take the current reference; ``swap`` replaces that reference whole.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("subscriptions.snapshot_cache")
        self.metrics = metrics
        self._lock = threading.Lock()
        self._snapshot: Optional[Snapshot] = None
        self._loaded_at: Optional[datetime] = None

    def swap(self, snapshot: Snapshot) -> None:
        """Replace the current snapshot with ``snapshot``."""
        if not isinstance(snapshot, MappingProxyType):
            snapshot = MappingProxyType(dict(snapshot))

        loaded_at = utcnow()
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
            self._loaded_at = loaded_at

        if self.metrics:
            self.metrics.record_snapshot_swap(len(snapshot))

        self.logger.info(
            "Snapshot swapped",
            patrons=len(snapshot),
            previous_patrons=len(previous) if previous is not None else None,
        )

    def lookup(self, email: str) -> Optional[Patron]:
        """Return the patron for ``email``, or ``None`` when not present.

        Raises :class:`SnapshotNotReadyError` before the first swap.
        """
        snapshot = self.current()
        if snapshot is None:
            raise SnapshotNotReadyError()
        return snapshot.get(email)

    def current(self) -> Optional[Snapshot]:
        with self._lock:
            return self._snapshot

    @property
    def is_ready(self) -> bool:
        return self.current() is not None

    @property
    def size(self) -> int:
        snapshot = self.current()
        return len(snapshot) if snapshot is not None else 0

    @property
    def loaded_at(self) -> Optional[datetime]:
        with self._lock:
            return self._loaded_at
