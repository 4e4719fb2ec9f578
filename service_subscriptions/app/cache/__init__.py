from .snapshot_cache import SnapshotCache

__all__ = ["SnapshotCache"]
