"""Repository abstractions for database interactions."""

from .snapshot_repository import SnapshotRepository, SnapshotStore

__all__ = ["SnapshotRepository", "SnapshotStore"]
