"""Persistent store implementations for the tracking core."""

from treadwear.tracking.store.base import PersistentStore
from treadwear.tracking.store.memory import InMemoryStore
from treadwear.tracking.store.sqlite import SqliteStore

__all__ = ["PersistentStore", "InMemoryStore", "SqliteStore"]
