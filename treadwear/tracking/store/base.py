"""Abstract persistent store for items, sessions, attributions and legacy entries.

Implementations must give strong read-after-write consistency: a coroutine
that awaited a write sees it on its next read.  Multi-row writes are atomic
when ``supports_transactions`` is True.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

from treadwear.tracking.base import HourAttribution, HourBucket, Item, LegacyEntry, Session


class PersistentStore(ABC):
    """Storage boundary consumed by the tracking core."""

    #: True when multi-row writes are applied all-or-nothing.
    supports_transactions: bool = True

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_items(self, items: list[Item]) -> None:
        """Insert or update every item in one write."""

    @abstractmethod
    async def get_item(self, item_id: UUID) -> Item | None:
        """Return the item, or None if it does not exist."""

    @abstractmethod
    async def list_items(self, include_archived: bool = True) -> list[Item]:
        """Return items ordered by creation time."""

    @abstractmethod
    async def delete_item(self, item_id: UUID) -> bool:
        """Delete an item with its sessions, attributions and legacy entries.

        Returns:
            True if the item existed.
        """

    async def save_item(self, item: Item) -> None:
        await self.save_items([item])

    async def get_default_item(self) -> Item | None:
        """Return the non-archived default item, if one is designated."""
        for item in await self.list_items(include_archived=False):
            if item.is_default:
                return item
        return None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_sessions(self, sessions: list[Session]) -> None:
        """Insert or update every session in one write.

        Rows are written in list order, so closing sessions must come before
        the session that replaces them.
        """

    @abstractmethod
    async def list_sessions(self, item_id: UUID | None = None) -> list[Session]:
        """Return sessions ordered by start time, optionally for one item."""

    @abstractmethod
    async def list_active_sessions(self) -> list[Session]:
        """Return every session without an end time."""

    @abstractmethod
    async def list_sessions_between(self, start: datetime, end: datetime) -> list[Session]:
        """Return sessions intersecting [start, end); active sessions extend forever."""

    # ------------------------------------------------------------------
    # Hour attributions
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_attributions(self, attributions: list[HourAttribution]) -> None:
        """Insert or overwrite attributions keyed by hour bucket, in one write."""

    @abstractmethod
    async def get_attribution(self, bucket: HourBucket) -> HourAttribution | None:
        """Return the attribution for ``bucket``, if any."""

    @abstractmethod
    async def delete_attributions(self, buckets: list[HourBucket]) -> int:
        """Delete attributions for ``buckets``; missing buckets are ignored.

        Returns:
            Number of attributions removed.
        """

    @abstractmethod
    async def list_attributions(
        self,
        item_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[HourAttribution]:
        """Return attributions ordered by bucket, filtered by item and [start, end)."""

    # ------------------------------------------------------------------
    # Legacy entries
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_legacy_entries(self, entries: list[LegacyEntry]) -> None:
        """Insert legacy entries in one write."""

    @abstractmethod
    async def list_legacy_entries(self, item_id: UUID | None = None) -> list[LegacyEntry]:
        """Return legacy entries ordered by start time."""

    async def close(self) -> None:
        """Release any resources held by the store."""
