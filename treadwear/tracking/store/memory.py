"""Dict-backed store for development and tests.

Every read returns copies, so callers mutating a returned model never
change stored state behind the store's back.  Writes are applied after all
copies are made, which makes each multi-row write all-or-nothing.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from uuid import UUID

from treadwear.tracking.base import HourAttribution, HourBucket, Item, LegacyEntry, Session
from treadwear.tracking.store.base import PersistentStore


class InMemoryStore(PersistentStore):
    def __init__(self) -> None:
        self._items: dict[UUID, Item] = {}
        self._sessions: dict[UUID, Session] = {}
        self._attributions: dict[HourBucket, HourAttribution] = {}
        self._legacy: dict[UUID, LegacyEntry] = {}

    # -- items --

    async def save_items(self, items: list[Item]) -> None:
        staged = {item.item_id: replace(item) for item in items}
        self._items.update(staged)

    async def get_item(self, item_id: UUID) -> Item | None:
        item = self._items.get(item_id)
        return replace(item) if item is not None else None

    async def list_items(self, include_archived: bool = True) -> list[Item]:
        items = [
            replace(item)
            for item in self._items.values()
            if include_archived or not item.archived
        ]
        return sorted(items, key=lambda i: i.created_at)

    async def delete_item(self, item_id: UUID) -> bool:
        if self._items.pop(item_id, None) is None:
            return False
        self._sessions = {k: s for k, s in self._sessions.items() if s.item_id != item_id}
        self._attributions = {
            k: a for k, a in self._attributions.items() if a.item_id != item_id
        }
        self._legacy = {k: e for k, e in self._legacy.items() if e.item_id != item_id}
        return True

    # -- sessions --

    async def save_sessions(self, sessions: list[Session]) -> None:
        staged = {session.session_id: replace(session) for session in sessions}
        self._sessions.update(staged)

    async def list_sessions(self, item_id: UUID | None = None) -> list[Session]:
        sessions = [
            replace(s)
            for s in self._sessions.values()
            if item_id is None or s.item_id == item_id
        ]
        return sorted(sessions, key=lambda s: s.start_time)

    async def list_active_sessions(self) -> list[Session]:
        return [s for s in await self.list_sessions() if s.end_time is None]

    async def list_sessions_between(self, start: datetime, end: datetime) -> list[Session]:
        return [
            s
            for s in await self.list_sessions()
            if s.start_time < end and (s.end_time is None or s.end_time > start)
        ]

    # -- attributions --

    async def upsert_attributions(self, attributions: list[HourAttribution]) -> None:
        staged = {a.bucket: replace(a) for a in attributions}
        self._attributions.update(staged)

    async def get_attribution(self, bucket: HourBucket) -> HourAttribution | None:
        attribution = self._attributions.get(bucket)
        return replace(attribution) if attribution is not None else None

    async def delete_attributions(self, buckets: list[HourBucket]) -> int:
        removed = 0
        for bucket in set(buckets):
            if self._attributions.pop(bucket, None) is not None:
                removed += 1
        return removed

    async def list_attributions(
        self,
        item_id: UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[HourAttribution]:
        result = []
        for bucket in sorted(self._attributions):
            attribution = self._attributions[bucket]
            if item_id is not None and attribution.item_id != item_id:
                continue
            if start is not None and bucket.start < start:
                continue
            if end is not None and bucket.start >= end:
                continue
            result.append(replace(attribution))
        return result

    # -- legacy --

    async def add_legacy_entries(self, entries: list[LegacyEntry]) -> None:
        staged = {entry.entry_id: replace(entry) for entry in entries}
        self._legacy.update(staged)

    async def list_legacy_entries(self, item_id: UUID | None = None) -> list[LegacyEntry]:
        entries = [
            replace(e)
            for e in self._legacy.values()
            if item_id is None or e.item_id == item_id
        ]
        return sorted(entries, key=lambda e: e.start_time)
