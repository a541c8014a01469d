"""Item management: create, archive, designate default, delete.

Archiving an item ends its active session first, and only one item may be
the default at a time.  Deleting an item removes its sessions, attributions
and legacy entries with it.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from uuid import UUID

from treadwear.tracking.base import (
    DEFAULT_LIFESPAN_KM,
    KM_PER_STEP,
    Item,
    LegacyEntry,
    estimate_distance_km,
)
from treadwear.tracking.clock import Clock
from treadwear.tracking.errors import ItemArchived, ItemNotFound, ValidationFailed, repository_errors
from treadwear.tracking.session_store import SessionStore
from treadwear.tracking.store.base import PersistentStore

logger = logging.getLogger("treadwear.tracking.item_catalog")


class ItemCatalog:
    """Owns item records.

    Args:
        store:               Persistent store.
        sessions:            Session store, used to end sessions on archive.
        clock:               Time source for creation and archival stamps.
        default_lifespan_km: Lifespan used when none is given.
        km_per_step:         Distance estimate for step-only legacy imports.
    """

    def __init__(
        self,
        store: PersistentStore,
        sessions: SessionStore,
        clock: Clock,
        default_lifespan_km: float = DEFAULT_LIFESPAN_KM,
        km_per_step: float = KM_PER_STEP,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._clock = clock
        self.default_lifespan_km = default_lifespan_km
        self.km_per_step = km_per_step

    async def create_item(
        self,
        brand: str,
        model: str,
        estimated_lifespan_km: float | None = None,
        is_default: bool = False,
        notes: str = "",
    ) -> Item:
        """Validate and persist a new item.

        Raises:
            ValidationFailed: If brand or model is blank or the lifespan is not positive.
        """
        lifespan = self.default_lifespan_km if estimated_lifespan_km is None else estimated_lifespan_km
        errors: list[str] = []
        if not brand or not brand.strip():
            errors.append("brand must not be empty")
        if not model or not model.strip():
            errors.append("model must not be empty")
        if lifespan <= 0:
            errors.append(f"estimated_lifespan_km must be greater than 0, got {lifespan}")
        if errors:
            raise ValidationFailed(errors)

        item = Item(
            brand=brand.strip(),
            model=model.strip(),
            estimated_lifespan_km=float(lifespan),
            notes=notes,
            created_at=self._clock.now(),
        )
        if is_default:
            await self._save_as_default(item)
        else:
            with repository_errors("save item"):
                await self._store.save_item(item)
        logger.info("Created item %s (%s)", item.item_id, item.display_name)
        return item

    async def get_item(self, item_id: UUID) -> Item:
        """Raises ItemNotFound if the id does not resolve."""
        with repository_errors("get item"):
            item = await self._store.get_item(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        return item

    async def list_items(self, include_archived: bool = True) -> list[Item]:
        with repository_errors("list items"):
            return await self._store.list_items(include_archived=include_archived)

    async def default_item(self) -> Item | None:
        with repository_errors("get default item"):
            return await self._store.get_default_item()

    async def set_default(self, item: Item) -> Item:
        """Make ``item`` the only default item.

        Raises:
            ItemArchived: If the item is archived.
        """
        if item.archived:
            raise ItemArchived(item.item_id)
        updated = replace(item, is_default=True)
        await self._save_as_default(updated)
        logger.info("Item %s is now the default", item.item_id)
        return updated

    async def _save_as_default(self, item: Item) -> None:
        with repository_errors("set default item"):
            previous = [
                replace(other, is_default=False)
                for other in await self._store.list_items()
                if other.is_default and other.item_id != item.item_id
            ]
            await self._store.save_items([*previous, item])

    async def archive_item(self, item: Item) -> Item:
        """Archive ``item``, ending its active session first."""
        if item.archived:
            return item
        if await self._sessions.active_session_for(item) is not None:
            await self._sessions.end(item)
        archived = replace(item, archived=True, archived_at=self._clock.now())
        with repository_errors("archive item"):
            await self._store.save_item(archived)
        logger.info("Archived item %s", item.item_id)
        return archived

    async def unarchive_item(self, item: Item) -> Item:
        if not item.archived:
            return item
        restored = replace(item, archived=False, archived_at=None)
        with repository_errors("unarchive item"):
            await self._store.save_item(restored)
        logger.info("Unarchived item %s", item.item_id)
        return restored

    async def delete_item(self, item: Item) -> bool:
        """Delete ``item`` with its sessions, attributions and legacy entries."""
        with repository_errors("delete item"):
            deleted = await self._store.delete_item(item.item_id)
        if deleted:
            logger.info("Deleted item %s and its history", item.item_id)
        return deleted

    async def add_legacy_entry(
        self,
        item: Item,
        start_time: datetime,
        end_time: datetime,
        steps: int = 0,
        distance_km: float | None = None,
    ) -> LegacyEntry:
        """Record an imported activity entry for ``item``.

        When ``distance_km`` is omitted it is estimated from ``steps``.

        Raises:
            ValidationFailed: If the range is inverted, timestamps are naive,
                              or metrics are negative.
        """
        errors: list[str] = []
        if start_time.tzinfo is None or end_time.tzinfo is None:
            errors.append("start_time and end_time must be timezone-aware")
        elif end_time < start_time:
            errors.append("end_time must not be before start_time")
        if steps < 0:
            errors.append(f"steps must not be negative, got {steps}")
        if distance_km is not None and distance_km < 0:
            errors.append(f"distance_km must not be negative, got {distance_km}")
        if errors:
            raise ValidationFailed(errors)

        entry = LegacyEntry(
            item_id=item.item_id,
            start_time=start_time,
            end_time=end_time,
            steps=steps,
            distance_km=(
                distance_km
                if distance_km is not None
                else estimate_distance_km(steps, self.km_per_step)
            ),
        )
        with repository_errors("add legacy entry"):
            await self._store.add_legacy_entries([entry])
        return entry
