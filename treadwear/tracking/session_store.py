"""Session lifecycle: start, end and query wearing sessions.

At most one session is active across all items.  ``start`` performs the
check-active, end-others and create-new steps under one ``asyncio.Lock`` and
persists the closed sessions and the new one in a single store write, so two
concurrent starts can never both succeed.

When a session closes, its steps and distance are captured from the
activity provider by summing the hourly samples of every hour it overlaps.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from itertools import groupby
from uuid import UUID

from treadwear.tracking.base import ActivityDataProvider, Item, Session
from treadwear.tracking.clock import Clock, day_bounds
from treadwear.tracking.errors import (
    ItemArchived,
    SessionAlreadyActive,
    SessionNotFound,
    repository_errors,
)
from treadwear.tracking.store.base import PersistentStore

logger = logging.getLogger("treadwear.tracking.session_store")


class SessionStore:
    """Owns session records and the single-active-session rule.

    Args:
        store:    Persistent store holding sessions.
        provider: Activity source used to capture metrics on close.
        clock:    Time source for start and end stamps.
        tz:       Timezone for day-based queries.
    """

    def __init__(
        self,
        store: PersistentStore,
        provider: ActivityDataProvider,
        clock: Clock,
        tz: tzinfo = timezone.utc,
    ) -> None:
        self._store = store
        self._provider = provider
        self._clock = clock
        self._tz = tz
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, item: Item, auto_started: bool = False) -> Session:
        """Start wearing ``item``, closing whatever session is active.

        Args:
            item:         Item to wear.
            auto_started: True when auto-management initiated the start.

        Returns:
            The new active session.

        Raises:
            ItemArchived:         If the item is archived.
            SessionAlreadyActive: If the item already has an active session.
            RepositoryFailure:    If the store fails; nothing is written.
        """
        if item.archived:
            raise ItemArchived(item.item_id)

        async with self._lock:
            active = await self._list_active()
            if any(s.item_id == item.item_id for s in active):
                raise SessionAlreadyActive(item.item_id)
            new_session = await self._open(item, auto_started, active)

        for session in active:
            logger.info(
                "Session %s for item %s ended by start of item %s",
                session.session_id,
                session.item_id,
                item.item_id,
            )
        return new_session

    async def start_if_idle(self, item: Item, auto_started: bool = True) -> Session | None:
        """Start ``item`` only if no session is active anywhere.

        The idle check and the write happen under the same lock as ``start``
        and ``end``, so a session started by someone else in the meantime is
        never closed by this call.

        Returns:
            The new session, or None if a session was already active.

        Raises:
            ItemArchived: If the item is archived.
        """
        if item.archived:
            raise ItemArchived(item.item_id)

        async with self._lock:
            if await self._list_active():
                logger.debug("A session is already active; %s not started", item.item_id)
                return None
            return await self._open(item, auto_started, [])

    async def end(self, item: Item, auto_closed: bool = False) -> Session:
        """End the active session for ``item``.

        Args:
            item:        Item being worn.
            auto_closed: True when auto-management closes the session.

        Returns:
            The closed session.

        Raises:
            SessionNotFound:   If the item has no active session.
            RepositoryFailure: If the store fails.
        """
        async with self._lock:
            active = await self._list_active()
            session = next((s for s in active if s.item_id == item.item_id), None)
            if session is None:
                raise SessionNotFound(item.item_id)
            await self._finish(session, auto_closed)
        return session

    async def close_session(self, session_id: UUID, auto_closed: bool = False) -> Session | None:
        """End one specific session if it is still the active one.

        Returns:
            The closed session, or None if that session is no longer active.
        """
        async with self._lock:
            active = await self._list_active()
            session = next((s for s in active if s.session_id == session_id), None)
            if session is None:
                return None
            await self._finish(session, auto_closed)
        return session

    async def toggle(self, item: Item) -> Session:
        """End the item's session if it is active, otherwise start one.

        Returns:
            The session that was closed or started.
        """
        if await self.active_session_for(item) is not None:
            return await self.end(item)
        return await self.start(item)

    async def _list_active(self) -> list[Session]:
        with repository_errors("list active sessions"):
            return await self._store.list_active_sessions()

    async def _open(self, item: Item, auto_started: bool, active: list[Session]) -> Session:
        """Close ``active`` and create a session for ``item`` in one write.  Lock held."""
        now = self._clock.now()
        for session in active:
            await self._close(session, now, auto_closed=False)

        new_session = Session(item_id=item.item_id, start_time=now, auto_started=auto_started)
        with repository_errors("start session"):
            await self._store.save_sessions([*active, new_session])
        logger.info(
            "Session %s started for item %s (auto=%s)",
            new_session.session_id,
            item.item_id,
            auto_started,
        )
        return new_session

    async def _finish(self, session: Session, auto_closed: bool) -> None:
        """Close and persist one session.  Lock held."""
        await self._close(session, self._clock.now(), auto_closed=auto_closed)
        with repository_errors("end session"):
            await self._store.save_sessions([session])
        logger.info(
            "Session %s ended for item %s (auto_closed=%s, steps=%d, distance=%.2f km)",
            session.session_id,
            session.item_id,
            auto_closed,
            session.steps,
            session.distance_km,
        )

    async def _close(self, session: Session, now: datetime, auto_closed: bool) -> None:
        session.end_time = max(now, session.start_time)
        session.auto_closed = auto_closed
        session.steps, session.distance_km = await self._capture_activity(session)

    async def _capture_activity(self, session: Session) -> tuple[int, float]:
        """Sum the provider's hourly samples over the hours the session overlaps.

        Best-effort: an unauthorized or failing provider yields zero metrics
        and the session still closes.
        """
        hours = session.covered_hours(session.effective_end(self._clock.now()))
        if not hours:
            return 0, 0.0
        try:
            if not await self._provider.authorized():
                return 0, 0.0
            steps, distance = 0, 0.0
            for day, day_hours in groupby(hours, key=lambda b: b.local_day(self._tz)):
                wanted = {bucket.local_hour(self._tz) for bucket in day_hours}
                for sample in await self._provider.hourly_samples(day):
                    if sample.hour in wanted:
                        steps += sample.steps
                        distance += sample.distance_km
            return steps, distance
        except Exception:
            logger.warning(
                "Could not capture activity for session %s; closing with zero metrics",
                session.session_id,
                exc_info=True,
            )
            return 0, 0.0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def active_sessions(self) -> list[Session]:
        with repository_errors("list active sessions"):
            return await self._store.list_active_sessions()

    async def active_session_for(self, item: Item) -> Session | None:
        for session in await self.active_sessions():
            if session.item_id == item.item_id:
                return session
        return None

    async def sessions_for(self, item: Item | UUID) -> list[Session]:
        item_id = item.item_id if isinstance(item, Item) else item
        with repository_errors("list sessions"):
            return await self._store.list_sessions(item_id)

    async def sessions_on(self, day: date) -> list[Session]:
        """Sessions overlapping ``day`` in the configured timezone, active ones included."""
        start, end = day_bounds(day, self._tz)
        with repository_errors("list sessions by day"):
            return await self._store.list_sessions_between(start, end)

    async def session_count(self, item: Item) -> int:
        return len(await self.sessions_for(item))

    async def total_closed_duration(self, item: Item) -> timedelta:
        """Total wearing time over closed sessions.  The active session never counts."""
        total = timedelta(0)
        for session in await self.sessions_for(item):
            if session.end_time is not None:
                total += session.end_time - session.start_time
        return total
