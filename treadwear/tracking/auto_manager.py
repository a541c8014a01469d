"""Auto-management: close stale sessions and auto-start the default item.

The controller runs on top of ``SessionStore`` and an activity provider.
Each operation reads state, decides, and then writes through the session
store, so two overlapping runs could both decide to auto-start.  A run-guard
(a non-blocking ``asyncio.Lock`` check) makes every run skip while another
is still in progress.  Writes are conditional on the state the decision
was made on: auto-close ends one specific session id and auto-start only
starts when nothing is active, so a user action that lands in between
turns the write into a no-op.

"Recent activity" for auto-close is a pluggable predicate:

- ``provider_recency(provider)`` asks the provider for steps since the
  session started (default);
- ``fixed_window_recency(window)`` assumes activity while the session is
  younger than the window.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo

from treadwear.tracking.base import ActivityDataProvider, Session
from treadwear.tracking.clock import Clock, local_day
from treadwear.tracking.errors import repository_errors
from treadwear.tracking.session_store import SessionStore
from treadwear.tracking.store.base import PersistentStore

logger = logging.getLogger("treadwear.tracking.auto_manager")

DEFAULT_INACTIVITY_THRESHOLD = timedelta(hours=6)

RecencyPredicate = Callable[[Session, datetime], Awaitable[bool]]


def provider_recency(provider: ActivityDataProvider) -> RecencyPredicate:
    """Recent activity means the provider recorded steps since the session started."""

    async def _has_recent_activity(session: Session, now: datetime) -> bool:
        if not await provider.authorized():
            return False
        return await provider.has_activity_since(session.start_time)

    return _has_recent_activity


def fixed_window_recency(window: timedelta) -> RecencyPredicate:
    """Recent activity means the session started less than ``window`` ago."""

    async def _within_window(session: Session, now: datetime) -> bool:
        return now - session.start_time < window

    return _within_window


@dataclass
class TickResult:
    """Outcome of one auto-management run.

    Attributes:
        skipped:      True if another run held the guard and nothing was done.
        closed:       Sessions auto-closed in this run.
        started:      Session auto-started in this run, if any.
        errors:       One message per session or step that failed.
    """

    skipped: bool = False
    closed: list[Session] = field(default_factory=list)
    started: Session | None = None
    errors: list[str] = field(default_factory=list)


class AutoManagementController:
    """Periodic policy runner for session auto-close and auto-start.

    Args:
        sessions:             Session store all transitions go through.
        store:                Persistent store used to resolve items.
        provider:             Activity source.
        clock:                Time source used when ``now`` is not given.
        tz:                   Timezone that defines "today".
        recency:              Recent-activity predicate for auto-close.
        inactivity_threshold: Minimum session age before auto-close is considered.
        auto_close_enabled:   Switch for the close step of ``run_tick``.
        auto_start_enabled:   Switch for the start step of ``run_tick``.
    """

    def __init__(
        self,
        sessions: SessionStore,
        store: PersistentStore,
        provider: ActivityDataProvider,
        clock: Clock,
        tz: tzinfo = timezone.utc,
        recency: RecencyPredicate | None = None,
        inactivity_threshold: timedelta = DEFAULT_INACTIVITY_THRESHOLD,
        auto_close_enabled: bool = True,
        auto_start_enabled: bool = True,
    ) -> None:
        self._sessions = sessions
        self._store = store
        self._provider = provider
        self._clock = clock
        self._tz = tz
        self._recency = recency or provider_recency(provider)
        self.inactivity_threshold = inactivity_threshold
        self.auto_close_enabled = auto_close_enabled
        self.auto_start_enabled = auto_start_enabled
        self._guard = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._guard.locked()

    # ------------------------------------------------------------------
    # Public entry points (guarded)
    # ------------------------------------------------------------------

    async def close_inactive_sessions(
        self,
        now: datetime | None = None,
        inactivity_threshold: timedelta | None = None,
    ) -> TickResult:
        """Auto-close every active session that is old and shows no recent activity."""
        if self._guard.locked():
            logger.debug("Auto-management already running; close skipped")
            return TickResult(skipped=True)
        async with self._guard:
            result = TickResult()
            await self._close_inactive(now or self._clock.now(), inactivity_threshold, result)
            return result

    async def auto_start_default_item(self, now: datetime | None = None) -> TickResult:
        """Start the default item if nothing is worn and today has activity but no sessions."""
        if self._guard.locked():
            logger.debug("Auto-management already running; auto-start skipped")
            return TickResult(skipped=True)
        async with self._guard:
            result = TickResult()
            await self._auto_start(now or self._clock.now(), result)
            return result

    async def run_tick(self, now: datetime | None = None) -> TickResult:
        """One periodic run: close stale sessions, then auto-start."""
        if self._guard.locked():
            logger.debug("Auto-management tick still running; new tick skipped")
            return TickResult(skipped=True)
        async with self._guard:
            now = now or self._clock.now()
            result = TickResult()
            if self.auto_close_enabled:
                try:
                    await self._close_inactive(now, None, result)
                except Exception as exc:
                    logger.exception("Auto-close failed")
                    result.errors.append(f"auto-close: {exc}")
            if self.auto_start_enabled:
                try:
                    await self._auto_start(now, result)
                except Exception as exc:
                    logger.exception("Auto-start failed")
                    result.errors.append(f"auto-start: {exc}")
            if result.closed or result.started:
                logger.info(
                    "Auto-management tick: closed=%d started=%s",
                    len(result.closed),
                    result.started.session_id if result.started else None,
                )
            return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _close_inactive(
        self, now: datetime, threshold: timedelta | None, result: TickResult
    ) -> None:
        threshold = threshold if threshold is not None else self.inactivity_threshold
        for session in await self._sessions.active_sessions():
            try:
                closed = await self._close_if_inactive(session, now, threshold)
            except Exception as exc:
                logger.warning(
                    "Auto-close check failed for session %s: %s",
                    session.session_id,
                    exc,
                    exc_info=True,
                )
                result.errors.append(f"session {session.session_id}: {exc}")
                continue
            if closed is not None:
                result.closed.append(closed)

    async def _close_if_inactive(
        self, session: Session, now: datetime, threshold: timedelta
    ) -> Session | None:
        if now - session.start_time <= threshold:
            return None
        if await self._recency(session, now):
            return None

        with repository_errors("get item"):
            item = await self._store.get_item(session.item_id)
        if item is None:
            logger.warning(
                "Active session %s references missing item %s",
                session.session_id,
                session.item_id,
            )
            return None
        closed = await self._sessions.close_session(session.session_id, auto_closed=True)
        if closed is None:
            logger.debug("Session %s was closed concurrently", session.session_id)
            return None
        logger.info(
            "Auto-closed session %s for item %s after %s",
            session.session_id,
            item.item_id,
            now - session.start_time,
        )
        return closed

    async def _auto_start(self, now: datetime, result: TickResult) -> None:
        if await self._sessions.active_sessions():
            return
        today = local_day(now, self._tz)
        if not await self._provider.has_activity_on(today):
            return
        if await self._sessions.sessions_on(today):
            return

        with repository_errors("get default item"):
            default = await self._store.get_default_item()
        if default is None:
            logger.debug("No default item designated; auto-start skipped")
            return
        started = await self._sessions.start_if_idle(default, auto_started=True)
        if started is None:
            logger.debug(
                "A session was started concurrently; default item %s left idle",
                default.item_id,
            )
            return
        result.started = started
        logger.info("Auto-started session for default item %s", default.item_id)
