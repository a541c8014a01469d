"""Tests for auto-close, auto-start and the non-reentrant run-guard."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from treadwear.tracking.auto_manager import (
    AutoManagementController,
    fixed_window_recency,
    provider_recency,
)
from treadwear.tracking.base import HourlySample, Session
from treadwear.tracking.providers.static import StaticActivityProvider
from treadwear.tracking.session_store import SessionStore
from treadwear.tracking.tests.conftest import TEST_DATE, TEST_NOW, at, make_item


def no_recent_activity() -> AsyncMock:
    return AsyncMock(return_value=False)


class TestCloseInactiveSessions:
    @pytest.mark.asyncio
    async def test_stale_session_without_activity_is_closed(
        self, session_store, store, provider, clock, item_a
    ) -> None:
        clock.set(TEST_NOW - timedelta(hours=7))
        await session_store.start(item_a)
        clock.set(TEST_NOW)
        controller = AutoManagementController(
            session_store, store, provider, clock, recency=no_recent_activity()
        )

        result = await controller.close_inactive_sessions(TEST_NOW, timedelta(hours=6))

        assert len(result.closed) == 1
        closed = (await session_store.sessions_for(item_a))[0]
        assert closed.auto_closed is True
        assert closed.end_time == TEST_NOW
        assert await session_store.active_sessions() == []

    @pytest.mark.asyncio
    async def test_recent_session_stays_open(
        self, session_store, store, provider, clock, item_a
    ) -> None:
        clock.set(TEST_NOW - timedelta(minutes=30))
        await session_store.start(item_a)
        clock.set(TEST_NOW)
        recency = no_recent_activity()
        controller = AutoManagementController(
            session_store, store, provider, clock, recency=recency
        )

        result = await controller.close_inactive_sessions(TEST_NOW, timedelta(hours=6))

        assert result.closed == []
        assert len(await session_store.active_sessions()) == 1
        recency.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_session_with_activity_stays_open(
        self, session_store, store, clock, item_a
    ) -> None:
        provider = StaticActivityProvider({TEST_DATE: [HourlySample(hour=14, steps=300)]})
        sessions = SessionStore(store, provider, clock)
        clock.set(at(8))
        await sessions.start(item_a)
        clock.set(TEST_NOW)
        controller = AutoManagementController(sessions, store, provider, clock)

        result = await controller.close_inactive_sessions()

        assert result.closed == []
        assert len(await sessions.active_sessions()) == 1

    @pytest.mark.asyncio
    async def test_default_threshold_used(self, controller, session_store, clock, item_a) -> None:
        assert controller.inactivity_threshold == timedelta(hours=6)
        clock.set(TEST_NOW - timedelta(hours=5))
        await session_store.start(item_a)
        clock.set(TEST_NOW)
        result = await controller.close_inactive_sessions()
        assert result.closed == []

    @pytest.mark.asyncio
    async def test_failure_on_one_session_does_not_stop_others(
        self, session_store, store, provider, clock, item_a, item_b
    ) -> None:
        # Two active rows can only exist through corrupted data; write them directly.
        await store.save_sessions(
            [
                Session(item_id=item_a.item_id, start_time=TEST_NOW - timedelta(hours=9)),
                Session(item_id=item_b.item_id, start_time=TEST_NOW - timedelta(hours=8)),
            ]
        )

        async def flaky(session: Session, now) -> bool:
            if session.item_id == item_a.item_id:
                raise RuntimeError("recency lookup failed")
            return False

        controller = AutoManagementController(
            session_store, store, provider, clock, recency=flaky
        )
        result = await controller.close_inactive_sessions()

        assert [s.item_id for s in result.closed] == [item_b.item_id]
        assert len(result.errors) == 1
        assert [s.item_id for s in await session_store.active_sessions()] == [item_a.item_id]

    @pytest.mark.asyncio
    async def test_session_for_missing_item_is_skipped(
        self, session_store, store, provider, clock
    ) -> None:
        ghost = make_item()
        await store.save_sessions(
            [Session(item_id=ghost.item_id, start_time=TEST_NOW - timedelta(hours=9))]
        )
        controller = AutoManagementController(
            session_store, store, provider, clock, recency=no_recent_activity()
        )
        result = await controller.close_inactive_sessions()
        assert result.closed == [] and result.errors == []


class TestRecencyPredicates:
    @pytest.mark.asyncio
    async def test_fixed_window(self) -> None:
        predicate = fixed_window_recency(timedelta(hours=6))
        young = Session(item_id=make_item().item_id, start_time=TEST_NOW - timedelta(hours=2))
        old = Session(item_id=young.item_id, start_time=TEST_NOW - timedelta(hours=7))
        assert await predicate(young, TEST_NOW) is True
        assert await predicate(old, TEST_NOW) is False

    @pytest.mark.asyncio
    async def test_provider_recency_requires_authorization(self) -> None:
        provider = StaticActivityProvider(
            {TEST_DATE: [HourlySample(hour=14, steps=100)]}, authorized=False
        )
        session = Session(item_id=make_item().item_id, start_time=at(8))
        assert await provider_recency(provider)(session, TEST_NOW) is False

        provider.is_authorized = True
        assert await provider_recency(provider)(session, TEST_NOW) is True


class TestAutoStart:
    @pytest.mark.asyncio
    async def test_starts_default_item(self, controller, store, session_store) -> None:
        default = make_item(is_default=True)
        await store.save_item(default)

        result = await controller.auto_start_default_item()

        assert result.started is not None
        assert result.started.item_id == default.item_id
        assert result.started.auto_started is True
        assert len(await session_store.active_sessions()) == 1

    @pytest.mark.asyncio
    async def test_no_default_item(self, controller, item_a) -> None:
        result = await controller.auto_start_default_item()
        assert result.started is None

    @pytest.mark.asyncio
    async def test_archived_default_is_ignored(self, controller, store) -> None:
        await store.save_item(make_item(is_default=True, archived=True))
        result = await controller.auto_start_default_item()
        assert result.started is None

    @pytest.mark.asyncio
    async def test_nothing_when_session_active(
        self, controller, store, session_store, item_a
    ) -> None:
        await store.save_item(make_item(is_default=True))
        await session_store.start(item_a)

        result = await controller.auto_start_default_item()

        assert result.started is None
        assert [s.item_id for s in await session_store.active_sessions()] == [item_a.item_id]

    @pytest.mark.asyncio
    async def test_nothing_when_today_already_has_sessions(
        self, controller, store, item_a
    ) -> None:
        await store.save_item(make_item(is_default=True))
        await store.save_sessions(
            [Session(item_id=item_a.item_id, start_time=at(7), end_time=at(8))]
        )
        result = await controller.auto_start_default_item()
        assert result.started is None

    @pytest.mark.asyncio
    async def test_nothing_without_activity_today(self, session_store, store, clock) -> None:
        await store.save_item(make_item(is_default=True))
        provider = StaticActivityProvider()
        controller = AutoManagementController(session_store, store, provider, clock)

        result = await controller.auto_start_default_item()

        assert result.started is None


class TestUserActionsDuringRun:
    """A user transition that lands mid-run turns the controller's write into a no-op."""

    @pytest.mark.asyncio
    async def test_session_restarted_during_recency_check_stays_open(
        self, session_store, store, provider, clock, item_a
    ) -> None:
        clock.set(TEST_NOW - timedelta(hours=8))
        stale = await session_store.start(item_a)
        clock.set(TEST_NOW)

        async def user_restarts_item(session: Session, now) -> bool:
            await session_store.end(item_a)
            await session_store.start(item_a)
            return False

        controller = AutoManagementController(
            session_store, store, provider, clock, recency=user_restarts_item
        )
        result = await controller.close_inactive_sessions()

        assert result.closed == []
        active = await session_store.active_sessions()
        assert len(active) == 1
        assert active[0].session_id != stale.session_id
        history = await session_store.sessions_for(item_a)
        assert [s.auto_closed for s in history] == [False, False]

    @pytest.mark.asyncio
    async def test_user_start_during_auto_start_is_kept(
        self, session_store, store, provider, clock, item_a
    ) -> None:
        await store.save_item(make_item(is_default=True))
        lookup_default = store.get_default_item

        async def user_starts_first():
            await session_store.start(item_a)
            return await lookup_default()

        store.get_default_item = user_starts_first
        controller = AutoManagementController(session_store, store, provider, clock)

        result = await controller.auto_start_default_item()

        assert result.started is None
        active = await session_store.active_sessions()
        assert [s.item_id for s in active] == [item_a.item_id]
        assert active[0].end_time is None


class TestRunGuard:
    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(
        self, session_store, store, provider, clock, item_a
    ) -> None:
        clock.set(TEST_NOW - timedelta(hours=8))
        await session_store.start(item_a)
        clock.set(TEST_NOW)

        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_recency(session: Session, now) -> bool:
            entered.set()
            await release.wait()
            return False

        controller = AutoManagementController(
            session_store, store, provider, clock, recency=slow_recency
        )
        first = asyncio.create_task(controller.run_tick())
        await entered.wait()

        assert controller.running
        second = await controller.run_tick()
        assert second.skipped is True
        assert (await controller.auto_start_default_item()).skipped is True

        release.set()
        first_result = await first
        assert first_result.skipped is False
        assert len(first_result.closed) == 1

    @pytest.mark.asyncio
    async def test_tick_closes_then_auto_starts(
        self, session_store, store, provider, clock, item_a
    ) -> None:
        default = make_item(is_default=True)
        await store.save_item(default)
        controller = AutoManagementController(
            session_store, store, provider, clock, recency=no_recent_activity()
        )

        result = await controller.run_tick()

        assert result.started is not None
        assert result.started.item_id == default.item_id

    @pytest.mark.asyncio
    async def test_tick_reports_errors_instead_of_raising(
        self, session_store, store, clock
    ) -> None:
        provider = StaticActivityProvider()
        provider.hourly_samples = AsyncMock(side_effect=RuntimeError("provider down"))
        controller = AutoManagementController(session_store, store, provider, clock)

        result = await controller.run_tick()

        assert result.skipped is False
        assert any("auto-start" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_disabled_steps(self, session_store, store, provider, clock) -> None:
        await store.save_item(make_item(is_default=True))
        controller = AutoManagementController(
            session_store, store, provider, clock, auto_start_enabled=False
        )
        result = await controller.run_tick()
        assert result.started is None
