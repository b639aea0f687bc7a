"""
Unit Tests for the Notification Store
Tests for: merge, authoritative refresh, invalidation, read-state mutations
"""
import asyncio
from datetime import timedelta

import pytest

from conftest import BASE_TIME, FakeApi, make_notification, wait_for
from worktrack.exceptions import MutationError
from worktrack.store import NotificationStore


class TestMerge:
    """Test merging stream/poll observations"""

    def test_merge_returns_only_new_records(self):
        """Test that a repeated id is not reported as new"""
        store = NotificationStore(FakeApi())
        first = make_notification(id=1)

        assert store.merge([first]) == [first]
        assert store.merge([make_notification(id=1)]) == []
        assert len(store) == 1

    def test_int_and_string_ids_share_a_key(self):
        """Test that id 5 and "5" are the same record"""
        store = NotificationStore(FakeApi())
        store.merge([make_notification(id=5)])

        assert "5" in store
        assert store.get(5) is store.get("5")

    def test_merge_never_regresses_read_state(self):
        """Test that a read record stays read when an older copy arrives"""
        store = NotificationStore(FakeApi())
        store.merge([make_notification(id=1, is_read=True)])
        store.merge([make_notification(id=1, is_read=False)])

        assert store.get(1).is_read is True
        assert store.unread_count == 0

    def test_snapshot_newest_first(self):
        """Test snapshot ordering"""
        store = NotificationStore(FakeApi())
        old = make_notification(id=1, created_at=BASE_TIME - timedelta(hours=2))
        new = make_notification(id=2, created_at=BASE_TIME)
        undated = make_notification(id=3, created_at=None)
        store.merge([old, undated, new])

        assert [n.id for n in store.snapshot()] == [2, 1, 3]

    def test_unread_count(self):
        """Test unread badge source"""
        store = NotificationStore(FakeApi())
        store.merge([
            make_notification(id=1),
            make_notification(id=2, is_read=True),
            make_notification(id=3),
        ])

        assert store.unread_count == 2


class TestRefresh:
    """Test authoritative refetch"""

    @pytest.mark.asyncio
    async def test_refresh_replaces_records(self):
        """Test that the server list becomes the store contents"""
        api = FakeApi([make_notification(id=1), make_notification(id=2)])
        store = NotificationStore(api)
        store.merge([make_notification(id=99)])

        assert await store.refresh() is True

        assert sorted(n.id for n in store.snapshot()) == [1, 2]
        assert api.list_calls == [None]

    @pytest.mark.asyncio
    async def test_refresh_keeps_arrivals_during_request(self):
        """Test that a record merged mid-request survives the refresh"""
        api = FakeApi([make_notification(id=1)])
        api.gate = asyncio.Event()
        store = NotificationStore(api)

        task = asyncio.create_task(store.refresh())
        assert await wait_for(lambda: len(api.list_calls) == 1)
        store.merge([make_notification(id=2)])
        api.gate.set()
        await task

        assert 1 in store
        assert 2 in store

    @pytest.mark.asyncio
    async def test_arrival_dropped_by_next_refresh_and_forgotten(self):
        """Test that a kept arrival is only protected from the refresh it raced"""
        api = FakeApi([make_notification(id=1)])
        api.gate = asyncio.Event()
        store = NotificationStore(api)

        task = asyncio.create_task(store.refresh())
        assert await wait_for(lambda: len(api.list_calls) == 1)
        store.merge([make_notification(id=2)])
        api.gate.set()
        await task
        assert store._merge_seq == {}

        await store.refresh()

        assert 1 in store
        assert 2 not in store

    @pytest.mark.asyncio
    async def test_stale_refetch_does_not_undo_confirmed_read(self):
        """Test that a refetch reporting unread keeps a confirmed read"""
        api = FakeApi([make_notification(id=1, is_read=False)])
        store = NotificationStore(api)
        await store.refresh()

        await store.mark_read(1)
        await store.refresh()

        assert store.get(1).is_read is True

    @pytest.mark.asyncio
    async def test_non_forced_refresh_skipped_while_fresh(self):
        """Test staleness window for background refetch"""
        now = [100.0]
        api = FakeApi([make_notification(id=1)])
        store = NotificationStore(api, stale_time=5.0, clock=lambda: now[0])

        await store.refresh()
        now[0] = 103.0
        assert await store.refresh(force=False) is False
        now[0] = 106.0
        assert await store.refresh(force=False) is True

        assert len(api.list_calls) == 2

    @pytest.mark.asyncio
    async def test_refresh_after_close_is_noop(self):
        """Test that a closed store no longer fetches"""
        api = FakeApi([make_notification(id=1)])
        store = NotificationStore(api)
        await store.close()

        assert await store.refresh() is False
        assert api.list_calls == []


class TestInvalidate:
    """Test coalesced invalidation"""

    @pytest.mark.asyncio
    async def test_invalidations_in_window_share_one_refetch(self):
        """Test that bursts of invalidations cause a single fetch"""
        api = FakeApi([make_notification(id=1)])
        store = NotificationStore(api, stale_time=0.05)
        await store.refresh()

        first = store.invalidate()
        second = store.invalidate()
        third = store.invalidate()
        assert first is second is third
        await first

        assert len(api.list_calls) == 2
        await store.close()

    @pytest.mark.asyncio
    async def test_invalidation_during_flight_queues_one_followup(self):
        """Test that invalidating mid-request triggers exactly one more fetch"""
        api = FakeApi([make_notification(id=1)])
        api.gate = asyncio.Event()
        store = NotificationStore(api, stale_time=0.0)

        task = store.invalidate()
        assert await wait_for(lambda: len(api.list_calls) == 1)
        store.invalidate()
        store.invalidate()
        api.gate.set()
        await task

        assert len(api.list_calls) == 2
        await store.close()

    @pytest.mark.asyncio
    async def test_failed_refetch_is_logged_not_raised(self):
        """Test that an invalidation-driven failure does not escape"""
        api = FakeApi()
        api.fail_list = True
        store = NotificationStore(api, stale_time=0.0)

        await store.invalidate()

        assert len(api.list_calls) == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_invalidate_after_close(self):
        """Test that a closed store ignores invalidations"""
        store = NotificationStore(FakeApi())
        await store.close()

        assert store.invalidate() is None


class TestMutations:
    """Test read-state changes"""

    @pytest.mark.asyncio
    async def test_mark_read_after_confirmation(self):
        """Test that mark_read flips the record once the server agrees"""
        api = FakeApi()
        store = NotificationStore(api)
        store.merge([make_notification(id=1)])

        await store.mark_read(1)

        assert api.marked == [1]
        assert store.get(1).is_read is True

    @pytest.mark.asyncio
    async def test_mark_read_failure_leaves_state(self):
        """Test that a rejected mark_read raises and changes nothing"""
        api = FakeApi()
        api.fail_mutations = True
        store = NotificationStore(api)
        store.merge([make_notification(id=1)])

        with pytest.raises(MutationError) as exc_info:
            await store.mark_read(1)

        assert "mark notification as read" in exc_info.value.message
        assert store.get(1).is_read is False

    @pytest.mark.asyncio
    async def test_mark_read_not_applied_while_pending(self):
        """Test that nothing flips before the server answers"""
        api = FakeApi()
        api.mutation_gate = asyncio.Event()
        store = NotificationStore(api)
        store.merge([make_notification(id=1)])

        task = asyncio.create_task(store.mark_read(1))
        await asyncio.sleep(0.01)
        assert store.get(1).is_read is False

        api.mutation_gate.set()
        await task
        assert store.get(1).is_read is True

    @pytest.mark.asyncio
    async def test_mark_all_read_spares_later_arrivals(self):
        """Test that records arriving mid-request stay unread"""
        api = FakeApi()
        api.mutation_gate = asyncio.Event()
        store = NotificationStore(api)
        store.merge([make_notification(id=1), make_notification(id=2)])

        task = asyncio.create_task(store.mark_all_read())
        await asyncio.sleep(0.01)
        store.merge([make_notification(id=3)])
        api.mutation_gate.set()
        flipped = await task

        assert flipped == 2
        assert store.get(1).is_read is True
        assert store.get(2).is_read is True
        assert store.get(3).is_read is False
        assert store.unread_count == 1

    @pytest.mark.asyncio
    async def test_mark_all_read_failure(self):
        """Test that a rejected mark_all_read leaves every record unread"""
        api = FakeApi()
        api.fail_mutations = True
        store = NotificationStore(api)
        store.merge([make_notification(id=1), make_notification(id=2)])

        with pytest.raises(MutationError):
            await store.mark_all_read()

        assert store.unread_count == 2

    @pytest.mark.asyncio
    async def test_mutations_rejected_after_close(self):
        """Test that a closed store refuses mutations"""
        api = FakeApi()
        store = NotificationStore(api)
        store.merge([make_notification(id=1)])
        await store.close()

        with pytest.raises(MutationError):
            await store.mark_read(1)
        assert api.marked == []
        assert store.merge([make_notification(id=2)]) == []
