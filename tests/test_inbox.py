"""
Unit Tests for the Bell / Inbox view
Tests for: formatting helpers, rendering, mark-read actions
"""
from datetime import timedelta

import pytest

from conftest import BASE_TIME, FakeApi, make_notification
from worktrack.inbox import InboxView, format_age, preview, unread_badge
from worktrack.presenter import ToastLevel
from worktrack.store import NotificationStore


class TestFormatting:
    """Test display helpers"""

    @pytest.mark.parametrize("delta,expected", [
        (timedelta(seconds=20), "0m ago"),
        (timedelta(minutes=45), "45m ago"),
        (timedelta(hours=3, minutes=10), "3h ago"),
        (timedelta(days=2, hours=5), "2d ago"),
    ])
    def test_format_age(self, delta, expected):
        assert format_age(BASE_TIME - delta, now=BASE_TIME) == expected

    def test_format_age_missing(self):
        assert format_age(None) == ""

    def test_short_message_untouched(self):
        message = "x" * 100
        assert preview(message) == message

    def test_long_message_truncated(self):
        message = "y" * 101
        assert preview(message) == "y" * 80 + "..."

    @pytest.mark.parametrize("count,expected", [(0, ""), (3, "3"), (9, "9"), (10, "9+"), (250, "9+")])
    def test_unread_badge(self, count, expected):
        assert unread_badge(count) == expected


class TestRender:
    """Test inbox rendering"""

    def test_empty_inbox(self, presenter, console):
        view = InboxView(NotificationStore(FakeApi()), presenter, console)

        view.render(now=BASE_TIME)

        assert "No notifications yet" in console.file.getvalue()

    def test_render_lists_records_with_badge(self, presenter, console):
        store = NotificationStore(FakeApi())
        store.merge([
            make_notification(id=1, title="Task assigned", message="Fix login",
                              created_at=BASE_TIME - timedelta(hours=2)),
            make_notification(id=2, title="Review written", message="Looks good", is_read=True,
                              related_type="task", related_id=9),
        ])
        view = InboxView(store, presenter, console)

        view.render(now=BASE_TIME)

        output = console.file.getvalue()
        assert "Task assigned" in output
        assert "Review written" in output
        assert "2h ago" in output
        assert "task #9" in output
        assert " 1 " in output

    def test_table_previews_long_messages(self, presenter):
        store = NotificationStore(FakeApi())
        store.merge([make_notification(id=1, message="z" * 150)])
        view = InboxView(store, presenter)

        collapsed = view.build_table(now=BASE_TIME)
        expanded = view.build_table(now=BASE_TIME, expand=True)

        assert list(collapsed.columns[3].cells)[0] == "z" * 80 + "..."
        assert list(expanded.columns[3].cells)[0] == "z" * 150


class TestActions:
    """Test read-state actions from the inbox"""

    @pytest.mark.asyncio
    async def test_mark_one(self, presenter, toaster):
        api = FakeApi()
        store = NotificationStore(api)
        store.merge([make_notification(id=4)])
        view = InboxView(store, presenter)

        assert await view.mark_one(4) is True
        assert store.unread_count == 0
        assert toaster.toasts == []

    @pytest.mark.asyncio
    async def test_mark_one_failure_toasts_error(self, presenter, toaster):
        api = FakeApi()
        api.fail_mutations = True
        store = NotificationStore(api)
        store.merge([make_notification(id=4)])
        view = InboxView(store, presenter)

        assert await view.mark_one(4) is False

        assert toaster.messages == ["Failed to mark notification as read"]
        assert toaster.toasts[0].level == ToastLevel.ERROR
        assert store.unread_count == 1

    @pytest.mark.asyncio
    async def test_mark_all(self, presenter, toaster):
        api = FakeApi()
        store = NotificationStore(api)
        store.merge([make_notification(id=1), make_notification(id=2)])
        view = InboxView(store, presenter)

        assert await view.mark_all() is True

        assert store.unread_count == 0
        assert toaster.messages == ["All notifications marked as read"]

    @pytest.mark.asyncio
    async def test_mark_all_with_nothing_unread(self, presenter, toaster):
        """Test that mark-all is a no-op without unread records"""
        api = FakeApi()
        store = NotificationStore(api)
        store.merge([make_notification(id=1, is_read=True)])
        view = InboxView(store, presenter)

        assert await view.mark_all() is False
        assert api.mark_all_calls == 0
        assert toaster.toasts == []

    @pytest.mark.asyncio
    async def test_mark_all_failure_toasts_error(self, presenter, toaster):
        api = FakeApi()
        api.fail_mutations = True
        store = NotificationStore(api)
        store.merge([make_notification(id=1)])
        view = InboxView(store, presenter)

        assert await view.mark_all() is False
        assert toaster.messages == ["Failed to mark all notifications as read"]
