"""Tests for the client-local notification center."""
import asyncio

import pytest

from app.client.events import EventStream
from app.client.notifications import NotificationCenter


def frozen_clock():
    return 1_700_000_000.0


class TestNotificationCenter:

    def test_add_prepends_and_counts(self):
        center = NotificationCenter()
        first = center.add("u1", "Ann", "hi")
        second = center.add("u2", "Ben", "hello")

        assert center.notifications == [second, first]
        assert center.unread_count == 2
        assert center.current_popup is second
        assert first.isRead is False

    def test_ids_strictly_increase_with_frozen_clock(self):
        center = NotificationCenter(clock=frozen_clock)
        ids = [center.add("u1", "Ann", str(i)).id for i in range(5)]
        assert ids == sorted(set(ids))
        assert ids[0] == 1_700_000_000_000

    def test_mark_read_decrements_once(self):
        center = NotificationCenter()
        note = center.add("u1", "Ann", "hi")
        center.add("u2", "Ben", "yo")

        center.mark_read(note.id)
        center.mark_read(note.id)

        assert note.isRead is True
        assert center.unread_count == 1

    def test_mark_read_unknown_id(self):
        center = NotificationCenter()
        center.add("u1", "Ann", "hi")
        center.mark_read(-1)
        assert center.unread_count == 1

    def test_unread_count_never_negative(self):
        center = NotificationCenter()
        note = center.add("u1", "Ann", "hi")
        center.unread_count = 0
        center.mark_read(note.id)
        assert center.unread_count == 0

    def test_remove_keeps_unread_count(self):
        center = NotificationCenter()
        note = center.add("u1", "Ann", "hi")
        center.remove(note.id)
        assert center.notifications == []
        assert center.unread_count == 1

    def test_dismiss_closes_popup(self):
        center = NotificationCenter()
        note = center.add("u1", "Ann", "hi")
        center.dismiss(note.id)
        assert center.current_popup is None
        assert center.get(note.id) is None

    def test_clear_all(self):
        center = NotificationCenter()
        center.add("u1", "Ann", "hi")
        center.add("u2", "Ben", "yo")
        center.clear_all()
        assert center.notifications == []
        assert center.unread_count == 0
        assert center.current_popup is None

    def test_popup_persists_without_event_loop(self):
        center = NotificationCenter(popup_timeout=0.01)
        note = center.add("u1", "Ann", "hi")
        assert center.current_popup is note

    @pytest.mark.asyncio
    async def test_popup_auto_dismisses(self):
        center = NotificationCenter(popup_timeout=0.05)
        note = center.add("u1", "Ann", "hi")
        assert center.current_popup is note

        await asyncio.sleep(0.1)

        assert center.current_popup is None
        assert center.get(note.id) is None

    @pytest.mark.asyncio
    async def test_newer_popup_replaces_timer(self):
        center = NotificationCenter(popup_timeout=0.08)
        first = center.add("u1", "Ann", "hi")
        await asyncio.sleep(0.05)
        second = center.add("u2", "Ben", "yo")
        await asyncio.sleep(0.05)

        # The first timer was cancelled; the second has not fired yet.
        assert center.current_popup is second
        assert center.get(first.id) is first

        await asyncio.sleep(0.06)
        assert center.current_popup is None

    @pytest.mark.asyncio
    async def test_attach_to_stream(self):
        stream = EventStream()
        center = NotificationCenter(popup_timeout=1)
        subscription = center.attach(stream)

        await stream.emit("new-message", {
            "type": "new-message",
            "senderId": "u1",
            "senderName": "Ann",
            "message": "Still available?",
        })
        subscription.unsubscribe()
        await stream.emit("new-message", {"senderId": "u1"})

        assert len(center.notifications) == 1
        note = center.notifications[0]
        assert (note.senderId, note.senderName, note.message) == ("u1", "Ann", "Still available?")
        center.clear_all()
