"""Tests for the client-side event stream and subscriptions."""
import pytest

from app.client.events import EventStream


class TestEventStream:

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        stream = EventStream()
        seen = []

        def on_sync(data):
            seen.append(("sync", data["n"]))

        async def on_async(data):
            seen.append(("async", data["n"]))

        stream.subscribe("receive-message", on_sync)
        stream.subscribe("receive-message", on_async)
        await stream.emit("receive-message", {"n": 1})

        assert seen == [("sync", 1), ("async", 1)]

    @pytest.mark.asyncio
    async def test_only_matching_type(self):
        stream = EventStream()
        seen = []
        stream.subscribe("new-message", seen.append)

        await stream.emit("receive-message", {"n": 1})
        await stream.emit("new-message", {"n": 2})

        assert seen == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        stream = EventStream()
        seen = []
        sub = stream.subscribe("user-typing", seen.append)

        sub.unsubscribe()
        sub.unsubscribe()
        await stream.emit("user-typing", {})

        assert seen == []
        assert stream.handler_count("user-typing") == 0
        assert sub.active is False

    @pytest.mark.asyncio
    async def test_subscription_as_context_manager(self):
        stream = EventStream()
        seen = []
        with stream.subscribe("new-message", seen.append):
            await stream.emit("new-message", {"n": 1})
        await stream.emit("new-message", {"n": 2})

        assert seen == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        stream = EventStream()
        seen = []

        def broken(data):
            raise RuntimeError("boom")

        stream.subscribe("new-message", broken)
        stream.subscribe("new-message", seen.append)
        await stream.emit("new-message", {"n": 1})

        assert seen == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_unsubscribe_during_emit(self):
        stream = EventStream()
        seen = []

        def once(data):
            seen.append(data)
            sub.unsubscribe()

        sub = stream.subscribe("new-message", once)
        await stream.emit("new-message", {"n": 1})
        await stream.emit("new-message", {"n": 2})

        assert seen == [{"n": 1}]

    @pytest.mark.asyncio
    async def test_emit_without_handlers(self):
        await EventStream().emit("nothing", {})
