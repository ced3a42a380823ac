"""Outbound typing indicator with an inactivity debounce.

The first keystroke emits ``isTyping=True`` immediately. Every keystroke
re-arms an inactivity timer; when it expires (1 second by default) a single
``isTyping=False`` is emitted. Sending a message stops typing at once.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TypingNotifier:
    """Edge-triggered start, timeout-triggered stop.

    Args:
        emit: Coroutine function called with the new typing state.
        timeout: Seconds of inactivity before typing is considered stopped.
    """

    def __init__(self, emit: Callable[[bool], Awaitable[Any]], timeout: float = 1.0) -> None:
        self._emit = emit
        self.timeout = timeout
        self.signaled = False
        self._timer: Optional[asyncio.Task] = None

    async def keystroke(self) -> None:
        if not self.signaled:
            self.signaled = True
            await self._emit(True)
        self._rearm()

    async def stop(self) -> None:
        """Emit the stop signal now if typing was signaled."""
        self._cancel_timer()
        await self._signal_stop()

    def close(self) -> None:
        """Drop any pending timer without emitting."""
        self._cancel_timer()
        self.signaled = False

    def _rearm(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._expire_after())

    def _cancel_timer(self) -> None:
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None

    async def _expire_after(self) -> None:
        await asyncio.sleep(self.timeout)
        self._timer = None
        await self._signal_stop()

    async def _signal_stop(self) -> None:
        if not self.signaled:
            return
        self.signaled = False
        try:
            await self._emit(False)
        except Exception as e:
            logger.debug(f"[Typing] Failed to emit stop: {e}")
