"""Cooperative shutdown signalling between a server and its running tasks."""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import timedelta


class _CancelState:
    def __init__(self) -> None:
        self.event = asyncio.Event()
        self.lock = threading.Lock()
        self.count = 0

    def add(self, delta: int) -> None:
        with self.lock:
            self.count += delta


def new_cancel() -> tuple[CancelSender, CancelManager]:
    """Create a linked sender and manager pair."""
    state = _CancelState()
    return CancelSender(state), CancelManager(state)


class CancelSender:
    """Raises the cancel signal and waits for tasks to finish."""

    def __init__(self, state: _CancelState) -> None:
        self._state = state

    def cancel(self) -> None:
        """Signal every receiver that work should stop."""
        self._state.event.set()

    async def wait(self, wait_seconds: float | timedelta) -> None:
        """Wait until all tasks have finished or the timeout has elapsed."""
        if isinstance(wait_seconds, timedelta):
            wait_seconds = wait_seconds.total_seconds()
        deadline = time.monotonic() + wait_seconds
        ticks = 0
        while self._state.count != 0 and time.monotonic() < deadline:
            await asyncio.sleep(0.1)
            ticks += 1
            if ticks % 10 == 0:
                print(f"wait {ticks // 10}s ...")

    async def cancel_and_wait(self, wait_seconds: float | timedelta) -> None:
        """Cancel, then wait for tasks to end or the timeout to pass."""
        self.cancel()
        await self.wait(wait_seconds)

    def count(self) -> int:
        """Number of tasks that have not finished yet."""
        return self._state.count


class CancelManager:
    """Hands out receivers for tasks that must observe cancellation."""

    def __init__(self, state: _CancelState) -> None:
        self._state = state

    def is_cancel(self) -> bool:
        return self._state.event.is_set()

    def new_task_cancel(self) -> CancelReceiver:
        """Register a new task and return its receiver."""
        return CancelReceiver(self._state)

    def count(self) -> int:
        return self._state.count


class CancelReceiver:
    """A task's view of the cancel signal; counts as running until finished."""

    def __init__(self, state: _CancelState) -> None:
        self._state = state
        self._finished = False
        self._finish_lock = threading.Lock()
        state.add(1)

    async def cancelled(self) -> None:
        """Wait until cancellation is signalled."""
        await self._state.event.wait()

    def finish(self) -> None:
        """Mark this task as finished; further calls have no effect."""
        with self._finish_lock:
            if self._finished:
                return
            self._finished = True
        self._state.add(-1)

    def is_cancel(self) -> bool:
        return self._state.event.is_set()

    def count(self) -> int:
        return self._state.count

    def clone(self) -> CancelReceiver:
        """Register another task sharing the same signal."""
        return CancelReceiver(self._state)

    def __enter__(self) -> CancelReceiver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.finish()