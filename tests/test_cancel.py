import asyncio
import time
from datetime import timedelta

import pytest

from apiforge.cancel import new_cancel


def test_task_counting_and_finish_once():
    sender, manager = new_cancel()
    assert sender.count() == 0
    first = manager.new_task_cancel()
    second = manager.new_task_cancel()
    assert manager.count() == 2
    first.finish()
    first.finish()
    assert sender.count() == 1
    assert second.count() == 1
    second.finish()
    assert manager.count() == 0


def test_clone_registers_new_task():
    _, manager = new_cancel()
    receiver = manager.new_task_cancel()
    copy = receiver.clone()
    assert manager.count() == 2
    copy.finish()
    assert manager.count() == 1
    receiver.finish()
    assert manager.count() == 0


def test_context_manager_finishes():
    _, manager = new_cancel()
    with manager.new_task_cancel() as receiver:
        assert receiver.count() == 1
    assert manager.count() == 0


def test_cancel_flag_visible_everywhere():
    sender, manager = new_cancel()
    receiver = manager.new_task_cancel()
    assert not manager.is_cancel()
    assert not receiver.is_cancel()
    sender.cancel()
    assert manager.is_cancel()
    assert receiver.is_cancel()


@pytest.mark.asyncio
async def test_cancelled_wakes_waiting_task():
    sender, manager = new_cancel()
    receiver = manager.new_task_cancel()

    async def worker():
        await receiver.cancelled()
        receiver.finish()
        return "stopped"

    task = asyncio.create_task(worker())
    await asyncio.sleep(0.01)
    assert not task.done()
    sender.cancel()
    assert await asyncio.wait_for(task, 1) == "stopped"
    assert sender.count() == 0


@pytest.mark.asyncio
async def test_cancelled_returns_when_already_cancelled():
    sender, manager = new_cancel()
    sender.cancel()
    receiver = manager.new_task_cancel()
    await asyncio.wait_for(receiver.cancelled(), 1)
    assert receiver.is_cancel()


@pytest.mark.asyncio
async def test_cancel_and_wait_returns_after_tasks_finish():
    sender, manager = new_cancel()
    receiver = manager.new_task_cancel()

    async def worker():
        await receiver.cancelled()
        await asyncio.sleep(0.05)
        receiver.finish()

    task = asyncio.create_task(worker())
    start = time.monotonic()
    await sender.cancel_and_wait(timedelta(seconds=5))
    assert time.monotonic() - start < 2
    assert sender.count() == 0
    await task


@pytest.mark.asyncio
async def test_wait_gives_up_after_timeout():
    sender, manager = new_cancel()
    manager.new_task_cancel()
    start = time.monotonic()
    await sender.wait(0.2)
    elapsed = time.monotonic() - start
    assert elapsed >= 0.15
    assert elapsed < 2
    assert sender.count() == 1