"""
Unit tests for cancellation tokens and deferred tasks.
"""

import asyncio

import pytest

from search_intel.concurrency import CancellationToken, DeferredTask, RequestCancelledError


def test_token_starts_active():
    token = CancellationToken("mach")
    assert not token.cancelled
    token.raise_if_cancelled()


def test_cancel_is_idempotent():
    token = CancellationToken("mach")

    token.cancel()
    token.cancel()

    assert token.cancelled
    assert "cancelled" in repr(token)


def test_raise_if_cancelled():
    token = CancellationToken("machine")
    token.cancel()
    with pytest.raises(RequestCancelledError, match="machine"):
        token.raise_if_cancelled()


def test_deferred_task_runs_immediately_without_loop():
    calls = []
    task = DeferredTask("flush")

    armed = task.schedule(lambda: calls.append(1), 0.1)

    assert armed is False
    assert calls == [1]
    assert not task.armed


@pytest.mark.asyncio
async def test_deferred_task_schedules_once():
    calls = []
    task = DeferredTask("flush")

    assert task.schedule(lambda: calls.append("first"), 0.01) is True
    assert task.schedule(lambda: calls.append("second"), 0.01) is False
    assert task.armed

    await asyncio.sleep(0.05)

    assert calls == ["first"]
    assert not task.armed


@pytest.mark.asyncio
async def test_deferred_task_cancel_and_rearm():
    calls = []
    task = DeferredTask("flush")

    task.schedule(lambda: calls.append("cancelled"), 0.01)
    task.cancel()
    await asyncio.sleep(0.03)
    assert calls == []

    task.schedule(lambda: calls.append("rearmed"), 0.01)
    await asyncio.sleep(0.03)
    assert calls == ["rearmed"]

