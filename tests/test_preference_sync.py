from __future__ import annotations

import asyncio

import pytest

from agency_core.tenancy.sync import PreferenceSync


@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff(fake_client) -> None:
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    fake_client.fail("set_current_tenant_preference", times=2)
    sync = PreferenceSync(fake_client, max_attempts=3, backoff_seconds=0.5, sleep=record_sleep)

    assert await sync.schedule("u1", "t2") is True
    assert fake_client.preferences["u1"] == "t2"
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(fake_client) -> None:
    fake_client.fail("set_current_tenant_preference")
    sync = PreferenceSync(fake_client, max_attempts=3, backoff_seconds=0.0)

    assert await sync.schedule("u1", "t2") is False
    assert fake_client.calls_to("set_current_tenant_preference") == 3
    assert "u1" not in fake_client.preferences


@pytest.mark.asyncio
async def test_newer_request_supersedes_pending_one(fake_client) -> None:
    fake_client.delays["set_current_tenant_preference"] = 0.05
    sync = PreferenceSync(fake_client, backoff_seconds=0.0)

    first = sync.schedule("u1", "t1")
    second = sync.schedule("u1", "t2")
    await sync.drain()

    assert first.cancelled()
    assert second.result() is True
    assert fake_client.preferences["u1"] == "t2"
    assert sync.pending is None


@pytest.mark.asyncio
async def test_close_cancels_pending_write(fake_client) -> None:
    fake_client.delays["set_current_tenant_preference"] = 1.0
    sync = PreferenceSync(fake_client)

    task = sync.schedule("u1", "t1")
    await asyncio.sleep(0)
    await sync.close()

    assert task.cancelled()
    assert sync.pending is None
    assert "u1" not in fake_client.preferences


@pytest.mark.asyncio
async def test_drain_without_pending_write_returns(fake_client) -> None:
    await PreferenceSync(fake_client).drain()
