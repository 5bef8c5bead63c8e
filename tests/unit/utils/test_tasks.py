"""Tests for BackgroundTaskGroup."""

from __future__ import annotations

import asyncio

import pytest

pytestmark = [pytest.mark.unit]

from swarmfetch.utils.tasks import BackgroundTaskGroup


@pytest.mark.asyncio
async def test_tracks_and_discards_finished_tasks():
    group = BackgroundTaskGroup()

    async def quick():
        return 1

    task = group.create(quick(), name="quick")
    assert len(group) == 1
    assert await task == 1
    await asyncio.sleep(0)
    assert len(group) == 0


@pytest.mark.asyncio
async def test_cancel_and_wait():
    group = BackgroundTaskGroup()
    task = group.create(asyncio.sleep(60))
    await group.cancel_and_wait(timeout=1.0)
    assert task.cancelled()
    assert len(group) == 0
