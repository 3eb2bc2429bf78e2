"""
tests.test_room_locks
~~~~~~~~~~~~~~~~~~~~~

按房间划分的锁：同房间串行，不同房间并发，空闲后回收。
"""
from __future__ import annotations

import asyncio

import pytest

from draftroom.services.room_locks import RoomLocks


@pytest.mark.asyncio
async def test_same_room_is_serialized() -> None:
    locks = RoomLocks()
    order: list[str] = []

    async def critical(tag: str) -> None:
        async with locks.hold("XYZ"):
            order.append(f"{tag}-in")
            await asyncio.sleep(0.01)
            order.append(f"{tag}-out")

    await asyncio.gather(critical("a"), critical("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_rooms_do_not_block() -> None:
    locks = RoomLocks()
    entered = asyncio.Event()

    async def hold_first() -> None:
        async with locks.hold("AAA"):
            await asyncio.wait_for(entered.wait(), timeout=1)

    async def enter_second() -> None:
        async with locks.hold("BBB"):
            entered.set()

    await asyncio.gather(hold_first(), enter_second())

    assert entered.is_set()


@pytest.mark.asyncio
async def test_idle_locks_are_released() -> None:
    locks = RoomLocks()

    async with locks.hold("XYZ"):
        assert locks.is_locked("XYZ")
        assert len(locks) == 1

    assert not locks.is_locked("XYZ")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error() -> None:
    locks = RoomLocks()

    with pytest.raises(RuntimeError):
        async with locks.hold("XYZ"):
            raise RuntimeError("boom")

    assert len(locks) == 0
