"""
draftroom.services.room_locks
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

按房间码划分的异步锁 —— 同一房间的读-改-写串行执行，不同房间互不阻塞。

锁在没有持有者也没有等待者时自动回收，避免房间码无限增长导致内存泄漏。
只在单进程内有效（不支持多 worker / 多实例部署）。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class RoomLocks:
    """房间码 -> ``asyncio.Lock`` 的注册表。"""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, code: str) -> AsyncIterator[None]:
        """独占指定房间，直到退出上下文。

        Usage::

            async with locks.hold("XYZ"):
                ...  # load -> mutate -> save -> broadcast
        """
        lock = self._locks.setdefault(code, asyncio.Lock())
        self._users[code] = self._users.get(code, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[code] -= 1
            if self._users[code] == 0:
                del self._users[code]
                del self._locks[code]

    def is_locked(self, code: str) -> bool:
        lock = self._locks.get(code)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
