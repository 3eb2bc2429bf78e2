"""
draftroom.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接广播器 —— 维护每个房间的订阅连接与广播能力。

``RoomHub`` 管理所有在线连接（连接 ID -> WebSocket）以及每个连接当前订阅的房间；
``RoomBroadcaster`` 负责单个房间内的扇出。同一房间的广播由调用方在房间锁内
依次 ``await``，因此所有订阅者看到的事件顺序与提交顺序一致。
"""
from __future__ import annotations

import asyncio

from fastapi import WebSocket

from draftroom.core.logging import get_logger
from draftroom.schemas.events import OutboundEvent, encode_event

logger = get_logger(__name__)


class RoomBroadcaster:
    """单个房间的订阅者集合。

    Attributes:
        code: 房间码。
        subscribers: 连接 ID -> WebSocket，按订阅先后排列。
    """

    def __init__(self, code: str) -> None:
        self.code = code
        self.subscribers: dict[str, WebSocket] = {}

    def subscribe(self, connection_id: str, websocket: WebSocket) -> None:
        self.subscribers[connection_id] = websocket

    def unsubscribe(self, connection_id: str) -> None:
        self.subscribers.pop(connection_id, None)

    async def broadcast(self, message: str) -> list[str]:
        """向本房间所有订阅者广播消息。

        Returns:
            发送失败（已断开）的连接 ID 列表，这些连接已被移出订阅。
        """
        targets = list(self.subscribers.items())
        results = await asyncio.gather(
            *(ws.send_text(message) for _, ws in targets),
            return_exceptions=True,
        )
        failed: list[str] = []
        for (connection_id, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("广播失败，移除断开的连接 | room=%s | conn=%s", self.code, connection_id)
                self.subscribers.pop(connection_id, None)
                failed.append(connection_id)
        return failed

    @property
    def online_count(self) -> int:
        """当前订阅连接数。"""
        return len(self.subscribers)


class RoomHub:
    """全部房间的订阅关系。一个连接同一时刻最多订阅一个房间。"""

    def __init__(self) -> None:
        self._connections: dict[str, WebSocket] = {}
        self._rooms: dict[str, RoomBroadcaster] = {}
        self._room_of: dict[str, str] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        """登记一个新建立的连接（尚未订阅任何房间）。"""
        self._connections[connection_id] = websocket

    def unregister(self, connection_id: str) -> None:
        """连接断开：移出订阅，但不影响房间成员关系。"""
        self.unsubscribe(connection_id)
        self._connections.pop(connection_id, None)

    def subscribe(self, code: str, connection_id: str) -> None:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            return
        current = self._room_of.get(connection_id)
        if current is not None and current != code:
            self.unsubscribe(connection_id)
        self._rooms.setdefault(code, RoomBroadcaster(code)).subscribe(connection_id, websocket)
        self._room_of[connection_id] = code

    def unsubscribe(self, connection_id: str) -> None:
        code = self._room_of.pop(connection_id, None)
        if code is None:
            return
        broadcaster = self._rooms.get(code)
        if broadcaster is None:
            return
        broadcaster.unsubscribe(connection_id)
        if broadcaster.online_count == 0:
            del self._rooms[code]

    def close_room(self, code: str) -> None:
        """房间被删除时移除其全部订阅。"""
        broadcaster = self._rooms.pop(code, None)
        if broadcaster is None:
            return
        for connection_id in broadcaster.subscribers:
            self._room_of.pop(connection_id, None)

    def room_of(self, connection_id: str) -> str | None:
        return self._room_of.get(connection_id)

    def online_count(self, code: str) -> int:
        broadcaster = self._rooms.get(code)
        return broadcaster.online_count if broadcaster else 0

    async def broadcast(self, code: str, event: OutboundEvent) -> None:
        broadcaster = self._rooms.get(code)
        if broadcaster is None:
            return
        failed = await broadcaster.broadcast(encode_event(event))
        for connection_id in failed:
            self._room_of.pop(connection_id, None)
        if broadcaster.online_count == 0:
            self._rooms.pop(code, None)

    async def send(self, connection_id: str, message: str) -> bool:
        """只发给一个连接。连接已断开时返回 False。"""
        websocket = self._connections.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(message)
        except Exception as e:
            logger.warning("发送失败: %s | conn=%s", e, connection_id)
            return False
        return True

    async def send_event(self, connection_id: str, event: OutboundEvent) -> bool:
        return await self.send(connection_id, encode_event(event))
