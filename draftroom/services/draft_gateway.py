"""
draftroom.services.draft_gateway
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

选秀网关 —— 把入站意图（加入 / 开局 / 选择）映射到房间状态机，
并把结果广播给房间内所有订阅连接。

每个操作在房间锁内完成完整的 读取 → 转移 → 持久化 → 广播 流程：

- 同一房间的操作严格串行，不同房间互不阻塞；
- 持久化成功之后才广播，广播内容永远是已落盘的状态；
- 持久化失败时不广播任何内容（fail-closed），下一次读取仍是旧状态。

在 FastAPI lifespan 中创建，挂载于 ``app.state.gateway``。
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Protocol

from draftroom.core.logging import get_logger
from draftroom.schemas.events import (
    ApplyAck,
    JoinAck,
    JoinRoomRequest,
    MakePickRequest,
    StartDraftRequest,
)
from draftroom.schemas.room import Item, RoomSession, RoomSnapshot
from draftroom.services import room_session
from draftroom.services.room_broadcaster import RoomHub
from draftroom.services.room_locks import RoomLocks
from draftroom.services.room_session import StorageError, Transition

logger = get_logger(__name__)

REASON_JOIN_SERVER_ERROR = "Server error during join"
REASON_SERVER_ERROR = "Server error"


class RoomStore(Protocol):
    """网关依赖的房间存储接口（``RoomRepository`` 实现）。"""

    async def get(self, code: str) -> RoomSession | None: ...

    async def create(self, code: str) -> RoomSession: ...

    async def save(self, session: RoomSession) -> None: ...

    async def delete(self, code: str) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DraftGateway:
    """选秀网关。

    Attributes:
        repo: 房间存储。
        catalog: 只读的选秀池目录，开局时按值快照进房间。
        hub: 连接与订阅管理。
        enforce_turn_order: 是否只允许轮到的连接提交对应槽位。
    """

    def __init__(
        self,
        repo: RoomStore,
        catalog: Sequence[Item],
        hub: RoomHub | None = None,
        enforce_turn_order: bool = False,
        clock: Callable[[], datetime] = _utcnow,
        locks: RoomLocks | None = None,
    ) -> None:
        self.repo = repo
        self.catalog: tuple[Item, ...] = tuple(catalog)
        self.hub = hub or RoomHub()
        self.enforce_turn_order = enforce_turn_order
        self._clock = clock
        self._locks = locks if locks is not None else RoomLocks()

    # ── 实时事件 ──────────────────────────────────────────────────────

    async def join_room(self, connection_id: str, request: JoinRoomRequest) -> JoinAck:
        """加入或重连房间。接受后订阅该房间并广播成员列表；选秀进行中时向本连接回放完整状态。"""
        code = request.code
        async with self._locks.hold(code):
            try:
                session = await self.repo.get(code)
                if session is None:
                    session = room_session.new_session(code)
                transition = room_session.join(session, request.display_name, connection_id)
                if not transition.accepted:
                    logger.info(
                        "拒绝加入 | room=%s | name=%s | reason=%s",
                        code, request.display_name, transition.reason,
                    )
                    return JoinAck(accepted=False, reason=transition.reason)
                await self.repo.save(transition.session)
            except StorageError as e:
                logger.error("加入房间时存储失败: %s | room=%s", e, code, exc_info=True)
                return JoinAck(accepted=False, reason=REASON_JOIN_SERVER_ERROR)

            self.hub.subscribe(code, connection_id)
            logger.info(
                "加入房间 | room=%s | name=%s | state=%s",
                code, request.display_name, transition.session.state.value,
            )
            await self._publish(code, connection_id, transition)
        return JoinAck(accepted=True)

    async def start_draft(self, connection_id: str, request: StartDraftRequest) -> ApplyAck:
        """开局。谁可以开局由调用方决定；不合法的请求只记日志后忽略。"""
        code = request.code
        async with self._locks.hold(code):
            try:
                session = await self.repo.get(code)
                if session is None:
                    logger.warning("startDraft: 房间不存在 | room=%s", code)
                    return ApplyAck(applied=False, reason="room not found")
                transition = room_session.start(session, request.turn_order_names, self.catalog)
                if not transition.accepted:
                    logger.warning("startDraft 被忽略 | room=%s | reason=%s", code, transition.reason)
                    return ApplyAck(applied=False, reason=transition.reason)
                await self.repo.save(transition.session)
            except StorageError as e:
                logger.error("开局时存储失败: %s | room=%s", e, code, exc_info=True)
                return ApplyAck(applied=False, reason=REASON_SERVER_ERROR)

            logger.info(
                "🚀 选秀开始 | room=%s | %d 人 × %d 轮",
                code, len(transition.session.participants), transition.session.round_count,
            )
            await self._publish(code, connection_id, transition)
        return ApplyAck(applied=True)

    async def make_pick(self, connection_id: str, request: MakePickRequest) -> ApplyAck:
        """提交一个选择。过期/重复请求静默忽略，由下一次广播让客户端重新同步。"""
        code = request.code
        async with self._locks.hold(code):
            try:
                session = await self.repo.get(code)
                if session is None:
                    logger.debug("makePick: 房间不存在 | room=%s", code)
                    return ApplyAck(applied=False, reason="room not found")
                transition = room_session.pick(
                    session,
                    connection_id,
                    request.item_name,
                    request.slot_index,
                    now=self._clock(),
                    enforce_turn_order=self.enforce_turn_order,
                )
                if not transition.accepted:
                    logger.debug("makePick 被忽略 | room=%s | reason=%s", code, transition.reason)
                    return ApplyAck(applied=False, reason=transition.reason)
                await self.repo.save(transition.session)
            except StorageError as e:
                logger.error("选择时存储失败: %s | room=%s", e, code, exc_info=True)
                return ApplyAck(applied=False, reason=REASON_SERVER_ERROR)

            if transition.session.finished_at is not None:
                logger.info("🏁 选秀结束 | room=%s", code)
            await self._publish(code, connection_id, transition)
        return ApplyAck(applied=True)

    def disconnect(self, connection_id: str) -> None:
        """连接断开：只移除订阅，成员与其槽位保留，可通过重连重新绑定。"""
        self.hub.unregister(connection_id)

    # ── 请求/应答 ─────────────────────────────────────────────────────

    async def read_room(self, code: str) -> RoomSnapshot | None:
        """读取已持久化的房间快照，不存在返回 None。"""
        session = await self.repo.get(code)
        return session.snapshot() if session is not None else None

    async def delete_room(self, code: str) -> bool:
        """删除房间并移除其所有订阅。房间不存在时返回 False。"""
        async with self._locks.hold(code):
            deleted = await self.repo.delete(code)
            if deleted:
                self.hub.close_room(code)
                logger.info("房间已删除 | room=%s", code)
        return deleted

    # ── 内部 ──────────────────────────────────────────────────────────

    async def _publish(self, code: str, connection_id: str, transition: Transition) -> None:
        # 先广播，再回放给发起连接；调用方持有房间锁
        for event in transition.broadcast:
            await self.hub.broadcast(code, event)
        for event in transition.replay:
            await self.hub.send_event(connection_id, event)
