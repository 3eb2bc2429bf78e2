"""
draftroom.services.room_session
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间状态机 —— 加入 / 开局 / 选择三种事件的状态转移规则。

状态: ``LOBBY`` → ``DRAFTING`` → ``FINISHED``（之后由存储层的 TTL 清理）。

每个转移函数都是纯函数：接收当前 ``RoomSession``，返回 ``Transition``
（新状态 + 需要广播/回放的事件 + 是否接受），本身不做任何 I/O。
持久化与广播由 ``DraftGateway`` 在房间锁内完成。
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from draftroom.schemas.events import (
    DraftFinished,
    DraftStarted,
    DraftUpdate,
    LobbyUpdate,
    OutboundEvent,
)
from draftroom.schemas.room import Item, Participant, PickSlot, RoomSession, RoomState

# 拒绝原因（会原样展示给用户）
REASON_NAME_TAKEN = "Nickname already taken in this room."
REASON_UNKNOWN_MANAGER = "Draft in progress, only existing managers may re-join."
REASON_FINISHED = "Draft already finished."


class DraftRoomError(Exception):
    """选秀房间相关错误的基类。"""


class StorageError(DraftRoomError):
    """房间存储读写失败。"""


class RoomNotFound(DraftRoomError):
    """指定房间码不存在。"""

    def __init__(self, code: str) -> None:
        super().__init__(f"Room not found: {code}")
        self.code = code


@dataclass
class Transition:
    """一次状态转移的结果。

    Attributes:
        accepted: 是否接受该事件。
        session: 转移后的新状态；未接受时为 None（不需要持久化）。
        reason: 拒绝/忽略原因。``user_visible`` 为 True 时会回给调用方。
        user_visible: 拒绝原因是否需要告知用户（校验拒绝），否则只记日志（竞态忽略）。
        broadcast: 需要广播给房间所有订阅者的事件（按顺序）。
        replay: 只发给发起连接的事件（按顺序，在广播之后发送）。
    """

    accepted: bool
    session: RoomSession | None = None
    reason: str | None = None
    user_visible: bool = False
    broadcast: list[OutboundEvent] = field(default_factory=list)
    replay: list[OutboundEvent] = field(default_factory=list)

    @classmethod
    def reject(cls, reason: str) -> Transition:
        return cls(accepted=False, reason=reason, user_visible=True)

    @classmethod
    def ignore(cls, reason: str) -> Transition:
        return cls(accepted=False, reason=reason)


def new_session(code: str) -> RoomSession:
    return RoomSession(code=code)


def draft_started_event(session: RoomSession) -> DraftStarted:
    return DraftStarted(
        turn_order_names=list(session.turn_order_names),
        turn_order_connections=list(session.turn_order_connections),
        pool=list(session.pool),
    )


def draft_update_event(session: RoomSession) -> DraftUpdate:
    return DraftUpdate(
        pick_schedule=list(session.pick_schedule),
        pool=list(session.pool),
        next_connection=session.next_connection(),
    )


def join(session: RoomSession, display_name: str, connection_id: str) -> Transition:
    """成员加入或重连。

    - LOBBY：名字已存在则拒绝，否则追加到成员列表。
    - DRAFTING：只允许已有成员重连，重新绑定其连接 ID（包括选秀顺序中的所有槽位）。
    - FINISHED：房间只读，拒绝。
    """
    state = session.state
    if state is RoomState.FINISHED:
        return Transition.reject(REASON_FINISHED)

    updated = session.model_copy(deep=True)
    existing = updated.find_participant(display_name)

    if state is RoomState.LOBBY:
        if existing is not None:
            return Transition.reject(REASON_NAME_TAKEN)
        updated.participants.append(
            Participant(connection_id=connection_id, display_name=display_name),
        )
        return Transition(
            accepted=True,
            session=updated,
            broadcast=[LobbyUpdate(participant_names=updated.participant_names)],
        )

    # DRAFTING
    if existing is None:
        return Transition.reject(REASON_UNKNOWN_MANAGER)
    old_id = existing.connection_id
    existing.connection_id = connection_id
    updated.turn_order_connections = [
        connection_id if cid == old_id else cid
        for cid in updated.turn_order_connections
    ]
    return Transition(
        accepted=True,
        session=updated,
        broadcast=[LobbyUpdate(participant_names=updated.participant_names)],
        replay=[draft_started_event(updated), draft_update_event(updated)],
    )


def start(
    session: RoomSession,
    turn_order_names: Sequence[str],
    catalog: Sequence[Item],
) -> Transition:
    """开局：固定选秀顺序，快照选秀池，初始化空的选秀表。

    任何前置条件不满足都只忽略（记日志），不告知用户。
    """
    if session.state is not RoomState.LOBBY:
        return Transition.ignore(f"room is {session.state.value}, not lobby")
    if not session.participants:
        return Transition.ignore("no participants")
    if not turn_order_names:
        return Transition.ignore("empty turn order")

    connection_by_name = {p.display_name: p.connection_id for p in session.participants}
    unknown = sorted({name for name in turn_order_names if name not in connection_by_name})
    if unknown:
        return Transition.ignore(f"unknown names in turn order: {unknown}")

    rounds, remainder = divmod(len(turn_order_names), len(session.participants))
    if remainder:
        return Transition.ignore(
            f"turn order length {len(turn_order_names)} is not a multiple of "
            f"{len(session.participants)} participants",
        )

    updated = session.model_copy(deep=True)
    updated.turn_order_names = list(turn_order_names)
    updated.turn_order_connections = [connection_by_name[name] for name in turn_order_names]
    updated.round_count = rounds
    updated.pool = list(catalog)
    updated.pick_schedule = [None] * len(turn_order_names)
    updated.started = True
    return Transition(
        accepted=True,
        session=updated,
        broadcast=[draft_started_event(updated)],
    )


def pick(
    session: RoomSession,
    connection_id: str,
    item_name: str,
    slot_index: int,
    now: datetime,
    enforce_turn_order: bool = False,
) -> Transition:
    """提交一个选择。先到先得：槽位已被占用时静默忽略。

    最后一个槽位被填满时房间进入 FINISHED，只广播 ``draft-finished``。
    """
    if session.state is not RoomState.DRAFTING:
        return Transition.ignore(f"room is {session.state.value}, not drafting")
    if not 0 <= slot_index < len(session.pick_schedule):
        return Transition.ignore(f"slot {slot_index} out of range")
    if session.pick_schedule[slot_index] is not None:
        return Transition.ignore(f"slot {slot_index} already filled")
    if enforce_turn_order and session.turn_order_connections[slot_index] != connection_id:
        return Transition.ignore(f"slot {slot_index} belongs to another connection")

    pool_index = next(
        (i for i, item in enumerate(session.pool) if item.name == item_name),
        None,
    )
    if pool_index is None:
        return Transition.ignore(f"item {item_name!r} not in pool")

    updated = session.model_copy(deep=True)
    item = updated.pool.pop(pool_index)
    updated.pick_schedule[slot_index] = PickSlot(item=item, connection_id=connection_id)

    if updated.next_slot() is None:
        updated.finished_at = now
        return Transition(
            accepted=True,
            session=updated,
            broadcast=[DraftFinished(pick_schedule=list(updated.pick_schedule))],
        )
    return Transition(
        accepted=True,
        session=updated,
        broadcast=[draft_update_event(updated)],
    )
