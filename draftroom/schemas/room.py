"""
draftroom.schemas.room
~~~~~~~~~~~~~~~~~~~~~~

选秀房间领域模型（Pydantic）。

同一套模型既用于 MongoDB 持久化（snake_case 字段名），也用于线上协议
（camelCase 别名，``model_dump(by_alias=True)``）。选秀池条目按值内嵌在
``pool`` 与 ``pick_schedule`` 中，开局后目录变化不会影响进行中的房间。
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """线上协议统一使用 camelCase 别名，持久化与代码内部使用字段名。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Item(WireModel):
    """选秀池中的一个条目（只读）。

    Attributes:
        name: 唯一名称，池内的自然键。
        category: 分类代码，例如场上位置。
        team: 所属队伍/分组。
        attributes: 其余描述性字段，原样保留。
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="唯一名称")
    category: str = Field(default="", description="分类代码")
    team: str = Field(default="", description="队伍/分组")
    attributes: dict[str, str] = Field(default_factory=dict, description="其余原始字段")


class Participant(WireModel):
    """房间成员。``display_name`` 是跨重连的稳定身份，``connection_id`` 每次加入都会重新绑定。"""

    connection_id: str
    display_name: str


class PickSlot(WireModel):
    """选秀表中已提交的一个槽位。"""

    item: Item
    connection_id: str


class RoomState(str, Enum):
    LOBBY = "lobby"
    DRAFTING = "drafting"
    FINISHED = "finished"


class RoomSession(WireModel):
    """一个选秀房间的完整状态，以 ``code`` 为键持久化。

    只允许通过 ``draftroom.services.room_session`` 中的状态转移函数修改。
    """

    code: str
    participants: list[Participant] = Field(default_factory=list)
    turn_order_names: list[str] = Field(default_factory=list)
    turn_order_connections: list[str] = Field(default_factory=list)
    pick_schedule: list[PickSlot | None] = Field(default_factory=list)
    pool: list[Item] = Field(default_factory=list)
    round_count: int = 0
    started: bool = False
    finished_at: datetime | None = None

    @property
    def state(self) -> RoomState:
        if self.finished_at is not None:
            return RoomState.FINISHED
        if self.started:
            return RoomState.DRAFTING
        return RoomState.LOBBY

    @property
    def participant_names(self) -> list[str]:
        return [p.display_name for p in self.participants]

    def find_participant(self, display_name: str) -> Participant | None:
        """按显示名精确匹配（区分大小写）。"""
        for participant in self.participants:
            if participant.display_name == display_name:
                return participant
        return None

    def next_slot(self) -> int | None:
        """第一个空槽位的下标，全部提交后为 None。"""
        for index, slot in enumerate(self.pick_schedule):
            if slot is None:
                return index
        return None

    def next_connection(self) -> str | None:
        """下一个应当选择的连接 ID。"""
        index = self.next_slot()
        if index is None:
            return None
        return self.turn_order_connections[index]

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            participant_names=self.participant_names,
            started=self.started,
            turn_order_names=self.turn_order_names,
            pick_schedule=self.pick_schedule,
            pool=self.pool,
        )


class RoomSnapshot(WireModel):
    """``GET /room/{code}`` 的响应体。"""

    participant_names: list[str]
    started: bool
    turn_order_names: list[str]
    pick_schedule: list[PickSlot | None]
    pool: list[Item]
