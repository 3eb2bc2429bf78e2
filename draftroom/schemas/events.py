"""
draftroom.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时事件的请求/应答/广播模型，以及 JSON 帧的编解码。

帧格式::

    {"event": "join-room", "data": {...}, "ack": 7}

带 ``ack`` 的入站帧会收到 ``{"event": "ack", "ack": 7, "data": {...}}`` 应答。
"""
from __future__ import annotations

import json
from typing import Any, ClassVar

from pydantic import Field, ValidationError, field_validator

from draftroom.schemas.room import Item, PickSlot, WireModel


class InvalidFrame(ValueError):
    """入站帧无法解析或负载不合法。"""

    def __init__(self, message: str, event: str | None = None, ack: Any = None) -> None:
        super().__init__(message)
        self.event = event
        self.ack = ack


def normalize_code(code: str) -> str:
    """房间码不区分大小写，统一为大写。"""
    return code.strip().upper()


# ── 入站意图 ──────────────────────────────────────────────────────────

class RoomRequest(WireModel):
    code: str = Field(..., min_length=1, max_length=32, description="房间码")

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        value = normalize_code(value)
        if not value:
            raise ValueError("房间码不能为空")
        return value


class JoinRoomRequest(RoomRequest):
    display_name: str = Field(..., min_length=1, max_length=64, description="显示名")

    @field_validator("display_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("显示名不能为空")
        return value


class StartDraftRequest(RoomRequest):
    turn_order_names: list[str] = Field(..., description="完整的选秀顺序（按显示名）")


class MakePickRequest(RoomRequest):
    item_name: str = Field(..., min_length=1)
    slot_index: int = Field(..., ge=0)


INBOUND_EVENTS: dict[str, type[RoomRequest]] = {
    "join-room": JoinRoomRequest,
    "start-draft": StartDraftRequest,
    "make-pick": MakePickRequest,
}


# ── 应答 ──────────────────────────────────────────────────────────────

class JoinAck(WireModel):
    accepted: bool
    reason: str | None = None


class ApplyAck(WireModel):
    applied: bool
    reason: str | None = None


# ── 出站事件 ──────────────────────────────────────────────────────────

class OutboundEvent(WireModel):
    """所有出站事件的基类，``event_name`` 即帧中的 ``event`` 字段。"""

    event_name: ClassVar[str]


class Connected(OutboundEvent):
    event_name: ClassVar[str] = "connected"

    connection_id: str


class LobbyUpdate(OutboundEvent):
    event_name: ClassVar[str] = "lobby-update"

    participant_names: list[str]


class DraftStarted(OutboundEvent):
    event_name: ClassVar[str] = "draft-started"

    turn_order_names: list[str]
    turn_order_connections: list[str]
    pool: list[Item]


class DraftUpdate(OutboundEvent):
    event_name: ClassVar[str] = "draft-update"

    pick_schedule: list[PickSlot | None]
    pool: list[Item]
    next_connection: str | None


class DraftFinished(OutboundEvent):
    event_name: ClassVar[str] = "draft-finished"

    pick_schedule: list[PickSlot | None]


class JoinError(OutboundEvent):
    event_name: ClassVar[str] = "join-error"

    reason: str


# ── 编解码 ────────────────────────────────────────────────────────────

def encode_event(event: OutboundEvent) -> str:
    """把出站事件编码为一帧 JSON 文本。"""
    return json.dumps(
        {"event": event.event_name, "data": event.model_dump(mode="json", by_alias=True)},
    )


def encode_ack(ack_id: Any, payload: JoinAck | ApplyAck) -> str:
    return json.dumps(
        {"event": "ack", "ack": ack_id, "data": payload.model_dump(mode="json", by_alias=True)},
    )


def decode_frame(raw: str) -> tuple[str, RoomRequest, Any]:
    """解析一帧入站 JSON。

    Returns:
        ``(event, request, ack_id)``，``ack_id`` 可能为 None。

    Raises:
        InvalidFrame: JSON 非法、事件未知或负载校验失败。
    """
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidFrame(f"非法 JSON: {e}") from e
    if not isinstance(frame, dict):
        raise InvalidFrame("帧必须是 JSON 对象")

    event = frame.get("event")
    ack_id = frame.get("ack")
    model = INBOUND_EVENTS.get(event) if isinstance(event, str) else None
    if model is None:
        raise InvalidFrame(f"未知事件: {event!r}", event=None, ack=ack_id)

    try:
        request = model.model_validate(frame.get("data") or {})
    except ValidationError as e:
        raise InvalidFrame(f"{event} 负载不合法: {e.error_count()} 处错误", event=event, ack=ack_id) from e
    return event, request, ack_id
