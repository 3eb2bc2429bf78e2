"""
draftroom.api.draft_ws
~~~~~~~~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 选秀房间模式。

提供 ``/ws`` 端点。每个连接建立时分配一个新的连接 ID，并通过 ``connected``
事件告知客户端；之后客户端用 ``join-room`` 订阅某个房间。

消息协议（JSON 帧 ``{"event", "data", "ack?"}``）:
  - 入站: ``join-room`` / ``start-draft`` / ``make-pick``
  - 出站: ``connected`` / ``lobby-update`` / ``draft-started`` / ``draft-update`` /
    ``draft-finished`` / ``join-error`` / ``ack``

同一连接的帧按到达顺序逐个处理；同一房间跨连接的串行化由 ``DraftGateway`` 的房间锁保证。
"""
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from draftroom.core.logging import connection_id_ctx_var, get_logger
from draftroom.schemas.events import (
    ApplyAck,
    Connected,
    InvalidFrame,
    JoinAck,
    JoinError,
    JoinRoomRequest,
    MakePickRequest,
    RoomRequest,
    StartDraftRequest,
    decode_frame,
    encode_ack,
    encode_event,
)
from draftroom.services.draft_gateway import (
    REASON_JOIN_SERVER_ERROR,
    REASON_SERVER_ERROR,
    DraftGateway,
)

logger = get_logger(__name__)

router: APIRouter = APIRouter()

REASON_INVALID_JOIN = "Invalid join request"


async def _reply_join(websocket: WebSocket, ack_id: Any, ack: JoinAck) -> None:
    """带 ack 的加入请求回 ack；旧式无 ack 请求只在被拒绝时收到 ``join-error``。"""
    if ack_id is not None:
        await websocket.send_text(encode_ack(ack_id, ack))
    elif not ack.accepted:
        await websocket.send_text(encode_event(JoinError(reason=ack.reason or "Join rejected")))


async def _dispatch(
    gateway: DraftGateway,
    websocket: WebSocket,
    connection_id: str,
    event: str,
    request: RoomRequest,
    ack_id: Any,
) -> None:
    if event == "join-room" and isinstance(request, JoinRoomRequest):
        ack = await gateway.join_room(connection_id, request)
        await _reply_join(websocket, ack_id, ack)
        return

    if event == "start-draft" and isinstance(request, StartDraftRequest):
        result = await gateway.start_draft(connection_id, request)
    elif event == "make-pick" and isinstance(request, MakePickRequest):
        result = await gateway.make_pick(connection_id, request)
    else:
        result = ApplyAck(applied=False, reason=f"unsupported event {event}")

    if ack_id is not None:
        await websocket.send_text(encode_ack(ack_id, result))


@router.websocket("/ws")
async def websocket_draft_endpoint(websocket: WebSocket) -> None:
    """WebSocket 选秀端点。

    连接断开只会移除订阅，不会把成员移出房间，也不会撤销已提交的选择。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    connection_id = uuid.uuid4().hex
    token = connection_id_ctx_var.set(connection_id)
    gateway: DraftGateway = websocket.app.state.gateway

    try:
        await websocket.accept()
        gateway.hub.register(connection_id, websocket)
        logger.info("🔌 连接建立")
        await websocket.send_text(encode_event(Connected(connection_id=connection_id)))

        while True:
            raw: str = await websocket.receive_text()
            try:
                event, request, ack_id = decode_frame(raw)
            except InvalidFrame as e:
                logger.warning("丢弃非法帧: %s", e)
                if e.event == "join-room":
                    await _reply_join(websocket, e.ack, JoinAck(accepted=False, reason=REASON_INVALID_JOIN))
                elif e.ack is not None:
                    await websocket.send_text(encode_ack(e.ack, ApplyAck(applied=False, reason=str(e))))
                continue

            try:
                await _dispatch(gateway, websocket, connection_id, event, request, ack_id)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                # 单个事件的意外错误不影响连接本身和其他房间
                logger.error("处理事件 %s 异常: %s", event, e, exc_info=True)
                if event == "join-room":
                    await _reply_join(
                        websocket, ack_id, JoinAck(accepted=False, reason=REASON_JOIN_SERVER_ERROR),
                    )
                elif ack_id is not None:
                    await websocket.send_text(
                        encode_ack(ack_id, ApplyAck(applied=False, reason=REASON_SERVER_ERROR)),
                    )

    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        gateway.disconnect(connection_id)
        logger.info("❌ 连接断开")
        connection_id_ctx_var.reset(token)
