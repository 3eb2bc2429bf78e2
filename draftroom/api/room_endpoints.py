"""
draftroom.api.room_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间 REST 接口 —— 查看与删除。

端点:
  - ``GET    /room/{code}``  → 房间快照（成员、是否开局、选秀顺序、选秀表、剩余池）
  - ``DELETE /room/{code}``  → 删除房间（管理操作）

房间不存在时抛出 ``RoomNotFound``，由全局异常处理器转换为 404。
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from draftroom.api.deps import get_gateway
from draftroom.core.rate_limit import limiter
from draftroom.core.settings import settings
from draftroom.schemas.events import normalize_code
from draftroom.schemas.room import RoomSnapshot
from draftroom.services.draft_gateway import DraftGateway
from draftroom.services.room_session import RoomNotFound

router: APIRouter = APIRouter()


class DeleteRoomResponse(BaseModel):
    success: bool = Field(..., description="是否删除成功")


@router.get("/room/{code}", summary="获取房间快照", response_model=RoomSnapshot)
@limiter.limit(settings.REST_RATE_LIMIT)
async def read_room(request: Request, code: str, gateway: DraftGateway = Depends(get_gateway)):
    """返回已持久化的房间状态。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        code: 房间码（不区分大小写）。
    """
    room_code = normalize_code(code)
    snapshot = await gateway.read_room(room_code)
    if snapshot is None:
        raise RoomNotFound(room_code)
    return snapshot


@router.delete("/room/{code}", summary="删除房间", response_model=DeleteRoomResponse)
@limiter.limit(settings.REST_RATE_LIMIT)
async def delete_room(request: Request, code: str, gateway: DraftGateway = Depends(get_gateway)):
    """删除房间，并断开所有连接对该房间的订阅。"""
    room_code = normalize_code(code)
    if not await gateway.delete_room(room_code):
        raise RoomNotFound(room_code)
    return DeleteRoomResponse(success=True)
