"""
draftroom.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

REST 错误应答体。成功响应直接返回业务模型（``RoomSnapshot`` 等），
404 与 500 错误统一包装为此结构，保证客户端收到的格式一致。
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ApiResponse(BaseModel):
    """统一 JSON 应答体。

    .. code-block:: json

        {"code": 404, "data": null, "msg": "Room not found"}

    Attributes:
        code: 业务状态码（与 HTTP 状态码一致）。
        data: 附加数据，如未找到的房间码。
        msg: 人类可读的状态消息。
    """

    code: int = Field(default=500, description="业务状态码")
    data: Any = Field(default=None, description="附加数据")
    msg: str = Field(default="error", description="状态消息")

    @classmethod
    def fail(cls, msg: str = "error", code: int = 500, data: Any = None) -> ApiResponse:
        """快捷构造失败响应。"""
        return cls(code=code, data=data, msg=msg)
