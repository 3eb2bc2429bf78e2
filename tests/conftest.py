"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存版房间仓库替代 MongoDB，
使单元测试可在无数据库环境下快速运行。
"""
from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("ENVIRONMENT", "test")

from draftroom.schemas.room import Item, RoomSession  # noqa: E402
from draftroom.services.draft_gateway import DraftGateway  # noqa: E402
from draftroom.services.room_broadcaster import RoomHub  # noqa: E402
from draftroom.services.room_session import StorageError  # noqa: E402


class FakeRoomRepository:
    """内存版 ``RoomRepository``，保存的是模型副本，行为与真实存储一致。

    ``fail_saves`` 置为 True 时 ``save`` 抛出 ``StorageError``，用于验证 fail-closed。
    ``latency`` 为 True 时 ``get`` / ``save`` 先让出事件循环，模拟真实 I/O，
    使并发操作的读-改-写可以交错。
    """

    def __init__(self, latency: bool = False) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.fail_saves = False
        self.save_count = 0
        self.latency = latency

    async def _io(self) -> None:
        if self.latency:
            await asyncio.sleep(0)

    async def ensure_indexes(self) -> None:
        return None

    async def get(self, code: str) -> RoomSession | None:
        await self._io()
        doc = self.docs.get(code)
        return RoomSession.model_validate(doc) if doc is not None else None

    async def create(self, code: str) -> RoomSession:
        session = RoomSession(code=code)
        self.docs[code] = session.model_dump()
        return session

    async def save(self, session: RoomSession) -> None:
        await self._io()
        if self.fail_saves:
            raise StorageError("simulated save failure")
        self.save_count += 1
        self.docs[session.code] = session.model_dump()

    async def delete(self, code: str) -> bool:
        return self.docs.pop(code, None) is not None


def make_catalog(size: int = 12) -> tuple[Item, ...]:
    """生成 ``Item1`` .. ``ItemN`` 的目录。"""
    categories = ["QB", "RB", "WR", "TE"]
    return tuple(
        Item(
            name=f"Item{i}",
            category=categories[i % len(categories)],
            team=f"T{i % 3}",
            attributes={"RK": str(i)},
        )
        for i in range(1, size + 1)
    )


def make_websocket() -> MagicMock:
    """只记录 send_text 的假 WebSocket。"""
    ws = MagicMock()
    ws.send_text = AsyncMock()
    return ws


def sent_events(ws: MagicMock) -> list[dict[str, Any]]:
    """解析假 WebSocket 收到的所有帧。"""
    return [json.loads(call.args[0]) for call in ws.send_text.call_args_list]


def sent_event_names(ws: MagicMock) -> list[str]:
    return [frame["event"] for frame in sent_events(ws)]


@pytest.fixture()
def catalog() -> tuple[Item, ...]:
    return make_catalog(12)


@pytest.fixture()
def repo() -> FakeRoomRepository:
    return FakeRoomRepository()


@pytest.fixture()
def gateway(repo: FakeRoomRepository, catalog: tuple[Item, ...]) -> DraftGateway:
    return DraftGateway(repo=repo, catalog=catalog, hub=RoomHub())


@pytest.fixture()
def sample_catalog_file(tmp_path: Any) -> str:
    """在临时目录创建一个测试用目录 CSV，返回文件路径。"""
    content = (
        '"RK","PLAYER NAME","TEAM","POS","BYE WEEK"\n'
        '"1","Ja\'Marr Chase","CIN","WR1","10"\n'
        '"2","Bijan Robinson","ATL","RB1","5"\n'
        '"3","Josh Allen","BUF","QB1","7"\n'
        "\n"
    )
    file_path = tmp_path / "catalog.csv"
    file_path.write_text(content, encoding="utf-8")
    return str(file_path)
