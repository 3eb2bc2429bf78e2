"""
draftroom.db.room_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间持久化仓库 —— 封装 MongoDB ``rooms`` 集合的增删查改。

每个房间码一个文档，字段即 ``RoomSession`` 的全部字段（snake_case）。
``finished_at`` 上建有 TTL 索引，由 MongoDB 后台线程在选秀结束
``retention_seconds`` 秒后自动删除文档；未结束的房间（``finished_at`` 为 null）永不过期。
"""
from __future__ import annotations

from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from draftroom.core.logging import get_logger
from draftroom.schemas.room import RoomSession
from draftroom.services.room_session import StorageError

logger = get_logger(__name__)

# 集合名称
_COLLECTION_NAME = "rooms"


class RoomRepository:
    """房间持久化仓库。

    所有方法在底层驱动报错时抛出 ``StorageError``。

    Attributes:
        db: MongoDB 数据库实例。
        retention_seconds: 选秀结束后的保留时长（秒）。
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        retention_seconds: int = 86400,
        collection_name: str = _COLLECTION_NAME,
    ) -> None:
        self.db = db
        self.retention_seconds = retention_seconds
        self._collection = db[collection_name]
        self._indexes_created = False

    async def ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        try:
            await self._collection.create_index("code", unique=True, name="uniq_code")
            # TTL 索引：MongoDB 的 TTL monitor 充当后台清理器
            await self._collection.create_index(
                "finished_at",
                expireAfterSeconds=self.retention_seconds,
                name="ttl_finished_at",
            )
        except PyMongoError as e:
            raise StorageError(f"创建索引失败: {e}") from e
        self._indexes_created = True
        logger.debug("rooms 索引已就绪 | retention=%ds", self.retention_seconds)

    async def get(self, code: str) -> RoomSession | None:
        """按房间码读取房间，不存在返回 None。"""
        await self.ensure_indexes()
        try:
            doc = await self._collection.find_one({"code": code}, {"_id": 0})
        except PyMongoError as e:
            raise StorageError(f"读取房间 {code} 失败: {e}") from e
        if doc is None:
            return None
        return RoomSession.model_validate(doc)

    async def create(self, code: str) -> RoomSession:
        """创建一个空的 LOBBY 房间并返回。"""
        await self.ensure_indexes()
        session = RoomSession(code=code)
        try:
            await self._collection.insert_one(self._to_document(session))
        except PyMongoError as e:
            raise StorageError(f"创建房间 {code} 失败: {e}") from e
        logger.info("房间已创建 | code=%s", code)
        return session

    async def save(self, session: RoomSession) -> None:
        """整文档覆盖写入（不存在则插入）。"""
        await self.ensure_indexes()
        try:
            await self._collection.replace_one(
                {"code": session.code},
                self._to_document(session),
                upsert=True,
            )
        except PyMongoError as e:
            raise StorageError(f"保存房间 {session.code} 失败: {e}") from e

    async def delete(self, code: str) -> bool:
        """删除房间。

        Returns:
            删除成功为 True，房间不存在为 False。
        """
        await self.ensure_indexes()
        try:
            result = await self._collection.delete_one({"code": code})
        except PyMongoError as e:
            raise StorageError(f"删除房间 {code} 失败: {e}") from e
        return result.deleted_count > 0

    @staticmethod
    def _to_document(session: RoomSession) -> dict[str, Any]:
        # mode="python" 保留 datetime，TTL 索引只对 BSON 日期生效
        return session.model_dump(mode="python")
