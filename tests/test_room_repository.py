"""
tests.test_room_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~

RoomRepository 测试 —— mock 掉 motor 集合，验证查询条件、索引与错误包装。
"""
from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from draftroom.db.room_repository import RoomRepository
from draftroom.schemas.room import Item, PickSlot, RoomSession
from draftroom.services.room_session import StorageError


def make_repo(retention: int = 86400) -> tuple[RoomRepository, MagicMock]:
    collection = MagicMock()
    collection.create_index = AsyncMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.replace_one = AsyncMock()
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    db = MagicMock()
    db.__getitem__.return_value = collection
    return RoomRepository(db, retention_seconds=retention), collection


class TestRoomRepository:
    @pytest.mark.asyncio
    async def test_indexes_created_once(self) -> None:
        repo, collection = make_repo(retention=3600)

        await repo.get("XYZ")
        await repo.get("XYZ")

        assert collection.create_index.await_count == 2
        collection.create_index.assert_any_await("code", unique=True, name="uniq_code")
        collection.create_index.assert_any_await(
            "finished_at", expireAfterSeconds=3600, name="ttl_finished_at",
        )

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self) -> None:
        repo, collection = make_repo()

        assert await repo.get("XYZ") is None
        collection.find_one.assert_awaited_once_with({"code": "XYZ"}, {"_id": 0})

    @pytest.mark.asyncio
    async def test_round_trip_through_document(self) -> None:
        repo, collection = make_repo()
        finished = datetime(2025, 9, 1, tzinfo=timezone.utc)
        item = Item(name="Item1", category="QB", team="BUF", attributes={"RK": "1"})
        session = RoomSession(
            code="XYZ",
            turn_order_names=["A"],
            turn_order_connections=["c1"],
            pick_schedule=[PickSlot(item=item, connection_id="c1")],
            started=True,
            round_count=1,
            finished_at=finished,
        )

        await repo.save(session)
        (query, document), kwargs = collection.replace_one.await_args
        collection.find_one.return_value = dict(document)
        loaded = await repo.get("XYZ")

        assert query == {"code": "XYZ"}
        assert kwargs == {"upsert": True}
        assert document["finished_at"] == finished
        assert loaded == session

    @pytest.mark.asyncio
    async def test_create_inserts_empty_lobby(self) -> None:
        repo, collection = make_repo()

        session = await repo.create("XYZ")

        assert session.code == "XYZ"
        assert not session.started
        inserted = collection.insert_one.await_args.args[0]
        assert inserted["code"] == "XYZ"
        assert inserted["finished_at"] is None

    @pytest.mark.asyncio
    async def test_delete_reports_missing(self) -> None:
        repo, collection = make_repo()

        assert await repo.delete("XYZ") is True
        collection.delete_one.return_value = MagicMock(deleted_count=0)
        assert await repo.delete("XYZ") is False

    @pytest.mark.asyncio
    async def test_driver_errors_become_storage_errors(self) -> None:
        repo, collection = make_repo()
        collection.replace_one.side_effect = ServerSelectionTimeoutError("down")

        with pytest.raises(StorageError):
            await repo.save(RoomSession(code="XYZ"))
