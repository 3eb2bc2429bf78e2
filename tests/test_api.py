"""
tests.test_api
~~~~~~~~~~~~~~

HTTP + WebSocket 集成测试 —— 通过 TestClient 跑完整 lifespan，
MongoDB 与目录文件被替换为内存实现。
"""
from __future__ import annotations

from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import FakeRoomRepository
from fastapi.testclient import TestClient

from draftroom.main import app


@pytest.fixture()
def client(repo: FakeRoomRepository, catalog: tuple) -> Iterator[TestClient]:
    with patch("draftroom.main.load_catalog", return_value=catalog), \
         patch("draftroom.main.connect_mongo", new_callable=AsyncMock), \
         patch("draftroom.main.close_mongo", new_callable=AsyncMock), \
         patch("draftroom.main.get_database", return_value=MagicMock()), \
         patch("draftroom.main.RoomRepository", return_value=repo):
        with TestClient(app) as test_client:
            yield test_client


def join_frame(code: str, name: str, ack: Any = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"event": "join-room", "data": {"code": code, "displayName": name}}
    if ack is not None:
        frame["ack"] = ack
    return frame


# ── REST ──────────────────────────────────────────────────────────────

class TestRest:
    def test_liveness(self, client: TestClient) -> None:
        response = client.get("/")

        assert response.status_code == 200
        assert response.text == "Draft Server Running"

    def test_health_reports_catalog_size(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["catalog_size"] == 12

    def test_read_missing_room_is_404(self, client: TestClient) -> None:
        response = client.get("/room/nope")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == 404
        assert body["msg"] == "Room not found"

    def test_read_and_delete_room(self, client: TestClient, repo: FakeRoomRepository) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json(join_frame("abc", "A", ack=1))
            ws.receive_json()
            ws.receive_json()

        response = client.get("/room/ABC")
        assert response.status_code == 200
        assert response.json() == {
            "participantNames": ["A"],
            "started": False,
            "turnOrderNames": [],
            "pickSchedule": [],
            "pool": [],
        }

        assert client.delete("/room/abc").json() == {"success": True}
        assert client.delete("/room/abc").status_code == 404
        assert client.get("/room/abc").status_code == 404


# ── WebSocket ─────────────────────────────────────────────────────────

class TestWebSocket:
    def test_connected_event_carries_connection_id(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            hello = ws.receive_json()

        assert hello["event"] == "connected"
        assert hello["data"]["connectionId"]

    def test_join_with_ack(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json(join_frame("xyz", "A", ack=7))

            lobby = ws.receive_json()
            ack = ws.receive_json()

        assert lobby == {"event": "lobby-update", "data": {"participantNames": ["A"]}}
        assert ack == {"event": "ack", "ack": 7, "data": {"accepted": True, "reason": None}}

    def test_rejected_join_without_ack_gets_join_error(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
            ws_a.receive_json()
            ws_b.receive_json()
            ws_a.send_json(join_frame("xyz", "A", ack=1))
            ws_a.receive_json()
            ws_a.receive_json()

            ws_b.send_json(join_frame("xyz", "A"))
            error = ws_b.receive_json()

        assert error["event"] == "join-error"
        assert error["data"]["reason"] == "Nickname already taken in this room."

    def test_invalid_frames_keep_connection_open(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("garbage")
            ws.send_json({"event": "make-pick", "data": {"code": "X"}, "ack": "p"})
            pick_ack = ws.receive_json()
            ws.send_json({"event": "join-room", "data": {"code": "X", "displayName": " "}, "ack": "j"})
            join_ack = ws.receive_json()

        assert pick_ack["event"] == "ack"
        assert pick_ack["data"]["applied"] is False
        assert join_ack["data"] == {"accepted": False, "reason": "Invalid join request"}

    def test_unexpected_join_failure_still_answers(self, client: TestClient, repo: FakeRoomRepository) -> None:
        repo.docs["BAD"] = {"code": "BAD", "participants": "corrupt"}

        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json(join_frame("bad", "A"))
            legacy = ws.receive_json()
            ws.send_json(join_frame("bad", "A", ack="j"))
            acked = ws.receive_json()

        assert legacy == {"event": "join-error", "data": {"reason": "Server error during join"}}
        assert acked["data"] == {"accepted": False, "reason": "Server error during join"}

    def test_full_draft_over_websocket(self, client: TestClient) -> None:
        """两人两轮：开局、交替选择、结束，以及结束后拒绝加入。"""
        with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b:
            id_a = ws_a.receive_json()["data"]["connectionId"]
            id_b = ws_b.receive_json()["data"]["connectionId"]

            ws_a.send_json(join_frame("xyz", "A", ack=1))
            assert ws_a.receive_json()["event"] == "lobby-update"
            assert ws_a.receive_json()["data"]["accepted"] is True

            ws_b.send_json(join_frame("XYZ", "B", ack=2))
            assert ws_b.receive_json()["data"]["participantNames"] == ["A", "B"]
            assert ws_b.receive_json()["data"]["accepted"] is True
            assert ws_a.receive_json()["data"]["participantNames"] == ["A", "B"]

            ws_a.send_json({
                "event": "start-draft",
                "data": {"code": "xyz", "turnOrderNames": ["A", "B", "A", "B"]},
                "ack": 3,
            })
            started = ws_a.receive_json()
            assert started["event"] == "draft-started"
            assert started["data"]["turnOrderConnections"] == [id_a, id_b, id_a, id_b]
            assert len(started["data"]["pool"]) == 12
            assert ws_a.receive_json() == {"event": "ack", "ack": 3, "data": {"applied": True, "reason": None}}
            assert ws_b.receive_json()["event"] == "draft-started"

            picks = [(ws_a, "Item1"), (ws_b, "Item2"), (ws_a, "Item3")]
            for slot, (ws, item) in enumerate(picks):
                ws.send_json({"event": "make-pick", "data": {"code": "xyz", "itemName": item, "slotIndex": slot}})
                for receiver in (ws_a, ws_b):
                    update = receiver.receive_json()
                    assert update["event"] == "draft-update"
                    assert len(update["data"]["pool"]) == 12 - (slot + 1)
                    assert update["data"]["nextConnection"] == [id_b, id_a, id_b][slot]

            ws_b.send_json({"event": "make-pick", "data": {"code": "xyz", "itemName": "Item4", "slotIndex": 3}})
            finished_a = ws_a.receive_json()
            finished_b = ws_b.receive_json()

            ws_b.send_json({
                "event": "make-pick",
                "data": {"code": "xyz", "itemName": "Item5", "slotIndex": 0},
                "ack": 9,
            })
            late_ack = ws_b.receive_json()

            ws_b.send_json(join_frame("xyz", "B", ack=10))
            rejoin_ack = ws_b.receive_json()

        assert finished_a["event"] == finished_b["event"] == "draft-finished"
        schedule = finished_a["data"]["pickSchedule"]
        assert [slot["item"]["name"] for slot in schedule] == ["Item1", "Item2", "Item3", "Item4"]
        assert [slot["connectionId"] for slot in schedule] == [id_a, id_b, id_a, id_b]
        assert late_ack["data"]["applied"] is False
        assert rejoin_ack["data"] == {"accepted": False, "reason": "Draft already finished."}

        snapshot = client.get("/room/xyz").json()
        assert snapshot["started"] is True
        assert len(snapshot["pool"]) == 8

    def test_reconnect_mid_draft_replays_state(self, client: TestClient) -> None:
        with client.websocket_connect("/ws") as ws_b:
            id_b = ws_b.receive_json()["data"]["connectionId"]
            with client.websocket_connect("/ws") as ws_a:
                ws_a.receive_json()
                ws_a.send_json(join_frame("xyz", "A", ack=1))
                ws_a.receive_json()
                ws_a.receive_json()
                ws_b.send_json(join_frame("xyz", "B", ack=2))
                ws_b.receive_json()
                ws_b.receive_json()
                ws_a.receive_json()
                ws_a.send_json({
                    "event": "start-draft",
                    "data": {"code": "xyz", "turnOrderNames": ["A", "B"]},
                    "ack": 3,
                })
                ws_a.receive_json()
                ws_a.receive_json()
                ws_b.receive_json()

            with client.websocket_connect("/ws") as ws_a2:
                id_a2 = ws_a2.receive_json()["data"]["connectionId"]
                ws_a2.send_json(join_frame("xyz", "A", ack=4))
                frames = [ws_a2.receive_json() for _ in range(4)]
            lobby_b = ws_b.receive_json()

        assert [f["event"] for f in frames] == ["lobby-update", "draft-started", "draft-update", "ack"]
        assert frames[1]["data"]["turnOrderConnections"] == [id_a2, id_b]
        assert frames[2]["data"]["nextConnection"] == id_a2
        assert frames[1]["data"]["turnOrderNames"] == ["A", "B"]
        assert lobby_b["data"]["participantNames"] == ["A", "B"]
