"""
Tests for the aiohttp presentation boundary.

Runs the real application on aiohttp's TestServer and talks to it through
TestClient; the scene's synthetic speech keeps running on real timers, so
these tests only exercise steps that do not wait for a line to finish.
"""

import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from web_server import create_app, error_kind
from exceptions import InvalidChoice, InvalidTransition, RuntimeInvariantViolation


@pytest.fixture
def scene_file(tmp_path, scene_doc):
    path = tmp_path / "scene.json"
    path.write_text(json.dumps(scene_doc), encoding="utf-8")
    return path


@pytest.fixture
async def client(scene_file):
    async with TestClient(TestServer(create_app(scene_path=str(scene_file)))) as client:
        yield client


async def receive_until(ws, message_type):
    """Collect messages up to and including the first of ``message_type``."""
    received = []
    while True:
        message = await ws.receive_json(timeout=2)
        received.append(message)
        if message["type"] == message_type:
            return received


class TestHttpEndpoints:

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data == {"status": "ok", "active_sessions": 0}

    async def test_scenes(self, client):
        resp = await client.get("/api/scenes")
        data = await resp.json()
        assert "office_pantry_01" in data["scenes"]
        assert data["default"] == "office_pantry_01"

    async def test_metrics(self, client):
        resp = await client.get("/metrics")
        assert resp.status == 200
        assert "dialogue_errors_total" in await resp.text()


class TestWebSocket:

    async def test_connect_sends_scene_and_first_node(self, client):
        async with client.ws_connect("/ws") as ws:
            scene = await ws.receive_json(timeout=2)
            assert scene["type"] == "scene"
            assert scene["scene_id"] == "test_scene"
            assert scene["title"] == {"en": "Test Scene", "zh": "测试场景"}
            assert "choose" in scene["commands"]
            assert [c["id"] for c in scene["transfer_check"]["choices"]] == ["a", "b", "c"]
            assert scene["transfer_check"]["question"].startswith("Elevator, barely-known coworker")

            entered = await ws.receive_json(timeout=2)
            assert entered["type"] == "node_entered"
            assert entered["node"] == {
                "kind": "npc",
                "node_id": "n001",
                "speaker": "maya",
                "speaker_name": "Maya",
                "text": "Hi there.",
                "subtitle": "",
                "nonverbal": None,
            }

    async def test_advance_and_state_reply(self, client):
        async with client.ws_connect("/ws") as ws:
            await receive_until(ws, "node_entered")
            await ws.send_json({"command": "advance"})
            messages = await receive_until(ws, "state")

            assert messages[0]["type"] == "node_entered"
            assert messages[0]["node_id"] == "n002"
            state = messages[-1]
            assert state["command"] == "advance"
            assert state["current_node_id"] == "n002"
            assert state["phase"] == "at_npc"

    async def test_language_toggle_rerenders_subtitles(self, client):
        async with client.ws_connect("/ws") as ws:
            await receive_until(ws, "node_entered")
            await ws.send_json({"command": "toggle_language"})
            messages = await receive_until(ws, "state")

            changed = messages[0]
            assert changed["type"] == "presentation_changed"
            assert changed["language"] == "zh"
            assert changed["node"]["subtitle"] == "你好。"
            assert messages[-1]["language"] == "zh"

    async def test_rejected_command_keeps_session(self, client):
        async with client.ws_connect("/ws") as ws:
            await receive_until(ws, "node_entered")
            await ws.send_json({"command": "choose", "option_id": "a"})
            error = await ws.receive_json(timeout=2)
            assert error["type"] == "error"
            assert error["error"] == "invalid_transition"
            assert error["command"] == "choose"

            await ws.send_json({"command": "advance"})
            messages = await receive_until(ws, "state")
            assert messages[-1]["current_node_id"] == "n002"

    async def test_invalid_json_and_message_shape(self, client):
        async with client.ws_connect("/ws") as ws:
            await receive_until(ws, "node_entered")
            await ws.send_str("{not json")
            assert (await ws.receive_json(timeout=2))["error"] == "invalid_json"
            await ws.send_json({"type": "advance"})
            assert (await ws.receive_json(timeout=2))["error"] == "invalid_message"

    async def test_unknown_command(self, client):
        async with client.ws_connect("/ws") as ws:
            await receive_until(ws, "node_entered")
            await ws.send_json({"command": "dance"})
            error = await ws.receive_json(timeout=2)
            assert error["error"] == "invalid_transition"

    async def test_bundled_scene_by_query(self, client):
        async with client.ws_connect("/ws?scene=office_pantry_01") as ws:
            scene = await ws.receive_json(timeout=2)
            assert scene["scene_id"] == "office_pantry_01"

    async def test_unknown_bundled_scene_is_schema_error(self, client):
        async with client.ws_connect("/ws?scene=nope") as ws:
            error = await ws.receive_json(timeout=2)
            assert error["type"] == "error"
            assert error["error"] == "schema_error"

    async def test_scene_query_cannot_leave_bundled_directory(self, client):
        async with client.ws_connect("/ws?scene=../../x") as ws:
            error = await ws.receive_json(timeout=2)
            assert error["type"] == "error"
            assert error["error"] == "schema_error"
            assert "Unknown bundled scene" in error["message"]


class TestRejectedScenes:

    async def test_validation_report(self, tmp_path, scene_doc, node_in):
        node_in(scene_doc, "n004")["next"] = "n404"
        node_in(scene_doc, "n006")["options"][1]["isGracefulExit"] = False
        path = tmp_path / "broken.json"
        path.write_text(json.dumps(scene_doc), encoding="utf-8")

        async with TestClient(TestServer(create_app(scene_path=str(path)))) as client:
            async with client.ws_connect("/ws") as ws:
                report = await ws.receive_json(timeout=2)
                assert report["type"] == "validation_report"
                assert len(report["errors"]) == 2
                assert "n004" in report["errors"][0]
                assert "n006" in report["errors"][1]

    async def test_missing_scene_file(self, tmp_path):
        app = create_app(scene_path=str(tmp_path / "missing.json"))
        async with TestClient(TestServer(app)) as client:
            async with client.ws_connect("/ws") as ws:
                error = await ws.receive_json(timeout=2)
                assert error["error"] == "schema_error"
                assert "not found" in error["message"]


class TestErrorKinds:

    def test_error_kind(self):
        assert error_kind(InvalidChoice("n1", "x")) == "invalid_choice"
        assert error_kind(InvalidTransition("advance", "at_end")) == "invalid_transition"
        assert error_kind(RuntimeInvariantViolation("n404")) == "runtime_invariant_violation"
