"""Tests for REST API endpoints."""
from __future__ import annotations

import pytest
from httpx import AsyncClient
from server import GAME
from conftest import force_spy


async def join(client: AsyncClient, name: str, room: str = "R1") -> str:
    response = await client.post("/api/join-room", json={"name": name, "room": room})
    assert response.status_code == 200
    return response.json()["playerId"]


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_returns_ok(self, client: AsyncClient):
        response = await client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["rooms"] == 0


class TestRootEndpoint:
    """Test root endpoint."""

    @pytest.mark.asyncio
    async def test_root_returns_hint(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert "hint" in data


class TestJoinEndpoint:
    """Test player join endpoint."""

    @pytest.mark.asyncio
    async def test_join_returns_player_id_and_state(self, client: AsyncClient):
        response = await client.post("/api/join-room", json={"name": "Ann", "room": "R1"})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert len(data["playerId"]) > 0
        assert data["roomState"]["roundState"] == "waiting"
        assert data["roomState"]["players"][0]["isHost"] is True

    @pytest.mark.asyncio
    async def test_join_requires_name(self, client: AsyncClient):
        response = await client.post("/api/join-room", json={"room": "R1"})
        assert response.status_code == 400
        data = response.json()
        assert data["ok"] is False
        assert "required" in data["error"]

    @pytest.mark.asyncio
    async def test_join_without_body(self, client: AsyncClient):
        response = await client.post("/api/join-room")
        assert response.status_code == 400


class TestStateEndpoint:
    """Test the polling endpoint."""

    @pytest.mark.asyncio
    async def test_state_for_known_player(self, client: AsyncClient):
        pid = await join(client, "Ann")
        response = await client.get(f"/api/room/R1/state/{pid}")
        assert response.status_code == 200
        assert response.json()["roomState"]["roomCode"] == "R1"

    @pytest.mark.asyncio
    async def test_state_unknown_room(self, client: AsyncClient):
        response = await client.get("/api/room/NOPE/state/abc")
        assert response.status_code == 404
        assert response.json()["error"] == "Room not found."

    @pytest.mark.asyncio
    async def test_state_unknown_player_asks_rejoin(self, client: AsyncClient):
        await join(client, "Ann")
        response = await client.get("/api/room/R1/state/abc")
        assert response.status_code == 401
        assert "re-join" in response.json()["error"]


class TestGameFlowEndpoints:
    """Test the host-driven round over HTTP."""

    @pytest.mark.asyncio
    async def test_start_game_needs_two_players(self, client: AsyncClient):
        host = await join(client, "Ann")
        response = await client.post("/api/room/R1/start-game", json={"playerId": host})
        assert response.status_code == 409
        assert response.json()["ok"] is False

    @pytest.mark.asyncio
    async def test_non_host_is_forbidden(self, client: AsyncClient):
        await join(client, "Ann")
        guest = await join(client, "Ben")
        response = await client.post("/api/room/R1/start-game", json={"playerId": guest})
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cast_vote_outside_voting(self, client: AsyncClient):
        a = await join(client, "Ann")
        b = await join(client, "Ben")
        response = await client.post("/api/room/R1/cast-vote", json={"voterId": a, "targetPlayerId": b})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_cast_vote_requires_ids(self, client: AsyncClient):
        await join(client, "Ann")
        response = await client.post("/api/room/R1/cast-vote", json={})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_full_round(self, client: AsyncClient):
        a = await join(client, "A")
        b = await join(client, "B")
        c = await join(client, "C")

        response = await client.post("/api/room/R1/start-game", json={"playerId": a})
        assert response.json() == {"ok": True, "message": "Game started."}
        response = await client.post("/api/room/R1/start-vote", json={"playerId": a})
        assert response.status_code == 200

        force_spy(GAME.store.get("R1"), c)
        for voter, target in ((b, c), (c, b), (a, c)):
            response = await client.post(
                "/api/room/R1/cast-vote", json={"voterId": voter, "targetPlayerId": target}
            )
            assert response.status_code == 200

        response = await client.post("/api/room/R1/end-round", json={"playerId": a})
        assert response.status_code == 200
        result = response.json()["result"]
        assert result["spyCaught"] is True
        assert result["roundScores"] == {a: 1, b: 1, c: 0}

        state = (await client.get(f"/api/room/R1/state/{b}")).json()["roomState"]
        assert state["currentRound"] == 2
        assert state["roundState"] == "playing"
        assert state["myRole"] in ("spy", "civilian")
        assert {p["id"]: p["score"] for p in state["players"]} == {a: 1, b: 1, c: 0}


class TestChatEndpoint:
    """Test chat endpoint."""

    @pytest.mark.asyncio
    async def test_chat_message_is_polled(self, client: AsyncClient):
        pid = await join(client, "Ann")
        response = await client.post("/api/room/R1/chat", json={"name": "Ann", "msg": "hello"})
        assert response.status_code == 200

        state = (await client.get(f"/api/room/R1/state/{pid}")).json()["roomState"]
        assert state["chat"][-1]["name"] == "Ann"
        assert state["chat"][-1]["msg"] == "hello"

    @pytest.mark.asyncio
    async def test_chat_unknown_room(self, client: AsyncClient):
        response = await client.post("/api/room/NOPE/chat", json={"name": "Ann", "msg": "hello"})
        assert response.status_code == 404
