"""Shared fixtures and utilities for spy game tests."""
from __future__ import annotations

import random
import sys
from pathlib import Path
from typing import List

import pytest
from httpx import AsyncClient, ASGITransport

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from server import GAME, Player, Role, Room, SpyGame, app


@pytest.fixture
def game() -> SpyGame:
    """Fresh SpyGame with a seeded RNG for each test."""
    return SpyGame(rng=random.Random(1234))


async def add_players(game: SpyGame, code: str, count: int, names: List[str] | None = None) -> List[str]:
    """Join players to a room and return their IDs in join order."""
    if names is None:
        names = [f"Player{i+1}" for i in range(count)]

    player_ids = []
    for name in names[:count]:
        pid, _ = await game.join(name, code)
        player_ids.append(pid)
    return player_ids


async def start_voting(game: SpyGame, code: str, count: int, names: List[str] | None = None) -> List[str]:
    """Join players, start the game and open the vote. Returns player IDs."""
    player_ids = await add_players(game, code, count, names)
    await game.start_game(code, player_ids[0])
    await game.start_vote(code, player_ids[0])
    return player_ids


def force_spy(room: Room, spy_id: str) -> None:
    """Make a specific player the spy of the current round."""
    room.spy_id = spy_id
    for p in room.players:
        if p.id == spy_id:
            p.role = Role.SPY
            p.word = None
        else:
            p.role = Role.CIVILIAN
            p.word = room.word


def hosts(room: Room) -> List[Player]:
    return [p for p in room.players if p.is_host]


@pytest.fixture
async def client():
    """Async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def reset_global_store():
    """Empty the global room store before each test."""
    GAME.store.rooms.clear()
    yield
    GAME.store.rooms.clear()
