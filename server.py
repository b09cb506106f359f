from __future__ import annotations

import asyncio
import logging
import math
import random
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Body, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings, settings

logger = logging.getLogger(__name__)

SERVER_NAME = "Server"

WORDS = [
    "Cat", "Dog", "Elephant", "Lion", "Monkey", "Rabbit", "Chicken", "Horse", "Shark", "Eagle",
    "Tiger", "Wolf", "Fox", "Bear", "Deer", "Giraffe", "Zebra", "Kangaroo", "Panda", "Dolphin",
    "Whale", "Penguin", "Crocodile", "Snake", "Frog", "Turtle", "Parrot", "Owl", "Peacock", "Camel",
    "Goat", "Sheep", "Cow", "Pig", "Mouse", "Rat", "Squirrel", "Hedgehog", "Bee", "Butterfly",
]


class Role(str, Enum):
    SPY = "spy"
    CIVILIAN = "civilian"


class RoundState(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    VOTING = "voting"
    ENDED = "ended"


class GameError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(GameError):
    status_code = 404


class PlayerNotFound(NotFound):
    """The player id is unknown in this room; the client has to join again."""

    status_code = 401


class Forbidden(GameError):
    status_code = 403


class InvalidPhase(GameError):
    status_code = 409


class InvalidInput(GameError):
    status_code = 400


def now_ms() -> int:
    return int(time.time() * 1000)


def tally_votes(votes: Dict[str, str]) -> Dict[str, int]:
    tally: Dict[str, int] = {}
    for target in votes.values():
        tally[target] = tally.get(target, 0) + 1
    return tally


def most_voted(tally: Dict[str, int]) -> Tuple[int, List[str]]:
    """Highest vote count and every target tied at it. (0, []) when nobody voted."""
    if not tally:
        return 0, []
    max_votes = max(tally.values())
    return max_votes, [pid for pid, c in tally.items() if c == max_votes]


def minimum_to_catch(player_count: int) -> int:
    return math.ceil(player_count / 2)


def build_discussion_order(names: List[str], rng: random.Random) -> List[str]:
    order = list(names)
    rng.shuffle(order)
    count = len(order)
    return [f"{order[i]} -> {order[(i + 1) % count]}" for i in range(count)]


@dataclass
class Player:
    id: str
    name: str
    score: int = 0
    round_score: int = 0
    is_host: bool = False
    role: Optional[Role] = None
    word: Optional[str] = None


@dataclass
class ChatMessage:
    name: str
    msg: str
    timestamp: int


@dataclass
class RoundResult:
    round_number: int
    spy_id: str
    spy_name: str
    word: str
    tally: Dict[str, int]
    max_votes: int
    most_voted_ids: List[str]
    votes_against_spy: int
    minimum_to_catch: int
    spy_caught: bool
    round_scores: Dict[str, int]
    message: str
    game_over: bool = False
    final_standings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round_number,
            "spyId": self.spy_id,
            "spyName": self.spy_name,
            "word": self.word,
            "tally": dict(self.tally),
            "maxVotes": self.max_votes,
            "mostVoted": list(self.most_voted_ids),
            "votesAgainstSpy": self.votes_against_spy,
            "minimumToCatch": self.minimum_to_catch,
            "spyCaught": self.spy_caught,
            "roundScores": dict(self.round_scores),
            "message": self.message,
            "gameOver": self.game_over,
            "finalStandings": list(self.final_standings),
        }


@dataclass(eq=False)
class Room:
    code: str
    chat_limit: int = 50
    players: List[Player] = field(default_factory=list)
    word: str = ""
    spy_id: str = ""
    game_started: bool = False
    current_round: int = 0
    round_state: RoundState = RoundState.WAITING
    votes: Dict[str, str] = field(default_factory=dict)
    chat: List[ChatMessage] = field(default_factory=list)
    discussion_order: List[str] = field(default_factory=list)
    last_round_result: str = ""
    final_standings: List[Dict[str, Any]] = field(default_factory=list)
    last_update: int = field(default_factory=now_ms)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def find_player(self, player_id: Optional[str]) -> Optional[Player]:
        if not player_id:
            return None
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def spy(self) -> Optional[Player]:
        return self.find_player(self.spy_id)

    def add_chat(self, name: str, msg: str) -> None:
        self.chat.append(ChatMessage(name=name, msg=msg, timestamp=now_ms()))
        self.chat = self.chat[-self.chat_limit:]

    def narrate(self, msg: str) -> None:
        self.add_chat(SERVER_NAME, msg)

    def touch(self) -> None:
        self.last_update = max(now_ms(), self.last_update + 1)


class RoomStore:
    """Process-wide map of room code to Room. Rooms live until the process exits."""

    def __init__(self, chat_limit: int = 50) -> None:
        self.rooms: Dict[str, Room] = {}
        self.chat_limit = chat_limit

    def get(self, code: str) -> Optional[Room]:
        return self.rooms.get(code)

    def get_or_create(self, code: str) -> Room:
        room = self.rooms.get(code)
        if room is None:
            room = Room(code=code, chat_limit=self.chat_limit)
            self.rooms[code] = room
            logger.info("Room %s created.", code)
        return room

    def __len__(self) -> int:
        return len(self.rooms)


class SpyGame:
    def __init__(self, config: Optional[Settings] = None, rng: Optional[random.Random] = None) -> None:
        cfg = config or settings
        self.max_rounds = cfg.max_rounds
        self.min_players = cfg.min_players
        self.name_max_length = cfg.name_max_length
        self.store = RoomStore(chat_limit=cfg.chat_limit)
        if rng is None:
            rng = random.Random(cfg.random_seed)
        self.rng = rng

    def _room(self, code: str) -> Room:
        room = self.store.get(code)
        if room is None:
            raise NotFound("Room not found.")
        return room

    def _player(self, room: Room, player_id: Optional[str]) -> Player:
        player = room.find_player(player_id)
        if player is None:
            raise PlayerNotFound("Player not in this room. Please re-join.")
        return player

    def _host(self, room: Room, player_id: Optional[str], action: str) -> Player:
        player = self._player(room, player_id)
        if not player.is_host:
            raise Forbidden(f"Only the host can {action}.")
        return player

    def _public_players(self, room: Room) -> List[Dict[str, Any]]:
        return [
            {
                "id": p.id,
                "name": p.name,
                "score": p.score,
                "roundScore": p.round_score,
                "isHost": p.is_host,
            }
            for p in room.players
        ]

    def _snapshot(self, room: Room, player: Player) -> Dict[str, Any]:
        return {
            "roomCode": room.code,
            "gameStarted": room.game_started,
            "currentRound": room.current_round,
            "maxRounds": self.max_rounds,
            "roundState": room.round_state.value,
            "players": self._public_players(room),
            "myRole": player.role.value if player.role else None,
            "myWord": player.word,
            "chat": [{"name": m.name, "msg": m.msg, "timestamp": m.timestamp} for m in room.chat],
            "discussionOrder": list(room.discussion_order),
            "discussionTurnsString": ", ".join(room.discussion_order),
            "voters": list(room.votes.keys()),
            "lastRoundResult": room.last_round_result,
            "finalStandings": list(room.final_standings),
            "lastUpdateTimestamp": room.last_update,
        }

    async def join(self, name: Optional[str], code: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        name = (name or "").strip()[: self.name_max_length]
        code = (code or "").strip()
        if not name or not code:
            raise InvalidInput("Name and room code are required.")

        room = self.store.get_or_create(code)
        async with room.lock:
            pid = uuid.uuid4().hex
            player = Player(id=pid, name=name, is_host=not room.players)
            room.players.append(player)
            room.narrate(f"{name} has joined the room.")
            room.touch()
            logger.info("%s (id: %s) joined room %s. Host: %s", name, pid, code, player.is_host)
            return pid, self._snapshot(room, player)

    def state(self, code: str, player_id: str) -> Dict[str, Any]:
        room = self._room(code)
        player = self._player(room, player_id)
        return self._snapshot(room, player)

    async def send_chat(self, code: str, name: Optional[str], msg: Optional[str]) -> None:
        room = self._room(code)
        name = (name or "").strip()[: self.name_max_length]
        msg = (msg or "").strip()
        if not name or not msg:
            raise InvalidInput("Name and message are required.")
        async with room.lock:
            room.add_chat(name, msg)
            room.touch()

    async def start_game(self, code: str, player_id: Optional[str]) -> None:
        room = self._room(code)
        async with room.lock:
            self._host(room, player_id, "start the game")
            if room.game_started:
                raise InvalidPhase("Game already started.")
            if len(room.players) < self.min_players:
                raise InvalidPhase(f"Need at least {self.min_players} players to start a game.")

            room.game_started = True
            room.current_round = 1
            room.final_standings = []
            room.narrate("Game is starting!")
            logger.info("Game started in room %s with %d players.", code, len(room.players))
            self._assign_roles_and_word(room)
            room.touch()

    async def start_vote(self, code: str, player_id: Optional[str]) -> None:
        room = self._room(code)
        async with room.lock:
            self._host(room, player_id, "start the vote")
            if room.round_state != RoundState.PLAYING:
                raise InvalidPhase("Voting can only start during the playing phase.")

            room.round_state = RoundState.VOTING
            room.votes = {}
            room.narrate("Voting has started! Vote for who you think is the spy.")
            room.touch()

    async def cast_vote(self, code: str, voter_id: Optional[str], target_id: Optional[str]) -> None:
        if not voter_id or not target_id:
            raise InvalidInput("Missing voterId or targetPlayerId.")
        room = self._room(code)
        async with room.lock:
            if room.round_state != RoundState.VOTING:
                raise InvalidPhase("Voting is not active.")
            voter = self._player(room, voter_id)
            target = room.find_player(target_id)
            if target is None:
                raise NotFound("Invalid target player.")
            if voter.id == target.id:
                raise InvalidInput("You cannot vote for yourself.")

            room.votes[voter.id] = target.id
            room.narrate(f"{voter.name} has cast a vote.")
            room.touch()

    async def end_round(self, code: str, player_id: Optional[str]) -> RoundResult:
        room = self._room(code)
        async with room.lock:
            self._host(room, player_id, "end the round")
            if room.round_state != RoundState.VOTING:
                raise InvalidPhase("Cannot end round: voting is not active.")

            room.round_state = RoundState.ENDED
            result = self._resolve_round(room)

            if room.current_round >= self.max_rounds:
                result.game_over = True
                result.final_standings = self._post_final_standings(room)
                room.final_standings = list(result.final_standings)
                self._reset_game(room)
            else:
                room.current_round += 1
                room.narrate(f"Starting Round {room.current_round}...")
                self._assign_roles_and_word(room)
            room.touch()
            return result

    def _assign_roles_and_word(self, room: Room) -> None:
        if len(room.players) < self.min_players:
            room.narrate("Not enough players to assign roles. Resetting game.")
            self._reset_game(room)
            return

        word = self.rng.choice(WORDS)
        spy = self.rng.choice(room.players)
        room.word = word
        room.spy_id = spy.id
        room.votes = {}

        for p in room.players:
            if p.id == spy.id:
                p.role = Role.SPY
                p.word = None
            else:
                p.role = Role.CIVILIAN
                p.word = word

        room.discussion_order = build_discussion_order([p.name for p in room.players], self.rng)
        room.round_state = RoundState.PLAYING
        room.narrate("New round started! Roles assigned.")
        room.narrate(f"Suggested Discussion Flow: {', '.join(room.discussion_order)}")
        room.touch()

    def _resolve_round(self, room: Room) -> RoundResult:
        votes = dict(room.votes)
        tally = tally_votes(votes)
        max_votes, top = most_voted(tally)
        needed = minimum_to_catch(len(room.players))
        spy = room.spy()
        spy_name = spy.name if spy else "the spy"
        against_spy = tally.get(room.spy_id, 0)
        caught = against_spy >= needed

        names = {p.id: p.name for p in room.players}
        if len(top) == 1:
            message = f"Voting ended. Most voted: {names.get(top[0], 'Unknown Player')} with {max_votes} votes."
        elif top:
            message = f"Voting ended. Most voted (tie): {', '.join(names.get(pid, 'Unknown') for pid in top)}."
        else:
            message = "Voting ended. No votes cast."

        round_scores: Dict[str, int] = {}
        for p in room.players:
            p.round_score = 0
            if p.role == Role.CIVILIAN:
                if votes.get(p.id) == room.spy_id:
                    p.round_score = 1
                    room.narrate(f"{p.name} correctly voted for the spy and gets 1 point!")
                else:
                    room.narrate(f"{p.name} did not vote for the spy.")

        if spy:
            if caught:
                message += (
                    f" The spy ({spy_name}) was caught with {against_spy} votes"
                    f" ({against_spy} >= {needed} votes required)!"
                )
                room.narrate(f"{spy_name} (the spy) was caught! No point for the spy this round.")
            else:
                spy.round_score = 1
                message += (
                    f" The spy ({spy_name}) escaped! Only {against_spy} votes were against them"
                    f" (less than {needed} required). Spy gets 1 point!"
                )
                room.narrate(f"{spy_name} (the spy) escaped and gets 1 point!")
            message += f" The word was: {room.word}."

        for p in room.players:
            p.score += p.round_score
            round_scores[p.id] = p.round_score

        room.narrate(message)
        room.last_round_result = message
        logger.info(
            "Room %s round %d resolved: spy=%s votes_against=%d needed=%d caught=%s",
            room.code, room.current_round, room.spy_id, against_spy, needed, caught,
        )
        return RoundResult(
            round_number=room.current_round,
            spy_id=room.spy_id,
            spy_name=spy_name,
            word=room.word,
            tally=tally,
            max_votes=max_votes,
            most_voted_ids=top,
            votes_against_spy=against_spy,
            minimum_to_catch=needed,
            spy_caught=caught,
            round_scores=round_scores,
            message=message,
        )

    def _post_final_standings(self, room: Room) -> List[Dict[str, Any]]:
        standings = [
            {"name": p.name, "score": p.score}
            for p in sorted(room.players, key=lambda p: -p.score)
        ]
        room.narrate("Game Over! Final Scores:")
        for entry in standings:
            room.narrate(f"{entry['name']}: {entry['score']} points")
        return standings

    def _reset_game(self, room: Room) -> None:
        room.game_started = False
        room.current_round = 0
        room.round_state = RoundState.WAITING
        room.word = ""
        room.spy_id = ""
        room.votes = {}
        room.discussion_order = []
        room.chat = []
        for i, p in enumerate(room.players):
            p.score = 0
            p.round_score = 0
            p.role = None
            p.word = None
            p.is_host = i == 0
        room.touch()
        logger.info("Room %s reset.", room.code)


logging.basicConfig(level=settings.log_level)

app = FastAPI(title="Spy Party Game")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

GAME = SpyGame()


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})


def _body(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return payload or {}


@app.get("/")
async def root():
    return {"ok": True, "hint": "POST /api/join-room with {name, room} to play."}


@app.get("/api/health")
async def health():
    return {"ok": True, "rooms": len(GAME.store)}


@app.post("/api/join-room")
async def api_join_room(payload: Optional[Dict[str, Any]] = Body(default=None)):
    data = _body(payload)
    pid, snapshot = await GAME.join(data.get("name"), data.get("room"))
    return {"ok": True, "message": "Joined room successfully.", "playerId": pid, "roomState": snapshot}


@app.get("/api/room/{room_code}/state/{player_id}")
async def api_state(room_code: str, player_id: str):
    return {"ok": True, "roomState": GAME.state(room_code, player_id)}


@app.post("/api/room/{room_code}/start-game")
async def api_start_game(room_code: str, payload: Optional[Dict[str, Any]] = Body(default=None)):
    await GAME.start_game(room_code, _body(payload).get("playerId"))
    return {"ok": True, "message": "Game started."}


@app.post("/api/room/{room_code}/chat")
async def api_chat(room_code: str, payload: Optional[Dict[str, Any]] = Body(default=None)):
    data = _body(payload)
    await GAME.send_chat(room_code, data.get("name"), data.get("msg"))
    return {"ok": True, "message": "Message sent."}


@app.post("/api/room/{room_code}/start-vote")
async def api_start_vote(room_code: str, payload: Optional[Dict[str, Any]] = Body(default=None)):
    await GAME.start_vote(room_code, _body(payload).get("playerId"))
    return {"ok": True, "message": "Voting started."}


@app.post("/api/room/{room_code}/cast-vote")
async def api_cast_vote(room_code: str, payload: Optional[Dict[str, Any]] = Body(default=None)):
    data = _body(payload)
    await GAME.cast_vote(room_code, data.get("voterId"), data.get("targetPlayerId"))
    return {"ok": True, "message": "Vote cast successfully."}


@app.post("/api/room/{room_code}/end-round")
async def api_end_round(room_code: str, payload: Optional[Dict[str, Any]] = Body(default=None)):
    result = await GAME.end_round(room_code, _body(payload).get("playerId"))
    return {"ok": True, "message": "Round ended.", "result": result.to_dict()}
