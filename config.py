from __future__ import annotations

import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int, minimum: int) -> int:
    return max(minimum, int(os.getenv(name, str(default))))


class Settings:
    def __init__(self) -> None:
        self.host = os.getenv("SPY_HOST", "0.0.0.0").strip()
        self.port = int(os.getenv("SPY_PORT", "3000"))
        self.max_rounds = _int_env("SPY_MAX_ROUNDS", 3, 1)
        self.min_players = _int_env("SPY_MIN_PLAYERS", 2, 2)
        self.chat_limit = _int_env("SPY_CHAT_LIMIT", 50, 1)
        self.name_max_length = _int_env("SPY_NAME_MAX_LENGTH", 24, 1)
        self.log_level = os.getenv("SPY_LOG_LEVEL", "INFO").strip().upper() or "INFO"

        raw_seed = os.getenv("SPY_RANDOM_SEED", "").strip()
        self.random_seed: Optional[int] = int(raw_seed) if raw_seed else None

        origins: List[str] = [
            origin.strip()
            for origin in os.getenv("SPY_CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]
        self.cors_origins = origins or ["*"]


settings = Settings()
