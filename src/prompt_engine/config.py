"""Runtime settings for the prompt engine.

Values come from the process environment unless a mapping is supplied,
which keeps the settings unit-testable without touching ``os.environ``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class EngineSettings:
    save_debounce_ms: int = 1000
    tailor_poll_attempts: int = 5
    tailor_poll_interval_ms: int = 300
    store_impl: str = "memory"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db: str = "prompt_engine"

    @property
    def save_debounce_s(self) -> float:
        return self.save_debounce_ms / 1000.0

    @property
    def tailor_poll_interval_s(self) -> float:
        return self.tailor_poll_interval_ms / 1000.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        env = env if env is not None else os.environ
        return cls(
            save_debounce_ms=max(0, _int_env(env, "PROMPT_ENGINE_SAVE_DEBOUNCE_MS", 1000)),
            tailor_poll_attempts=max(1, _int_env(env, "PROMPT_ENGINE_TAILOR_POLL_ATTEMPTS", 5)),
            tailor_poll_interval_ms=max(0, _int_env(env, "PROMPT_ENGINE_TAILOR_POLL_INTERVAL_MS", 300)),
            store_impl=(env.get("PROMPT_ENGINE_STORE_IMPL") or "memory").strip().lower(),
            mongo_url=env.get("MONGO_URL") or "mongodb://localhost:27017",
            mongo_db=env.get("MONGO_DB") or "prompt_engine",
        )
