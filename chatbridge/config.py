# chatbridge/config.py
"""Runtime configuration.

Defaults come from the environment so that the same code runs unchanged
in tests, on a laptop and behind a deployed service.  Explicit
configuration objects are plain dataclasses; pass one to
:class:`chatbridge.chat_history.ChatHistory` or
:class:`chatbridge.client.LLMClient` to override the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

# Location of the default database file – one level up from this module
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent / "chat_history.db"

SERVER_URL = os.getenv("CHATBRIDGE_BASE_URL", "http://localhost:8000")
API_KEY = os.getenv("CHATBRIDGE_API_KEY", "")
DB_PATH = os.getenv("CHATBRIDGE_DB_PATH", str(DEFAULT_DB_PATH))
LOG_LEVEL = os.getenv("CHATBRIDGE_LOG_LEVEL", "INFO")
MODEL_NAME = os.getenv("CHATBRIDGE_MODEL", "gpt-4o-mini")


@dataclass
class DatabaseConfiguration:
    """Configuration for :class:`chatbridge.db.SQLiteClient`.

    Parameters
    ----------
    path:
        SQLite database file.  ``":memory:"`` gives a private in-process
        store, which is handy for tests.
    timeout:
        Seconds sqlite waits on a locked database before giving up.
    serialize_syncs:
        When ``True`` two ``sync_chats`` calls for the same user never
        interleave their read and write phases.
    """

    path: str = field(default_factory=lambda: DB_PATH)
    timeout: float = 5.0
    serialize_syncs: bool = True


@dataclass
class ProviderConfiguration:
    """Where the OpenAI-compatible provider lives and how to authenticate."""

    base_url: str = field(default_factory=lambda: SERVER_URL)
    api_key: str = field(default_factory=lambda: API_KEY)
    # ``None`` waits forever, matching the raw HTTP behaviour.
    timeout: float | None = None

    @classmethod
    def from_env(cls) -> "ProviderConfiguration":
        return cls(
            base_url=os.getenv("CHATBRIDGE_BASE_URL", SERVER_URL),
            api_key=os.getenv("CHATBRIDGE_API_KEY", API_KEY),
        )


__all__ = [
    "DatabaseConfiguration",
    "ProviderConfiguration",
    "SERVER_URL",
    "API_KEY",
    "DB_PATH",
    "LOG_LEVEL",
    "MODEL_NAME",
]
