"""
state.py — Explicit application state.

- Theme preference with transitions, persisted through a key-value store
- Per-login client sessions: the record snapshot and the listing state

Sessions live in process memory and expire after a TTL; logging out drops
the session and with it the snapshot.
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from time import time
from typing import Any, Dict, Optional

from core.filters import ListingState
from core.gateway import Snapshot


# ── Theme ───────────────────────────────────────────────────────────

class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"
    DARKER = "darker"


THEME_CYCLE = [Theme.LIGHT, Theme.DARK, Theme.DARKER]
DEFAULT_THEME = Theme.DARK
THEME_KEY = "theme"


class KeyValueStore:
    """Minimal persistence contract for user preferences."""

    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStore(KeyValueStore):
    """Key-value pairs kept in one JSON document on disk."""

    def __init__(self, path: str):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # atomic replace
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


@dataclass(frozen=True)
class ThemeState:
    theme: Theme = DEFAULT_THEME

    def toggle(self) -> "ThemeState":
        idx = THEME_CYCLE.index(self.theme)
        return ThemeState(THEME_CYCLE[(idx + 1) % len(THEME_CYCLE)])

    def select(self, value: Any) -> "ThemeState":
        return ThemeState(Theme(str(value).strip().lower()))


def load_theme(store: KeyValueStore) -> ThemeState:
    """Stored theme, or the default when nothing valid is stored."""
    try:
        return ThemeState(Theme(store.get(THEME_KEY, DEFAULT_THEME.value)))
    except ValueError:
        return ThemeState()


def save_theme(store: KeyValueStore, state: ThemeState) -> ThemeState:
    store.set(THEME_KEY, state.theme.value)
    return state


# ── Client sessions ─────────────────────────────────────────────────

@dataclass
class ClientSession:
    user: Dict[str, Any]
    snapshot: Optional[Snapshot] = None
    listing: ListingState = field(default_factory=ListingState)
    created_at: float = field(default_factory=time)

    def replace_snapshot(self, snapshot: Snapshot) -> None:
        """Swap in a freshly fetched snapshot as a whole."""
        self.snapshot = snapshot


class SessionStore:
    """In-memory session map keyed by access token."""

    def __init__(self, ttl_seconds: int = 60 * 60):
        self.ttl_seconds = ttl_seconds
        self._sessions: Dict[str, ClientSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def purge_expired(self) -> None:
        now = time()
        expired = [
            token for token, s in self._sessions.items()
            if (now - s.created_at) > self.ttl_seconds
        ]
        for token in expired:
            self._sessions.pop(token, None)

    def get(self, token: str) -> Optional[ClientSession]:
        self.purge_expired()
        return self._sessions.get(token)

    def open(self, token: str, user: Dict[str, Any]) -> ClientSession:
        self.purge_expired()
        session = self._sessions.get(token)
        if session is None or session.user.get("id") != user.get("id"):
            session = ClientSession(user=user)
            self._sessions[token] = session
        return session

    def drop(self, token: str) -> None:
        self._sessions.pop(token, None)
