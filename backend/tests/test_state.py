"""
Tests for core/state.py — theme transitions and persistence, client sessions.
"""

import json
import os
import sys
import time

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.gateway import Snapshot
from core.state import (
    DEFAULT_THEME,
    JsonFileStore,
    MemoryStore,
    SessionStore,
    Theme,
    ThemeState,
    load_theme,
    save_theme,
)


class TestThemeState:
    def test_cycle(self):
        state = ThemeState(Theme.LIGHT)
        assert state.toggle().theme is Theme.DARK
        assert state.toggle().toggle().theme is Theme.DARKER
        assert state.toggle().toggle().toggle().theme is Theme.LIGHT

    def test_select(self):
        assert ThemeState().select(" Darker ").theme is Theme.DARKER

    def test_select_unknown(self):
        with pytest.raises(ValueError):
            ThemeState().select("blue")


class TestThemePersistence:
    def test_default_when_empty(self):
        assert load_theme(MemoryStore()).theme is DEFAULT_THEME

    def test_invalid_stored_value_falls_back(self):
        assert load_theme(MemoryStore({"theme": "neon"})).theme is DEFAULT_THEME

    def test_round_trip_memory(self):
        store = MemoryStore()
        save_theme(store, ThemeState(Theme.LIGHT))
        assert load_theme(store).theme is Theme.LIGHT

    def test_json_file_store(self, tmp_path):
        path = tmp_path / "prefs" / "preferences.json"
        store = JsonFileStore(str(path))
        save_theme(store, ThemeState(Theme.DARKER))
        assert json.loads(path.read_text(encoding="utf-8")) == {"theme": "darker"}
        assert load_theme(JsonFileStore(str(path))).theme is Theme.DARKER

    def test_json_file_store_keeps_other_keys(self, tmp_path):
        path = tmp_path / "preferences.json"
        path.write_text(json.dumps({"language": "ms"}), encoding="utf-8")
        store = JsonFileStore(str(path))
        store.set("theme", "light")
        assert store.get("language") == "ms"
        assert store.get("theme") == "light"

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "preferences.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_theme(JsonFileStore(str(path))).theme is DEFAULT_THEME


class TestSessionStore:
    def test_open_and_get(self):
        store = SessionStore()
        session = store.open("tok", {"id": "u1"})
        assert store.get("tok") is session
        assert len(store) == 1

    def test_open_same_user_keeps_session(self):
        store = SessionStore()
        first = store.open("tok", {"id": "u1"})
        first.replace_snapshot(Snapshot(students=({"id": 1},)))
        assert store.open("tok", {"id": "u1"}).snapshot is first.snapshot

    def test_open_other_user_replaces_session(self):
        store = SessionStore()
        store.open("tok", {"id": "u1"}).replace_snapshot(Snapshot())
        assert store.open("tok", {"id": "u2"}).snapshot is None

    def test_drop_discards_snapshot(self):
        store = SessionStore()
        store.open("tok", {"id": "u1"}).replace_snapshot(Snapshot())
        store.drop("tok")
        assert store.get("tok") is None

    def test_expiry(self):
        store = SessionStore(ttl_seconds=60)
        session = store.open("tok", {"id": "u1"})
        session.created_at = time.time() - 120
        assert store.get("tok") is None
        assert len(store) == 0
