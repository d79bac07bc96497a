"""Tests for the JSON-backed settings store."""

from __future__ import annotations

import json

from app.settings_store import API_KEY_FIELD, JsonSettingsStore


def test_missing_file_reads_as_no_key(tmp_path) -> None:
    store = JsonSettingsStore(tmp_path / "config.json")

    assert store.read_key() is None


def test_write_key_creates_parent_directories(tmp_path) -> None:
    path = tmp_path / "data" / "config.json"
    store = JsonSettingsStore(path)

    store.write_key("secret")

    assert json.loads(path.read_text(encoding="utf-8")) == {API_KEY_FIELD: "secret"}
    assert store.read_key() == "secret"


def test_write_key_keeps_other_settings(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"theme": "dark", API_KEY_FIELD: "old"}), encoding="utf-8")

    JsonSettingsStore(path).write_key("new")

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "theme": "dark",
        API_KEY_FIELD: "new",
    }


def test_corrupt_file_reads_as_no_key(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    assert JsonSettingsStore(path).read_key() is None


def test_blank_stored_key_is_ignored(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({API_KEY_FIELD: "  "}), encoding="utf-8")

    assert JsonSettingsStore(path).read_key() is None
