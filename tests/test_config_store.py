from __future__ import annotations

from pathlib import Path

import pytest

from config import API_URL_ENV, JsonConfigStore
from models import AudioSourceKind


@pytest.fixture(autouse=True)
def _no_env_url(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv(API_URL_ENV, raising=False)


def test_config_read_write(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_api_url() == "http://localhost:8000"
    assert store.get_hotkey() == "Key.f8"
    assert store.get_interval_ms() == 3000
    assert store.get_audio_source() == AudioSourceKind.MICROPHONE
    assert store.get_system_device() == ""

    store.set_api_url("https://match.example.com ")
    store.set_hotkey("Key.f9")
    store.set_audio_source(AudioSourceKind.SYSTEM_AUDIO)

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_api_url() == "https://match.example.com"
    assert reloaded.get_hotkey() == "Key.f9"
    assert reloaded.get_audio_source() == AudioSourceKind.SYSTEM_AUDIO


def test_environment_overrides_api_url(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    store = JsonConfigStore(path=tmp_path / "config.json")
    store.set_api_url("http://stored:8000")

    monkeypatch.setenv(API_URL_ENV, "http://from-env:9000")

    assert store.get_api_url() == "http://from-env:9000"


def test_config_invalid_json_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_api_url() == "http://localhost:8000"
    assert store.get_hotkey() == "Key.f8"


def test_config_invalid_values_fallback(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text('{"interval_ms": "soon", "audio_source": "radio"}', encoding="utf-8")

    store = JsonConfigStore(path=path)
    assert store.get_interval_ms() == 3000
    assert store.get_audio_source() == AudioSourceKind.MICROPHONE
