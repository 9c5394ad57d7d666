"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from pathlib import Path

from models import AudioSourceKind

API_URL_ENV = "LISTEN_API_URL"
DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_HOTKEY = "Key.f8"
DEFAULT_INTERVAL_MS = 3000


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "live_listen" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_url(self) -> str:
        env_value = os.getenv(API_URL_ENV, "").strip()
        if env_value:
            return env_value
        data = self._read_all()
        return str(data.get("api_url") or DEFAULT_API_URL)

    def set_api_url(self, url: str) -> None:
        data = self._read_all()
        data["api_url"] = url.strip()
        self._write_all(data)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", DEFAULT_HOTKEY))

    def set_hotkey(self, hotkey: str) -> None:
        data = self._read_all()
        data["hotkey"] = hotkey
        self._write_all(data)

    def get_interval_ms(self) -> int:
        data = self._read_all()
        try:
            value = int(data.get("interval_ms", DEFAULT_INTERVAL_MS))
        except (TypeError, ValueError):
            return DEFAULT_INTERVAL_MS
        return value if value > 0 else DEFAULT_INTERVAL_MS

    def get_audio_source(self) -> AudioSourceKind:
        data = self._read_all()
        try:
            return AudioSourceKind(data.get("audio_source", AudioSourceKind.MICROPHONE.value))
        except ValueError:
            return AudioSourceKind.MICROPHONE

    def set_audio_source(self, kind: AudioSourceKind) -> None:
        data = self._read_all()
        data["audio_source"] = kind.value
        self._write_all(data)

    def get_system_device(self) -> str:
        data = self._read_all()
        return str(data.get("system_device", ""))

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
