from __future__ import annotations

from pathlib import Path

import pytest

from config import API_URL_ENV, JsonConfigStore
from errors import StreamConnectionError
from main import App, _build_parser
from models import ListeningState


def _make_app(tmp_path: Path, monkeypatch, connect_error: Exception | None = None):  # noqa: ANN001, ANN202
    monkeypatch.delenv(API_URL_ENV, raising=False)
    args = _build_parser().parse_args(["--api-url", "http://localhost:9000"])
    app = App(args, JsonConfigStore(path=tmp_path / "config.json"))
    calls: list[str] = []

    async def fake_connect() -> None:
        calls.append("connect")
        if connect_error is not None:
            raise connect_error

    def fake_hotkey_start(on_toggle) -> None:  # noqa: ANN001
        calls.append("hotkey")

    monkeypatch.setattr(app.session, "connect", fake_connect)
    monkeypatch.setattr(app.hotkey, "start", fake_hotkey_start)
    return app, calls


@pytest.mark.asyncio
async def test_stream_mode_connects_before_arming_hotkey(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    app, calls = _make_app(tmp_path, monkeypatch)
    app._done.set()

    assert await app.run() == 0

    assert calls == ["connect", "hotkey"]
    assert app.session.url == "ws://localhost:9000/ws"
    assert app.orchestrator.state == ListeningState.IDLE


@pytest.mark.asyncio
async def test_initial_connect_failure_is_reported_and_not_fatal(
    tmp_path: Path, monkeypatch, capsys  # noqa: ANN001
) -> None:
    app, calls = _make_app(tmp_path, monkeypatch, connect_error=StreamConnectionError("refused"))
    app._done.set()

    assert await app.run() == 0

    assert calls == ["connect", "hotkey"]
    assert "CONNECTION_ERROR: refused" in capsys.readouterr().err
