from __future__ import annotations

import asyncio

import pytest

from errors import CONNECTION_ERROR, NO_AUDIO_TRACK_SELECTED, DeviceLost, NoAudioTrackSelected, StreamConnectionError
from models import AudioChunk, AudioSourceKind, ConnectionState, ListeningState, MatchResult, RecordingState
from orchestrator import ListeningOrchestrator


class FakeRecorder:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.state = RecordingState.IDLE
        self.start_calls: list[tuple[AudioSourceKind, int]] = []
        self.stop_calls = 0
        self.on_chunk = None
        self.on_failure = None

    async def start_continuous(self, kind, on_chunk, interval_ms=3000, on_failure=None) -> None:  # noqa: ANN001
        self.start_calls.append((kind, interval_ms))
        if self.error is not None:
            raise self.error
        self.on_chunk = on_chunk
        self.on_failure = on_failure
        self.state = RecordingState.RECORDING

    def stop(self) -> None:
        self.stop_calls += 1
        self.state = RecordingState.IDLE

    def emit(self, chunk: AudioChunk) -> None:
        assert self.on_chunk is not None
        self.on_chunk(chunk)


class FakeSession:
    def __init__(self, connected: bool = False, gate: asyncio.Event | None = None) -> None:
        self.state = ConnectionState.CONNECTED if connected else ConnectionState.DISCONNECTED
        self.gate = gate
        self.connect_error: Exception | None = None
        self.last_error: str | None = None
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.sent: list[AudioChunk] = []
        self.on_match = None
        self.on_error = None
        self.on_state_change = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def set_event_handlers(self, on_match=None, on_error=None, on_state_change=None) -> None:  # noqa: ANN001
        self.on_match = on_match
        self.on_error = on_error
        self.on_state_change = on_state_change

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.state != ConnectionState.DISCONNECTED:
            return
        self._set(ConnectionState.CONNECTING)
        if self.gate is not None:
            await self.gate.wait()
        if self.connect_error is not None:
            self.last_error = str(self.connect_error)
            self._set(ConnectionState.DISCONNECTED)
            raise self.connect_error
        self._set(ConnectionState.CONNECTED)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._set(ConnectionState.DISCONNECTED)

    def send_chunk(self, chunk: AudioChunk) -> None:
        self.sent.append(chunk)

    def emit_match(self, match: MatchResult) -> None:
        assert self.on_match is not None
        self.on_match(match)

    def _set(self, to_state: ConnectionState) -> None:
        from_state, self.state = self.state, to_state
        if self.on_state_change and from_state != to_state:
            self.on_state_change(from_state, to_state)


def _make(recorder=None, session=None, **kwargs):  # noqa: ANN001, ANN202
    recorder = recorder or FakeRecorder()
    session = session or FakeSession(connected=True)
    transitions: list[tuple[ListeningState, ListeningState]] = []
    errors: list[tuple[str, str]] = []

    def on_state_change(from_state: ListeningState, to_state: ListeningState) -> None:
        transitions.append((from_state, to_state))
        if to_state != ListeningState.LISTENING:
            # Capture must already be stopped whenever we are not listening.
            assert recorder.state == RecordingState.IDLE

    orchestrator = ListeningOrchestrator(
        recorder=recorder,
        session=session,
        on_state_change=on_state_change,
        on_error=lambda c, m: errors.append((c, m)),
        **kwargs,
    )
    return orchestrator, recorder, session, transitions, errors


MATCH = MatchResult(title="X", artist="Y", score=0.92)


@pytest.mark.asyncio
async def test_start_while_disconnected_awaits_connection_first() -> None:
    gate = asyncio.Event()
    session = FakeSession(gate=gate)
    orchestrator, recorder, _, transitions, _ = _make(session=session, interval_ms=3000)

    task = asyncio.create_task(orchestrator.start())
    await asyncio.sleep(0)

    assert orchestrator.state == ListeningState.AWAITING_CONNECTION
    assert session.connect_calls == 1
    assert recorder.start_calls == []

    gate.set()
    await task

    assert orchestrator.state == ListeningState.LISTENING
    assert recorder.start_calls == [(AudioSourceKind.MICROPHONE, 3000)]
    assert transitions == [
        (ListeningState.IDLE, ListeningState.AWAITING_CONNECTION),
        (ListeningState.AWAITING_CONNECTION, ListeningState.LISTENING),
    ]


@pytest.mark.asyncio
async def test_start_when_connected_listens_and_forwards_chunks() -> None:
    orchestrator, recorder, session, _, _ = _make(interval_ms=1500)

    await orchestrator.start(AudioSourceKind.SYSTEM_AUDIO)
    chunks = [AudioChunk(data=b"a", sequence=1), AudioChunk(data=b"b", sequence=2)]
    for chunk in chunks:
        recorder.emit(chunk)

    assert orchestrator.state == ListeningState.LISTENING
    assert recorder.start_calls == [(AudioSourceKind.SYSTEM_AUDIO, 1500)]
    assert session.sent == chunks
    assert session.connect_calls == 0


@pytest.mark.asyncio
async def test_match_stops_capture_but_keeps_connection() -> None:
    matches: list[MatchResult] = []
    orchestrator, recorder, session, _, _ = _make(on_match=matches.append)
    await orchestrator.start()

    session.emit_match(MATCH)

    assert orchestrator.state == ListeningState.MATCH_FOUND
    assert orchestrator.match == MATCH
    assert matches == [MATCH]
    assert recorder.state == RecordingState.IDLE
    assert session.state == ConnectionState.CONNECTED
    assert session.disconnect_calls == 0


@pytest.mark.asyncio
async def test_new_listen_after_match_clears_previous_match() -> None:
    orchestrator, recorder, session, _, _ = _make()
    await orchestrator.start()
    session.emit_match(MATCH)

    await orchestrator.start()

    assert orchestrator.state == ListeningState.LISTENING
    assert orchestrator.match is None
    assert len(recorder.start_calls) == 2
    assert session.connect_calls == 0


@pytest.mark.asyncio
async def test_match_outside_listening_is_ignored() -> None:
    orchestrator, _, session, _, _ = _make()

    session.emit_match(MATCH)

    assert orchestrator.state == ListeningState.IDLE
    assert orchestrator.match is None


@pytest.mark.asyncio
async def test_user_stop_returns_to_idle_and_keeps_connection() -> None:
    orchestrator, recorder, session, _, _ = _make()
    await orchestrator.start()

    orchestrator.stop()
    orchestrator.stop()  # no-op

    assert orchestrator.state == ListeningState.IDLE
    assert recorder.state == RecordingState.IDLE
    assert recorder.stop_calls == 1
    assert session.state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_stop_while_awaiting_connection_never_records() -> None:
    gate = asyncio.Event()
    session = FakeSession(gate=gate)
    orchestrator, recorder, _, _, _ = _make(session=session)

    task = asyncio.create_task(orchestrator.start())
    await asyncio.sleep(0)
    orchestrator.stop()
    gate.set()
    await task

    assert orchestrator.state == ListeningState.IDLE
    assert recorder.start_calls == []
    assert session.state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_missing_system_audio_track_is_surfaced() -> None:
    recorder = FakeRecorder(error=NoAudioTrackSelected())
    orchestrator, _, session, _, errors = _make(recorder=recorder)

    with pytest.raises(NoAudioTrackSelected):
        await orchestrator.start(AudioSourceKind.SYSTEM_AUDIO)

    assert orchestrator.state == ListeningState.IDLE
    assert recorder.state == RecordingState.IDLE
    assert errors[0][0] == NO_AUDIO_TRACK_SELECTED
    assert session.state == ConnectionState.CONNECTED
    assert session.connect_calls == 0


@pytest.mark.asyncio
async def test_connect_failure_is_surfaced() -> None:
    session = FakeSession()
    session.connect_error = StreamConnectionError("refused")
    orchestrator, recorder, _, _, errors = _make(session=session)

    with pytest.raises(StreamConnectionError):
        await orchestrator.start()

    assert orchestrator.state == ListeningState.IDLE
    assert recorder.start_calls == []
    assert errors == [(CONNECTION_ERROR, "refused")]


@pytest.mark.asyncio
async def test_connection_error_does_not_stop_recording() -> None:
    orchestrator, recorder, session, _, errors = _make()
    await orchestrator.start()

    session.on_error(CONNECTION_ERROR, "Connection lost")
    session._set(ConnectionState.DISCONNECTED)
    recorder.emit(AudioChunk(data=b"late", sequence=1))

    assert orchestrator.state == ListeningState.LISTENING
    assert recorder.state == RecordingState.RECORDING
    assert errors == [(CONNECTION_ERROR, "Connection lost")]
    assert orchestrator.error == "Connection lost"


@pytest.mark.asyncio
async def test_capture_failure_returns_to_idle() -> None:
    orchestrator, recorder, _, _, errors = _make()
    await orchestrator.start()

    recorder.state = RecordingState.IDLE
    recorder.on_failure(DeviceLost())

    assert orchestrator.state == ListeningState.IDLE
    assert errors[0][0] == "DEVICE_LOST"


@pytest.mark.asyncio
async def test_pending_connection_from_elsewhere_starts_listening() -> None:
    gate = asyncio.Event()
    session = FakeSession(gate=gate)
    orchestrator, recorder, _, _, _ = _make(session=session)

    other = asyncio.create_task(session.connect())
    await asyncio.sleep(0)
    await orchestrator.start()
    assert orchestrator.state == ListeningState.AWAITING_CONNECTION

    gate.set()
    await other
    await asyncio.sleep(0)

    assert orchestrator.state == ListeningState.LISTENING
    assert len(recorder.start_calls) == 1


@pytest.mark.asyncio
async def test_failed_connect_of_replaced_attempt_reaches_current_attempt() -> None:
    gate = asyncio.Event()
    session = FakeSession(gate=gate)
    session.connect_error = StreamConnectionError("refused")
    orchestrator, recorder, _, _, errors = _make(session=session)

    first = asyncio.create_task(orchestrator.start())
    await asyncio.sleep(0)
    orchestrator.stop()
    await orchestrator.start()
    assert orchestrator.state == ListeningState.AWAITING_CONNECTION
    assert session.connect_calls == 2

    gate.set()
    with pytest.raises(StreamConnectionError):
        await first

    assert orchestrator.state == ListeningState.IDLE
    assert recorder.start_calls == []
    assert errors == [(CONNECTION_ERROR, "refused")]


@pytest.mark.asyncio
async def test_shutdown_stops_and_disconnects() -> None:
    orchestrator, recorder, session, _, _ = _make()
    await orchestrator.start()

    await orchestrator.shutdown()

    assert orchestrator.state == ListeningState.IDLE
    assert recorder.state == RecordingState.IDLE
    assert session.disconnect_calls == 1
    assert session.state == ConnectionState.DISCONNECTED
