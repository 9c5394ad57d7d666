"""Protocol interfaces used by the recorder and ListeningOrchestrator."""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from models import (
    AudioChunk,
    AudioFrame,
    AudioSourceKind,
    ConnectionState,
    MatchResult,
    RecordingState,
)

FrameCallback = Callable[[AudioFrame], None]
ChunkCallback = Callable[[AudioChunk], None]
MatchCallback = Callable[[MatchResult], None]
ErrorCallback = Callable[[str, str], None]


class DeviceStream(Protocol):
    @property
    def active(self) -> bool: ...

    def release(self) -> None: ...


class AudioSource(Protocol):
    async def acquire(
        self,
        kind: AudioSourceKind,
        on_frame: FrameCallback,
        on_lost: Optional[Callable[[], None]] = None,
    ) -> DeviceStream: ...


class ChunkRecorder(Protocol):
    @property
    def state(self) -> RecordingState: ...

    async def start_continuous(
        self,
        kind: AudioSourceKind,
        on_chunk: ChunkCallback,
        interval_ms: int = 3000,
        on_failure: Optional[Callable[[Exception], None]] = None,
    ) -> None: ...

    def stop(self) -> None: ...


class ChunkTransport(Protocol):
    last_error: Optional[str]

    @property
    def state(self) -> ConnectionState: ...

    @property
    def is_connected(self) -> bool: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    def send_chunk(self, chunk: AudioChunk) -> None: ...

    def set_event_handlers(
        self,
        on_match: Optional[MatchCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_state_change: Optional[Callable[[ConnectionState, ConnectionState], None]] = None,
    ) -> None: ...


class ConfigStore(Protocol):
    def get_api_url(self) -> str: ...

    def set_api_url(self, url: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def get_interval_ms(self) -> int: ...

    def get_audio_source(self) -> AudioSourceKind: ...

    def get_system_device(self) -> str: ...
