"""Core data models for the listening client."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class AudioSourceKind(str, Enum):
    MICROPHONE = "microphone"
    SYSTEM_AUDIO = "system"


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


class RecordingState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"


class ListeningState(str, Enum):
    IDLE = "IDLE"
    AWAITING_CONNECTION = "AWAITING_CONNECTION"
    LISTENING = "LISTENING"
    MATCH_FOUND = "MATCH_FOUND"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 44100
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class AudioChunk:
    """One closed segment, encoded as a complete audio container."""

    data: bytes
    sequence: int = 0
    duration_ms: int = 0
    mime_type: str = "audio/wav"

    def __len__(self) -> int:
        return len(self.data)


@dataclass
class EmptySegment:
    """Flush outcome for a segment that captured no audio."""

    sequence: int = 0


SegmentOutcome = Union[AudioChunk, EmptySegment]


@dataclass
class MatchResult:
    title: str
    artist: str
    score: float

    @classmethod
    def from_payload(cls, payload: Any) -> "MatchResult":
        """Build a result from a decoded ``match`` object.

        Raises ValueError when the payload does not have the expected shape.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"match payload must be an object, got {type(payload).__name__}")
        title = payload.get("title")
        artist = payload.get("artist")
        score = payload.get("score")
        if not isinstance(title, str) or not isinstance(artist, str):
            raise ValueError("match payload needs string title and artist")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or math.isnan(score):
            raise ValueError(f"match score must be a number, got {score!r}")
        return cls(title=title, artist=artist, score=min(max(float(score), 0.0), 1.0))
