"""Segmenting recorder: live audio in, fixed-cadence encoded chunks out."""

from __future__ import annotations

import asyncio
import io
import logging
import wave
from typing import Callable, Optional

from errors import DeviceLost
from interfaces import AudioSource, ChunkCallback, DeviceStream
from models import AudioChunk, AudioFrame, AudioSourceKind, EmptySegment, RecordingState, SegmentOutcome

logger = logging.getLogger(__name__)

FailureCallback = Callable[[Exception], None]


def _pcm_to_wav(
    pcm: bytes,
    sample_rate: int = 44100,
    channels: int = 1,
    sample_width: int = 2,
) -> bytes:
    """Wrap raw PCM bytes in a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return buf.getvalue()


class SegmentingRecorder:
    def __init__(self, source: AudioSource) -> None:
        self._source = source
        self._state = RecordingState.IDLE
        self._stream: Optional[DeviceStream] = None
        self._acquiring = False
        self._looping = False
        self._loop_task: Optional[asyncio.Task] = None
        self._on_chunk: Optional[ChunkCallback] = None
        self._on_failure: Optional[FailureCallback] = None

        self._segment: Optional[list[bytes]] = None
        self._sample_rate = 44100
        self._channels = 1
        self._sequence = 0
        self.empty_flushes = 0

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == RecordingState.RECORDING

    async def start_continuous(
        self,
        kind: AudioSourceKind,
        on_chunk: ChunkCallback,
        interval_ms: int = 3000,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        """Record in back-to-back segments of ``interval_ms`` until stop()."""
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if not await self._begin(kind):
            return
        self._on_chunk = on_chunk
        self._on_failure = on_failure
        self._loop_task = asyncio.create_task(self._segment_loop(interval_ms / 1000.0))
        logger.info("Continuous recording started (%s, every %d ms)", kind.value, interval_ms)

    async def start_recording(self, kind: AudioSourceKind) -> None:
        """Record a single segment that closes only on stop_recording()."""
        if await self._begin(kind):
            logger.info("One-shot recording started (%s)", kind.value)

    def stop_recording(self) -> Optional[AudioChunk]:
        self._looping = False
        if self._state != RecordingState.RECORDING:
            return None
        self._cancel_loop()
        outcome = self._finish()
        if isinstance(outcome, EmptySegment):
            logger.info("One-shot recording captured no audio")
            return None
        return outcome

    def stop(self) -> None:
        """Stop looping, flush the open segment and release the device.

        Safe to call at any time. A stop issued while the device is still being
        acquired makes the pending start release it without recording.
        """
        self._looping = False
        if self._state != RecordingState.RECORDING:
            return
        self._cancel_loop()
        try:
            self._emit(self._finish())
        finally:
            self._on_chunk = None
            self._on_failure = None
        logger.info("Recording stopped")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _begin(self, kind: AudioSourceKind) -> bool:
        if self._state == RecordingState.RECORDING or self._acquiring:
            return False
        self._acquiring = True
        self._looping = True
        try:
            stream = await self._source.acquire(kind, self._on_frame, self._on_device_lost)
        except Exception:
            self._looping = False
            raise
        finally:
            self._acquiring = False
        if not self._looping:
            logger.info("Recording cancelled while acquiring the device")
            stream.release()
            return False
        self._stream = stream
        self._sequence = 0
        self._state = RecordingState.RECORDING
        self._open_segment()
        return True

    async def _segment_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            if self._state != RecordingState.RECORDING:
                return
            self._rotate_segment()

    def _rotate_segment(self) -> None:
        outcome = self._close_segment()
        # Next segment opens before consumers see the chunk so no audio falls between.
        if self._looping:
            self._open_segment()
        self._emit(outcome)

    def _open_segment(self) -> None:
        self._segment = []

    def _close_segment(self) -> SegmentOutcome:
        fragments, self._segment = self._segment or [], None
        pcm = b"".join(fragments)
        if not pcm:
            return EmptySegment(sequence=self._sequence)
        self._sequence += 1
        bytes_per_second = self._sample_rate * self._channels * 2
        return AudioChunk(
            data=_pcm_to_wav(pcm, self._sample_rate, self._channels),
            sequence=self._sequence,
            duration_ms=int(len(pcm) * 1000 / bytes_per_second),
        )

    def _emit(self, outcome: SegmentOutcome) -> None:
        if isinstance(outcome, EmptySegment):
            self.empty_flushes += 1
            logger.debug("Segment after #%d was empty; nothing to emit", outcome.sequence)
            return
        if self._on_chunk is None:
            return
        logger.debug("Emitting chunk #%d (%d bytes)", outcome.sequence, len(outcome.data))
        try:
            self._on_chunk(outcome)
        except Exception:
            logger.exception("Chunk consumer failed for chunk #%d", outcome.sequence)

    def _on_frame(self, frame: AudioFrame) -> None:
        if self._segment is None:
            return
        self._sample_rate = frame.sample_rate
        self._channels = frame.channels
        self._segment.append(frame.pcm16_bytes)

    def _on_device_lost(self) -> None:
        if self._state != RecordingState.RECORDING:
            return
        on_failure = self._on_failure
        logger.error("Capture device stopped while recording")
        self.stop()
        if on_failure is not None:
            on_failure(DeviceLost())

    def _cancel_loop(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _finish(self) -> SegmentOutcome:
        # Release first: the device hands over blocks still in flight.
        stream, self._stream = self._stream, None
        try:
            if stream is not None:
                stream.release()
        finally:
            outcome = self._close_segment()
            self._state = RecordingState.IDLE
        return outcome
