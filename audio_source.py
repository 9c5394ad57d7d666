"""Microphone and system-audio acquisition on top of sounddevice.

Frames are produced on the PortAudio callback thread and handed to the
asyncio loop that acquired the stream, so consumers only ever see them on
the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Optional

from errors import DeviceAccessDenied, NoAudioTrackSelected
from interfaces import FrameCallback
from models import AudioFrame, AudioSourceKind

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

# Names under which platforms expose "what you hear" as a capture device.
LOOPBACK_HINTS = ("monitor", "loopback", "stereo mix", "blackhole", "soundflower", "what u hear")


class SoundDeviceStream:
    """A live capture stream. Owned by exactly one recorder until released."""

    def __init__(
        self,
        kind: AudioSourceKind,
        sample_rate: int,
        channels: int,
        loop: asyncio.AbstractEventLoop,
        on_frame: FrameCallback,
        on_lost: Optional[Callable[[], None]] = None,
    ) -> None:
        self.kind = kind
        self.sample_rate = sample_rate
        self.channels = channels
        self._loop = loop
        self._on_frame = on_frame
        self._on_lost = on_lost
        self._stream: Any = None
        self._pending: deque[AudioFrame] = deque()
        self._stopping = False
        self._released = False

    @property
    def active(self) -> bool:
        return self._stream is not None and not self._released

    def open(self, device: Optional[int], blocksize: int) -> None:
        self._stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            blocksize=blocksize,
            device=device,
            callback=self._on_audio,
            finished_callback=self._on_finished,
        )
        self._stream.start()

    def release(self) -> None:
        """Stop capture and deliver every block recorded before the stop.

        Must be called on the loop thread. Blocks still waiting for their
        loop callback are handed to ``on_frame`` before this returns.
        """
        if self._released:
            return
        self._stopping = True
        stream, self._stream = self._stream, None
        try:
            if stream is not None:
                try:
                    stream.stop()
                finally:
                    stream.close()
        finally:
            self._released = True
        self._drain()
        if stream is not None:
            logger.info("Released %s capture stream", self.kind.value)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.warning("Audio callback status: %s", status)
        if self._released or np is None:
            return
        frame = AudioFrame(
            pcm16_bytes=np.asarray(indata, dtype=np.int16).tobytes(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
        )
        self._pending.append(frame)
        self._call_on_loop(self._drain)

    def _on_finished(self) -> None:
        if self._stopping or self._on_lost is None:
            return
        self._call_on_loop(self._on_lost)

    def _drain(self) -> None:
        while self._pending:
            self._on_frame(self._pending.popleft())

    def _call_on_loop(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed; the stream is being torn down with it.
            logger.debug("Dropped audio callback after loop shutdown")


class SoundDeviceAudioSource:
    def __init__(
        self,
        sample_rate: int = 44100,
        block_ms: int = 100,
        system_device: str = "",
    ) -> None:
        self.sample_rate = sample_rate
        self.block_ms = block_ms
        self.system_device = system_device

    async def acquire(
        self,
        kind: AudioSourceKind,
        on_frame: FrameCallback,
        on_lost: Optional[Callable[[], None]] = None,
    ) -> SoundDeviceStream:
        if sd is None:
            raise DeviceAccessDenied("sounddevice is not installed")
        loop = asyncio.get_running_loop()
        blocksize = int(self.sample_rate * (self.block_ms / 1000.0))

        if kind == AudioSourceKind.MICROPHONE:
            device, channels = None, 1
        else:
            device, channels = self._find_system_device()

        stream = SoundDeviceStream(kind, self.sample_rate, channels, loop, on_frame, on_lost)
        try:
            stream.open(device, blocksize)
        except Exception as exc:
            stream.release()
            if kind == AudioSourceKind.MICROPHONE:
                raise DeviceAccessDenied(f"Could not access microphone: {exc}") from exc
            raise DeviceAccessDenied(f"Could not capture system audio: {exc}") from exc
        logger.info("Acquired %s capture stream (device=%s, channels=%d)", kind.value, device, channels)
        return stream

    def _find_system_device(self) -> tuple[int, int]:
        """Pick the loopback device carrying system audio.

        Returns (device index, channel count). Raises NoAudioTrackSelected when
        no device with at least one input channel matches.
        """
        wanted = self.system_device.strip().lower()
        for index, info in enumerate(sd.query_devices()):
            name = str(info.get("name", "")).lower()
            if wanted:
                if wanted not in name:
                    continue
            elif not any(hint in name for hint in LOOPBACK_HINTS):
                continue
            max_inputs = int(info.get("max_input_channels", 0))
            if max_inputs < 1:
                if wanted:
                    raise NoAudioTrackSelected(
                        f"Device {info.get('name')!r} has no audio input channels."
                    )
                continue
            return index, min(max_inputs, 2)
        raise NoAudioTrackSelected()
