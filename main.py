"""Application entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from audio_source import SoundDeviceAudioSource
from config import JsonConfigStore
from errors import ListenError
from hotkey import GlobalHotkeyAdapter
from interfaces import ConfigStore
from models import AudioSourceKind, ListeningState, MatchResult
from orchestrator import ListeningOrchestrator
from recognizer import HttpRecognizer
from recorder import SegmentingRecorder
from streaming import StreamingSession

logger = logging.getLogger(__name__)


def _format_match(match: MatchResult) -> str:
    return f"{match.title} - {match.artist} (score {match.score:.2f})"


class App:
    def __init__(self, args: argparse.Namespace, config_store: ConfigStore) -> None:
        self.api_url = args.api_url or config_store.get_api_url()
        self.source_kind = AudioSourceKind(args.source) if args.source else config_store.get_audio_source()
        self.interval_ms = args.interval_ms or config_store.get_interval_ms()
        self.exit_on_match = args.exit_on_match

        source = SoundDeviceAudioSource(system_device=config_store.get_system_device())
        self.recorder = SegmentingRecorder(source)
        self.session = StreamingSession(self.api_url)
        self.orchestrator = ListeningOrchestrator(
            recorder=self.recorder,
            session=self.session,
            source_kind=self.source_kind,
            interval_ms=self.interval_ms,
            on_state_change=self._on_state_change,
            on_match=self._on_match,
            on_error=self._on_error,
        )
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=config_store.get_hotkey())
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._start_task: Optional[asyncio.Future] = None
        self._done = asyncio.Event()

    # ------------------------------------------------------------------
    # Callbacks (all on the event loop)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: ListeningState, to_state: ListeningState) -> None:
        if to_state == ListeningState.AWAITING_CONNECTION:
            print("Connecting...")
        elif to_state == ListeningState.LISTENING:
            print(f"Listening ({self.source_kind.value})...")
        elif to_state == ListeningState.IDLE:
            print("Ready")

    def _on_match(self, match: MatchResult) -> None:
        print(f"Match: {_format_match(match)}")
        if self.exit_on_match:
            self._done.set()

    def _on_error(self, code: str, message: str) -> None:
        print(f"{code}: {message}", file=sys.stderr)

    # ------------------------------------------------------------------
    # Hotkey handlers
    # ------------------------------------------------------------------

    def _on_hotkey(self) -> None:
        # Called on the pynput thread.
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._toggle)

    def _toggle(self) -> None:
        if self.orchestrator.state in (ListeningState.LISTENING, ListeningState.AWAITING_CONNECTION):
            self.orchestrator.stop()
        else:
            self._start_task = asyncio.ensure_future(self._start())

    async def _start(self) -> None:
        try:
            await self.orchestrator.start(self.source_kind)
        except ListenError as exc:
            logger.debug("Listen attempt failed: %s", exc)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> int:
        self._loop = asyncio.get_running_loop()
        try:
            await self.session.connect()
        except ListenError as exc:
            # Not fatal: the next start() connects again.
            print(f"{exc.code}: {exc}", file=sys.stderr)
        try:
            self.hotkey.start(on_toggle=self._on_hotkey)
            print("Press the hotkey to start or stop listening.")
        except Exception as exc:
            print(f"Hotkey disabled ({exc}); listening now.")
            await self._start()
        try:
            await self._done.wait()
        finally:
            self.hotkey.stop()
            await self.orchestrator.shutdown()
        return 0


async def recognize_once(args: argparse.Namespace, config_store: ConfigStore) -> int:
    """Record one clip and send it to the HTTP recognize endpoint."""
    kind = AudioSourceKind(args.source) if args.source else config_store.get_audio_source()
    recorder = SegmentingRecorder(SoundDeviceAudioSource(system_device=config_store.get_system_device()))
    recognizer = HttpRecognizer(args.api_url or config_store.get_api_url())
    try:
        await recorder.start_recording(kind)
        print(f"Recording {args.once:g}s from {kind.value}...")
        try:
            await asyncio.sleep(args.once)
        finally:
            chunk = recorder.stop_recording()
        if chunk is None:
            print("No audio captured.", file=sys.stderr)
            return 1
        print("Processing audio...")
        match = await recognizer.recognize(chunk)
    except ListenError as exc:
        print(f"{exc.code}: {exc}", file=sys.stderr)
        return 1
    finally:
        await recognizer.aclose()
    if match is None:
        print("No match found. Try again.")
        return 1
    print(f"Match: {_format_match(match)}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream live audio to a song matching service.")
    parser.add_argument("--api-url", help="Service base address (default from config or LISTEN_API_URL)")
    parser.add_argument("--source", choices=[k.value for k in AudioSourceKind], help="Audio source to capture")
    parser.add_argument("--interval-ms", type=int, help="Chunk length in milliseconds")
    parser.add_argument("--once", type=float, metavar="SECONDS", help="Record one clip and recognize it over HTTP")
    parser.add_argument("--exit-on-match", action="store_true", help="Quit after the first match")
    parser.add_argument("--set-api-url", metavar="URL", help="Save the service base address and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    config_store = JsonConfigStore()
    if args.set_api_url:
        config_store.set_api_url(args.set_api_url)
        print(f"Saved API URL: {args.set_api_url}")
        return 0
    if args.interval_ms is not None and args.interval_ms <= 0:
        print("--interval-ms must be positive", file=sys.stderr)
        return 2

    try:
        if args.once:
            return asyncio.run(recognize_once(args, config_store))

        async def _run() -> int:
            return await App(args, config_store).run()

        return asyncio.run(_run())
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
