"""State-machine based listening orchestration.

Binds the segmenting recorder to the streaming session: chunks flow from
the recorder into ``send_chunk`` while listening, and a match event stops
capture but keeps the connection open for the next listen.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from errors import CONNECTION_ERROR, ERROR_MESSAGES, DeviceError, ListenError, StreamConnectionError
from interfaces import ChunkRecorder, ChunkTransport
from models import AudioChunk, AudioSourceKind, ConnectionState, ListeningState, MatchResult

logger = logging.getLogger(__name__)

StateCallback = Callable[[ListeningState, ListeningState], None]
MatchCallback = Callable[[MatchResult], None]
ErrorCallback = Callable[[str, str], None]


class ListeningOrchestrator:
    def __init__(
        self,
        recorder: ChunkRecorder,
        session: ChunkTransport,
        source_kind: AudioSourceKind = AudioSourceKind.MICROPHONE,
        interval_ms: int = 3000,
        on_state_change: Optional[StateCallback] = None,
        on_match: Optional[MatchCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._session = session
        self.source_kind = source_kind
        self.interval_ms = interval_ms
        self._on_state_change = on_state_change
        self._on_match = on_match
        self._on_error = on_error

        self._state = ListeningState.IDLE
        self._attempt = 0
        self._starting = False
        self._connecting = False
        self._awaiting_kind: Optional[AudioSourceKind] = None
        self._background: set[asyncio.Task] = set()

        self.match: Optional[MatchResult] = None
        self.error: Optional[str] = None

        session.set_event_handlers(
            on_match=self._handle_match,
            on_error=self._handle_connection_error,
            on_state_change=self._handle_connection_state,
        )

    @property
    def state(self) -> ListeningState:
        return self._state

    async def start(self, kind: Optional[AudioSourceKind] = None) -> None:
        """Begin a listen attempt.

        When the session is not connected yet this only issues connect() and
        reports AWAITING_CONNECTION; capture begins once the connection opens.
        Device and connection failures are raised after returning to IDLE.
        """
        if self._starting or self._state in (ListeningState.LISTENING, ListeningState.AWAITING_CONNECTION):
            return
        kind = kind or self.source_kind
        self._attempt += 1
        attempt = self._attempt
        self.match = None
        self.error = None

        if self._session.is_connected:
            await self._begin_listening(kind, attempt)
            return

        self._awaiting_kind = kind
        self._transition(ListeningState.AWAITING_CONNECTION)
        self._connecting = True
        try:
            await self._session.connect()
        except StreamConnectionError as exc:
            if attempt == self._attempt:
                self._fail(exc.code, exc.message)
            raise
        finally:
            self._connecting = False

        if attempt != self._attempt or self._state != ListeningState.AWAITING_CONNECTION:
            return
        if not self._session.is_connected:
            # Another connect() is in flight; _handle_connection_state picks it up.
            logger.info("Waiting for the pending connection to open")
            return
        self._awaiting_kind = None
        await self._begin_listening(kind, attempt)

    def stop(self) -> None:
        """User stop. Capture is stopped before the state leaves LISTENING."""
        if self._state == ListeningState.IDLE and not self._starting:
            return
        self._attempt += 1
        self._awaiting_kind = None
        self._recorder.stop()
        self._transition(ListeningState.IDLE)

    async def shutdown(self) -> None:
        self.stop()
        for task in list(self._background):
            task.cancel()
        await self._session.disconnect()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _begin_listening(self, kind: AudioSourceKind, attempt: int) -> None:
        self._starting = True
        try:
            await self._recorder.start_continuous(
                kind,
                self._forward_chunk,
                self.interval_ms,
                on_failure=self._handle_capture_failure,
            )
        except DeviceError as exc:
            if attempt == self._attempt:
                self._fail(exc.code, exc.message)
            raise
        finally:
            self._starting = False

        if attempt != self._attempt:
            self._recorder.stop()
            return
        self._transition(ListeningState.LISTENING)

    def _forward_chunk(self, chunk: AudioChunk) -> None:
        self._session.send_chunk(chunk)

    def _handle_match(self, match: MatchResult) -> None:
        if self._state != ListeningState.LISTENING:
            logger.debug("Ignoring match while %s", self._state.value)
            return
        self.match = match
        # Capture stops; the connection stays open for the next listen.
        self._recorder.stop()
        self._transition(ListeningState.MATCH_FOUND)
        if self._on_match:
            self._on_match(match)

    def _handle_connection_error(self, code: str, message: str) -> None:
        self.error = message
        self._emit_error(code, message)

    def _handle_connection_state(self, from_state: ConnectionState, to_state: ConnectionState) -> None:
        if self._state == ListeningState.AWAITING_CONNECTION and not self._connecting:
            if to_state == ConnectionState.CONNECTED and self._awaiting_kind is not None:
                kind, self._awaiting_kind = self._awaiting_kind, None
                self._spawn(self._begin_listening(kind, self._attempt))
            elif to_state == ConnectionState.DISCONNECTED:
                # The pending connect this attempt was waiting on failed.
                self._awaiting_kind = None
                self._fail(CONNECTION_ERROR, self._session.last_error or ERROR_MESSAGES[CONNECTION_ERROR])
        elif self._state == ListeningState.LISTENING and to_state == ConnectionState.DISCONNECTED:
            logger.warning("Connection closed while listening; chunks are dropped until reconnected")

    def _handle_capture_failure(self, exc: Exception) -> None:
        code = exc.code if isinstance(exc, ListenError) else DeviceError.code
        self._attempt += 1
        self._fail(code, str(exc))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._finish_background)

    def _finish_background(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not isinstance(exc, ListenError):
            logger.error("Background start failed: %s", exc)

    def _fail(self, code: str, message: str) -> None:
        self.error = message
        self._emit_error(code, message)
        self._recorder.stop()
        self._transition(ListeningState.IDLE)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)

    def _transition(self, to_state: ListeningState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
