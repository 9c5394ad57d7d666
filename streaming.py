"""Persistent WebSocket session to the matching service.

Outbound chunks go out as binary frames, one chunk per frame, in the order
they were handed to ``send_chunk``. Inbound text frames carry JSON events; the
only one acted on is ``{"type": "match", "match": {...}}``.

There is no automatic reconnect. When the connection closes the session
goes to DISCONNECTED and stays there until ``connect()`` is called again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Callable, Optional

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from errors import CONNECTION_ERROR, StreamConnectionError
from interfaces import ErrorCallback, MatchCallback
from models import AudioChunk, ConnectionState, MatchResult

logger = logging.getLogger(__name__)

STREAM_PATH = "/ws"

StateCallback = Callable[[ConnectionState, ConnectionState], None]


def websocket_url(base_url: str) -> str:
    """Map an http(s) service address to its ws(s) streaming endpoint."""
    return re.sub(r"^http", "ws", base_url.strip().rstrip("/")) + STREAM_PATH


class StreamingSession:
    def __init__(
        self,
        base_url: str,
        open_timeout_s: float = 10.0,
        ping_interval_s: Optional[float] = 20.0,
    ) -> None:
        self.url = websocket_url(base_url)
        self._open_timeout_s = open_timeout_s
        self._ping_interval_s = ping_interval_s

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None
        self._outbox: Optional[asyncio.Queue[AudioChunk]] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None

        self.last_match: Optional[MatchResult] = None
        self.last_error: Optional[str] = None
        self.dropped_chunks = 0

        self._on_match: Optional[MatchCallback] = None
        self._on_error: Optional[ErrorCallback] = None
        self._on_state_change: Optional[StateCallback] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def set_event_handlers(
        self,
        on_match: Optional[MatchCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_state_change: Optional[StateCallback] = None,
    ) -> None:
        self._on_match = on_match
        self._on_error = on_error
        self._on_state_change = on_state_change

    async def __aenter__(self) -> "StreamingSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        if self._state != ConnectionState.DISCONNECTED:
            logger.debug("Already %s, connect() ignored", self._state.value.lower())
            return
        self._transition(ConnectionState.CONNECTING)
        logger.info("Connecting to %s", self.url)
        try:
            ws = await connect(
                self.url,
                open_timeout=self._open_timeout_s,
                ping_interval=self._ping_interval_s,
            )
        except asyncio.CancelledError:
            logger.info("Connect to %s cancelled", self.url)
            if self._state == ConnectionState.CONNECTING:
                self._transition(ConnectionState.DISCONNECTED)
            raise
        except Exception as exc:
            self.last_error = f"Failed to connect to {self.url}: {exc}"
            logger.error(self.last_error)
            if self._state == ConnectionState.CONNECTING:
                self._transition(ConnectionState.DISCONNECTED)
            raise StreamConnectionError(self.last_error) from exc

        if self._state != ConnectionState.CONNECTING:
            # disconnect() ran while the handshake was in flight.
            logger.info("Connection opened after disconnect; closing it")
            await ws.close()
            return
        self._handle_open(ws)

    async def disconnect(self) -> None:
        ws = self._ws
        self._detach()
        if self._state != ConnectionState.DISCONNECTED:
            self._transition(ConnectionState.DISCONNECTED)
        if ws is not None:
            await ws.close()
            logger.info("Disconnected from %s", self.url)

    def send_chunk(self, chunk: AudioChunk) -> None:
        """Queue a chunk for sending. Never blocks and never raises."""
        if self._state != ConnectionState.CONNECTED or self._outbox is None:
            self.dropped_chunks += 1
            logger.warning(
                "Cannot send chunk #%d, connection is %s",
                chunk.sequence,
                self._state.value.lower(),
            )
            return
        self._outbox.put_nowait(chunk)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def _handle_open(self, ws: Any) -> None:
        self._ws = ws
        self._outbox = asyncio.Queue()
        self.last_error = None
        self._transition(ConnectionState.CONNECTED)
        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        self._send_task = asyncio.create_task(self._send_loop(ws, self._outbox))
        logger.info("Connected to %s", self.url)

    def _handle_close(self, ws: Any) -> None:
        if self._ws is not ws:
            return
        self._detach()
        self._transition(ConnectionState.DISCONNECTED)
        logger.info("Connection to %s closed", self.url)

    def _handle_error(self, message: str) -> None:
        self.last_error = message
        logger.error(message)
        if self._on_error:
            self._on_error(CONNECTION_ERROR, message)

    def _detach(self) -> None:
        current = asyncio.current_task()
        for task in (self._receive_task, self._send_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._ws = None
        self._outbox = None
        self._receive_task = None
        self._send_task = None

    async def _receive_loop(self, ws: Any) -> None:
        try:
            async for message in ws:
                self._handle_message(message)
        except ConnectionClosed as exc:
            if self._ws is ws:
                self._handle_error(f"Connection lost: {exc}")
        except Exception as exc:
            logger.exception("Receive loop failed")
            if self._ws is ws:
                self._handle_error(f"Connection failed: {exc}")
        finally:
            owned = self._ws is ws
            self._handle_close(ws)
            if owned:
                # Nobody else holds this socket any more.
                await ws.close()

    async def _send_loop(self, ws: Any, outbox: asyncio.Queue[AudioChunk]) -> None:
        while True:
            chunk = await outbox.get()
            if self._ws is not ws or self._state != ConnectionState.CONNECTED:
                self.dropped_chunks += 1
                logger.warning("Dropping chunk #%d, connection went away", chunk.sequence)
                continue
            try:
                await ws.send(chunk.data)
            except ConnectionClosed as exc:
                self.dropped_chunks += 1
                logger.warning("Dropping chunk #%d: %s", chunk.sequence, exc)
                continue
            logger.debug("Sent chunk #%d (%d bytes)", chunk.sequence, len(chunk.data))

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def _handle_message(self, message: Any) -> None:
        if not isinstance(message, str):
            logger.warning("Ignoring binary frame of %d bytes", len(message))
            return
        try:
            data = json.loads(message)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring malformed frame: %s", exc)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring frame that is not a JSON object")
            return
        if data.get("type") != "match":
            logger.debug("Ignoring %r event", data.get("type"))
            return
        try:
            match = MatchResult.from_payload(data.get("match"))
        except ValueError as exc:
            logger.warning("Ignoring match event with bad payload: %s", exc)
            return
        logger.info("Match received: %s - %s (%.2f)", match.artist, match.title, match.score)
        self.last_match = match
        if self._on_match:
            try:
                self._on_match(match)
            except Exception:
                logger.exception("Match handler failed")

    def _transition(self, to_state: ConnectionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
