"""Start/stop toggle bound to one global key, via pynput."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore

logger = logging.getLogger(__name__)


class GlobalHotkeyAdapter:
    """Turns presses of one key into toggle events.

    ``hotkey_name`` is either pynput's name for a special key (``"Key.f8"``)
    or a single character (``"l"``, matched case-insensitively). Holding the
    key yields one toggle; it must be released before the next one. The
    toggle callback runs on the pynput listener thread.
    """

    def __init__(self, hotkey_name: str = "Key.f8") -> None:
        self.hotkey_name = hotkey_name
        self.toggles = 0
        self._listener: Any = None
        self._on_toggle: Optional[Callable[[], None]] = None
        self._held = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._listener is not None

    def start(self, on_toggle: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        if self._listener is not None:
            return
        self._on_toggle = on_toggle
        self._held = False
        self._listener = keyboard.Listener(on_press=self._handle_press, on_release=self._handle_release)
        self._listener.start()
        logger.info("Hotkey %s toggles listening", self.hotkey_name)

    def stop(self) -> None:
        listener, self._listener = self._listener, None
        self._on_toggle = None
        if listener is not None:
            listener.stop()

    def _matches(self, key: Any) -> bool:
        if str(key) == self.hotkey_name:
            return True
        char = getattr(key, "char", None)
        return bool(char) and char.lower() == self.hotkey_name.lower()

    def _handle_press(self, key: Any) -> None:
        if not self._matches(key):
            return
        with self._lock:
            if self._held:
                return
            self._held = True
            self.toggles += 1
        callback = self._on_toggle
        if callback is None:
            return
        try:
            callback()
        except Exception:
            # An exception escaping here would stop the pynput listener.
            logger.exception("Hotkey toggle handler failed")

    def _handle_release(self, key: Any) -> None:
        if self._matches(key):
            with self._lock:
                self._held = False
