"""Shared error codes, user-facing messages and exceptions."""

from __future__ import annotations

DEVICE_ACCESS_DENIED = "DEVICE_ACCESS_DENIED"
NO_AUDIO_TRACK_SELECTED = "NO_AUDIO_TRACK_SELECTED"
DEVICE_LOST = "DEVICE_LOST"
CONNECTION_ERROR = "CONNECTION_ERROR"
RECOGNITION_FAILED = "RECOGNITION_FAILED"

ERROR_MESSAGES = {
    DEVICE_ACCESS_DENIED: "Could not access microphone. Please check permissions.",
    NO_AUDIO_TRACK_SELECTED: (
        "No system audio source found. Enable a loopback/monitor device "
        "(or select one with audio sharing) and try again."
    ),
    DEVICE_LOST: "Audio device stopped unexpectedly.",
    CONNECTION_ERROR: "Connection to the matching service failed.",
    RECOGNITION_FAILED: "Recognition failed, please retry.",
}


class ListenError(Exception):
    code = ""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES.get(self.code, self.code))

    @property
    def message(self) -> str:
        return str(self)


class DeviceError(ListenError):
    code = DEVICE_ACCESS_DENIED


class DeviceAccessDenied(DeviceError):
    code = DEVICE_ACCESS_DENIED


class NoAudioTrackSelected(DeviceError):
    code = NO_AUDIO_TRACK_SELECTED


class DeviceLost(DeviceError):
    code = DEVICE_LOST


class StreamConnectionError(ListenError):
    code = CONNECTION_ERROR


class RecognitionFailed(ListenError):
    code = RECOGNITION_FAILED
