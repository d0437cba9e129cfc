"""Microphone permission checks and capture acquisition with typed errors."""

from __future__ import annotations

import logging
from typing import Optional

import recorder
from errors import (
    CaptureError,
    DeviceBusyError,
    DeviceNotFoundError,
    PermissionDeniedError,
    VoiceInputError,
)
from interfaces import CaptureBackend, CaptureHandle, ChunkCallback, PermissionQuery
from models import PermissionState

logger = logging.getLogger(__name__)

# PortAudio error codes (portaudio.h)
PA_NO_DEVICE = -1
PA_INVALID_DEVICE = -9996
PA_DEVICE_UNAVAILABLE = -9985

_PERMISSION_HINTS = ("permission", "not allowed", "access denied", "not authorized", "privacy")
_NOT_FOUND_HINTS = (
    "no input device",
    "no default input",
    "invalid device",
    "error querying device",
    "no such device",
    "device not found",
)
_BUSY_HINTS = ("device unavailable", "busy", "in use", "resource temporarily unavailable")


class PermissionGate:
    def __init__(
        self,
        backend: Optional[CaptureBackend] = None,
        permission_query: Optional[PermissionQuery] = None,
    ) -> None:
        self._backend = backend or recorder.SoundDeviceBackend()
        self._permission_query = permission_query

    def check_permission(self) -> PermissionState:
        """Return the host's microphone permission state.

        Without a permission query the answer is PROMPT so the caller goes on
        to the actual capture attempt, which reports the real outcome.
        """
        if isinstance(self._backend, recorder.SoundDeviceBackend) and recorder.sd is None:
            return PermissionState.UNSUPPORTED
        if self._permission_query is None:
            return PermissionState.PROMPT
        try:
            return PermissionState(str(self._permission_query()))
        except Exception as exc:
            logger.warning("Permission query failed, deferring to capture: %s", exc)
            return PermissionState.PROMPT

    def acquire_stream(self, on_chunk: ChunkCallback) -> CaptureHandle:
        try:
            return self._backend.open(on_chunk)
        except VoiceInputError:
            raise
        except Exception as exc:
            raise self.map_capture_error(exc) from exc

    @staticmethod
    def map_capture_error(exc: Exception) -> VoiceInputError:
        """Map a capture-backend exception to one of the typed errors."""
        if isinstance(exc, PermissionError):
            return PermissionDeniedError()
        code = _portaudio_code(exc)
        if code == PA_DEVICE_UNAVAILABLE:
            return DeviceBusyError()
        if code in (PA_NO_DEVICE, PA_INVALID_DEVICE):
            return DeviceNotFoundError()
        low = str(exc).lower()
        if any(hint in low for hint in _PERMISSION_HINTS):
            return PermissionDeniedError()
        if any(hint in low for hint in _NOT_FOUND_HINTS):
            return DeviceNotFoundError()
        if any(hint in low for hint in _BUSY_HINTS):
            return DeviceBusyError()
        return CaptureError(f"Could not start the microphone: {exc}")


def _portaudio_code(exc: Exception) -> Optional[int]:
    # sounddevice.PortAudioError args: (message, error_code, host_error_info)
    if len(exc.args) >= 2 and isinstance(exc.args[1], int):
        return exc.args[1]
    return None
