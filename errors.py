"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
DEVICE_BUSY = "DEVICE_BUSY"
CAPTURE_FAILED = "CAPTURE_FAILED"
MODEL_LOAD_FAILED = "MODEL_LOAD_FAILED"
TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
CANCELLED = "CANCELLED"

ERROR_MESSAGES = {
    PERMISSION_DENIED: (
        "Microphone access denied. Enable microphone access for this app "
        "in your system privacy settings."
    ),
    DEVICE_NOT_FOUND: "No microphone found. Please connect a microphone and try again.",
    DEVICE_BUSY: "Microphone is already in use by another application.",
    CAPTURE_FAILED: "Could not start the microphone.",
    MODEL_LOAD_FAILED: "Speech model failed to load.",
    TRANSCRIPTION_FAILED: "Transcription failed.",
    CANCELLED: "Transcription cancelled.",
}


class VoiceInputError(Exception):
    code = CAPTURE_FAILED
    retryable = True

    def __init__(self, message: str = "") -> None:
        self.message = message or ERROR_MESSAGES[self.code]
        super().__init__(self.message)


class PermissionDeniedError(VoiceInputError):
    code = PERMISSION_DENIED
    retryable = False


class DeviceNotFoundError(VoiceInputError):
    code = DEVICE_NOT_FOUND


class DeviceBusyError(VoiceInputError):
    code = DEVICE_BUSY


class CaptureError(VoiceInputError):
    code = CAPTURE_FAILED


class ModelLoadError(VoiceInputError):
    code = MODEL_LOAD_FAILED
    retryable = False


class TranscriptionError(VoiceInputError):
    code = TRANSCRIPTION_FAILED


class TranscriptionCancelled(VoiceInputError):
    code = CANCELLED
