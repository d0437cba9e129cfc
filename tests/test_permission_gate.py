from __future__ import annotations

import pytest

import recorder
from errors import (
    DEVICE_BUSY,
    DEVICE_NOT_FOUND,
    PERMISSION_DENIED,
    CaptureError,
    DeviceBusyError,
    DeviceNotFoundError,
    PermissionDeniedError,
)
from models import PermissionState
from permission_gate import PA_DEVICE_UNAVAILABLE, PA_INVALID_DEVICE, PermissionGate


class FakePortAudioError(Exception):
    pass


class FakeCapture:
    sample_rate = 48000

    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeBackend:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.opened = 0

    def open(self, on_chunk):  # noqa: ANN001, ANN201
        self.opened += 1
        if self.error is not None:
            raise self.error
        return FakeCapture()


def test_no_permission_query_defers_to_capture() -> None:
    gate = PermissionGate(backend=FakeBackend())
    assert gate.check_permission() == PermissionState.PROMPT


def test_permission_query_result_is_used() -> None:
    gate = PermissionGate(backend=FakeBackend(), permission_query=lambda: "denied")
    assert gate.check_permission() == PermissionState.DENIED


def test_failing_permission_query_returns_prompt() -> None:
    def boom() -> str:
        raise OSError("query unavailable")

    gate = PermissionGate(backend=FakeBackend(), permission_query=boom)
    assert gate.check_permission() == PermissionState.PROMPT


def test_missing_sounddevice_is_unsupported(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(recorder, "sd", None)
    gate = PermissionGate()
    assert gate.check_permission() == PermissionState.UNSUPPORTED


def test_acquire_returns_handle() -> None:
    backend = FakeBackend()
    handle = PermissionGate(backend=backend).acquire_stream(lambda chunk: None)
    assert isinstance(handle, FakeCapture)
    assert backend.opened == 1


@pytest.mark.parametrize(
    "error, expected, code",
    [
        (PermissionError("denied by OS"), PermissionDeniedError, PERMISSION_DENIED),
        (FakePortAudioError("Device unavailable", PA_DEVICE_UNAVAILABLE), DeviceBusyError, DEVICE_BUSY),
        (FakePortAudioError("Invalid device", PA_INVALID_DEVICE), DeviceNotFoundError, DEVICE_NOT_FOUND),
        (FakePortAudioError("Error querying device -1"), DeviceNotFoundError, DEVICE_NOT_FOUND),
        (ValueError("No input device matching 'USB'"), DeviceNotFoundError, DEVICE_NOT_FOUND),
        (OSError("Microphone access not authorized"), PermissionDeniedError, PERMISSION_DENIED),
        (OSError("device is busy"), DeviceBusyError, DEVICE_BUSY),
    ],
)
def test_acquire_maps_failures(error: Exception, expected: type, code: str) -> None:
    gate = PermissionGate(backend=FakeBackend(error=error))
    with pytest.raises(expected) as info:
        gate.acquire_stream(lambda chunk: None)
    assert info.value.code == code


def test_unrecognised_failure_is_capture_error() -> None:
    gate = PermissionGate(backend=FakeBackend(error=RuntimeError("host error 42")))
    with pytest.raises(CaptureError) as info:
        gate.acquire_stream(lambda chunk: None)
    assert "host error 42" in info.value.message


def test_permission_denied_is_not_retryable() -> None:
    assert PermissionDeniedError().retryable is False
    assert DeviceBusyError().retryable is True
