from __future__ import annotations

import threading
import time
from typing import Callable, Iterator

import numpy as np

from errors import DeviceBusyError, PermissionDeniedError
from events import MODEL_PROGRESS, STATE_CHANGE, TRANSCRIPTION
from models import (
    AudioChunk,
    ModelLoadState,
    ProgressEvent,
    StateChangeEvent,
    TranscriptionResult,
    TranscriptionSegment,
    VoiceInputState,
)
from permission_gate import PermissionGate
from transcription_engine import TranscriptionEngine
from voice_input_controller import VoiceInputController

S = VoiceInputState


class FakeCapture:
    def __init__(self, on_chunk: Callable[[AudioChunk], None], sample_rate: int = 48000) -> None:
        self.on_chunk = on_chunk
        self.sample_rate = sample_rate
        self.stopped = False

    def feed(self, n_samples: int = 4800, value: float = 0.1) -> None:
        self.on_chunk(
            AudioChunk(
                pcm_bytes=np.full(n_samples, value, dtype=np.float32).tobytes(),
                sample_rate=self.sample_rate,
            )
        )

    def stop(self) -> None:
        self.stopped = True


class FakeBackend:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.captures: list[FakeCapture] = []

    def open(self, on_chunk: Callable[[AudioChunk], None]) -> FakeCapture:
        if self.error is not None:
            raise self.error
        capture = FakeCapture(on_chunk)
        self.captures.append(capture)
        return capture


class FakeModel:
    def __init__(self, text: str = " hello there") -> None:
        self.text = text
        self.error: Exception | None = None
        self.release = threading.Event()
        self.release.set()
        self.started = threading.Event()

    def transcribe(self, audio: np.ndarray) -> Iterator[TranscriptionSegment]:
        self.started.set()
        self.release.wait(timeout=2.0)
        if self.error is not None:
            raise self.error
        if self.text:
            yield TranscriptionSegment(self.text, 0.0, audio.shape[0] / 16000)


class FakeLoader:
    def __init__(self, model: FakeModel | None = None) -> None:
        self.model = model or FakeModel()
        self.calls: list[str] = []
        self.error: Exception | None = None
        self.gate = threading.Event()
        self.gate.set()

    def load(self, model_tag, on_progress):  # noqa: ANN001, ANN201
        self.calls.append(model_tag)
        on_progress(ProgressEvent(file="model.bin", bytes_loaded=50, bytes_total=100))
        self.gate.wait(timeout=2.0)
        if self.error is not None:
            raise self.error
        return self.model

    def purge_cache(self) -> None:
        pass


class FakeTimer:
    def __init__(self, interval: float, function: Callable[[], None]) -> None:
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        self.daemon = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function()


class Harness:
    def __init__(self, backend_error: Exception | None = None, preload: bool = True) -> None:
        self.model = FakeModel()
        self.loader = FakeLoader(self.model)
        self.engine = TranscriptionEngine(self.loader)
        self.backend = FakeBackend(error=backend_error)
        self.timers: list[FakeTimer] = []
        self.states: list[StateChangeEvent] = []
        self.transcriptions: list[TranscriptionResult] = []
        self.controller = VoiceInputController(
            engine=self.engine,
            permission_gate=PermissionGate(backend=self.backend),
            timer_factory=self._make_timer,
        )
        self.controller.subscribe(STATE_CHANGE, self.states.append)
        self.controller.subscribe(TRANSCRIPTION, self.transcriptions.append)
        if preload:
            self.controller.initialize_model()
            self.states.clear()

    def _make_timer(self, interval: float, function: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    def state_values(self) -> list[VoiceInputState]:
        return [event.state for event in self.states]


# ---------------------------------------------------------------
# Model initialization
# ---------------------------------------------------------------

def test_initialize_model_goes_through_loading_to_ready() -> None:
    h = Harness(preload=False)
    progress: list[ProgressEvent] = []
    h.controller.subscribe(MODEL_PROGRESS, progress.append)

    assert h.controller.initialize_model() is True

    assert h.state_values() == [S.LOADING_MODEL, S.READY]
    assert progress == [ProgressEvent(file="model.bin", bytes_loaded=50, bytes_total=100)]


def test_initialize_model_is_noop_when_ready() -> None:
    h = Harness()
    assert h.controller.initialize_model("whisper-tiny.en") is True
    assert h.loader.calls == ["whisper-tiny.en"]
    assert h.states == []


def test_concurrent_initialize_loads_once() -> None:
    h = Harness(preload=False)
    h.loader.gate.clear()
    results: list[bool] = []

    threads = [
        threading.Thread(target=lambda: results.append(h.controller.initialize_model("whisper-tiny.en")))
        for _ in range(2)
    ]
    for thread in threads:
        thread.start()
    time.sleep(0.05)
    h.loader.gate.set()
    for thread in threads:
        thread.join(timeout=2.0)

    assert results == [True, True]
    assert h.loader.calls == ["whisper-tiny.en"]
    assert h.controller.state == S.READY
    assert h.state_values() == [S.LOADING_MODEL, S.READY]


def test_model_load_failure_surfaces_message_and_resets_to_idle() -> None:
    h = Harness(preload=False)
    h.loader.error = OSError("connection reset")

    assert h.controller.initialize_model() is False

    assert h.controller.state == S.ERROR
    assert "connection reset" in (h.states[-1].error or "")
    assert h.timers[-1].interval == 3.0
    h.timers[-1].fire()
    assert h.controller.state == S.IDLE
    assert h.loader.calls == ["whisper-tiny.en"]


# ---------------------------------------------------------------
# Recording lifecycle
# ---------------------------------------------------------------

def test_end_to_end_toggle_emits_one_transcription() -> None:
    h = Harness()

    h.controller.toggle_recording()
    assert h.controller.state == S.RECORDING
    capture = h.backend.captures[0]
    capture.feed()
    capture.feed()

    h.controller.toggle_recording()
    h.controller.join(timeout=2.0)

    assert capture.stopped is True
    assert h.controller.state == S.READY
    assert h.state_values() == [S.RECORDING, S.PROCESSING, S.READY]
    assert h.states[-1].text == "hello there"
    assert len(h.transcriptions) == 1
    assert h.transcriptions[0].text == "hello there"
    assert h.transcriptions[0].segments[0].end_sec > 0


def test_start_from_idle_auto_loads_model() -> None:
    h = Harness(preload=False)

    h.controller.start_recording()

    assert h.state_values() == [S.LOADING_MODEL, S.READY, S.RECORDING]
    assert h.engine.load_state == ModelLoadState.READY


def test_start_while_recording_is_noop() -> None:
    h = Harness()

    h.controller.start_recording()
    h.controller.start_recording()

    assert len(h.backend.captures) == 1
    assert h.state_values() == [S.RECORDING]
    h.controller.cancel()


def test_start_while_processing_is_noop() -> None:
    h = Harness()
    h.model.release.clear()
    h.controller.start_recording()
    h.backend.captures[0].feed()
    h.controller.stop_recording()
    assert h.model.started.wait(timeout=2.0)

    h.controller.start_recording()

    assert len(h.backend.captures) == 1
    assert h.controller.state == S.PROCESSING
    h.model.release.set()
    h.controller.join(timeout=2.0)


def test_stop_when_not_recording_is_noop() -> None:
    h = Harness()
    h.controller.stop_recording()
    assert h.states == []


def test_empty_recording_returns_to_ready_without_event() -> None:
    h = Harness()
    h.controller.start_recording()
    h.controller.stop_recording()
    h.controller.join(timeout=2.0)

    assert h.controller.state == S.READY
    assert h.transcriptions == []


def test_empty_text_returns_to_ready_without_event() -> None:
    h = Harness()
    h.model.text = "   "
    h.controller.start_recording()
    h.backend.captures[0].feed()
    h.controller.stop_recording()
    h.controller.join(timeout=2.0)

    assert h.controller.state == S.READY
    assert h.states[-1].text is None
    assert h.transcriptions == []


# ---------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------

def test_cancel_while_recording_discards_audio() -> None:
    h = Harness()
    h.controller.start_recording()
    capture = h.backend.captures[0]
    capture.feed()

    h.controller.cancel()

    assert capture.stopped is True
    assert h.controller.state == S.READY
    assert h.transcriptions == []


def test_cancel_during_processing_suppresses_transcription() -> None:
    h = Harness()
    h.model.release.clear()
    h.controller.start_recording()
    capture = h.backend.captures[0]
    capture.feed()
    h.controller.stop_recording()
    assert h.model.started.wait(timeout=2.0)

    h.controller.cancel()
    h.model.release.set()
    h.controller.join(timeout=2.0)

    assert capture.stopped is True
    assert h.controller.state == S.READY
    assert h.transcriptions == []
    assert h.state_values() == [S.RECORDING, S.PROCESSING, S.READY]


def test_record_again_while_cancelled_inference_drains() -> None:
    h = Harness()
    h.model.release.clear()
    h.controller.start_recording()
    h.backend.captures[0].feed()
    h.controller.stop_recording()
    assert h.model.started.wait(timeout=2.0)
    h.controller.cancel()
    assert h.controller.state == S.READY

    h.controller.start_recording()
    h.backend.captures[1].feed()
    h.controller.stop_recording()
    assert h.controller.state == S.PROCESSING
    h.model.release.set()
    h.controller.join(timeout=2.0)

    assert h.controller.state == S.READY
    assert S.ERROR not in h.state_values()
    assert [t.text for t in h.transcriptions] == ["hello there"]


def test_cancel_from_ready_is_noop() -> None:
    h = Harness()
    h.controller.cancel()
    assert h.states == []


# ---------------------------------------------------------------
# Errors and auto-recovery
# ---------------------------------------------------------------

def test_permission_denied_errors_then_auto_resets_to_idle() -> None:
    h = Harness(backend_error=PermissionError("denied"))

    h.controller.start_recording()

    assert h.controller.state == S.ERROR
    assert h.states[-1].error == PermissionDeniedError().message
    timer = h.timers[-1]
    assert timer.started is True
    assert timer.interval == 5.0

    timer.fire()

    assert h.controller.state == S.IDLE
    assert h.state_values() == [S.ERROR, S.IDLE]


def test_denied_permission_query_fails_before_opening_device() -> None:
    h = Harness()
    h.controller._gate = PermissionGate(backend=h.backend, permission_query=lambda: "denied")

    h.controller.start_recording()

    assert h.controller.state == S.ERROR
    assert h.backend.captures == []


def test_device_busy_message_is_reported() -> None:
    h = Harness(backend_error=DeviceBusyError())
    h.controller.start_recording()
    assert h.states[-1].error == DeviceBusyError().message


def test_transcription_failure_resets_to_ready() -> None:
    h = Harness()
    h.model.error = RuntimeError("decoder exploded")
    h.controller.start_recording()
    capture = h.backend.captures[0]
    capture.feed()
    h.controller.stop_recording()
    h.controller.join(timeout=2.0)

    assert capture.stopped is True
    assert h.controller.state == S.ERROR
    assert "decoder exploded" in (h.states[-1].error or "")
    assert h.timers[-1].interval == 3.0

    h.timers[-1].fire()

    assert h.controller.state == S.READY


def test_manual_reset_cancels_pending_timer() -> None:
    h = Harness(backend_error=PermissionError("denied"))
    h.controller.start_recording()
    timer = h.timers[-1]

    h.controller.reset()
    assert timer.cancelled is True
    assert h.controller.state == S.IDLE

    h.backend.error = None
    h.controller.start_recording()
    timer.fire()

    assert h.controller.state == S.RECORDING
    h.controller.cancel()


def test_toggle_from_error_retries() -> None:
    h = Harness(backend_error=PermissionError("denied"))
    h.controller.start_recording()
    assert h.controller.state == S.ERROR

    h.backend.error = None
    h.controller.toggle_recording()

    assert h.controller.state == S.RECORDING
    assert h.state_values() == [S.ERROR, S.IDLE, S.RECORDING]
    h.controller.cancel()


def test_reset_releases_microphone() -> None:
    h = Harness()
    h.controller.start_recording()
    capture = h.backend.captures[0]

    h.controller.reset()

    assert capture.stopped is True
    assert h.controller.state == S.IDLE


def test_real_timer_auto_recovers_after_configured_delay() -> None:
    engine = TranscriptionEngine(FakeLoader())
    controller = VoiceInputController(
        engine=engine,
        permission_gate=PermissionGate(backend=FakeBackend(error=PermissionError("denied"))),
        capture_error_reset_s=0.05,
    )
    controller.initialize_model()

    controller.start_recording()
    assert controller.state == S.ERROR

    deadline = time.time() + 2.0
    while controller.state == S.ERROR and time.time() < deadline:
        time.sleep(0.01)
    assert controller.state == S.IDLE


# ---------------------------------------------------------------
# Events and disposal
# ---------------------------------------------------------------

def test_unsubscribe_stops_delivery() -> None:
    h = Harness()
    seen: list[StateChangeEvent] = []
    subscription = h.controller.subscribe(STATE_CHANGE, seen.append)

    subscription.unsubscribe()
    h.controller.start_recording()

    assert seen == []
    h.controller.cancel()


def test_dispose_releases_and_silences() -> None:
    h = Harness()
    h.controller.start_recording()
    capture = h.backend.captures[0]

    h.controller.dispose()
    count = len(h.states)
    h.controller.start_recording()

    assert capture.stopped is True
    assert h.controller.state == S.IDLE
    assert len(h.states) == count
