"""State-machine orchestration of capture, model loading and transcription."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from cancellation import CancellationToken
from errors import (
    CaptureError,
    PermissionDeniedError,
    TranscriptionCancelled,
    VoiceInputError,
)
from events import MODEL_PROGRESS, STATE_CHANGE, TRANSCRIPTION, EventBus, Listener, Subscription
from interfaces import CaptureHandle
from models import (
    DEFAULT_MODEL_TAG,
    PermissionState,
    ProgressEvent,
    StateChangeEvent,
    TranscriptionResult,
    VoiceInputState,
    normalize_model_tag,
)
from permission_gate import PermissionGate
from recorder import RecordingSession
from transcription_engine import TranscriptionEngine

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]


class VoiceInputController:
    """Single authority over the capture/transcribe lifecycle.

    Public methods never raise: failures become a ``state-change`` event with
    ``state=error`` followed by a timed return to IDLE (capture and model
    failures) or READY (transcription failures, the model stays loaded).
    """

    def __init__(
        self,
        engine: TranscriptionEngine,
        permission_gate: PermissionGate,
        model_tag: str = DEFAULT_MODEL_TAG,
        capture_error_reset_s: float = 5.0,
        transcription_error_reset_s: float = 3.0,
        model_error_reset_s: float = 3.0,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self._engine = engine
        self._gate = permission_gate
        self._model_tag = normalize_model_tag(model_tag)
        self._capture_error_reset_s = capture_error_reset_s
        self._transcription_error_reset_s = transcription_error_reset_s
        self._model_error_reset_s = model_error_reset_s
        self._timer_factory = timer_factory

        self._bus = EventBus()
        self._lock = threading.RLock()
        self._state = VoiceInputState.IDLE
        self._session_id = 0
        self._session: Optional[RecordingSession] = None
        self._capture: Optional[CaptureHandle] = None
        self._token: Optional[CancellationToken] = None
        self._worker: Optional[threading.Thread] = None
        self._reset_timer: Any = None
        self._reset_generation = 0
        self._disposed = False

    @property
    def state(self) -> VoiceInputState:
        return self._state

    @property
    def model_tag(self) -> str:
        return self._model_tag

    def subscribe(self, event_name: str, listener: Listener) -> Subscription:
        return self._bus.subscribe(event_name, listener)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def initialize_model(self, model_tag: Optional[str] = None) -> bool:
        """Load the model (once). Returns True when it is ready."""
        tag = normalize_model_tag(model_tag or self._model_tag)
        with self._lock:
            if self._disposed:
                return False
            if self._engine.is_ready(tag):
                self._model_tag = tag
                return True
            if self._state in (VoiceInputState.RECORDING, VoiceInputState.PROCESSING):
                logger.warning("Model change to %s ignored while %s", tag, self._state.value)
                return False
            self._model_tag = tag
            self._transition(VoiceInputState.LOADING_MODEL)

        logger.info("Loading speech model %s", tag)
        try:
            self._engine.load_model(tag, on_progress=self._publish_progress)
        except VoiceInputError as exc:
            self._fail_model_load(exc.message)
            return False
        except Exception as exc:
            logger.exception("Unexpected model load failure")
            self._fail_model_load(str(exc) or "Model loading failed")
            return False

        with self._lock:
            if self._state == VoiceInputState.LOADING_MODEL:
                self._transition(VoiceInputState.READY)
        return True

    def start_recording(self) -> None:
        with self._lock:
            if self._disposed:
                return
            if self._state not in (VoiceInputState.IDLE, VoiceInputState.READY):
                logger.debug("start_recording ignored in state %s", self._state.value)
                return
            needs_model = not self._engine.is_ready(self._model_tag)

        if needs_model and not self.initialize_model():
            return

        with self._lock:
            if self._state not in (VoiceInputState.IDLE, VoiceInputState.READY):
                return
            session = RecordingSession()
            try:
                permission = self._gate.check_permission()
                if permission == PermissionState.DENIED:
                    raise PermissionDeniedError()
                if permission == PermissionState.UNSUPPORTED:
                    raise CaptureError("Audio capture is not supported on this system.")
                capture = self._gate.acquire_stream(session.append)
            except VoiceInputError as exc:
                logger.warning("Microphone unavailable (%s): %s", exc.code, exc.message)
                self._fail(exc.message, VoiceInputState.IDLE, self._capture_error_reset_s)
                return
            except Exception as exc:
                logger.exception("Unexpected capture failure")
                self._fail(
                    CaptureError(f"Could not start the microphone: {exc}").message,
                    VoiceInputState.IDLE,
                    self._capture_error_reset_s,
                )
                return

            self._session_id += 1
            self._session = session
            self._capture = capture
            self._transition(VoiceInputState.RECORDING)
            logger.info("Recording started (session %d)", self._session_id)

    def stop_recording(self) -> None:
        with self._lock:
            if self._state != VoiceInputState.RECORDING or self._session is None:
                logger.debug("stop_recording ignored in state %s", self._state.value)
                return
            session = self._session
            self._session = None
            self._release_capture()
            session.close()
            token = CancellationToken()
            self._token = token
            session_id = self._session_id
            self._transition(VoiceInputState.PROCESSING)
            logger.info("Recording stopped, %d chunk(s) captured", len(session))
            self._worker = threading.Thread(
                target=self._process,
                args=(session_id, session, token),
                name=f"voice-input-{session_id}",
                daemon=True,
            )
            self._worker.start()

    def cancel(self) -> None:
        with self._lock:
            if self._state not in (VoiceInputState.RECORDING, VoiceInputState.PROCESSING):
                return
            self._discard_session()
            if self._engine.is_ready():
                self._transition(VoiceInputState.READY)
            else:
                self._transition(VoiceInputState.IDLE)
            logger.info("Recording cancelled")

    def toggle_recording(self) -> None:
        with self._lock:
            state = self._state
        if state == VoiceInputState.RECORDING:
            self.stop_recording()
        elif state in (VoiceInputState.IDLE, VoiceInputState.READY):
            self.start_recording()
        elif state == VoiceInputState.ERROR:
            logger.info("Retrying after error")
            self.reset()
            self.start_recording()
        else:
            logger.debug("toggle_recording ignored in state %s", state.value)

    def reset(self) -> None:
        with self._lock:
            if self._disposed:
                return
            self._cancel_reset_timer()
            self._discard_session()
            self._transition(VoiceInputState.IDLE)

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the current transcription worker, if any."""
        worker = self._worker
        if worker is not None:
            worker.join(timeout)

    def dispose(self) -> None:
        self.reset()
        with self._lock:
            self._disposed = True
            self._bus.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _process(self, session_id: int, session: RecordingSession, token: CancellationToken) -> None:
        result: Optional[TranscriptionResult] = None
        error = ""
        try:
            samples, sample_rate = session.decode()
            if samples.size == 0:
                result = TranscriptionResult(text="")
            else:
                logger.info("Transcribing %d samples at %d Hz", samples.size, sample_rate)
                result = self._engine.transcribe(samples, sample_rate, token)
        except TranscriptionCancelled:
            logger.info("Transcription cancelled (session %d)", session_id)
            return
        except VoiceInputError as exc:
            error = exc.message
        except Exception as exc:
            logger.exception("Transcription failed")
            error = str(exc) or "Transcription failed"

        with self._lock:
            if (
                session_id != self._session_id
                or self._state != VoiceInputState.PROCESSING
                or token.cancelled
            ):
                return
            self._token = None
            if error:
                logger.warning("Transcription failed: %s", error)
                self._fail(error, VoiceInputState.READY, self._transcription_error_reset_s)
                return
            text = result.text.strip() if result is not None else ""
            if not text:
                logger.info("Empty transcription result")
                self._transition(VoiceInputState.READY)
                return
            logger.info("Transcription ready (%d chars)", len(text))
            self._transition(VoiceInputState.READY, text=text)
            self._bus.publish(TRANSCRIPTION, TranscriptionResult(text=text, segments=result.segments))

    def _publish_progress(self, event: ProgressEvent) -> None:
        self._bus.publish(MODEL_PROGRESS, event)

    def _fail_model_load(self, message: str) -> None:
        with self._lock:
            if self._state != VoiceInputState.LOADING_MODEL:
                return
            self._fail(message, VoiceInputState.IDLE, self._model_error_reset_s)

    def _fail(self, message: str, reset_to: VoiceInputState, delay_s: float) -> None:
        self._discard_session()
        self._transition(VoiceInputState.ERROR, error=message)
        self._arm_reset_timer(reset_to, delay_s)

    def _release_capture(self) -> None:
        capture = self._capture
        self._capture = None
        if capture is None:
            return
        try:
            capture.stop()
        except Exception:
            logger.exception("Failed to release microphone")

    def _discard_session(self) -> None:
        self._release_capture()
        if self._session is not None:
            self._session.discard()
            self._session = None
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def _arm_reset_timer(self, target: VoiceInputState, delay_s: float) -> None:
        self._cancel_reset_timer()
        generation = self._reset_generation
        timer = self._timer_factory(delay_s, lambda: self._on_reset_timer(generation, target))
        timer.daemon = True
        self._reset_timer = timer
        timer.start()

    def _cancel_reset_timer(self) -> None:
        self._reset_generation += 1
        timer = self._reset_timer
        self._reset_timer = None
        if timer is not None:
            timer.cancel()

    def _on_reset_timer(self, generation: int, target: VoiceInputState) -> None:
        with self._lock:
            if generation != self._reset_generation or self._state != VoiceInputState.ERROR:
                return
            self._reset_timer = None
            if target == VoiceInputState.READY and not self._engine.is_ready():
                target = VoiceInputState.IDLE
            logger.info("Auto-reset from error to %s", target.value)
            self._transition(target)

    def _transition(
        self,
        to_state: VoiceInputState,
        text: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        if from_state == VoiceInputState.ERROR:
            self._cancel_reset_timer()
        self._state = to_state
        logger.debug("State %s -> %s", from_state.value, to_state.value)
        self._bus.publish(STATE_CHANGE, StateChangeEvent(state=to_state, text=text, error=error))
