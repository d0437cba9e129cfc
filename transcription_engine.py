"""Owns the local speech model and runs one transcription at a time."""

from __future__ import annotations

import logging
import threading
from queue import Queue
from typing import Iterator, Optional

import numpy as np

from cancellation import CancellationToken
from errors import ModelLoadError, TranscriptionError, VoiceInputError
from interfaces import ModelLoader, ProgressCallback, SpeechModel
from models import ModelLoadState, ProgressEvent, TranscriptionResult, normalize_model_tag
from resampler import TARGET_SAMPLE_RATE, resample

logger = logging.getLogger(__name__)


class _PendingLoad:
    def __init__(self, model_tag: str) -> None:
        self.model_tag = model_tag
        self.done = threading.Event()
        self.error: Optional[ModelLoadError] = None


class TranscriptionEngine:
    """Model cache plus inference.

    ``load_model`` is re-entrant: a caller arriving while the same tag is
    loading waits for that load and shares its outcome. ``transcribe`` runs
    one call at a time; a second caller waits for the first to finish.
    Each call checks its cancellation token before resampling, before
    inference, between segments and after inference.
    """

    def __init__(
        self,
        loader: Optional[ModelLoader] = None,
        sample_rate: int = TARGET_SAMPLE_RATE,
    ) -> None:
        if loader is None:
            from whisper_backend import FasterWhisperLoader

            loader = FasterWhisperLoader()
        self._loader = loader
        self._sample_rate = sample_rate
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._model: Optional[SpeechModel] = None
        self._model_tag: Optional[str] = None
        self._load_state = ModelLoadState.UNLOADED
        self._pending: Optional[_PendingLoad] = None
        self._token: Optional[CancellationToken] = None

    @property
    def load_state(self) -> ModelLoadState:
        return self._load_state

    @property
    def model_tag(self) -> Optional[str]:
        return self._model_tag

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def is_ready(self, model_tag: Optional[str] = None) -> bool:
        with self._lock:
            if self._load_state != ModelLoadState.READY or self._model is None:
                return False
            return model_tag is None or self._model_tag == normalize_model_tag(model_tag)

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def load_model(self, model_tag: str, on_progress: Optional[ProgressCallback] = None) -> None:
        for event in self.iter_load(model_tag):
            if on_progress is not None:
                on_progress(event)

    def iter_load(self, model_tag: str) -> Iterator[ProgressEvent]:
        """Load ``model_tag`` lazily, yielding download progress.

        Exhausting the iterator means the model is ready. A failed load raises
        ModelLoadError from the iterator. Callers that join an in-flight load
        see no progress events of their own.
        """
        tag = normalize_model_tag(model_tag)
        while True:
            with self._lock:
                if self._model_tag == tag and self._load_state == ModelLoadState.READY:
                    return
                pending = self._pending
                if pending is None:
                    pending = _PendingLoad(tag)
                    self._pending = pending
                    self._load_state = ModelLoadState.LOADING
                    break
            pending.done.wait()
            if pending.model_tag == tag:
                if pending.error is not None:
                    raise ModelLoadError(pending.error.message)
                return

        events: Queue[ProgressEvent | None] = Queue()
        threading.Thread(
            target=self._load_worker,
            args=(pending, events),
            name=f"model-load-{tag}",
            daemon=True,
        ).start()
        while True:
            event = events.get()
            if event is None:
                break
            yield event
        if pending.error is not None:
            raise pending.error

    def _load_worker(self, pending: _PendingLoad, events: Queue[ProgressEvent | None]) -> None:
        model: Optional[SpeechModel] = None
        error: Optional[ModelLoadError] = None
        try:
            model = self._loader.load(pending.model_tag, events.put)
        except ModelLoadError as exc:
            error = exc
        except Exception as exc:
            error = ModelLoadError(str(exc) or exc.__class__.__name__)

        with self._lock:
            if error is None:
                self._model = model
                self._model_tag = pending.model_tag
                self._load_state = ModelLoadState.READY
            else:
                self._model = None
                self._model_tag = None
                self._load_state = ModelLoadState.FAILED
            self._pending = None
        if error is None:
            logger.info("Model %s ready", pending.model_tag)
        else:
            logger.error("Model %s failed to load: %s", pending.model_tag, error.message)
        pending.error = error
        pending.done.set()
        events.put(None)

    def clear_cache(self) -> None:
        """Unload the model and delete downloaded artifacts."""
        self.cancel()
        with self._lock:
            self._model = None
            self._model_tag = None
            self._load_state = ModelLoadState.UNLOADED
        self._loader.purge_cache()
        logger.info("Model cache cleared")

    def dispose(self) -> None:
        self.cancel()
        with self._lock:
            self._model = None
            self._model_tag = None
            self._load_state = ModelLoadState.UNLOADED

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def transcribe(
        self,
        samples: np.ndarray,
        source_sample_rate: int,
        token: Optional[CancellationToken] = None,
    ) -> TranscriptionResult:
        with self._idle:
            while self._token is not None:
                self._idle.wait()
            if self._load_state != ModelLoadState.READY or self._model is None:
                raise TranscriptionError("Model is not ready for transcription.")
            token = token or CancellationToken()
            self._token = token
            model = self._model

        try:
            token.raise_if_cancelled()
            try:
                audio = resample(np.asarray(samples, dtype=np.float32), source_sample_rate, self._sample_rate)
            except ValueError as exc:
                raise TranscriptionError(f"Invalid audio: {exc}") from exc
            if audio.size == 0:
                return TranscriptionResult(text="")
            token.raise_if_cancelled()
            segments = []
            try:
                for segment in model.transcribe(audio):
                    token.raise_if_cancelled()
                    segments.append(segment)
            except VoiceInputError:
                raise
            except Exception as exc:
                raise TranscriptionError(f"Transcription failed: {exc}") from exc
            token.raise_if_cancelled()
        finally:
            with self._idle:
                self._token = None
                self._idle.notify_all()

        text = " ".join(s.text.strip() for s in segments if s.text.strip())
        return TranscriptionResult(text=text, segments=tuple(segments))

    def cancel(self) -> None:
        with self._lock:
            token = self._token
        if token is not None:
            token.cancel()
