"""Protocol interfaces used by the controller and the engine."""

from __future__ import annotations

from typing import Callable, Iterator, Protocol

import numpy as np

from models import AudioChunk, ProgressEvent, TranscriptionSegment

ChunkCallback = Callable[[AudioChunk], None]
ProgressCallback = Callable[[ProgressEvent], None]


class CaptureHandle(Protocol):
    @property
    def sample_rate(self) -> int: ...

    def stop(self) -> None: ...


class CaptureBackend(Protocol):
    def open(self, on_chunk: ChunkCallback) -> CaptureHandle: ...


class PermissionQuery(Protocol):
    def __call__(self) -> str: ...


class SpeechModel(Protocol):
    def transcribe(self, audio: np.ndarray) -> Iterator[TranscriptionSegment]: ...


class ModelLoader(Protocol):
    def load(self, model_tag: str, on_progress: ProgressCallback) -> SpeechModel: ...

    def purge_cache(self) -> None: ...
