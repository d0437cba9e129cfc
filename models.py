"""Core data models for voice input."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class VoiceInputState(str, Enum):
    IDLE = "idle"
    LOADING_MODEL = "loading-model"
    READY = "ready"
    RECORDING = "recording"
    PROCESSING = "processing"
    ERROR = "error"


class ModelLoadState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"
    UNSUPPORTED = "unsupported"


@dataclass
class AudioChunk:
    pcm_bytes: bytes  # float32, interleaved when channels > 1
    sample_rate: int = 48000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass(frozen=True)
class TranscriptionSegment:
    text: str
    start_sec: float = 0.0
    end_sec: float = 0.0


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    segments: tuple[TranscriptionSegment, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ProgressEvent:
    file: str
    bytes_loaded: int
    bytes_total: int


@dataclass(frozen=True)
class StateChangeEvent:
    state: VoiceInputState
    text: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class WhisperModelInfo:
    tag: str
    name: str
    size: str
    description: str
    repo_id: str


DEFAULT_MODEL_TAG = "whisper-tiny.en"

WHISPER_MODELS: dict[str, WhisperModelInfo] = {
    "whisper-tiny.en": WhisperModelInfo(
        tag="whisper-tiny.en",
        name="Tiny (English)",
        size="~75MB",
        description="Fastest, good for real-time transcription",
        repo_id="Systran/faster-whisper-tiny.en",
    ),
    "whisper-base": WhisperModelInfo(
        tag="whisper-base",
        name="Base",
        size="~140MB",
        description="Balanced speed and accuracy",
        repo_id="Systran/faster-whisper-base",
    ),
    "whisper-small": WhisperModelInfo(
        tag="whisper-small",
        name="Small",
        size="~466MB",
        description="Higher accuracy, slower processing",
        repo_id="Systran/faster-whisper-small",
    ),
}

MODEL_TAG_ALIASES = {
    "tiny": "whisper-tiny.en",
    "tiny.en": "whisper-tiny.en",
    "base": "whisper-base",
    "small": "whisper-small",
}


def normalize_model_tag(tag: str) -> str:
    """Map short aliases ("tiny", "base", ...) to catalog tags."""
    key = tag.strip()
    return MODEL_TAG_ALIASES.get(key, key)
