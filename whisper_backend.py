"""Local Whisper backend using faster-whisper (CTranslate2).

Model artifacts come from the Hugging Face hub and are cached on disk keyed by
repo id, so a tag is downloaded once and later loads are served from cache.
Progress is reported per file: one event before a file is fetched and one
after it is on disk. A fully cached model loads without touching the network.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shutil
from typing import Any, Iterator, Optional

import numpy as np

from errors import ModelLoadError
from interfaces import ProgressCallback
from models import WHISPER_MODELS, ProgressEvent, TranscriptionSegment, normalize_model_tag

try:
    from faster_whisper import WhisperModel
except Exception:  # pragma: no cover
    WhisperModel = None  # type: ignore

try:
    import huggingface_hub
    from huggingface_hub.utils import CacheNotFound, LocalEntryNotFoundError
except Exception:  # pragma: no cover
    huggingface_hub = None  # type: ignore
    CacheNotFound = None  # type: ignore
    LocalEntryNotFoundError = None  # type: ignore

logger = logging.getLogger(__name__)

MODEL_FILE_PATTERNS = (
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
)


def resolve_repo_id(model_tag: str) -> str:
    tag = normalize_model_tag(model_tag)
    info = WHISPER_MODELS.get(tag)
    if info is not None:
        return info.repo_id
    if "/" in tag:
        return tag
    raise ModelLoadError(f"Unknown speech model: {model_tag}")


class FasterWhisperModel:
    def __init__(self, model: Any, language: Optional[str] = "en", beam_size: int = 5) -> None:
        self._model = model
        self._language = language or None
        self._beam_size = beam_size

    def transcribe(self, audio: np.ndarray) -> Iterator[TranscriptionSegment]:
        audio = np.ascontiguousarray(audio, dtype=np.float32)
        segments, _ = self._model.transcribe(
            audio,
            language=self._language,
            beam_size=self._beam_size,
            vad_filter=False,
        )
        for segment in segments:
            yield TranscriptionSegment(
                text=segment.text,
                start_sec=float(segment.start or 0.0),
                end_sec=float(segment.end or 0.0),
            )


class FasterWhisperLoader:
    def __init__(
        self,
        cache_dir: Optional[str] = None,
        device: str = "cpu",
        compute_type: str = "int8",
        language: Optional[str] = "en",
    ) -> None:
        self._cache_dir = cache_dir
        self._device = device
        self._compute_type = compute_type
        self._language = language

    def load(self, model_tag: str, on_progress: ProgressCallback) -> FasterWhisperModel:
        if WhisperModel is None:
            raise ModelLoadError("faster-whisper is not installed")
        if huggingface_hub is None:
            raise ModelLoadError("huggingface_hub is not installed")
        repo_id = resolve_repo_id(model_tag)
        logger.info("Loading speech model %s (%s)", model_tag, repo_id)
        try:
            model_dir = self._download(repo_id, on_progress)
            model = WhisperModel(model_dir, device=self._device, compute_type=self._compute_type)
        except ModelLoadError:
            raise
        except Exception as exc:
            raise ModelLoadError(f"Failed to load {model_tag}: {exc}") from exc
        logger.info("Speech model %s loaded", model_tag)
        return FasterWhisperModel(model, language=self._language)

    def purge_cache(self) -> None:
        if huggingface_hub is None:
            return
        try:
            cache = huggingface_hub.scan_cache_dir(self._cache_dir)
        except CacheNotFound:
            return
        known = {info.repo_id for info in WHISPER_MODELS.values()}
        for repo in cache.repos:
            if repo.repo_id in known:
                logger.info("Removing cached model %s", repo.repo_id)
                shutil.rmtree(repo.repo_path, ignore_errors=True)

    def _download(self, repo_id: str, on_progress: ProgressCallback) -> str:
        cached = self._cached_snapshot(repo_id, on_progress)
        if cached is not None:
            return cached

        info = huggingface_hub.HfApi().model_info(repo_id, files_metadata=True)
        files = [
            sibling
            for sibling in info.siblings or []
            if any(fnmatch.fnmatch(sibling.rfilename, pattern) for pattern in MODEL_FILE_PATTERNS)
        ]
        if not files:
            raise ModelLoadError(f"No model files found in {repo_id}")

        model_dir = ""
        for sibling in files:
            total = int(sibling.size or 0)
            on_progress(ProgressEvent(file=sibling.rfilename, bytes_loaded=0, bytes_total=total))
            path = huggingface_hub.hf_hub_download(
                repo_id=repo_id,
                filename=sibling.rfilename,
                cache_dir=self._cache_dir,
            )
            model_dir = os.path.dirname(path)
            on_progress(ProgressEvent(file=sibling.rfilename, bytes_loaded=total, bytes_total=total))
        return model_dir

    def _cached_snapshot(self, repo_id: str, on_progress: ProgressCallback) -> Optional[str]:
        try:
            model_dir = huggingface_hub.snapshot_download(
                repo_id,
                allow_patterns=list(MODEL_FILE_PATTERNS),
                cache_dir=self._cache_dir,
                local_files_only=True,
            )
        except LocalEntryNotFoundError:
            return None
        names = sorted(
            name
            for name in os.listdir(model_dir)
            if any(fnmatch.fnmatch(name, pattern) for pattern in MODEL_FILE_PATTERNS)
        )
        if "model.bin" not in names:
            return None
        for name in names:
            size = os.path.getsize(os.path.join(model_dir, name))
            on_progress(ProgressEvent(file=name, bytes_loaded=size, bytes_total=size))
        logger.info("Using cached files for %s", repo_id)
        return model_dir
