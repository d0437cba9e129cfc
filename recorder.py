"""Microphone capture adapter and per-session chunk buffer."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

import numpy as np

from interfaces import ChunkCallback
from models import AudioChunk
from resampler import downmix_to_mono

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class RecordingSession:
    """Append-only list of captured chunks for one recording."""

    def __init__(self) -> None:
        self._chunks: list[AudioChunk] = []
        self._lock = threading.Lock()
        self._closed = False

    def append(self, chunk: AudioChunk) -> None:
        with self._lock:
            if self._closed:
                return
            self._chunks.append(chunk)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def discard(self) -> None:
        with self._lock:
            self._closed = True
            self._chunks.clear()

    @property
    def chunks(self) -> list[AudioChunk]:
        with self._lock:
            return list(self._chunks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def decode(self) -> tuple[np.ndarray, int]:
        """Concatenate chunks into one mono float32 waveform.

        Returns (samples, sample_rate). An empty session gives an empty array.
        """
        chunks = self.chunks
        if not chunks:
            return np.zeros(0, dtype=np.float32), 0
        sample_rate = chunks[0].sample_rate
        channels = chunks[0].channels
        parts = []
        for chunk in chunks:
            if chunk.sample_rate != sample_rate or chunk.channels != channels:
                raise ValueError("recording session mixes audio formats")
            parts.append(np.frombuffer(chunk.pcm_bytes, dtype=np.float32))
        samples = np.concatenate(parts) if parts else np.zeros(0, dtype=np.float32)
        return downmix_to_mono(samples, channels), sample_rate


class SoundDeviceCapture:
    """An open PortAudio input stream delivering float32 chunks."""

    def __init__(
        self,
        on_chunk: ChunkCallback,
        device: Optional[Any] = None,
        sample_rate: Optional[int] = None,
        channels: int = 1,
        chunk_ms: int = 100,
    ) -> None:
        if sd is None:
            raise RuntimeError("sounddevice is not installed")
        if sample_rate is None:
            info = sd.query_devices(device, kind="input")
            sample_rate = int(info["default_samplerate"])
        self._sample_rate = int(sample_rate)
        self.channels = channels
        self.chunk_ms = chunk_ms
        self._on_chunk = on_chunk
        self._lock = threading.Lock()
        self._running = False
        self.overflow_count = 0
        blocksize = int(self._sample_rate * (chunk_ms / 1000.0))
        self._stream: Any = sd.InputStream(
            device=device,
            samplerate=self._sample_rate,
            channels=channels,
            dtype="float32",
            blocksize=blocksize,
            callback=self._on_audio,
        )
        try:
            self._stream.start()
        except Exception:
            self._stream.close()
            self._stream = None
            raise
        self._running = True
        logger.info("Capture started at %d Hz, %d channel(s)", self._sample_rate, channels)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            stream = self._stream
            self._stream = None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
        logger.info("Capture released")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running:
            return
        if status:
            self.overflow_count += 1
            logger.debug("Capture status: %s", status)
        payload = np.asarray(indata, dtype=np.float32).tobytes()
        chunk = AudioChunk(
            pcm_bytes=payload,
            sample_rate=self._sample_rate,
            channels=self.channels,
            timestamp_ms=int(time.time() * 1000),
        )
        self._on_chunk(chunk)


class SoundDeviceBackend:
    """Opens SoundDeviceCapture handles on a configured input device."""

    def __init__(self, device: Optional[Any] = None, channels: int = 1, chunk_ms: int = 100) -> None:
        self.device = device
        self.channels = channels
        self.chunk_ms = chunk_ms

    def open(self, on_chunk: ChunkCallback) -> SoundDeviceCapture:
        return SoundDeviceCapture(
            on_chunk,
            device=self.device,
            channels=self.channels,
            chunk_ms=self.chunk_ms,
        )
