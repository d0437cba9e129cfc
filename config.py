"""Simple JSON-based config store."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

from models import DEFAULT_MODEL_TAG, normalize_model_tag

DEFAULTS: dict[str, Any] = {
    "model_tag": DEFAULT_MODEL_TAG,
    "hotkey": "Key.f9",
    "language": "en",
    "compute_type": "int8",
    "input_device": None,
    "log_level": "INFO",
}


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_input" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_model_tag(self) -> str:
        return normalize_model_tag(str(self._get("model_tag")))

    def set_model_tag(self, tag: str) -> None:
        self._set("model_tag", normalize_model_tag(tag))

    def get_hotkey(self) -> str:
        return str(self._get("hotkey"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_language(self) -> Optional[str]:
        value = self._get("language")
        return str(value) if value else None

    def get_compute_type(self) -> str:
        return str(self._get("compute_type"))

    def get_input_device(self) -> Optional[str]:
        value = self._get("input_device")
        return str(value) if value not in (None, "") else None

    def set_input_device(self, device: Optional[str]) -> None:
        self._set("input_device", device)

    def get_log_level(self) -> str:
        return str(self._get("log_level")).upper()

    def _get(self, key: str) -> Any:
        return self._read_all().get(key, DEFAULTS[key])

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
