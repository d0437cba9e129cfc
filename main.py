"""Application entrypoint: tray host for the voice input controller."""

from __future__ import annotations

import logging
import sys
import threading

from config import JsonConfigStore
from events import MODEL_PROGRESS, STATE_CHANGE, TRANSCRIPTION
from hotkey import GlobalHotkeyAdapter
from models import WHISPER_MODELS, ProgressEvent, StateChangeEvent, TranscriptionResult, VoiceInputState
from permission_gate import PermissionGate
from recorder import SoundDeviceBackend
from transcription_engine import TranscriptionEngine
from voice_input_controller import VoiceInputController
from whisper_backend import FasterWhisperLoader

try:
    from PySide6.QtCore import QObject, Signal, QSize
    from PySide6.QtGui import QAction, QActionGroup, QIcon, QPixmap, QPainter, QColor, QBrush
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


STATE_COLORS = {
    VoiceInputState.IDLE.value: "#888888",
    VoiceInputState.LOADING_MODEL.value: "#4A90D9",
    VoiceInputState.READY.value: "#44AA44",
    VoiceInputState.RECORDING.value: "#FF4444",
    VoiceInputState.PROCESSING.value: "#FFCC00",
    VoiceInputState.ERROR.value: "#FF8800",
}

STATE_TOOLTIPS = {
    VoiceInputState.IDLE.value: "Idle",
    VoiceInputState.LOADING_MODEL.value: "Loading speech model...",
    VoiceInputState.READY.value: "Ready",
    VoiceInputState.RECORDING.value: "Recording...",
    VoiceInputState.PROCESSING.value: "Transcribing...",
    VoiceInputState.ERROR.value: "Error",
}


class UIBridge(QObject):
    state_signal = Signal(str, str)  # state, error
    transcript_signal = Signal(str)
    progress_signal = Signal(str, int, int)  # file, loaded, total


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        logging.basicConfig(
            level=getattr(logging, self.config_store.get_log_level(), logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        self.ui = UIBridge()
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.transcript_signal.connect(self._on_transcript_ui)
        self.ui.progress_signal.connect(self._on_progress_ui)

        self.engine = TranscriptionEngine(
            FasterWhisperLoader(
                compute_type=self.config_store.get_compute_type(),
                language=self.config_store.get_language(),
            )
        )
        self.controller = VoiceInputController(
            engine=self.engine,
            permission_gate=PermissionGate(SoundDeviceBackend(device=self.config_store.get_input_device())),
            model_tag=self.config_store.get_model_tag(),
        )
        self._subscriptions = [
            self.controller.subscribe(STATE_CHANGE, self._on_state_change),
            self.controller.subscribe(TRANSCRIPTION, self._on_transcription),
            self.controller.subscribe(MODEL_PROGRESS, self._on_progress),
        ]
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=self.config_store.get_hotkey())

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(STATE_COLORS[VoiceInputState.IDLE.value]))
        self.tray.setToolTip("Voice Input - Idle")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        toggle_action = QAction("Start/Stop Recording", menu)
        toggle_action.triggered.connect(lambda: self._in_background(self.controller.toggle_recording))
        menu.addAction(toggle_action)

        cancel_action = QAction("Cancel", menu)
        cancel_action.triggered.connect(self.controller.cancel)
        menu.addAction(cancel_action)

        model_menu = menu.addMenu("Speech Model")
        group = QActionGroup(model_menu)
        current = self.config_store.get_model_tag()
        for info in WHISPER_MODELS.values():
            action = QAction(f"{info.name} ({info.size})", model_menu)
            action.setToolTip(info.description)
            action.setCheckable(True)
            action.setChecked(info.tag == current)
            action.triggered.connect(lambda _checked=False, tag=info.tag: self._select_model(tag))
            group.addAction(action)
            model_menu.addAction(action)

        clear_action = QAction("Clear Model Cache", menu)
        clear_action.triggered.connect(self._clear_cache)
        menu.addAction(clear_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)
        self._menu = menu

    def _select_model(self, tag: str) -> None:
        self.config_store.set_model_tag(tag)
        self._in_background(lambda: self.controller.initialize_model(tag))

    def _clear_cache(self) -> None:
        answer = QMessageBox.question(
            None,
            "Clear Model Cache",
            "Delete downloaded speech models? They will be downloaded again on next use.",
        )
        if answer != QMessageBox.Yes:
            return
        self.controller.reset()
        self._in_background(self.engine.clear_cache)

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Hotkey", "Use pynput key format, e.g. Key.f9"
        )
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    @staticmethod
    def _in_background(target) -> None:  # noqa: ANN001
        # Controller calls can block on model download or device open.
        threading.Thread(target=target, daemon=True).start()

    # ------------------------------------------------------------------
    # Controller events (worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, event: StateChangeEvent) -> None:
        self.ui.state_signal.emit(event.state.value, event.error or "")

    def _on_transcription(self, result: TranscriptionResult) -> None:
        self.ui.transcript_signal.emit(result.text)

    def _on_progress(self, event: ProgressEvent) -> None:
        self.ui.progress_signal.emit(event.file, event.bytes_loaded, event.bytes_total)

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_state_change_ui(self, state: str, error: str) -> None:
        self.tray.setIcon(_create_icon(STATE_COLORS.get(state, "#888888")))
        self.tray.setToolTip(f"Voice Input - {STATE_TOOLTIPS.get(state, state)}")
        if state == VoiceInputState.ERROR.value and error:
            self.tray.showMessage("Voice Input", error, QSystemTrayIcon.Warning, 4000)

    def _on_transcript_ui(self, text: str) -> None:
        QApplication.clipboard().setText(text)
        self.tray.showMessage("Transcript copied", text, QSystemTrayIcon.Information, 3000)

    def _on_progress_ui(self, file: str, loaded: int, total: int) -> None:
        if total:
            self.tray.setToolTip(f"Voice Input - Downloading {file}: {loaded * 100 // total}%")
        else:
            self.tray.setToolTip(f"Voice Input - Downloading {file}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(
                on_toggle=lambda: self._in_background(self.controller.toggle_recording),
            )
        except Exception as exc:
            logger.warning("Hotkey disabled: %s", exc)
            self.tray.showMessage("Voice Input", f"Hotkey disabled: {exc}", QSystemTrayIcon.Warning, 4000)
        self._in_background(self.controller.initialize_model)
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self.controller.dispose()
        self.engine.dispose()
        self.app.quit()


def main() -> int:
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
