"""Demo window wiring the local engine, transcript and synchronizer together."""

from __future__ import annotations

import logging
import pprint

from PyQt6.QtCore import Qt
from PyQt6.QtWidgets import (
    QCheckBox,
    QHBoxLayout,
    QInputDialog,
    QMainWindow,
    QPushButton,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from ..services.conversation import Role, last_position
from ..services.event_synchronizer import EventSynchronizer
from ..services.local_engine import LocalConversationEngine
from ..services.sync_settings import SyncSettings
from .transcript_view import TranscriptView


logger = logging.getLogger(__name__)


class MainWindow(QMainWindow):
    """Chat transcript with send, regenerate, edit and delete controls."""

    def __init__(
        self,
        *,
        engine: LocalConversationEngine,
        settings: SyncSettings,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle("swipelink")
        self.resize(720, 640)
        self._engine = engine
        self._settings = settings

        central = QWidget(self)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(8)

        self.transcript = TranscriptView(central)
        layout.addWidget(self.transcript, 1)

        self.editor = QTextEdit(central)
        self.editor.setAcceptRichText(False)
        self.editor.setPlaceholderText("Type a message")
        self.editor.setFixedHeight(80)
        layout.addWidget(self.editor)

        buttons = QHBoxLayout()
        buttons.setSpacing(8)
        layout.addLayout(buttons)

        self.debug_toggle = QCheckBox("Debug logging", central)
        self.debug_toggle.setChecked(settings.debug)
        self.debug_toggle.toggled.connect(settings.set_debug)
        buttons.addWidget(self.debug_toggle)
        buttons.addStretch(1)

        self.new_chat_button = self._add_button(buttons, "New chat", self._new_chat)
        self.delete_button = self._add_button(buttons, "Delete last", self._delete_last)
        self.edit_button = self._add_button(buttons, "Edit last input", self._edit_last_input)
        self.regenerate_button = self._add_button(buttons, "Regenerate", self._regenerate)
        self.send_button = self._add_button(buttons, "Send", self._send)
        self.send_button.setDefault(True)

        self.setCentralWidget(central)

        self.transcript.bind_engine(engine)
        self.transcript.swipe_requested.connect(self._on_swipe_requested)
        self.synchronizer = EventSynchronizer(engine, self.transcript)
        self.synchronizer.start()

    def _add_button(self, row: QHBoxLayout, label: str, callback) -> QPushButton:
        button = QPushButton(label, self)
        button.setCursor(Qt.CursorShape.PointingHandCursor)
        button.clicked.connect(callback)
        row.addWidget(button)
        return button

    # ------------------------------------------------------------------
    def _send(self) -> None:
        text = self.editor.toPlainText().strip()
        if not text:
            return
        self.editor.clear()
        self._engine.send(text)

    def _regenerate(self) -> None:
        if last_position(self._engine.records(), Role.OUTPUT) is None:
            return
        self._engine.generate(new_variant=True)

    def _edit_last_input(self) -> None:
        records = self._engine.records()
        position = last_position(records, Role.INPUT)
        if position is None:
            return
        record = records[position]
        text, accepted = QInputDialog.getMultiLineText(
            self, "Edit message", "Message:", record.text
        )
        if accepted and text.strip():
            self._engine.edit(record.record_id, text)

    def _delete_last(self) -> None:
        records = self._engine.records()
        if records:
            self._engine.delete(records[-1].record_id)

    def _new_chat(self) -> None:
        self._engine.new_session()

    def _on_swipe_requested(self, record_id: int, step: int) -> None:
        self._engine.swipe(step, record_id)
        if self._settings.debug:
            logger.debug("Synchronizer state:\n%s", pprint.pformat(self.synchronizer.debug_snapshot()))

    def closeEvent(self, event) -> None:  # type: ignore[override]
        self.synchronizer.stop()
        super().closeEvent(event)


__all__ = ["MainWindow"]
