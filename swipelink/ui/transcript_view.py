"""Chat transcript widget that doubles as the synchronizer's rendering surface."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtWidgets import (
    QFrame,
    QHBoxLayout,
    QLabel,
    QScrollArea,
    QToolButton,
    QVBoxLayout,
    QWidget,
)

from ..services.conversation import ChatRecord, EngineEvent, Role


logger = logging.getLogger(__name__)

_BUBBLE_COLORS = {
    Role.INPUT: "#ffffff",
    Role.OUTPUT: "#315389",
    Role.SYSTEM: "#e6e8ec",
}
_TEXT_COLORS = {
    Role.INPUT: "#1e2430",
    Role.OUTPUT: "#f2f5f9",
    Role.SYSTEM: "#1e2430",
}
_LINKED_ACCENT = "#d8893a"

# Notifications after which the whole transcript is repainted from records.
_FULL_RENDER_EVENTS = {
    EngineEvent.SESSION_CHANGED,
    EngineEvent.INPUT_SENT,
    EngineEvent.OUTPUT_RENDERED,
    EngineEvent.RECORD_DELETED,
}
# Notifications that only touch the bubble of the reported record.
_RECORD_EVENTS = {
    EngineEvent.VARIANT_SWITCHED,
    EngineEvent.RECORD_UPDATED,
    EngineEvent.RECORD_EDITED,
}


def _disconnect(signal: Any, slot: Callable[..., Any]) -> None:
    try:
        signal.disconnect(slot)
    except (TypeError, RuntimeError):
        # Already disconnected, or the bubble was destroyed by a re-render.
        pass


class MessageBubble(QFrame):
    """One painted message with optional variant controls."""

    text_changed = pyqtSignal()
    swipe_requested = pyqtSignal(int)

    def __init__(self, record: ChatRecord, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self.record_id = record.record_id
        self.role = record.role
        self._linked = False
        self._variant_index: int | None = None
        self._variant_count = 0
        self.setObjectName(f"chatBubble_{record.role.value}")

        outer = QVBoxLayout(self)
        outer.setContentsMargins(16, 12, 16, 12)
        outer.setSpacing(6)

        self._text_label = QLabel("", self)
        self._text_label.setWordWrap(True)
        self._text_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        outer.addWidget(self._text_label)

        footer = QHBoxLayout()
        footer.setContentsMargins(0, 0, 0, 0)
        footer.setSpacing(6)
        outer.addLayout(footer)

        self._linked_label = QLabel("linked", self)
        self._linked_label.setObjectName("linkedIndicator")
        self._linked_label.hide()
        footer.addWidget(self._linked_label)
        footer.addStretch(1)

        self.swipe_left_button: QToolButton | None = None
        self.swipe_right_button: QToolButton | None = None
        self._variant_label: QLabel | None = None
        if record.role is Role.OUTPUT:
            self.swipe_left_button = QToolButton(self)
            self.swipe_left_button.setObjectName("swipeLeft")
            self.swipe_left_button.setText("<")
            self.swipe_left_button.setCursor(Qt.CursorShape.PointingHandCursor)
            self.swipe_left_button.clicked.connect(lambda: self.swipe_requested.emit(-1))
            footer.addWidget(self.swipe_left_button)

            self._variant_label = QLabel("", self)
            self._variant_label.setObjectName("variantCounter")
            footer.addWidget(self._variant_label)

            self.swipe_right_button = QToolButton(self)
            self.swipe_right_button.setObjectName("swipeRight")
            self.swipe_right_button.setText(">")
            self.swipe_right_button.setCursor(Qt.CursorShape.PointingHandCursor)
            self.swipe_right_button.clicked.connect(lambda: self.swipe_requested.emit(1))
            footer.addWidget(self.swipe_right_button)

        self.update_from_record(record)
        self._apply_style()

    # ------------------------------------------------------------------
    def text(self) -> str:
        return self._text_label.text()

    def set_text(self, text: str) -> None:
        if text == self._text_label.text():
            return
        self._text_label.setText(text)
        self.text_changed.emit()

    @property
    def variant_index(self) -> int | None:
        return self._variant_index

    @property
    def linked(self) -> bool:
        return self._linked

    def set_linked(self, linked: bool) -> None:
        value = bool(linked)
        if value == self._linked:
            return
        self._linked = value
        self.setProperty("linked", value)
        self._linked_label.setVisible(value)
        self._apply_style()

    def update_from_record(self, record: ChatRecord) -> None:
        self.set_text(record.text)
        if record.role is not Role.OUTPUT:
            return
        self._variant_index = record.variant_index
        self._variant_count = len(record.variants)
        if self._variant_label is not None:
            shown = (record.variant_index or 0) + 1
            self._variant_label.setText(f"{shown}/{max(self._variant_count, 1)}")

    def _apply_style(self) -> None:
        radius = 18
        border = f"2px solid {_LINKED_ACCENT}" if self._linked else "0"
        self.setStyleSheet(
            f"QFrame#chatBubble_{self.role.value} {{"
            f"background-color: {_BUBBLE_COLORS[self.role]};"
            f"border: {border};"
            f"border-radius: {radius}px;"
            f"color: {_TEXT_COLORS[self.role]};"
            "}}"
            f"QLabel#linkedIndicator {{ color: {_LINKED_ACCENT}; font-size: 10px; }}"
        )


class TranscriptView(QScrollArea):
    """Scrollable list of message bubbles keyed by record id.

    Implements the rendering surface used by the synchronizer: bubbles can be
    located, read, overwritten and marked as linked, and swipe control clicks
    are broadcast through :attr:`swipe_control_clicked`.
    """

    swipe_requested = pyqtSignal(int, int)
    swipe_control_clicked = pyqtSignal()

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._bubbles: dict[int, MessageBubble] = {}
        self._order: list[MessageBubble] = []

        self.setWidgetResizable(True)
        self.setFrameShape(QFrame.Shape.NoFrame)

        container = QWidget(self)
        self._layout = QVBoxLayout(container)
        self._layout.setContentsMargins(12, 12, 12, 12)
        self._layout.setSpacing(12)
        self._layout.addStretch(1)
        self.setWidget(container)

    # ------------------------------------------------------------------
    # Painting
    @property
    def bubbles(self) -> list[MessageBubble]:
        return list(self._order)

    def clear(self) -> None:
        for bubble in self._order:
            bubble.setParent(None)
            bubble.deleteLater()
        self._order.clear()
        self._bubbles.clear()

    def render_records(self, records: Iterable[ChatRecord]) -> None:
        self.clear()
        for record in records:
            bubble = MessageBubble(record, parent=self.widget())
            bubble.swipe_requested.connect(
                lambda step, record_id=record.record_id: self._on_swipe(record_id, step)
            )
            self._bubbles[record.record_id] = bubble
            self._order.append(bubble)
            self._layout.insertWidget(self._layout.count() - 1, bubble)
        self._scroll_to_bottom()

    def refresh_record(self, record: ChatRecord) -> None:
        bubble = self._bubbles.get(record.record_id)
        if bubble is not None:
            bubble.update_from_record(record)

    def bind_engine(self, engine: Any) -> None:
        """Repaint from ``engine.records()`` whenever ``engine.notified`` fires."""

        def _on_notified(event: EngineEvent, payload: Any) -> None:
            records = engine.records()
            if event in _FULL_RENDER_EVENTS:
                self.render_records(records)
            elif event in _RECORD_EVENTS:
                for record in records:
                    if record.record_id == payload:
                        self.refresh_record(record)
                        break
            elif event is EngineEvent.VARIANT_DELETED:
                for record in records:
                    self.refresh_record(record)

        engine.notified.connect(_on_notified)
        self.render_records(engine.records())

    def _on_swipe(self, record_id: int, step: int) -> None:
        self.swipe_control_clicked.emit()
        self.swipe_requested.emit(record_id, step)

    def _scroll_to_bottom(self) -> None:
        bar = self.verticalScrollBar()
        if bar is not None:
            bar.setValue(bar.maximum())

    # ------------------------------------------------------------------
    # Rendering surface
    def element_for(self, record_id: int) -> MessageBubble | None:
        return self._bubbles.get(record_id)

    def last_element(self, role: Role) -> MessageBubble | None:
        for bubble in reversed(self._order):
            if bubble.role is role:
                return bubble
        return None

    def text_of(self, element: MessageBubble) -> str | None:
        return element.text()

    def set_text(self, element: MessageBubble, text: str) -> None:
        element.set_text(text)

    def set_linked(self, element: MessageBubble, linked: bool) -> None:
        element.set_linked(linked)

    def clear_linked(self) -> None:
        for bubble in self._order:
            bubble.set_linked(False)

    def variant_attribute(self, element: MessageBubble) -> int | None:
        return element.variant_index

    def observe_text(self, element: MessageBubble, callback: Callable[[], None]) -> Callable[[], None]:
        element.text_changed.connect(callback)
        return lambda: _disconnect(element.text_changed, callback)

    def add_swipe_control_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        self.swipe_control_clicked.connect(callback)
        return lambda: _disconnect(self.swipe_control_clicked, callback)


__all__ = ["MessageBubble", "TranscriptView"]
