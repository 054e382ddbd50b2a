"""Shared fixtures: a manually driven scheduler and an in-memory rendering surface."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from swipelink.services.conversation import ChatRecord, EngineEvent, Role  # noqa: E402


class FakeTimer:
    def __init__(self, due: int, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)


class FakeScheduler:
    """Scheduler whose clock only moves when a test says so."""

    def __init__(self) -> None:
        self.now = 0
        self._soon: list[Callable[[], None]] = []
        self._timers: list[FakeTimer] = []

    def call_soon(self, callback: Callable[[], None]) -> None:
        self._soon.append(callback)

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.now + delay_ms, callback)
        self._timers.append(timer)
        return timer

    @property
    def active_timers(self) -> list[FakeTimer]:
        return [timer for timer in self._timers if timer.active]

    def flush(self) -> None:
        """Run everything queued for "after the next paint"."""

        while self._soon:
            callback = self._soon.pop(0)
            callback()

    def advance(self, delay_ms: int) -> None:
        self.flush()
        target = self.now + delay_ms
        while True:
            due = sorted(
                (timer for timer in self._timers if timer.active and timer.due <= target),
                key=lambda timer: timer.due,
            )
            if not due:
                break
            timer = due[0]
            self.now = timer.due
            timer.fired = True
            timer.callback()
            self.flush()
        self.now = target


@dataclass(eq=False)
class FakeElement:
    record_id: int
    role: Role
    text: str
    variant: int | None = None
    linked: bool = False
    observers: list[Callable[[], None]] = field(default_factory=list)


class FakeSurface:
    """Rendering surface kept in memory, repainted like the transcript view."""

    def __init__(self, engine: Any = None) -> None:
        self.elements: dict[int, FakeElement] = {}
        self.order: list[FakeElement] = []
        self.click_listeners: list[Callable[[], None]] = []
        if engine is not None:
            engine.notified.connect(lambda event, payload: self.on_notified(engine, event, payload))
            self.paint(engine.records())

    def paint(self, records: list[ChatRecord]) -> None:
        self.elements = {}
        self.order = []
        for record in records:
            element = FakeElement(record.record_id, record.role, record.text, record.variant_index)
            self.elements[record.record_id] = element
            self.order.append(element)

    def on_notified(self, engine: Any, event: EngineEvent, payload: Any) -> None:
        records = engine.records()
        if event in {
            EngineEvent.SESSION_CHANGED,
            EngineEvent.INPUT_SENT,
            EngineEvent.OUTPUT_RENDERED,
            EngineEvent.RECORD_DELETED,
        }:
            self.paint(records)
            return
        if event not in {
            EngineEvent.VARIANT_SWITCHED,
            EngineEvent.RECORD_UPDATED,
            EngineEvent.RECORD_EDITED,
            EngineEvent.VARIANT_DELETED,
        }:
            return
        for record in records:
            if event is EngineEvent.VARIANT_DELETED or record.record_id == payload:
                element = self.elements.get(record.record_id)
                if element is not None:
                    element.variant = record.variant_index
                    self.set_text(element, record.text)

    def click_swipe(self) -> None:
        for listener in list(self.click_listeners):
            listener()

    # Rendering surface ----------------------------------------------
    def element_for(self, record_id: int) -> FakeElement | None:
        return self.elements.get(record_id)

    def last_element(self, role: Role) -> FakeElement | None:
        for element in reversed(self.order):
            if element.role is role:
                return element
        return None

    def text_of(self, element: FakeElement) -> str | None:
        return element.text

    def set_text(self, element: FakeElement, text: str) -> None:
        if element.text == text:
            return
        element.text = text
        for observer in list(element.observers):
            observer()

    def set_linked(self, element: FakeElement, linked: bool) -> None:
        element.linked = linked

    def clear_linked(self) -> None:
        for element in self.order:
            element.linked = False

    def variant_attribute(self, element: FakeElement) -> int | None:
        return element.variant

    def observe_text(self, element: FakeElement, callback: Callable[[], None]) -> Callable[[], None]:
        element.observers.append(callback)

        def detach() -> None:
            if callback in element.observers:
                element.observers.remove(callback)

        return detach

    def add_swipe_control_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        self.click_listeners.append(callback)

        def remove() -> None:
            if callback in self.click_listeners:
                self.click_listeners.remove(callback)

        return remove


def make_records(*specs: tuple) -> list[ChatRecord]:
    """Build records from ``(role, text)`` or ``(role, text, variants, index)`` tuples."""

    records = []
    for position, spec in enumerate(specs):
        role, text, *rest = spec
        variants = list(rest[0]) if rest else []
        index = rest[1] if len(rest) > 1 else (0 if role is Role.OUTPUT else None)
        records.append(
            ChatRecord(
                position=position,
                record_id=position,
                role=role,
                text=text,
                variants=variants,
                variant_index=index,
            )
        )
    return records


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture(scope="session")
def qt_app():
    widgets = pytest.importorskip(
        "PyQt6.QtWidgets",
        reason="PyQt6 widgets require a Qt runtime",
        exc_type=ImportError,
    )
    app = widgets.QApplication.instance()
    if app is None:
        app = widgets.QApplication([])
    return app
