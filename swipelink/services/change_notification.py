"""Detect that the visible variant of an exchange changed.

Two adapters expose the same interface. Hosts that emit a native
variant-switched notification get :class:`NativeSwipeSource`; the others get
:class:`ObserverSwipeSource`, which watches the latest output bubble and the
swipe controls and debounces what it sees. :func:`select_swipe_source` is the
only place that chooses between them.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from .conversation import ConversationEngine, EngineEvent, Role, last_position, normalize_identifier
from .rendering import RenderingSurface
from .scheduler import Debouncer, Scheduler


logger = logging.getLogger(__name__)

SWIPE_DEBOUNCE_MS = 80

ChangeCallback = Callable[[int | None], None]


class SwipeChangeSource(ABC):
    """Report variant switches as ``on_change(exchange_id or None)``."""

    native = False

    def __init__(self) -> None:
        self._on_change: ChangeCallback | None = None

    def start(self, on_change: ChangeCallback) -> None:
        self.stop()
        self._on_change = on_change
        self._connect()

    def stop(self) -> None:
        if self._on_change is None:
            return
        self._disconnect()
        self._on_change = None

    @property
    def running(self) -> bool:
        return self._on_change is not None

    def reattach(self) -> None:
        """Follow the newest output element after a render."""

    def detach(self) -> None:
        """Stop observing the rendering surface until the next reattach."""

    def cancel_pending(self) -> None:
        """Drop any reconciliation that has not run yet."""

    def _emit(self, exchange_id: int | None) -> None:
        if self._on_change is not None:
            self._on_change(exchange_id)

    @abstractmethod
    def _connect(self) -> None: ...

    @abstractmethod
    def _disconnect(self) -> None: ...


class NativeSwipeSource(SwipeChangeSource):
    """Forward the engine's own variant-switched notification."""

    native = True

    def __init__(self, engine: ConversationEngine, scheduler: Scheduler) -> None:
        super().__init__()
        self._engine = engine
        self._scheduler = scheduler
        self._unsubscribe: Callable[[], None] | None = None

    def _connect(self) -> None:
        self._unsubscribe = self._engine.subscribe(EngineEvent.VARIANT_SWITCHED, self._on_switched)

    def _disconnect(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_switched(self, payload: Any) -> None:
        exchange_id = normalize_identifier(payload)
        logger.debug("Variant switched", extra={"exchange_id": exchange_id})
        # The surface repaints after the data change; read it afterwards.
        self._scheduler.call_soon(lambda: self._emit(exchange_id))


class ObserverSwipeSource(SwipeChangeSource):
    """Infer variant switches from text mutations and swipe control clicks."""

    def __init__(
        self,
        engine: ConversationEngine,
        surface: RenderingSurface,
        scheduler: Scheduler,
        *,
        is_suppressed: Callable[[], bool] = lambda: False,
        delay_ms: int = SWIPE_DEBOUNCE_MS,
    ) -> None:
        super().__init__()
        self._engine = engine
        self._surface = surface
        self._scheduler = scheduler
        self._is_suppressed = is_suppressed
        self._debouncer = Debouncer(scheduler, delay_ms, lambda: self._emit(None))
        self._detach_observer: Callable[[], None] | None = None
        self._remove_click_listener: Callable[[], None] | None = None

    @property
    def observing(self) -> bool:
        return self._detach_observer is not None

    @property
    def debounce_pending(self) -> bool:
        return self._debouncer.pending

    def _connect(self) -> None:
        self._remove_click_listener = self._surface.add_swipe_control_listener(self._on_click)

    def _disconnect(self) -> None:
        self.detach()
        self.cancel_pending()
        if self._remove_click_listener is not None:
            self._remove_click_listener()
            self._remove_click_listener = None

    def reattach(self) -> None:
        self.detach()
        if not self.running:
            return
        records = self._engine.records()
        position = last_position(records, Role.OUTPUT)
        element = None
        if position is not None:
            element = self._surface.element_for(records[position].record_id)
        if element is None:
            element = self._surface.last_element(Role.OUTPUT)
        if element is None:
            logger.debug("No output element to observe")
            return
        self._detach_observer = self._surface.observe_text(element, self._on_mutation)
        logger.debug("Observer attached")

    def detach(self) -> None:
        if self._detach_observer is not None:
            self._detach_observer()
            self._detach_observer = None

    def cancel_pending(self) -> None:
        self._debouncer.cancel()

    def _on_mutation(self) -> None:
        if self._is_suppressed():
            return
        self._debouncer.trigger()

    def _on_click(self) -> None:
        # Let the host process the swipe first.
        self._scheduler.call_soon(self._debouncer.trigger)


def select_swipe_source(
    engine: ConversationEngine,
    surface: RenderingSurface,
    scheduler: Scheduler,
    *,
    is_suppressed: Callable[[], bool] = lambda: False,
) -> SwipeChangeSource:
    if engine.supports(EngineEvent.VARIANT_SWITCHED):
        logger.info("Using native variant-switched notifications")
        return NativeSwipeSource(engine, scheduler)
    logger.info("Native variant-switched notification unavailable; observing rendering surface")
    return ObserverSwipeSource(engine, surface, scheduler, is_suppressed=is_suppressed)


__all__ = [
    "NativeSwipeSource",
    "ObserverSwipeSource",
    "SWIPE_DEBOUNCE_MS",
    "SwipeChangeSource",
    "select_swipe_source",
]
