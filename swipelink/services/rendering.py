"""Push mapped input text onto the rendering surface."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from ..logging import preview
from .conversation import (
    ConversationEngine,
    Role,
    find_position,
    input_position_before,
    last_position,
)
from .mapping_store import MappingKey, MappingStore


logger = logging.getLogger(__name__)


@runtime_checkable
class RenderingSurface(Protocol):
    """Where messages are painted.

    Elements are opaque handles returned by :meth:`element_for` and
    :meth:`last_element`; the synchronizer only passes them back.
    """

    def element_for(self, record_id: int) -> Any | None: ...

    def last_element(self, role: Role) -> Any | None: ...

    def text_of(self, element: Any) -> str | None: ...

    def set_text(self, element: Any, text: str) -> None: ...

    def set_linked(self, element: Any, linked: bool) -> None: ...

    def clear_linked(self) -> None: ...

    def variant_attribute(self, element: Any) -> int | None: ...

    def observe_text(self, element: Any, callback: Callable[[], None]) -> Callable[[], None]: ...

    def add_swipe_control_listener(self, callback: Callable[[], None]) -> Callable[[], None]: ...


class RenderingSynchronizer:
    """Write the mapped input text of a key into the input bubble and mark it linked."""

    def __init__(
        self,
        engine: ConversationEngine,
        surface: RenderingSurface,
        store: MappingStore,
    ) -> None:
        self._engine = engine
        self._surface = surface
        self._store = store

    @property
    def surface(self) -> RenderingSurface:
        return self._surface

    # ------------------------------------------------------------------
    # Reads
    def variant_attribute(self, record_id: int) -> int | None:
        element = self._surface.element_for(record_id)
        if element is None:
            return None
        return self._surface.variant_attribute(element)

    def live_input_text(self) -> str | None:
        """Text of the latest input bubble as currently painted."""

        records = self._engine.records()
        position = last_position(records, Role.INPUT)
        element = None
        if position is not None:
            element = self._surface.element_for(records[position].record_id)
        if element is None:
            element = self._surface.last_element(Role.INPUT)
        if element is None:
            return None
        return self._surface.text_of(element)

    def _input_element_for_exchange(self, exchange_id: int) -> Any | None:
        records = self._engine.records()
        position = find_position(records, exchange_id)
        if position is None:
            logger.debug("Could not resolve exchange", extra={"exchange_id": exchange_id})
            return None
        input_position = input_position_before(records, position)
        if input_position is None:
            return None
        element = self._surface.element_for(records[input_position].record_id)
        if element is None:
            element = self._surface.last_element(Role.INPUT)
        return element

    # ------------------------------------------------------------------
    # Writes
    def clear_all(self) -> None:
        self._surface.clear_linked()

    def clear_for_exchange(self, exchange_id: int | None) -> None:
        if exchange_id is None:
            self.clear_all()
            return
        element = self._input_element_for_exchange(exchange_id)
        if element is None:
            self.clear_all()
            return
        self._surface.set_linked(element, False)

    def clear_for_key(self, key: MappingKey | None) -> None:
        if key is None:
            self.clear_all()
            return
        self.clear_for_exchange(key.exchange_id)

    def push(self, key: MappingKey | None) -> bool:
        """Show the mapped text for ``key``. Returns ``True`` when linked."""

        if key is None:
            return False
        text = self._store.get(key)
        if text is None:
            self.clear_for_key(key)
            return False
        element = self._input_element_for_exchange(key.exchange_id)
        if element is None:
            logger.debug("No input element for key", extra={"key": str(key)})
            self.clear_all()
            return False
        current = self._surface.text_of(element)
        if current is None or current.strip() != text.strip():
            logger.debug("Updating input bubble", extra={"key": str(key), "text": preview(text)})
            self._surface.set_text(element, text)
        self._surface.set_linked(element, True)
        return True

    def sync(self, key: MappingKey | None) -> bool:
        """Push ``key`` when it is mapped, otherwise drop the linked marker."""

        if key is None or key not in self._store:
            if key is not None:
                logger.debug("No mapping for key", extra={"key": str(key)})
            self.clear_for_key(key)
            return False
        return self.push(key)


__all__ = ["RenderingSurface", "RenderingSynchronizer"]
