"""Reset per-session state when the conversation changes identity."""

from __future__ import annotations

import logging

from ..logging import log_call, preview
from .active_key import ActiveKeyResolver
from .change_notification import SwipeChangeSource
from .conversation import ConversationEngine, input_position_before, original_input_text
from .interceptor import GenerationInterceptor
from .mapping_store import MappingKey
from .rendering import RenderingSynchronizer
from .scheduler import Scheduler
from .session_state import SessionState


logger = logging.getLogger(__name__)


class SessionLifecycleController:
    """Track the session id and rebuild state for a new conversation."""

    def __init__(
        self,
        engine: ConversationEngine,
        state: SessionState,
        *,
        resolver: ActiveKeyResolver,
        interceptor: GenerationInterceptor,
        rendering: RenderingSynchronizer,
        swipe_source: SwipeChangeSource,
        scheduler: Scheduler,
    ) -> None:
        self._engine = engine
        self._state = state
        self._resolver = resolver
        self._interceptor = interceptor
        self._rendering = rendering
        self._swipe_source = swipe_source
        self._scheduler = scheduler

    @property
    def last_session_id(self) -> str | None:
        return self._state.session_id

    @log_call(logger=logger)
    def bootstrap(self, session_id: str | None) -> None:
        """Adopt an already loaded session without resetting anything."""

        self._state.session_id = session_id
        self._scheduler.call_soon(self._after_render)

    def on_session_changed(self, session_id: str | None) -> bool:
        """Handle a session-changed notification. Returns ``True`` on reset."""

        self._interceptor.restore()
        changed = session_id != self._state.session_id
        if changed:
            logger.info(
                "Session changed",
                extra={"previous": self._state.session_id, "current": session_id},
            )
            self._state.session_id = session_id
            self.reset()
        self._scheduler.call_soon(self._after_render)
        return changed

    def reset(self) -> None:
        self._interceptor.restore()
        self._rendering.clear_all()
        self._state.reset()
        self._swipe_source.cancel_pending()
        self._swipe_source.detach()
        logger.debug("State cleared")

    def _after_render(self) -> None:
        self.backfill(activate=True)
        self._swipe_source.reattach()

    def backfill(
        self,
        exchange_id: int | None = None,
        *,
        activate: bool = False,
        variant_zero_first: bool = False,
    ) -> list[MappingKey]:
        """Create mappings for variant 0 and the shown variant when missing.

        The input text comes from the input record preceding the exchange.
        Existing entries are never overwritten. With ``activate`` the active
        key follows a newly created current-variant mapping.

        Insertion order decides eviction order. Session capture inserts the
        shown variant first; after an output render ``variant_zero_first``
        inserts variant 0 first.
        """

        records = self._engine.records()
        position = self._resolver.locate_output(records, exchange_id)
        if position is None:
            return []
        record = records[position]
        if not record.is_output:
            return []
        input_position = input_position_before(records, position)
        if input_position is None:
            return []
        input_record = records[input_position]
        created: list[MappingKey] = []

        original = original_input_text(input_record)
        current = input_record.text if input_record.text else original
        current_key = MappingKey(record.record_id, self._resolver.resolve_variant(record))
        first_key = MappingKey(record.record_id, 0)

        steps = [(current_key, current, activate), (first_key, original, False)]
        if variant_zero_first:
            steps.reverse()
        for key, text, make_active in steps:
            if self._store_missing(key, text):
                created.append(key)
                if make_active:
                    self._state.active_key = key

        return created

    def _store_missing(self, key: MappingKey, text: str | None) -> bool:
        store = self._state.store
        if not text or key in store:
            return False
        store.set(key, text)
        logger.debug("Backfilled mapping", extra={"key": str(key), "text": preview(text)})
        return True


__all__ = ["SessionLifecycleController"]
