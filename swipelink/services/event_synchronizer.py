"""Keep the mapping store and active key in step with engine notifications.

Each handler performs one bounded transition. Mutations finish before any
rendering push, and work that reads the rendering surface is deferred until
after the next paint.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable, Mapping
from typing import Any

from ..logging import log_call, preview
from .active_key import ActiveKeyResolver, generated_variant_index
from .change_notification import SwipeChangeSource, select_swipe_source
from .conversation import (
    ConversationEngine,
    EngineEvent,
    Role,
    find_position,
    last_position,
    normalize_identifier,
    normalize_variant_deletion,
    record_exists,
)
from .interceptor import GenerationInterceptor
from .mapping_store import MappingKey
from .rendering import RenderingSurface, RenderingSynchronizer
from .scheduler import QtScheduler, Scheduler
from .session_lifecycle import SessionLifecycleController
from .session_state import OutputBaseline, SessionState


logger = logging.getLogger(__name__)


def _is_dry_run(payload: Any) -> bool:
    if isinstance(payload, Mapping):
        return payload.get("dryRun") is True or payload.get("dry_run") is True
    return getattr(payload, "dry_run", False) is True


class EventSynchronizer:
    """Drive the mapping components from conversation engine notifications."""

    def __init__(
        self,
        engine: ConversationEngine,
        surface: RenderingSurface,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._engine = engine
        self._scheduler = scheduler if scheduler is not None else QtScheduler()
        self.state = SessionState()
        self.rendering = RenderingSynchronizer(engine, surface, self.state.store)
        self.resolver = ActiveKeyResolver(engine, self.rendering.variant_attribute)
        self.interceptor = GenerationInterceptor(self.state, self._scheduler)
        self.swipe_source: SwipeChangeSource = select_swipe_source(
            engine,
            surface,
            self._scheduler,
            is_suppressed=lambda: self.state.generating,
        )
        self.lifecycle = SessionLifecycleController(
            engine,
            self.state,
            resolver=self.resolver,
            interceptor=self.interceptor,
            rendering=self.rendering,
            swipe_source=self.swipe_source,
            scheduler=self._scheduler,
        )
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def running(self) -> bool:
        return bool(self._unsubscribers)

    # ------------------------------------------------------------------
    # Wiring
    def _handlers(self) -> dict[EngineEvent, Callable[[Any], None]]:
        return {
            EngineEvent.SESSION_CHANGED: self.on_session_changed,
            EngineEvent.GENERATION_ABOUT_TO_START: self.on_generation_about_to_start,
            EngineEvent.GENERATION_STARTED: self.on_generation_started,
            EngineEvent.OUTPUT_RECEIVED: self.on_output_received,
            EngineEvent.OUTPUT_RENDERED: self.on_output_rendered,
            EngineEvent.GENERATION_ENDED: self.on_generation_ended,
            EngineEvent.GENERATION_STOPPED: self.on_generation_ended,
            EngineEvent.RECORD_UPDATED: self.on_record_updated,
            EngineEvent.RECORD_EDITED: self.on_record_edited,
            EngineEvent.RECORD_DELETED: self.on_record_deleted,
            EngineEvent.VARIANT_DELETED: self.on_variant_deleted,
            EngineEvent.INPUT_SENT: self.on_input_sent,
        }

    def _guard(self, handler: Callable[..., None]) -> Callable[..., None]:
        name = getattr(handler, "__name__", repr(handler))

        @functools.wraps(handler)
        def wrapper(*args: Any) -> None:
            try:
                handler(*args)
            except Exception:
                logger.exception("Handler %s failed; leaving conversation untouched", name)

        return wrapper

    def _defer(self, callback: Callable[[], None]) -> None:
        self._scheduler.call_soon(self._guard(callback))

    @log_call(logger=logger)
    def start(self) -> None:
        if self.running:
            return
        for event, handler in self._handlers().items():
            if not self._engine.supports(event):
                logger.debug("Engine lacks notification", extra={"event": event.value})
                continue
            self._unsubscribers.append(self._engine.subscribe(event, self._guard(handler)))
        self._unsubscribers.append(
            self._engine.register_interceptor(
                self._guard(self.interceptor.intercept),
                self._guard(self.interceptor.release),
            )
        )
        self.swipe_source.start(self._guard(self.on_variant_changed))
        self.lifecycle.bootstrap(self._engine.session_id)
        logger.info(
            "Synchronizer started",
            extra={"native_swipes": self.swipe_source.native, "session_id": self._engine.session_id},
        )

    @log_call(logger=logger)
    def stop(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        self.swipe_source.stop()
        self.interceptor.restore()

    # ------------------------------------------------------------------
    # Helpers
    def current_input_text(self) -> str | None:
        """Input text as the user sees it, falling back to the record."""

        live = self.rendering.live_input_text()
        if live:
            return live
        records = self._engine.records()
        position = last_position(records, Role.INPUT)
        if position is None:
            return None
        return records[position].text

    def _output_baseline(self) -> OutputBaseline:
        records = self._engine.records()
        position = last_position(records, Role.OUTPUT)
        return OutputBaseline.of(records[position] if position is not None else None)

    def refresh_active_key(self, exchange_id: int | None = None) -> MappingKey | None:
        key = self.resolver.resolve(exchange_id)
        if key is not None:
            self.state.active_key = key
        return self.state.active_key

    def resync(self, exchange_id: int | None = None) -> bool:
        key = self.refresh_active_key(exchange_id)
        logger.debug("Active key resolved", extra={"key": str(key) if key else None})
        return self.rendering.sync(key)

    def debug_snapshot(self) -> dict[str, Any]:
        records = self._engine.records()
        output_position = last_position(records, Role.OUTPUT)
        input_position = last_position(records, Role.INPUT)
        output_record = records[output_position] if output_position is not None else None
        return {
            "session_id": self.state.session_id,
            "generating": self.state.generating,
            "pending_text": self.state.pending.input_text,
            "generation_key": str(self.state.pending.generation_key)
            if self.state.pending.generation_key
            else None,
            "active_key": str(self.state.active_key) if self.state.active_key else None,
            "store_size": len(self.state.store),
            "phase": self.interceptor.phase.value,
            "native_swipes": self.swipe_source.native,
            "output_position": output_position,
            "input_position": input_position,
            "output_record": output_record,
            "input_record": records[input_position] if input_position is not None else None,
            "rendered_variant": self.rendering.variant_attribute(output_record.record_id)
            if output_record is not None
            else None,
        }

    # ------------------------------------------------------------------
    # Notification handlers
    def on_session_changed(self, payload: Any = None) -> None:
        self.lifecycle.on_session_changed(self._engine.session_id)

    def on_generation_about_to_start(self, payload: Any = None) -> None:
        if _is_dry_run(payload):
            return
        self.state.generating = True
        # Freeze the key now; swipes during generation must not change it.
        self.interceptor.arm(
            self.current_input_text(),
            self.refresh_active_key(),
            self._output_baseline(),
        )

    def on_generation_started(self, payload: Any = None) -> None:
        if _is_dry_run(payload):
            return
        self.state.generating = True
        if self.state.pending.input_text is None:
            self.interceptor.ensure_captured(self.current_input_text(), self._output_baseline())

    def on_output_received(self, payload: Any) -> None:
        exchange_id = normalize_identifier(payload)
        records = self._engine.records()
        position = find_position(records, exchange_id)
        if position is None:
            logger.debug("Output received for unknown record", extra={"payload": payload})
            return
        record = records[position]
        if not record.is_output or not record.text:
            return
        if not self.state.pending.input_text:
            return
        self.interceptor.complete(record.record_id, generated_variant_index(record))

    def on_output_rendered(self, payload: Any = None) -> None:
        exchange_id = normalize_identifier(payload)
        self._defer(lambda: self._after_output_rendered(exchange_id))

    def _after_output_rendered(self, exchange_id: int | None) -> None:
        self.swipe_source.reattach()
        records = self._engine.records()
        position = find_position(records, exchange_id)
        target = records[position].record_id if position is not None else None
        self.lifecycle.backfill(target, variant_zero_first=True)

    def on_generation_ended(self, payload: Any = None) -> None:
        pending = self.state.pending
        pending_text, baseline = pending.input_text, pending.baseline
        self.interceptor.end_cycle()
        if pending_text and baseline is not None:
            records = self._engine.records()
            position = last_position(records, Role.OUTPUT)
            record = records[position] if position is not None else None
            # Stopped or failed cycles leave the last output as it was.
            if baseline.produced(record):
                self.interceptor.complete(record.record_id, generated_variant_index(record))
            else:
                logger.debug("Generation ended without new output; capture dropped")
        pending.clear()

    def on_variant_changed(self, exchange_id: int | None) -> None:
        """Reconcile after a variant switch (native or observed)."""

        self.resync(exchange_id)

    def _refresh_pending_snapshot(self) -> None:
        if not self.state.generating and self.state.pending.input_text is None:
            return
        live = self.current_input_text()
        if live is not None:
            self.state.pending.input_text = live
            logger.debug("Pending input refreshed", extra={"pending": preview(live)})

    def on_record_updated(self, payload: Any = None) -> None:
        self._refresh_pending_snapshot()
        if self.state.generating:
            return
        records = self._engine.records()
        position = find_position(records, normalize_identifier(payload))
        if position is not None and records[position].is_input:
            # A fresh edit of the input stays on screen; it is no longer the
            # mapped text of the shown variant, so only the marker goes.
            following = next(
                (record.record_id for record in records[position + 1:] if record.is_output),
                None,
            )
            self.refresh_active_key(following)
            if following is not None:
                self._defer(lambda: self.rendering.clear_for_exchange(following))
            return
        self._defer(self.resync)

    def on_record_edited(self, payload: Any = None) -> None:
        self.on_record_updated(payload)

    def on_record_deleted(self, payload: Any = None) -> None:
        # Only the new record count is reported; find orphans ourselves.
        store = self.state.store
        if not len(store):
            return
        records = self._engine.records()
        orphaned = sorted(
            exchange_id
            for exchange_id in store.exchange_ids()
            if not record_exists(records, exchange_id)
        )
        if not orphaned:
            return
        removed = sum(store.delete_exchange(exchange_id) for exchange_id in orphaned)
        active = self.state.active_key
        if active is not None and active.exchange_id in orphaned:
            self.state.active_key = None
            self.rendering.clear_all()
        logger.debug(
            "Removed mappings for deleted records",
            extra={"removed": removed, "exchanges": orphaned},
        )

    def on_variant_deleted(self, payload: Any) -> None:
        deletion = normalize_variant_deletion(payload)
        if deletion is None:
            return
        records = self._engine.records()
        position = find_position(records, deletion.exchange_id)
        exchange_id = records[position].record_id if position is not None else deletion.exchange_id
        shifted = self.state.store.remove_variant(exchange_id, deletion.variant_index)
        logger.debug(
            "Variant deleted",
            extra={
                "exchange_id": exchange_id,
                "variant_index": deletion.variant_index,
                "shifted": shifted,
            },
        )
        key = self.refresh_active_key(exchange_id if position is not None else None)
        if key is None or key not in self.state.store:
            self.rendering.clear_for_exchange(exchange_id)
            return
        self.rendering.push(key)

    def on_input_sent(self, payload: Any = None) -> None:
        # Mappings stay; later generations may still patch older exchanges.
        self.state.pending.input_text = None


__all__ = ["EventSynchronizer"]
