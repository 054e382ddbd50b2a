"""Capture input text per generation cycle and substitute it into outgoing requests."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from ..logging import log_call, preview
from .conversation import ChatRecord
from .mapping_store import MappingKey
from .scheduler import Scheduler, TimerHandle
from .session_state import OutputBaseline, SessionState


logger = logging.getLogger(__name__)

SAFETY_TIMEOUT_MS = 60_000


class CapturePhase(Enum):
    IDLE = "idle"
    ARMED = "armed"
    PATCHED = "patched"


@dataclass
class InterceptorPatch:
    """A substitution written into an outgoing input record."""

    record: ChatRecord
    original_text: str


class GenerationInterceptor:
    """Generation-cycle state machine.

    ``arm`` captures the input text and freezes the key to apply,
    ``intercept`` patches the outgoing input record, ``restore`` writes the
    original text back, and ``complete`` stores the mapping for the finished
    output. At most one patch is outstanding at any time.
    """

    def __init__(
        self,
        state: SessionState,
        scheduler: Scheduler,
        *,
        safety_timeout_ms: int = SAFETY_TIMEOUT_MS,
    ) -> None:
        self._state = state
        self._scheduler = scheduler
        self._safety_timeout_ms = safety_timeout_ms
        self._patch: InterceptorPatch | None = None
        self._safety_timer: TimerHandle | None = None

    @property
    def patch(self) -> InterceptorPatch | None:
        return self._patch

    @property
    def phase(self) -> CapturePhase:
        if self._patch is not None:
            return CapturePhase.PATCHED
        if not self._state.pending.is_empty:
            return CapturePhase.ARMED
        return CapturePhase.IDLE

    # ------------------------------------------------------------------
    def arm(
        self,
        input_text: str | None,
        generation_key: MappingKey | None,
        baseline: OutputBaseline | None = None,
    ) -> None:
        """Idle -> Armed: snapshot the input text, the key to apply and the
        latest output, so the end of the cycle can tell whether anything new
        was produced.
        """

        self.restore()
        pending = self._state.pending
        pending.input_text = input_text
        pending.generation_key = generation_key
        pending.baseline = baseline
        logger.debug(
            "Generation armed",
            extra={"pending": preview(input_text), "key": str(generation_key) if generation_key else None},
        )

    def ensure_captured(self, input_text: str | None, baseline: OutputBaseline | None = None) -> None:
        """Fill the pending capture when :meth:`arm` did not run."""

        pending = self._state.pending
        if pending.input_text is None and input_text is not None:
            pending.input_text = input_text
        if pending.baseline is None:
            pending.baseline = baseline

    def intercept(self, records: Sequence[ChatRecord]) -> None:
        """Armed -> Patched: substitute the mapped text into ``records``."""

        if self._patch is not None:
            self.restore()

        key = self._state.pending.generation_key or self._state.active_key
        if key is None:
            return
        mapped = self._state.store.get(key)
        if not mapped:
            return

        exchange_position = None
        for position in range(len(records) - 1, -1, -1):
            if records[position].record_id == key.exchange_id:
                exchange_position = position
                break
        if exchange_position is None:
            logger.debug("Interceptor: exchange not in request", extra={"key": str(key)})
            return

        target = None
        for position in range(exchange_position - 1, -1, -1):
            if records[position].is_input:
                target = records[position]
                break
        if target is None:
            return
        if target.text == mapped:
            return

        self._patch = InterceptorPatch(record=target, original_text=target.text)
        target.text = mapped
        self._safety_timer = self._scheduler.call_later(
            self._safety_timeout_ms, self._on_safety_timeout
        )
        logger.debug(
            "Interceptor patched input record",
            extra={"record_id": target.record_id, "key": str(key), "text": preview(mapped)},
        )

    def release(self) -> None:
        """The request has been built from the records; undo the patch."""

        self.restore()

    def restore(self) -> bool:
        """Patched -> Idle: write the original input text back."""

        if self._safety_timer is not None:
            self._safety_timer.cancel()
            self._safety_timer = None
        patch, self._patch = self._patch, None
        if patch is None:
            return False
        # Only the text field is reassigned; the host may have changed the rest.
        patch.record.text = patch.original_text
        logger.debug("Interceptor patch restored", extra={"record_id": patch.record.record_id})
        return True

    def _on_safety_timeout(self) -> None:
        self._safety_timer = None
        if self._patch is not None:
            logger.debug("Safety timeout: restoring interceptor patch")
            self.restore()

    # ------------------------------------------------------------------
    @log_call(logger=logger, include_result=True)
    def complete(self, exchange_id: int, variant_index: int) -> MappingKey | None:
        """Pair the pending input text with a finished output."""

        text = self._state.pending.input_text
        if not text:
            return None
        key = MappingKey(exchange_id, variant_index)
        store = self._state.store
        store.set(key, text)
        store.evict_overflow()
        self._state.active_key = key
        self._state.pending.clear()
        logger.debug("Stored mapping", extra={"key": str(key), "text": preview(text)})
        return key

    def end_cycle(self) -> None:
        """Generation ended or stopped."""

        self._state.generating = False
        self._state.pending.generation_key = None
        self.restore()


__all__ = [
    "CapturePhase",
    "GenerationInterceptor",
    "InterceptorPatch",
    "SAFETY_TIMEOUT_MS",
]
