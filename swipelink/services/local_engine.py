"""In-process conversation engine with response variants."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from PyQt6.QtCore import QObject, pyqtSignal

from ..logging import log_call
from .conversation import ChatRecord, EngineEvent, Role, normalize_records


logger = logging.getLogger(__name__)

Responder = Callable[[list[dict[str, str]]], str]

_ROLE_NAMES = {Role.INPUT: "user", Role.OUTPUT: "assistant", Role.SYSTEM: "system"}


def echo_responder(messages: list[dict[str, str]]) -> str:
    """Reply by quoting the latest user message."""

    for message in reversed(messages):
        if message["role"] == "user":
            return f"You said: {message['content']}"
    return "Hello."


class LocalConversationEngine(QObject):
    """Hold a conversation in memory and announce every lifecycle step.

    Record ids follow list positions and are renumbered after deletions.
    ``supported_events`` limits which notifications reach subscribers, so
    hosts without a variant-switched notification can be modelled.
    """

    notified = pyqtSignal(object, object)

    def __init__(
        self,
        responder: Responder | None = None,
        *,
        supported_events: Iterable[EngineEvent] | None = None,
        session_id: str | None = None,
    ) -> None:
        super().__init__()
        self._responder = responder or echo_responder
        self._supported = set(supported_events) if supported_events is not None else set(EngineEvent)
        self._session_id = session_id or uuid.uuid4().hex
        self._records: list[ChatRecord] = []
        self._subscriptions: dict[EngineEvent, list[Callable[[Any], None]]] = {}
        self._interceptors: list[tuple[Callable[[Sequence[ChatRecord]], None], Callable[[], None] | None]] = []
        self._generating = False

    # ------------------------------------------------------------------
    # ConversationEngine interface
    @property
    def session_id(self) -> str | None:
        return self._session_id

    def records(self) -> list[ChatRecord]:
        return self._records

    def supports(self, event: EngineEvent) -> bool:
        return event in self._supported

    def subscribe(self, event: EngineEvent, callback: Callable[[Any], None]) -> Callable[[], None]:
        callbacks = self._subscriptions.setdefault(event, [])
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def register_interceptor(
        self,
        before_dispatch: Callable[[Sequence[ChatRecord]], None],
        after_dispatch: Callable[[], None] | None = None,
    ) -> Callable[[], None]:
        entry = (before_dispatch, after_dispatch)
        self._interceptors.append(entry)

        def unregister() -> None:
            if entry in self._interceptors:
                self._interceptors.remove(entry)

        return unregister

    # ------------------------------------------------------------------
    @property
    def generating(self) -> bool:
        return self._generating

    def _emit(self, event: EngineEvent, payload: Any = None) -> None:
        # ``notified`` drives the engine's own painting and always fires;
        # subscribers only hear the notifications the engine advertises.
        self.notified.emit(event, payload)
        if event not in self._supported:
            return
        logger.debug("Engine notification", extra={"event": event.value, "payload": payload})
        for callback in list(self._subscriptions.get(event, [])):
            callback(payload)

    def _renumber(self) -> None:
        for position, record in enumerate(self._records):
            record.position = position
            record.record_id = position

    def _last_output(self) -> ChatRecord | None:
        for record in reversed(self._records):
            if record.is_output:
                return record
        return None

    def record(self, record_id: int) -> ChatRecord | None:
        for record in self._records:
            if record.record_id == record_id:
                return record
        return None

    # ------------------------------------------------------------------
    # Session management
    @log_call(logger=logger)
    def load_session(self, session_id: str | None, records: Sequence[Any] = ()) -> None:
        """Switch to ``session_id`` with ``records`` (host dicts or records)."""

        self._session_id = session_id
        self._records = normalize_records(list(records))
        self._renumber()
        self._emit(EngineEvent.SESSION_CHANGED, session_id)

    def new_session(self) -> str:
        session_id = uuid.uuid4().hex
        self.load_session(session_id, [])
        return session_id

    # ------------------------------------------------------------------
    # Conversation operations
    @log_call(logger=logger)
    def send(self, text: str) -> ChatRecord:
        """Append a user message and generate a reply to it."""

        record = ChatRecord(
            position=len(self._records),
            record_id=len(self._records),
            role=Role.INPUT,
            text=text,
        )
        self._records.append(record)
        self._emit(EngineEvent.INPUT_SENT, record.record_id)
        return self.generate()

    @log_call(logger=logger)
    def generate(self, *, new_variant: bool = False) -> ChatRecord:
        """Produce an output; with ``new_variant`` add a variant to the last output."""

        target = self._last_output() if new_variant else None
        if new_variant and target is None:
            raise ValueError("No output record to add a variant to")

        previous: tuple[int | None, str] | None = None
        if target is not None:
            # The new variant slot becomes current before generation starts.
            previous = (target.variant_index, target.text)
            target.variants.append("")
            target.variant_index = len(target.variants) - 1
            target.text = ""
            self._emit(EngineEvent.VARIANT_SWITCHED, target.record_id)

        self._generating = True
        self._emit(EngineEvent.GENERATION_ABOUT_TO_START, {"dryRun": False})
        self._emit(EngineEvent.GENERATION_STARTED, {"dryRun": False})
        try:
            messages = self._dispatch(exclude=target)
            reply = self._responder(messages)
        except Exception:
            if target is not None and previous is not None:
                target.variants.pop()
                target.variant_index, target.text = previous
            self._generating = False
            self._emit(EngineEvent.GENERATION_STOPPED)
            raise

        if target is None:
            target = ChatRecord(
                position=len(self._records),
                record_id=len(self._records),
                role=Role.OUTPUT,
                text=reply,
                variants=[reply],
                variant_index=0,
            )
            self._records.append(target)
        else:
            target.variants[-1] = reply
            target.text = reply

        self._emit(EngineEvent.OUTPUT_RECEIVED, target.record_id)
        self._emit(EngineEvent.OUTPUT_RENDERED, target.record_id)
        self._generating = False
        self._emit(EngineEvent.GENERATION_ENDED, len(self._records))
        return target

    def _dispatch(self, *, exclude: ChatRecord | None) -> list[dict[str, str]]:
        for before_dispatch, _after in list(self._interceptors):
            before_dispatch(self._records)
        try:
            return [
                {"role": _ROLE_NAMES[record.role], "content": record.text}
                for record in self._records
                if record is not exclude
            ]
        finally:
            for _before, after_dispatch in list(self._interceptors):
                if after_dispatch is not None:
                    after_dispatch()

    def swipe(self, step: int, record_id: int | None = None) -> ChatRecord | None:
        """Show the neighbouring variant; stepping past the end generates one."""

        target = self.record(record_id) if record_id is not None else self._last_output()
        if target is None or not target.is_output:
            return None
        current = target.variant_index or 0
        index = current + step
        if index < 0:
            return target
        if index >= len(target.variants):
            if target is self._last_output():
                return self.generate(new_variant=True)
            return target
        target.variant_index = index
        target.text = target.variants[index]
        self._emit(EngineEvent.VARIANT_SWITCHED, target.record_id)
        return target

    @log_call(logger=logger)
    def edit(self, record_id: int, text: str) -> None:
        record = self.record(record_id)
        if record is None:
            raise KeyError(record_id)
        record.text = text
        if record.is_output and record.variants and record.variant_index is not None:
            record.variants[record.variant_index] = text
        self._emit(EngineEvent.RECORD_EDITED, record_id)
        self._emit(EngineEvent.RECORD_UPDATED, record_id)

    @log_call(logger=logger)
    def delete(self, record_id: int) -> None:
        record = self.record(record_id)
        if record is None:
            raise KeyError(record_id)
        self._records.remove(record)
        self._renumber()
        self._emit(EngineEvent.RECORD_DELETED, len(self._records))

    @log_call(logger=logger)
    def delete_variant(self, record_id: int, variant_index: int) -> None:
        record = self.record(record_id)
        if record is None or not record.is_output:
            raise KeyError(record_id)
        if not 0 <= variant_index < len(record.variants) or len(record.variants) < 2:
            raise IndexError(variant_index)
        del record.variants[variant_index]
        current = record.variant_index or 0
        if current >= variant_index and current > 0:
            current -= 1
        record.variant_index = min(current, len(record.variants) - 1)
        record.text = record.variants[record.variant_index]
        self._emit(
            EngineEvent.VARIANT_DELETED,
            {"exchangeId": record_id, "variantIndex": variant_index},
        )
        self._emit(EngineEvent.VARIANT_SWITCHED, record_id)


__all__ = ["LocalConversationEngine", "Responder", "echo_responder"]
