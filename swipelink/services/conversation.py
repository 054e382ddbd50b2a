"""Canonical conversation records and the conversation engine interface.

Hosts hand us records and notification payloads in many shapes. Everything is
converted here, once, into :class:`ChatRecord` and plain ``int`` identifiers;
the rest of the package never looks at raw payloads.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable


logger = logging.getLogger(__name__)

_TRAILING_DIGITS_RE = re.compile(r"([0-9]+)$")
_IDENTIFIER_FIELDS = (
    "messageIndex",
    "message_id",
    "index",
    "message_index",
    "mesid",
    "mesId",
    "id",
)
_RECORD_ID_FIELDS = ("record_id", "mesid", "mesId", "message_id")
_TEXT_FIELDS = ("mes", "text", "content")


class Role(Enum):
    """Who authored a record."""

    INPUT = "input"
    OUTPUT = "output"
    SYSTEM = "system"


class EngineEvent(Enum):
    """Lifecycle notifications emitted by a conversation engine."""

    SESSION_CHANGED = "session_changed"
    GENERATION_ABOUT_TO_START = "generation_about_to_start"
    GENERATION_STARTED = "generation_started"
    OUTPUT_RECEIVED = "output_received"
    OUTPUT_RENDERED = "output_rendered"
    GENERATION_ENDED = "generation_ended"
    GENERATION_STOPPED = "generation_stopped"
    VARIANT_SWITCHED = "variant_switched"
    RECORD_UPDATED = "record_updated"
    RECORD_EDITED = "record_edited"
    RECORD_DELETED = "record_deleted"
    VARIANT_DELETED = "variant_deleted"
    INPUT_SENT = "input_sent"


@dataclass
class ChatRecord:
    """One message of the conversation in canonical form.

    ``text`` is the only field the interceptor ever writes.
    """

    position: int
    record_id: int
    role: Role
    text: str = ""
    variants: list[str] = field(default_factory=list)
    variant_index: int | None = None

    @property
    def is_input(self) -> bool:
        return self.role is Role.INPUT

    @property
    def is_output(self) -> bool:
        return self.role is Role.OUTPUT


@dataclass(frozen=True)
class VariantDeletion:
    exchange_id: int
    variant_index: int


@runtime_checkable
class ConversationEngine(Protocol):
    """What the synchronizer needs from the host conversation engine."""

    @property
    def session_id(self) -> str | None: ...

    def records(self) -> Sequence[ChatRecord]: ...

    def supports(self, event: EngineEvent) -> bool: ...

    def subscribe(
        self, event: EngineEvent, callback: Callable[[Any], None]
    ) -> Callable[[], None]: ...

    def register_interceptor(
        self,
        before_dispatch: Callable[[Sequence[ChatRecord]], None],
        after_dispatch: Callable[[], None] | None = None,
    ) -> Callable[[], None]: ...


# ----------------------------------------------------------------------
# Boundary normalization
def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return int(text)
        match = _TRAILING_DIGITS_RE.search(text)
        if match:
            return int(match.group(1))
    return None


def normalize_identifier(payload: Any) -> int | None:
    """Convert any notification payload shape into a record identifier."""

    if payload is None:
        return None
    direct = _coerce_int(payload)
    if direct is not None:
        return direct
    if isinstance(payload, Mapping):
        for name in _IDENTIFIER_FIELDS:
            if name in payload:
                value = _coerce_int(payload[name])
                if value is not None:
                    return value
        return None
    for name in _IDENTIFIER_FIELDS:
        value = _coerce_int(getattr(payload, name, None))
        if value is not None:
            return value
    return None


def normalize_variant_deletion(payload: Any) -> VariantDeletion | None:
    """Read ``{exchangeId, variantIndex}`` style payloads."""

    if isinstance(payload, VariantDeletion):
        return payload
    if not isinstance(payload, Mapping):
        return None
    exchange_id = None
    for name in ("exchange_id", "exchangeId", "messageId", "message_id"):
        if name in payload:
            exchange_id = payload[name]
            break
    variant_index = None
    for name in ("variant_index", "variantIndex", "swipeId", "swipe_id"):
        if name in payload:
            variant_index = payload[name]
            break
    if not isinstance(exchange_id, int) or isinstance(exchange_id, bool):
        return None
    if not isinstance(variant_index, int) or isinstance(variant_index, bool):
        return None
    return VariantDeletion(exchange_id, variant_index)


def _variant_text(entry: Any) -> str | None:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, Mapping):
        for name in _TEXT_FIELDS:
            value = entry.get(name)
            if isinstance(value, str):
                return value
    return None


def normalize_record(raw: Any, position: int) -> ChatRecord:
    """Convert a host message (mapping or :class:`ChatRecord`) to canonical form."""

    if isinstance(raw, ChatRecord):
        return raw
    if not isinstance(raw, Mapping):
        raise TypeError(f"Unsupported record payload: {type(raw).__name__}")

    record_id = None
    for name in _RECORD_ID_FIELDS:
        record_id = _coerce_int(raw.get(name))
        if record_id is not None:
            break
    if record_id is None:
        record_id = position

    if raw.get("is_system") or raw.get("role") == "system":
        role = Role.SYSTEM
    elif raw.get("is_user") or raw.get("role") in {"user", "input"}:
        role = Role.INPUT
    else:
        role = Role.OUTPUT

    text = ""
    for name in _TEXT_FIELDS:
        value = raw.get(name)
        if isinstance(value, str):
            text = value
            break

    variants: list[str] = []
    swipes = raw.get("swipes", raw.get("variants"))
    if isinstance(swipes, Sequence) and not isinstance(swipes, str):
        for entry in swipes:
            value = _variant_text(entry)
            variants.append(value if value is not None else "")

    variant_index = raw.get("swipe_id", raw.get("variant_index"))
    if not isinstance(variant_index, int) or isinstance(variant_index, bool):
        variant_index = None

    return ChatRecord(
        position=position,
        record_id=record_id,
        role=role,
        text=text,
        variants=variants,
        variant_index=variant_index,
    )


def normalize_records(raw_records: Sequence[Any]) -> list[ChatRecord]:
    return [normalize_record(raw, position) for position, raw in enumerate(raw_records)]


# ----------------------------------------------------------------------
# Record lookups
def find_position(records: Sequence[ChatRecord], record_id: int | None) -> int | None:
    """Locate ``record_id``, newest first.

    Falls back to treating ``record_id`` as a list position when no record
    carries that id and the value is in range.
    """

    if record_id is None:
        return None
    for position in range(len(records) - 1, -1, -1):
        if records[position].record_id == record_id:
            return position
    if 0 <= record_id < len(records):
        return record_id
    return None


def record_exists(records: Sequence[ChatRecord], record_id: int) -> bool:
    return any(record.record_id == record_id for record in records)


def last_position(records: Sequence[ChatRecord], role: Role) -> int | None:
    for position in range(len(records) - 1, -1, -1):
        if records[position].role is role:
            return position
    return None


def input_position_before(records: Sequence[ChatRecord], position: int) -> int | None:
    for candidate in range(position - 1, -1, -1):
        if records[candidate].is_input:
            return candidate
    return None


def original_input_text(record: ChatRecord | None) -> str | None:
    """Return the first non-blank historical text of an input record.

    Falls back to the record's current text.
    """

    if record is None:
        return None
    for text in record.variants:
        if isinstance(text, str) and text.strip():
            return text
    return record.text if isinstance(record.text, str) else None


__all__ = [
    "ChatRecord",
    "ConversationEngine",
    "EngineEvent",
    "Role",
    "VariantDeletion",
    "find_position",
    "input_position_before",
    "last_position",
    "normalize_identifier",
    "normalize_record",
    "normalize_records",
    "normalize_variant_deletion",
    "original_input_text",
    "record_exists",
]
