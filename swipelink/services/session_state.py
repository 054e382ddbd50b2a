"""Per-session state owned by the event synchronizer."""

from __future__ import annotations

from dataclasses import dataclass, field

from .conversation import ChatRecord
from .mapping_store import MAX_ENTRIES, MappingKey, MappingStore


@dataclass(frozen=True)
class OutputBaseline:
    """The latest output as it stood when a generation cycle was armed."""

    record_id: int | None = None
    variant_count: int = 0
    text: str = ""

    @classmethod
    def of(cls, record: ChatRecord | None) -> OutputBaseline:
        if record is None:
            return cls()
        return cls(record.record_id, len(record.variants), record.text)

    def produced(self, record: ChatRecord | None) -> bool:
        """Return ``True`` when ``record`` is output the cycle added.

        That is a different output record, an extra variant, or text filled
        into the variant slot that was current when the cycle started. A
        rolled back placeholder variant counts as nothing.
        """

        if record is None or not record.text:
            return False
        if record.record_id != self.record_id:
            return True
        count = len(record.variants)
        if count != self.variant_count:
            return count > self.variant_count
        return record.text != self.text


@dataclass
class PendingCapture:
    """Input text captured when a generation cycle starts."""

    input_text: str | None = None
    generation_key: MappingKey | None = None
    baseline: OutputBaseline | None = None

    @property
    def is_empty(self) -> bool:
        return self.input_text is None and self.generation_key is None

    def clear(self) -> None:
        self.input_text = None
        self.generation_key = None
        self.baseline = None


@dataclass
class SessionState:
    """Mapping store, active key and pending capture, reset as a unit."""

    store: MappingStore = field(default_factory=lambda: MappingStore(MAX_ENTRIES))
    active_key: MappingKey | None = None
    pending: PendingCapture = field(default_factory=PendingCapture)
    generating: bool = False
    session_id: str | None = None

    def reset(self) -> None:
        self.store.clear()
        self.active_key = None
        self.pending.clear()
        self.generating = False


__all__ = ["OutputBaseline", "PendingCapture", "SessionState"]
