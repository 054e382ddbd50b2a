"""Work out which variant of an exchange is currently on screen."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence

from .conversation import ChatRecord, ConversationEngine, Role, find_position, last_position
from .mapping_store import MappingKey


logger = logging.getLogger(__name__)

VariantLookup = Callable[[int], int | None]


def _finite(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def reconcile_variant(surface_index: object, record_index: object) -> int:
    """Pick a variant index from the rendering surface and the record.

    The record's own counter wins when both are present and disagree; the
    rendering surface may still show the previous variant.
    """

    surface_ok = _finite(surface_index)
    record_ok = _finite(record_index)
    if surface_ok and record_ok and surface_index != record_index:
        logger.debug(
            "Rendering variant differs from record; using record value",
            extra={"surface": surface_index, "record": record_index},
        )
        return int(record_index)  # type: ignore[arg-type]
    if record_ok:
        return int(record_index)  # type: ignore[arg-type]
    if surface_ok:
        return int(surface_index)  # type: ignore[arg-type]
    return 0


def generated_variant_index(record: ChatRecord) -> int:
    """Variant index of an output that was just generated.

    The variants list grows before the counter advances, so its length is
    preferred over the counter.
    """

    if record.variants:
        return len(record.variants) - 1
    if isinstance(record.variant_index, int):
        return record.variant_index
    return 0


class ActiveKeyResolver:
    """Compute the canonical key for the visible variant.

    ``variant_lookup`` returns the variant index the rendering surface shows
    for a record id, or ``None`` when the surface cannot tell.
    """

    def __init__(self, engine: ConversationEngine, variant_lookup: VariantLookup | None = None) -> None:
        self._engine = engine
        self._variant_lookup = variant_lookup

    def locate_output(
        self, records: Sequence[ChatRecord], exchange_id: int | None = None
    ) -> int | None:
        if exchange_id is None:
            return last_position(records, Role.OUTPUT)
        return find_position(records, exchange_id)

    def resolve_variant(self, record: ChatRecord) -> int:
        surface_index = None
        if self._variant_lookup is not None:
            surface_index = self._variant_lookup(record.record_id)
        return reconcile_variant(surface_index, record.variant_index)

    def resolve(self, exchange_id: int | None = None) -> MappingKey | None:
        records = self._engine.records()
        position = self.locate_output(records, exchange_id)
        if position is None:
            return None
        record = records[position]
        return MappingKey(record.record_id, self.resolve_variant(record))


__all__ = [
    "ActiveKeyResolver",
    "generated_variant_index",
    "reconcile_variant",
]
