"""Bounded mapping from response variants to the input text that produced them."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from typing import NamedTuple


logger = logging.getLogger(__name__)

MAX_ENTRIES = 100

_KEY_RE = re.compile(r"^([0-9]+):([0-9]+)$")


class MappingKey(NamedTuple):
    """Identify one variant of one exchange."""

    exchange_id: int
    variant_index: int

    def __str__(self) -> str:
        return f"{self.exchange_id}:{self.variant_index}"


def parse_key(value: object) -> MappingKey | None:
    """Return a :class:`MappingKey` for ``value`` or ``None`` when malformed.

    Accepts an existing key, a two item tuple of non-negative ints, or the
    ``"<exchange>:<variant>"`` string form.
    """

    if isinstance(value, MappingKey):
        return value
    if isinstance(value, tuple) and len(value) == 2:
        exchange_id, variant_index = value
        if (
            isinstance(exchange_id, int)
            and isinstance(variant_index, int)
            and not isinstance(exchange_id, bool)
            and not isinstance(variant_index, bool)
            and exchange_id >= 0
            and variant_index >= 0
        ):
            return MappingKey(exchange_id, variant_index)
        return None
    if isinstance(value, str):
        match = _KEY_RE.fullmatch(value)
        if match:
            return MappingKey(int(match.group(1)), int(match.group(2)))
    return None


class MappingStore:
    """Insertion ordered key/value store with FIFO eviction.

    Overwriting a key keeps its original slot; only first insertion decides
    eviction order. Eviction ignores which exchange a key belongs to.

    Keys may be given in any form :func:`parse_key` accepts; malformed keys
    are never stored and never match.
    """

    def __init__(self, capacity: int = MAX_ENTRIES) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: dict[MappingKey, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.has(key)

    def __iter__(self) -> Iterator[MappingKey]:
        return iter(list(self._entries))

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"MappingStore(size={len(self)}, capacity={self.capacity})"

    def has(self, key: object) -> bool:
        parsed = parse_key(key)
        return parsed is not None and parsed in self._entries

    def get(self, key: object) -> str | None:
        parsed = parse_key(key)
        if parsed is None:
            return None
        return self._entries.get(parsed)

    def set(self, key: object, text: str) -> None:
        parsed = parse_key(key)
        if parsed is None:
            logger.debug("Ignoring malformed mapping key", extra={"key": repr(key)})
            return
        grew = parsed not in self._entries
        self._entries[parsed] = text
        if grew:
            self.evict_overflow()

    def delete(self, key: object) -> bool:
        parsed = parse_key(key)
        if parsed is None:
            return False
        return self._entries.pop(parsed, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[MappingKey]:
        return list(self._entries)

    def items(self) -> list[tuple[MappingKey, str]]:
        return list(self._entries.items())

    def exchange_ids(self) -> set[int]:
        return {key.exchange_id for key in self._entries}

    def keys_for_exchange(self, exchange_id: int) -> list[MappingKey]:
        return [key for key in self._entries if key.exchange_id == exchange_id]

    def delete_exchange(self, exchange_id: int) -> int:
        """Remove every key of ``exchange_id`` and return how many went."""

        doomed = self.keys_for_exchange(exchange_id)
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def remove_variant(self, exchange_id: int, variant_index: int) -> int:
        """Delete one variant and renumber the higher variants of its exchange.

        Every key of ``exchange_id`` above ``variant_index`` moves down by one.
        Values are lifted out before any key is rewritten so a shifted entry
        never lands on a slot that still holds an unshifted value. Returns the
        number of shifted entries.
        """

        self._entries.pop(MappingKey(exchange_id, variant_index), None)
        moving = sorted(
            (
                (key.variant_index, value)
                for key, value in self._entries.items()
                if key.exchange_id == exchange_id and key.variant_index > variant_index
            ),
            reverse=True,
        )
        for index, _value in moving:
            del self._entries[MappingKey(exchange_id, index)]
        for index, value in moving:
            self._entries[MappingKey(exchange_id, index - 1)] = value
        return len(moving)

    def evict_overflow(self) -> int:
        overflow = len(self._entries) - self.capacity
        if overflow <= 0:
            return 0
        doomed = list(self._entries)[:overflow]
        for key in doomed:
            del self._entries[key]
        logger.debug("Evicted old mappings", extra={"count": len(doomed)})
        return len(doomed)


__all__ = ["MAX_ENTRIES", "MappingKey", "MappingStore", "parse_key"]
