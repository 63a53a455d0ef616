"""
Correlation Cache: bounded multi-key store for captured records.

Every record is registered under all of its lookup keys (filename, content
hash, record id, base name). Keys are aliases for the same record object.

Bounding is a global trim, not an LRU: once the key count passes ``max_keys``
only the ``keep_keys`` most recently inserted keys survive. Overwriting an
existing key keeps that key's original insertion position.

The cache is only touched from the event loop thread, so it carries no lock.
"""

import logging
from typing import Dict, Iterator, List, Optional, Tuple

from .metadata import MetadataRecord

logger = logging.getLogger("splice-alt.cache")

MAX_KEYS = 50
KEEP_KEYS = 30


class CorrelationCache:
    """Insertion-ordered key -> MetadataRecord mapping with a size trim."""

    def __init__(self, max_keys: int = MAX_KEYS, keep_keys: int = KEEP_KEYS):
        if keep_keys > max_keys:
            raise ValueError("keep_keys must not exceed max_keys")
        self.max_keys = max_keys
        self.keep_keys = keep_keys
        self._entries: Dict[str, MetadataRecord] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def put(self, record: MetadataRecord) -> List[str]:
        """Register ``record`` under each of its keys (last write wins). Returns the keys."""
        keys = record.keys()
        for key in keys:
            self._entries[key] = record
        logger.debug(f"[CACHE] Stored {record.filename} under {keys}")
        self.trim()
        return keys

    def get(self, key: str) -> Optional[MetadataRecord]:
        if not key:
            return None
        return self._entries.get(key)

    def find_fuzzy(self, base_name: str, filename: Optional[str] = None) -> Optional[MetadataRecord]:
        """
        First record, in insertion order, whose key contains ``base_name``,
        is contained in ``base_name``, or whose own filename equals ``filename``.
        """
        entry = self.find_fuzzy_entry(base_name, filename)
        return entry[1] if entry else None

    def find_fuzzy_entry(
        self, base_name: str, filename: Optional[str] = None
    ) -> Optional[Tuple[str, MetadataRecord]]:
        """Same search as find_fuzzy, returning the matching key with the record."""
        for key, record in self._entries.items():
            if base_name and (key in base_name or base_name in key):
                logger.debug(f"[CACHE] Fuzzy match on key '{key}' for '{base_name}'")
                return key, record
            if filename is not None and record.filename == filename:
                logger.debug(f"[CACHE] Fuzzy match on filename '{filename}'")
                return key, record
        return None

    def trim(self) -> int:
        """Keep only the newest ``keep_keys`` keys once ``max_keys`` is exceeded. Returns keys evicted."""
        size = len(self._entries)
        if size <= self.max_keys:
            return 0
        newest = list(self._entries.items())[-self.keep_keys:] if self.keep_keys else []
        self._entries = dict(newest)
        evicted = size - len(self._entries)
        logger.info(f"[CACHE] Trimmed {evicted} keys, kept {len(self._entries)}")
        return evicted

    def sweep(self) -> int:
        """Periodic size check; same policy as the trim done on insert."""
        return self.trim()

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"[CACHE] Cleared ({count} keys removed)")
        return count

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def items(self) -> Iterator[Tuple[str, MetadataRecord]]:
        return iter(list(self._entries.items()))

    def records(self) -> List[MetadataRecord]:
        """Distinct records, ordered by first surviving key."""
        seen = set()
        unique: List[MetadataRecord] = []
        for record in self._entries.values():
            if id(record) not in seen:
                seen.add(id(record))
                unique.append(record)
        return unique
