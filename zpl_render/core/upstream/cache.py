"""
Render Cache
============

In-memory, content-addressed LRU cache of rendered upstream artifacts.

Entries are created on the first successful upstream response for a key,
promoted on every hit and evicted least-recently-used first once the store
exceeds its capacity. Nothing is persisted across restarts.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, Optional, Union
import time

from zpl_render.config.logging import get_logger
from zpl_render.core.zpl.segmenter import content_hash
from zpl_render.models.schemas import OutputFormat, RenderRequest

logger = get_logger(__name__)

# Bump when the key layout or the rendered payload changes meaning
CACHE_SCHEMA_VERSION = "v1"

DEFAULT_MAX_ENTRIES = 256
MIN_MAX_ENTRIES = 16


@dataclass(frozen=True)
class CacheEntry:
    data: bytes
    timestamp: float = field(default_factory=time.time)


def build_cache_key(
    request: RenderRequest, output_format: OutputFormat, label_index: Optional[int] = None
) -> str:
    """
    Deterministic key for one upstream render.

    Identical fields and identical markup collide. Any field difference does not.
    """
    return ":".join(
        [
            CACHE_SCHEMA_VERSION,
            output_format.value,
            "all" if label_index is None else str(label_index),
            str(request.dpi),
            repr(float(request.width)),
            repr(float(request.height)),
            request.orientation.value,
            request.unit.value,
            content_hash(request.zpl),
        ]
    )


class RenderCache:
    """Thread-safe LRU map from cache key to rendered bytes."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max(MIN_MAX_ENTRIES, max_entries)
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = RLock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.logger: Any = logger.bind(component="render_cache")

    def get(self, key: str) -> Optional[bytes]:
        """Return the cached bytes for ``key`` and mark it most recently used."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.data

    def put(self, key: str, data: Union[bytes, bytearray, memoryview]) -> None:
        """Store a copy of ``data``, evicting the least recently used entry when full."""
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                self.logger.debug("Evicted cache entry", key=evicted, size=len(self._entries))
            self._entries[key] = CacheEntry(data=bytes(data))

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }
