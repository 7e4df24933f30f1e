"""
Short-lived cache for the batched tier listing, keyed by service id.

Entries expire after a fixed time-to-live and must be invalidated explicitly
after every successful flush for the service.
"""
import time
from copy import deepcopy
from typing import Callable, Optional

from ..engine.models import Tier


DEFAULT_TTL_SECONDS = 30.0


class TiersCache:
    """TTL cache of ``list_all_tiers`` results."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[int, tuple[float, dict[int, list[Tier]]]] = {}

    def get(self, service_id: int) -> Optional[dict[int, list[Tier]]]:
        entry = self._entries.get(service_id)
        if entry is None:
            return None
        stored_at, data = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[service_id]
            return None
        return deepcopy(data)

    def set(self, service_id: int, data: dict[int, list[Tier]]):
        self._entries[service_id] = (self._clock(), deepcopy(data))

    def invalidate(self, service_id: int):
        self._entries.pop(service_id, None)

    def clear(self):
        self._entries.clear()

    def __contains__(self, service_id: int) -> bool:
        return self.get(service_id) is not None
