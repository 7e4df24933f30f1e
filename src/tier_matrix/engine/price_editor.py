"""
Debounced Price Editor - per-cell price editing with a quiet period.

Each edit updates the session's working copy at once. Persisting waits until
the cell has been quiet for ``delay`` seconds, so a burst of keystrokes sends a
single create-or-update call carrying the last value. A failed call rolls the
cell back to the value it had when the burst started.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Callable, Optional

from .edit_session import LocalEditSession
from .models import OperationFailure, to_price
from ..config.settings import get_settings
from ..services.tier_store import TierStore

logger = logging.getLogger(__name__)


_MISSING = object()

CellKey = tuple[int, int]


class DebouncedPriceEditor:
    """Debounced create-or-update path for single matrix cells."""

    def __init__(
        self,
        session: LocalEditSession,
        store: Optional[TierStore] = None,
        delay: Optional[float] = None,
        on_error: Optional[Callable[[OperationFailure], None]] = None,
    ):
        self.session = session
        self.store = store or session.store
        self.delay = get_settings().price_debounce_seconds if delay is None else delay
        self.on_error = on_error
        self.errors: list[OperationFailure] = []

        self._timers: dict[CellKey, asyncio.Task] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._originals: dict[CellKey, Optional[Decimal]] = {}
        self._latest: dict[CellKey, Decimal] = {}

    @property
    def pending(self) -> set[CellKey]:
        """Cells waiting for their quiet period to end."""
        return set(self._timers)

    def edit(self, variant_id: int, min_qty: int, price) -> bool:
        """
        Record a keystroke-level edit. Must be called from a running event loop.

        Cells of variants that were never saved are only changed locally; the
        session flush creates them together with their variant.
        """
        key = (variant_id, min_qty)
        new_price = to_price(price)
        fresh_burst = key not in self._originals
        if fresh_burst:
            self._originals[key] = self.session.get_price(variant_id, min_qty)

        if not self.session.set_price(variant_id, min_qty, new_price):
            if fresh_burst:
                del self._originals[key]
            return False

        variant = self.session.get_variant(variant_id)
        if variant.is_local:
            self._originals.pop(key, None)
            return True

        self._latest[key] = new_price
        self._restart_timer(key)
        return True

    def _restart_timer(self, key: CellKey):
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._timers[key] = asyncio.get_running_loop().create_task(self._wait_and_persist(key))

    async def _wait_and_persist(self, key: CellKey):
        await asyncio.sleep(self.delay)
        task = self._timers.pop(key, None)
        if task is not None:
            self._in_flight.add(task)
        try:
            await self._persist(key)
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def _persist(self, key: CellKey):
        variant_id, min_qty = key
        original = self._originals.pop(key, _MISSING)
        price = self._latest.pop(key, None)
        if original is _MISSING or price is None:
            return

        variant = self.session.get_variant(variant_id)
        tier = variant.tier_at(min_qty) if variant is not None else None
        if tier is None:
            # Variant deleted or boundary removed during the quiet period
            return

        service_id = self.session.service_id
        try:
            if tier.id is not None:
                saved = await self.store.update_tier(service_id, variant_id, tier.id, price=price)
            else:
                saved = await self.store.create_tier(
                    service_id, variant_id, min_qty, price, is_active=tier.is_active
                )
        except Exception as e:
            self._fail(key, original, e)
            return

        logger.debug(f"Saved price {price} for variant {variant_id} @ {min_qty}")
        self.session.commit_cell(variant_id, saved)

    def _fail(self, key: CellKey, original: Optional[Decimal], error: Exception):
        variant_id, min_qty = key
        logger.warning(f"Price save failed for variant {variant_id} @ {min_qty}: {error}")

        if key in self._timers:
            # A newer burst already started from the unsaved value; it inherits our original
            self._originals[key] = original
        else:
            self.session.rollback_cell(variant_id, min_qty, original)

        failure = OperationFailure(
            operation="save_price",
            variant_id=variant_id,
            min_qty=min_qty,
            error=str(error),
        )
        self.errors.append(failure)
        if self.on_error is not None:
            self.on_error(failure)

    async def flush_pending(self):
        """Persist every waiting cell now and wait for calls already in flight."""
        keys = list(self._timers)
        for key in keys:
            self._timers.pop(key).cancel()
        in_flight = list(self._in_flight)
        await asyncio.gather(*(self._persist(key) for key in keys), *in_flight)

    def cancel_all(self):
        """Stop every waiting timer; the local edits stay in the session."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._originals.clear()
        self._latest.clear()
