"""
Local Edit Session - the in-memory working copy of one service's matrix.

Holds two states side by side: the baseline (what the store last confirmed)
and the working copy (what the operator sees). Boundary operations run
against every variant at once so all rows stay on the same columns. Edits are
recorded in three changelists and only reach the store on flush().
"""
import logging
from decimal import Decimal
from typing import Any, Iterable, Optional

import pandas as pd

from . import range_algebra
from .common_ranges import calculate_common_ranges, price_matrix
from .hierarchy import DEFAULT_DISCRIMINATING_KEYS, TypeGroup, find_orphans, group_by_type
from .models import (
    CommonRange,
    FlushReport,
    PriceChange,
    PriceRange,
    RangeChange,
    Tier,
    Variant,
    VariantChange,
    to_price,
)
from .reconciler import DEFAULT_BATCH_SIZE, Reconciler
from ..services.tier_store import TierStore
from ..services.tiers_cache import TiersCache

logger = logging.getLogger(__name__)


def _to_ranges(variant: Variant) -> list[PriceRange]:
    return [PriceRange(min_qty=t.min_quantity, price=t.price) for t in variant.tiers]


def _apply_ranges(variant: Variant, ranges: list[PriceRange]):
    """Rebuild a variant's tiers from ranges, keeping ids of unchanged boundaries."""
    existing = {t.min_quantity: t for t in variant.tiers}
    tiers = []
    for r in range_algebra.normalize(ranges):
        old = existing.get(r.min_qty)
        tiers.append(Tier(
            min_quantity=r.min_qty,
            price=r.price,
            id=old.id if old else None,
            is_active=old.is_active if old else True,
        ))
    variant.tiers = tiers


class LocalEditSession:
    """
    Single-writer edit session over one service's variant matrix.

    Usage:
        session = await LocalEditSession.open(store, service_id)
        session.add_boundary(50)
        session.set_price(variant_id, 50, "4.50")
        report = await session.flush()
    """

    def __init__(
        self,
        service_id: int,
        variants: Iterable[Variant],
        store: TierStore,
        cache: Optional[TiersCache] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        discriminating_keys: Iterable[str] = DEFAULT_DISCRIMINATING_KEYS,
    ):
        self.service_id = service_id
        self.store = store
        self.cache = cache
        self.discriminating_keys = tuple(discriminating_keys)
        self.reconciler = Reconciler(store, batch_size=batch_size)

        self._baseline: dict[int, Variant] = {v.id: v.copy() for v in variants}
        self._working: list[Variant] = []
        self._next_local_id = -1
        self._range_changes: list[RangeChange] = []
        self._price_changes: dict[tuple[int, int], PriceChange] = {}
        self._variant_changes: dict[int, VariantChange] = {}
        self._unsynced: set[tuple[int, Optional[int]]] = set()
        self._reset_working_copy()

    @classmethod
    async def open(cls, store: TierStore, service_id: int, cache: Optional[TiersCache] = None, **kwargs) -> 'LocalEditSession':
        """Load a service's variants and tiers from the store (tiers through the cache if given)."""
        variants = await store.list_variants(service_id)
        all_tiers = cache.get(service_id) if cache is not None else None
        if all_tiers is None:
            all_tiers = await store.list_all_tiers(service_id)
            if cache is not None:
                cache.set(service_id, all_tiers)
        for variant in variants:
            variant.tiers = sorted(all_tiers.get(variant.id, []), key=lambda t: t.min_quantity)
        logger.info(f"Opened edit session for service {service_id} with {len(variants)} variant(s)")
        return cls(service_id, variants, store, cache=cache, **kwargs)

    def _reset_working_copy(self):
        self._working = []
        for persisted in sorted(self._baseline.values(), key=lambda v: (v.sort_order, v.id)):
            variant = persisted.copy()
            _apply_ranges(variant, _to_ranges(variant))
            self._working.append(variant)

    # ---- read accessors ------------------------------------------------

    @property
    def variants(self) -> list[Variant]:
        return list(self._working)

    @property
    def baseline(self) -> dict[int, Variant]:
        return {vid: v.copy() for vid, v in self._baseline.items()}

    @property
    def common_ranges(self) -> list[CommonRange]:
        return calculate_common_ranges(self._working)

    @property
    def hierarchy(self) -> dict[str, TypeGroup]:
        return group_by_type(self._working, self.discriminating_keys)

    def orphans(self) -> list[Variant]:
        return find_orphans(self._working, self.discriminating_keys)

    def price_matrix(self) -> pd.DataFrame:
        return price_matrix(self._working)

    @property
    def range_changes(self) -> list[RangeChange]:
        return list(self._range_changes)

    @property
    def price_changes(self) -> list[PriceChange]:
        return list(self._price_changes.values())

    @property
    def variant_changes(self) -> list[VariantChange]:
        return list(self._variant_changes.values())

    @property
    def unsynced(self) -> set[tuple[int, Optional[int]]]:
        """Cells (variant_id, min_qty) the last flush failed to persist."""
        return set(self._unsynced)

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self._range_changes or self._price_changes or self._variant_changes or self._unsynced)

    def get_variant(self, variant_id: int) -> Optional[Variant]:
        for variant in self._working:
            if variant.id == variant_id:
                return variant
        return None

    def boundary_at(self, column_index: int) -> Optional[int]:
        columns = self.common_ranges
        if 0 <= column_index < len(columns):
            return columns[column_index].min_qty
        return None

    # ---- boundary operations -------------------------------------------

    def apply_boundary_op(self, op: RangeChange) -> bool:
        """
        Run one boundary operation against every variant.

        Returns False (and records nothing) when the operation is rejected:
        boundary below 1, unknown or colliding boundary, or a removal that
        would leave every affected variant without tiers.
        """
        if not self._working:
            logger.warning(f"Boundary {op.kind} ignored: service {self.service_id} has no variants")
            return False

        boundaries = {c.min_qty for c in self.common_ranges}

        if op.kind == "add":
            if op.boundary < 1:
                logger.warning(f"Boundary {op.boundary} rejected: must be >= 1")
                return False
            if all(v.tier_at(op.boundary) is not None for v in self._working):
                return False
            for variant in self._working:
                _apply_ranges(variant, range_algebra.insert_boundary(_to_ranges(variant), op.boundary))

        elif op.kind == "edit":
            new_boundary = op.new_boundary
            if op.boundary not in boundaries:
                logger.warning(f"Boundary {op.boundary} not found")
                return False
            if new_boundary is None or new_boundary < 1:
                logger.warning(f"Boundary {new_boundary} rejected: must be >= 1")
                return False
            if new_boundary == op.boundary:
                return False
            if new_boundary in boundaries:
                logger.warning(f"Boundary {new_boundary} rejected: already exists")
                return False
            for variant in self._working:
                ranges = _to_ranges(variant)
                index = range_algebra.find_index(ranges, op.boundary)
                if index != -1:
                    _apply_ranges(variant, range_algebra.edit_boundary(ranges, index, new_boundary))
            # Pending cell edits follow their tier to the new boundary
            self._price_changes = {
                (vid, new_boundary if qty == op.boundary else qty): (
                    PriceChange(vid, new_boundary, change.new_price) if qty == op.boundary else change
                )
                for (vid, qty), change in self._price_changes.items()
            }

        elif op.kind == "remove":
            if op.boundary not in boundaries:
                logger.warning(f"Boundary {op.boundary} not found")
                return False
            changed = False
            for variant in self._working:
                ranges = _to_ranges(variant)
                index = range_algebra.find_index(ranges, op.boundary)
                if index == -1:
                    continue
                updated = range_algebra.remove_range(ranges, index)
                if updated != ranges:
                    _apply_ranges(variant, updated)
                    changed = True
            if not changed:
                logger.warning(f"Boundary {op.boundary} rejected: it is the last tier of every variant")
                return False
            self._price_changes = {
                key: change for key, change in self._price_changes.items()
                if (self.get_variant(key[0]) and self.get_variant(key[0]).tier_at(key[1]) is not None)
            }

        else:
            raise ValueError(f"Unknown boundary operation: {op.kind}")

        self._range_changes.append(op)
        logger.debug(f"Applied boundary {op.kind} {op.boundary}{'' if op.new_boundary is None else f' -> {op.new_boundary}'}")
        return True

    def add_boundary(self, boundary: int) -> bool:
        return self.apply_boundary_op(RangeChange(kind="add", boundary=boundary))

    def edit_boundary(self, boundary: int, new_boundary: int) -> bool:
        return self.apply_boundary_op(RangeChange(kind="edit", boundary=boundary, new_boundary=new_boundary))

    def remove_boundary(self, boundary: int) -> bool:
        return self.apply_boundary_op(RangeChange(kind="remove", boundary=boundary))

    # ---- prices --------------------------------------------------------

    def set_price(self, variant_id: int, min_qty: int, price) -> bool:
        """
        Set one cell's price in the working copy.

        A missing tier at min_qty is inserted first (split from the range that
        contains it). Repeated edits of the same cell keep only the latest value.
        """
        variant = self.get_variant(variant_id)
        if variant is None:
            logger.warning(f"Price edit ignored: variant {variant_id} not in session")
            return False
        if min_qty < 1:
            logger.warning(f"Price edit ignored: min quantity {min_qty} must be >= 1")
            return False

        new_price = to_price(price)
        ranges = _to_ranges(variant)
        if range_algebra.find_index(ranges, min_qty) == -1:
            ranges = range_algebra.insert_boundary(ranges, min_qty)
        _apply_ranges(variant, range_algebra.update_price(ranges, min_qty, new_price))

        self._price_changes[(variant_id, min_qty)] = PriceChange(
            variant_id=variant_id, min_qty=min_qty, new_price=new_price
        )
        return True

    def get_price(self, variant_id: int, min_qty: int) -> Optional[Decimal]:
        variant = self.get_variant(variant_id)
        tier = variant.tier_at(min_qty) if variant else None
        return tier.price if tier else None

    def commit_cell(self, variant_id: int, tier: Tier):
        """Fold a tier the store just confirmed into both baseline and working copy."""
        variant = self.get_variant(variant_id)
        if variant is not None:
            current = variant.tier_at(tier.min_quantity)
            if current is not None:
                current.id = tier.id
        persisted = self._baseline.get(variant_id)
        if persisted is not None:
            persisted.tiers = sorted(
                [t for t in persisted.tiers if t.min_quantity != tier.min_quantity] + [Tier(
                    min_quantity=tier.min_quantity, price=tier.price, id=tier.id, is_active=tier.is_active
                )],
                key=lambda t: t.min_quantity,
            )
        key = (variant_id, tier.min_quantity)
        pending = self._price_changes.get(key)
        if pending is not None and pending.new_price == tier.price:
            del self._price_changes[key]
        self._unsynced.discard(key)

    def rollback_cell(self, variant_id: int, min_qty: int, original: Optional[Decimal]):
        """
        Restore one cell to a previously captured price.

        ``original`` None means the tier did not exist before the edit and is
        removed again.
        """
        self._price_changes.pop((variant_id, min_qty), None)
        variant = self.get_variant(variant_id)
        if variant is None:
            return
        if variant.tier_at(min_qty) is None:
            return
        if original is None:
            if len(variant.tiers) > 1:
                variant.tiers = [t for t in variant.tiers if t.min_quantity != min_qty]
        else:
            _apply_ranges(variant, range_algebra.update_price(_to_ranges(variant), min_qty, original))

    # ---- variant lifecycle ---------------------------------------------

    def _allocate_local_id(self) -> int:
        local_id = self._next_local_id
        self._next_local_id -= 1
        return local_id

    def create_variant(
        self,
        display_name: str,
        parameters: Optional[dict[str, Any]] = None,
        parent_variant_id: Optional[int] = None,
        type_group_id: Optional[str] = None,
    ) -> Variant:
        """Add a variant with one default tier; it gets a local (negative) id until flushed."""
        sort_order = max((v.sort_order for v in self._working), default=0) + 1
        variant = Variant(
            id=self._allocate_local_id(),
            display_name=display_name,
            parameters=dict(parameters or {}),
            sort_order=sort_order,
            tiers=[Tier(min_quantity=r.min_qty, price=r.price) for r in range_algebra.default_ranges()],
            parent_variant_id=parent_variant_id,
            type_group_id=type_group_id,
        )
        self._working.append(variant)
        self._variant_changes[variant.id] = VariantChange(
            kind="create",
            variant_id=variant.id,
            display_name=variant.display_name,
            parameters=variant.wire_parameters(),
            sort_order=sort_order,
        )
        logger.debug(f"Created local variant {variant.id} '{display_name}'")
        return variant

    def update_variant(
        self,
        variant_id: int,
        display_name: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Rename a variant and/or replace its parameter bag (wire form)."""
        variant = self.get_variant(variant_id)
        if variant is None:
            logger.warning(f"Update ignored: variant {variant_id} not in session")
            return False
        if display_name is not None:
            variant.display_name = display_name
        if parameters is not None:
            variant.set_parameters(parameters)

        pending = self._variant_changes.get(variant_id)
        kind = "create" if pending is not None and pending.kind == "create" else "update"
        self._variant_changes[variant_id] = VariantChange(
            kind=kind,
            variant_id=variant_id,
            display_name=variant.display_name,
            parameters=variant.wire_parameters(),
            sort_order=variant.sort_order,
        )
        return True

    def rename_type_group(self, group_key: str, new_name: str) -> int:
        """Rename every variant of a type-group; returns how many were renamed."""
        members = [v for v in self._working if v.group_key == group_key]
        for variant in members:
            self.update_variant(variant.id, display_name=new_name)
        return len(members)

    def delete_variant(self, variant_id: int) -> bool:
        """
        Remove a variant from the working copy at once.

        Children are not deleted; they drop out of the rendered hierarchy
        until their parent comes back. An unsaved variant simply disappears
        with its pending create.
        """
        variant = self.get_variant(variant_id)
        if variant is None:
            return False
        self._working = [v for v in self._working if v.id != variant_id]
        self._price_changes = {k: c for k, c in self._price_changes.items() if k[0] != variant_id}
        self._unsynced = {cell for cell in self._unsynced if cell[0] != variant_id}

        if variant.is_local:
            self._variant_changes.pop(variant_id, None)
        else:
            self._variant_changes[variant_id] = VariantChange(
                kind="delete",
                variant_id=variant_id,
                display_name=variant.display_name,
                parameters=variant.wire_parameters(),
                sort_order=variant.sort_order,
            )
        logger.debug(f"Deleted variant {variant_id}")
        return True

    # ---- persistence ---------------------------------------------------

    def _remap_ids(self, id_map: dict[int, int]):
        if not id_map:
            return
        for variant in self._working:
            if variant.id in id_map:
                variant.id = id_map[variant.id]
            if variant.parent_variant_id in id_map:
                variant.parent_variant_id = id_map[variant.parent_variant_id]
        self._price_changes = {
            (id_map.get(vid, vid), qty): PriceChange(id_map.get(vid, vid), qty, c.new_price)
            for (vid, qty), c in self._price_changes.items()
        }
        for change in self._variant_changes.values():
            parent = change.parameters.get("parentVariantId")
            if parent is not None and int(parent) in id_map:
                change.parameters["parentVariantId"] = id_map[int(parent)]

    async def flush(self) -> FlushReport:
        """
        Persist all pending edits.

        On success the changelists are cleared, the working copy becomes the
        new baseline and the tier cache entry is dropped. On failure the
        changelists stay (flush can be retried), the working copy is kept and
        failed cells are listed in ``unsynced``.
        """
        if not self.has_unsaved_changes:
            return FlushReport(service_id=self.service_id)

        report = await self.reconciler.reconcile(
            self.service_id,
            self._working,
            self._baseline,
            self.range_changes,
            self.price_changes,
            self.variant_changes,
        )
        self._remap_ids(report.id_map)

        if report.calls and self.cache is not None:
            self.cache.invalidate(self.service_id)

        if report.ok:
            self._range_changes.clear()
            self._price_changes.clear()
            self._variant_changes.clear()
            self._unsynced.clear()
            self._baseline = {v.id: v.copy() for v in self._working}
        else:
            failed = {(f.operation, f.variant_id) for f in report.failures}
            self._variant_changes = {
                vid: change for vid, change in self._variant_changes.items()
                if (f"{change.kind}_variant", vid) in failed
            }
            self._unsynced = report.unsynced
        return report

    def cancel(self):
        """Drop every pending edit and restore the last persisted baseline."""
        self._range_changes.clear()
        self._price_changes.clear()
        self._variant_changes.clear()
        self._unsynced.clear()
        self._reset_working_copy()
        logger.debug(f"Edit session for service {self.service_id} reset to baseline")
