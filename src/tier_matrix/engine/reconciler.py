"""
Reconciler - brings a Tier Store in line with an edited working copy.

Resolution order for one flush:
1. Variant lifecycle: deletes, creates (parents before children), updates
2. Tier diff per variant, keyed by min_quantity: deletes, updates, creates

Calls go out in fixed-size batches; every call is awaited and reported
individually, so one failed call never hides the others and never lets the
flush pass as successful.

The reconciler writes store-assigned tier ids onto the working copy and folds
every successful call into the baseline it is given, so a retry after a
partial failure only repeats what actually failed.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

from .models import FlushReport, PriceChange, RangeChange, Tier, Variant, VariantChange
from ..services.tier_store import TierStore

logger = logging.getLogger(__name__)


DEFAULT_BATCH_SIZE = 5


@dataclass
class TierDiff:
    """Minimal set of tier operations for one variant."""
    creates: list[Tier] = field(default_factory=list)
    updates: list[tuple[Tier, Tier]] = field(default_factory=list)  # (persisted, working)
    deletes: list[Tier] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)

    def __len__(self) -> int:
        return len(self.creates) + len(self.updates) + len(self.deletes)


def plan_tier_diff(persisted: Iterable[Tier], working: Iterable[Tier]) -> TierDiff:
    """
    Compare two tier sets by min_quantity.

    creates: in working only. updates: in both with a different price.
    deletes: in persisted only.
    """
    persisted_by_qty = {t.min_quantity: t for t in persisted}
    working_by_qty = {t.min_quantity: t for t in working}

    diff = TierDiff()
    for qty in sorted(working_by_qty):
        tier = working_by_qty[qty]
        old = persisted_by_qty.get(qty)
        if old is None:
            diff.creates.append(tier)
        elif old.price != tier.price:
            diff.updates.append((old, tier))
    for qty in sorted(persisted_by_qty):
        if qty not in working_by_qty:
            diff.deletes.append(persisted_by_qty[qty])
    return diff


@dataclass
class _Operation:
    name: str
    variant_id: int
    min_qty: Optional[int]
    call: Callable[[], Awaitable[Any]]
    on_success: Callable[[Any], None] = lambda result: None


class Reconciler:
    """Diffs a working copy against its baseline and applies the difference."""

    def __init__(self, store: TierStore, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.store = store
        self.batch_size = batch_size

    async def reconcile(
        self,
        service_id: int,
        working: list[Variant],
        baseline: dict[int, Variant],
        range_changes: list[RangeChange],
        price_changes: list[PriceChange],
        variant_changes: list[VariantChange],
    ) -> FlushReport:
        """
        Apply all pending changes for one service.

        Args:
            service_id: Service that owns the matrix
            working: Edited variants (local ids for unsaved ones)
            baseline: Last persisted state by variant id; updated in place
            range_changes, price_changes, variant_changes: Pending changelists

        Returns:
            FlushReport with applied calls, failures and the local -> persisted id map
        """
        report = FlushReport(service_id=service_id)
        logger.info(
            f"Reconciling service {service_id}: {len(range_changes)} boundary op(s), "
            f"{len(price_changes)} price edit(s), {len(variant_changes)} variant change(s)"
        )

        await self._apply_variant_changes(service_id, working, baseline, variant_changes, report)
        await self._apply_tier_changes(service_id, working, baseline, report)

        if report.ok:
            logger.info(f"Service {service_id} reconciled: {len(report.applied)} call(s)")
        else:
            logger.warning(
                f"Service {service_id} reconciled with {len(report.failures)} failure(s) "
                f"out of {report.calls} call(s)"
            )
        return report

    # ---- variants ------------------------------------------------------

    def _mapped(self, variant_id: Optional[int], report: FlushReport) -> Optional[int]:
        if variant_id is None:
            return None
        return report.id_map.get(variant_id, variant_id)

    def _wire_parameters(self, change: VariantChange, report: FlushReport) -> dict:
        params = dict(change.parameters)
        parent = params.get("parentVariantId")
        if parent is not None:
            params["parentVariantId"] = self._mapped(int(parent), report)
        return params

    async def _apply_variant_changes(self, service_id, working, baseline, variant_changes, report):
        working_by_id = {v.id: v for v in working}

        deletes = [c for c in variant_changes if c.kind == "delete"]
        creates = [c for c in variant_changes if c.kind == "create"]
        updates = [c for c in variant_changes if c.kind == "update"]

        ops = [self._delete_variant_op(service_id, c, baseline) for c in deletes]
        await self._run_batched(ops, report)

        # Parents first: a create waits while its parent is itself a pending create
        pending = list(creates)
        while pending:
            pending_ids = {c.variant_id for c in pending}
            failed_ids = {f.variant_id for f in report.failures}
            ready, blocked = [], []
            for change in pending:
                parent = change.parameters.get("parentVariantId")
                parent = int(parent) if parent is not None else None
                if parent in failed_ids:
                    report.add_failure("create_variant", change.variant_id, None,
                                       RuntimeError(f"parent variant {parent} was not created"))
                elif parent in pending_ids:
                    blocked.append(change)
                else:
                    ready.append(change)
            if not ready:
                for change in blocked:
                    report.add_failure("create_variant", change.variant_id, None,
                                       RuntimeError("parent variant cycle"))
                break
            ops = [self._create_variant_op(service_id, c, working_by_id, baseline, report) for c in ready]
            await self._run_batched(ops, report)
            pending = blocked

        ops = [self._update_variant_op(service_id, c, baseline, report) for c in updates]
        await self._run_batched(ops, report)

    def _delete_variant_op(self, service_id, change, baseline) -> _Operation:
        def on_success(_):
            baseline.pop(change.variant_id, None)

        return _Operation(
            name="delete_variant",
            variant_id=change.variant_id,
            min_qty=None,
            call=lambda: self.store.delete_variant(service_id, change.variant_id),
            on_success=on_success,
        )

    def _create_variant_op(self, service_id, change, working_by_id, baseline, report) -> _Operation:
        params = self._wire_parameters(change, report)

        def on_success(created: Variant):
            report.id_map[change.variant_id] = created.id
            source = working_by_id.get(change.variant_id)
            persisted = created.copy()
            persisted.tiers = []
            if source is not None:
                persisted.sort_order = source.sort_order
            baseline[created.id] = persisted

        return _Operation(
            name="create_variant",
            variant_id=change.variant_id,
            min_qty=None,
            call=lambda: self.store.create_variant(
                service_id,
                display_name=change.display_name,
                parameters=params,
                sort_order=change.sort_order,
                is_active=True,
            ),
            on_success=on_success,
        )

    def _update_variant_op(self, service_id, change, baseline, report) -> _Operation:
        params = self._wire_parameters(change, report)

        def on_success(updated: Variant):
            old = baseline.get(change.variant_id)
            tiers = old.tiers if old is not None else []
            persisted = updated.copy()
            persisted.tiers = tiers
            baseline[change.variant_id] = persisted

        return _Operation(
            name="update_variant",
            variant_id=change.variant_id,
            min_qty=None,
            call=lambda: self.store.update_variant(
                service_id,
                change.variant_id,
                display_name=change.display_name,
                parameters=params,
            ),
            on_success=on_success,
        )

    # ---- tiers ---------------------------------------------------------

    async def _apply_tier_changes(self, service_id, working, baseline, report):
        failed_variants = {f.variant_id for f in report.failures if f.operation == "create_variant"}
        ops: list[_Operation] = []

        for variant in working:
            if variant.id in failed_variants:
                continue
            variant_id = self._mapped(variant.id, report)
            if variant_id < 0:
                # Never created (no create change reached the store)
                continue
            persisted = baseline.get(variant_id)
            diff = plan_tier_diff(persisted.tiers if persisted else [], variant.tiers)
            if diff.is_empty:
                continue
            if persisted is None:
                persisted = variant.copy()
                persisted.id = variant_id
                persisted.tiers = []
                baseline[variant_id] = persisted

            ops.extend(self._delete_tier_op(service_id, variant_id, t, persisted) for t in diff.deletes)
            ops.extend(self._update_tier_op(service_id, variant_id, old, new, persisted) for old, new in diff.updates)
            ops.extend(self._create_tier_op(service_id, variant_id, t, persisted) for t in diff.creates)

        await self._run_batched(ops, report)

    @staticmethod
    def _replace_persisted(persisted: Variant, tier: Tier):
        persisted.tiers = sorted(
            [t for t in persisted.tiers if t.min_quantity != tier.min_quantity] + [tier],
            key=lambda t: t.min_quantity,
        )

    def _delete_tier_op(self, service_id, variant_id, tier, persisted) -> _Operation:
        def on_success(_):
            persisted.tiers = [t for t in persisted.tiers if t.min_quantity != tier.min_quantity]

        return _Operation(
            name="delete_tier",
            variant_id=variant_id,
            min_qty=tier.min_quantity,
            call=lambda: self.store.delete_tier(service_id, tier.id),
            on_success=on_success,
        )

    def _update_tier_op(self, service_id, variant_id, old, new, persisted) -> _Operation:
        def on_success(updated: Tier):
            new.id = updated.id
            self._replace_persisted(persisted, updated)

        return _Operation(
            name="update_tier",
            variant_id=variant_id,
            min_qty=new.min_quantity,
            call=lambda: self.store.update_tier(service_id, variant_id, old.id, price=new.price),
            on_success=on_success,
        )

    def _create_tier_op(self, service_id, variant_id, tier, persisted) -> _Operation:
        def on_success(created: Tier):
            tier.id = created.id
            self._replace_persisted(persisted, created)

        return _Operation(
            name="create_tier",
            variant_id=variant_id,
            min_qty=tier.min_quantity,
            call=lambda: self.store.create_tier(
                service_id, variant_id, tier.min_quantity, tier.price, is_active=tier.is_active
            ),
            on_success=on_success,
        )

    # ---- execution -----------------------------------------------------

    async def _run_batched(self, ops: list[_Operation], report: FlushReport):
        """Run operations batch_size at a time; record each outcome."""
        for start in range(0, len(ops), self.batch_size):
            batch = ops[start:start + self.batch_size]
            results = await asyncio.gather(*(op.call() for op in batch), return_exceptions=True)
            for op, result in zip(batch, results):
                if isinstance(result, BaseException) and not isinstance(result, Exception):
                    raise result
                if isinstance(result, Exception):
                    logger.warning(
                        f"{op.name} failed for variant {op.variant_id}"
                        f"{'' if op.min_qty is None else f' @ {op.min_qty}'}: {result}"
                    )
                    report.add_failure(op.name, op.variant_id, op.min_qty, result)
                else:
                    op.on_success(result)
                    report.applied.append(
                        f"{op.name}:{op.variant_id}" if op.min_qty is None else f"{op.name}:{op.variant_id}@{op.min_qty}"
                    )
