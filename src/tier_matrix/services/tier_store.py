"""
Tier Store - persistence contract for variants and their tiers.

The engine only talks to a store through this interface. Two local adapters
live here: a dict-backed store used by tests and demos, and a CSV-backed
store that keeps variants.csv / tiers.csv next to the project.
"""
import json
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from ..engine.models import Tier, Variant, to_price

logger = logging.getLogger(__name__)


class TierStoreError(Exception):
    """A store call failed; the engine treats it as recoverable."""


class NotFoundError(TierStoreError, LookupError):
    """The addressed variant or tier does not exist."""


class TierStore(ABC):
    """Async persistence collaborator for the tier matrix engine."""

    @abstractmethod
    async def list_variants(self, service_id: int) -> list[Variant]:
        """Variants of a service, without tiers, ordered by sort_order."""

    @abstractmethod
    async def list_tiers_for_variant(self, service_id: int, variant_id: int) -> list[Tier]:
        """Tiers of one variant ordered by min_quantity."""

    async def list_all_tiers(self, service_id: int) -> dict[int, list[Tier]]:
        """
        Tiers of every variant in one call.

        Must be equivalent to calling list_tiers_for_variant for each variant;
        adapters override it only to save round trips.
        """
        result = {}
        for variant in await self.list_variants(service_id):
            result[variant.id] = await self.list_tiers_for_variant(service_id, variant.id)
        return result

    @abstractmethod
    async def create_variant(
        self,
        service_id: int,
        display_name: str,
        parameters: Optional[dict[str, Any]] = None,
        sort_order: int = 0,
        is_active: bool = True,
    ) -> Variant: ...

    @abstractmethod
    async def update_variant(
        self,
        service_id: int,
        variant_id: int,
        display_name: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
    ) -> Variant: ...

    @abstractmethod
    async def delete_variant(self, service_id: int, variant_id: int) -> None: ...

    @abstractmethod
    async def create_tier(
        self,
        service_id: int,
        variant_id: int,
        min_quantity: int,
        price: Decimal,
        is_active: bool = True,
    ) -> Tier: ...

    @abstractmethod
    async def update_tier(
        self,
        service_id: int,
        variant_id: int,
        tier_id: int,
        min_quantity: Optional[int] = None,
        price: Optional[Decimal] = None,
        is_active: Optional[bool] = None,
    ) -> Tier: ...

    @abstractmethod
    async def delete_tier(self, service_id: int, tier_id: int) -> None: ...


class InMemoryTierStore(TierStore):
    """
    Dict-backed store.

    Enforces the same constraints a database would: unique (variant,
    min_quantity) per tier, and deleting a variant deletes its tiers but not
    its child variants. Every call is appended to ``call_log``.
    """

    def __init__(self):
        self._variants: dict[int, dict] = {}
        self._tiers: dict[int, dict] = {}
        self._next_variant_id = 1
        self._next_tier_id = 1
        self.call_log: list[str] = []

    # ---- helpers -------------------------------------------------------

    def _variant_record(self, service_id: int, variant_id: int) -> dict:
        record = self._variants.get(variant_id)
        if record is None or record["service_id"] != service_id:
            raise NotFoundError(f"Variant {variant_id} not found for service {service_id}")
        return record

    def _tier_record(self, service_id: int, tier_id: int) -> dict:
        record = self._tiers.get(tier_id)
        if record is None or record["service_id"] != service_id:
            raise NotFoundError(f"Tier {tier_id} not found for service {service_id}")
        return record

    def _check_unique(self, variant_id: int, min_quantity: int, exclude_tier: Optional[int] = None):
        for tier_id, t in self._tiers.items():
            if tier_id != exclude_tier and t["variant_id"] == variant_id and t["min_quantity"] == min_quantity:
                raise TierStoreError(
                    f"Tier with min_quantity {min_quantity} already exists for variant {variant_id}"
                )

    @staticmethod
    def _to_variant(record: dict) -> Variant:
        return Variant(
            id=record["id"],
            display_name=record["display_name"],
            parameters=dict(record["parameters"]),
            sort_order=record["sort_order"],
            is_active=record["is_active"],
        )

    @staticmethod
    def _to_tier(record: dict) -> Tier:
        return Tier(
            id=record["id"],
            min_quantity=record["min_quantity"],
            price=record["price"],
            is_active=record["is_active"],
        )

    def _persist(self):
        """Hook for durable subclasses; called after every mutation."""

    # ---- reads ---------------------------------------------------------

    async def list_variants(self, service_id: int) -> list[Variant]:
        self.call_log.append("list_variants")
        records = [r for r in self._variants.values() if r["service_id"] == service_id]
        records.sort(key=lambda r: (r["sort_order"], r["id"]))
        return [self._to_variant(r) for r in records]

    async def list_tiers_for_variant(self, service_id: int, variant_id: int) -> list[Tier]:
        self.call_log.append("list_tiers_for_variant")
        self._variant_record(service_id, variant_id)
        records = [t for t in self._tiers.values() if t["variant_id"] == variant_id]
        return [self._to_tier(t) for t in sorted(records, key=lambda t: t["min_quantity"])]

    async def list_all_tiers(self, service_id: int) -> dict[int, list[Tier]]:
        self.call_log.append("list_all_tiers")
        result: dict[int, list[Tier]] = {
            vid: [] for vid, r in self._variants.items() if r["service_id"] == service_id
        }
        for t in sorted(self._tiers.values(), key=lambda t: t["min_quantity"]):
            if t["variant_id"] in result:
                result[t["variant_id"]].append(self._to_tier(t))
        return result

    # ---- variant writes ------------------------------------------------

    async def create_variant(self, service_id, display_name, parameters=None, sort_order=0, is_active=True) -> Variant:
        self.call_log.append("create_variant")
        record = {
            "id": self._next_variant_id,
            "service_id": service_id,
            "display_name": display_name,
            "parameters": dict(parameters or {}),
            "sort_order": sort_order,
            "is_active": is_active,
        }
        self._variants[record["id"]] = record
        self._next_variant_id += 1
        self._persist()
        return self._to_variant(record)

    async def update_variant(self, service_id, variant_id, display_name=None, parameters=None) -> Variant:
        self.call_log.append("update_variant")
        record = self._variant_record(service_id, variant_id)
        if display_name is not None:
            record["display_name"] = display_name
        if parameters is not None:
            record["parameters"] = dict(parameters)
        self._persist()
        return self._to_variant(record)

    async def delete_variant(self, service_id, variant_id) -> None:
        self.call_log.append("delete_variant")
        self._variant_record(service_id, variant_id)
        del self._variants[variant_id]
        self._tiers = {tid: t for tid, t in self._tiers.items() if t["variant_id"] != variant_id}
        self._persist()

    # ---- tier writes ---------------------------------------------------

    async def create_tier(self, service_id, variant_id, min_quantity, price, is_active=True) -> Tier:
        self.call_log.append("create_tier")
        self._variant_record(service_id, variant_id)
        self._check_unique(variant_id, min_quantity)
        record = {
            "id": self._next_tier_id,
            "service_id": service_id,
            "variant_id": variant_id,
            "min_quantity": int(min_quantity),
            "price": to_price(price),
            "is_active": is_active,
        }
        self._tiers[record["id"]] = record
        self._next_tier_id += 1
        self._persist()
        return self._to_tier(record)

    async def update_tier(self, service_id, variant_id, tier_id, min_quantity=None, price=None, is_active=None) -> Tier:
        self.call_log.append("update_tier")
        record = self._tier_record(service_id, tier_id)
        if record["variant_id"] != variant_id:
            raise NotFoundError(f"Tier {tier_id} does not belong to variant {variant_id}")
        if min_quantity is not None:
            self._check_unique(variant_id, min_quantity, exclude_tier=tier_id)
            record["min_quantity"] = int(min_quantity)
        if price is not None:
            record["price"] = to_price(price)
        if is_active is not None:
            record["is_active"] = is_active
        self._persist()
        return self._to_tier(record)

    async def delete_tier(self, service_id, tier_id) -> None:
        self.call_log.append("delete_tier")
        self._tier_record(service_id, tier_id)
        del self._tiers[tier_id]
        self._persist()


class CsvTierStore(InMemoryTierStore):
    """
    Store backed by two CSV files.

    variants.csv: id, service_id, display_name, parameters (JSON), sort_order, is_active
    tiers.csv:    id, service_id, variant_id, min_quantity, price, is_active
    """

    VARIANT_COLUMNS = ['id', 'service_id', 'display_name', 'parameters', 'sort_order', 'is_active']
    TIER_COLUMNS = ['id', 'service_id', 'variant_id', 'min_quantity', 'price', 'is_active']

    def __init__(self, variants_csv_path: Path, tiers_csv_path: Path):
        super().__init__()
        self.variants_csv_path = Path(variants_csv_path)
        self.tiers_csv_path = Path(tiers_csv_path)
        self._load()

    @staticmethod
    def _as_bool(value) -> bool:
        return str(value).strip().lower() in ('true', '1', 'yes')

    def _load(self):
        """Load both CSV files into memory; missing files mean an empty store."""
        if self.variants_csv_path.exists():
            df = pd.read_csv(self.variants_csv_path, dtype=str).fillna('')
            for _, row in df.iterrows():
                record = {
                    "id": int(row['id']),
                    "service_id": int(row['service_id']),
                    "display_name": row['display_name'],
                    "parameters": json.loads(row['parameters']) if row['parameters'] else {},
                    "sort_order": int(row['sort_order'] or 0),
                    "is_active": self._as_bool(row['is_active'] or 'true'),
                }
                self._variants[record["id"]] = record

        if self.tiers_csv_path.exists():
            df = pd.read_csv(self.tiers_csv_path, dtype=str).fillna('')
            for _, row in df.iterrows():
                record = {
                    "id": int(row['id']),
                    "service_id": int(row['service_id']),
                    "variant_id": int(row['variant_id']),
                    "min_quantity": int(row['min_quantity']),
                    "price": to_price(row['price'] or '0'),
                    "is_active": self._as_bool(row['is_active'] or 'true'),
                }
                self._tiers[record["id"]] = record

        self._next_variant_id = max(self._variants, default=0) + 1
        self._next_tier_id = max(self._tiers, default=0) + 1
        logger.info(
            f"Loaded {len(self._variants)} variant(s) and {len(self._tiers)} tier(s) "
            f"from {self.variants_csv_path.parent}"
        )

    def _persist(self):
        """Write both tables back to CSV."""
        self.variants_csv_path.parent.mkdir(parents=True, exist_ok=True)
        variants_df = pd.DataFrame(
            [
                {**r, "parameters": json.dumps(r["parameters"], ensure_ascii=False)}
                for r in sorted(self._variants.values(), key=lambda r: r["id"])
            ],
            columns=self.VARIANT_COLUMNS,
        )
        variants_df.to_csv(self.variants_csv_path, index=False)

        tiers_df = pd.DataFrame(
            [
                {**t, "price": str(t["price"])}
                for t in sorted(self._tiers.values(), key=lambda t: t["id"])
            ],
            columns=self.TIER_COLUMNS,
        )
        tiers_df.to_csv(self.tiers_csv_path, index=False)
