"""
Data models for the tier matrix engine.

Uses dataclasses for structured, type-safe data representation.
"""
from copy import deepcopy
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


# Wire keys carried inside the variant parameter bag
PARENT_KEY = "parentVariantId"
TYPE_GROUP_KEY = "typeGroupId"


def to_price(value) -> Decimal:
    """Coerce a user or wire value to a non-negative Decimal price."""
    if isinstance(value, Decimal):
        price = value
    else:
        try:
            price = Decimal(str(value).strip() or "0")
        except InvalidOperation:
            raise ValueError(f"Invalid price: {value!r}")
    if not price.is_finite():
        raise ValueError(f"Price must be a finite number, got {value!r}")
    if price < 0:
        raise ValueError(f"Price must be >= 0, got {price}")
    return price


@dataclass(frozen=True)
class PriceRange:
    """One breakpoint of a tier list as seen by the range algebra."""
    min_qty: int
    price: Decimal = Decimal("0")


@dataclass(frozen=True)
class CommonRange:
    """A shared column of the matrix; max_qty is None for the last column."""
    min_qty: int
    max_qty: Optional[int] = None

    @property
    def label(self) -> str:
        if self.max_qty is None:
            return f"from {self.min_qty}"
        return f"{self.min_qty}-{self.max_qty}"


@dataclass
class Tier:
    """A persisted or pending price at one quantity breakpoint."""
    min_quantity: int = 1
    price: Decimal = Decimal("0")
    id: Optional[int] = None  # None = not yet saved
    is_active: bool = True

    def __post_init__(self):
        self.price = to_price(self.price)
        self.min_quantity = int(self.min_quantity)

    def to_payload(self) -> dict:
        return {
            "minQuantity": self.min_quantity,
            "price": str(self.price),
            "isActive": self.is_active,
        }

    @classmethod
    def from_payload(cls, data: dict) -> 'Tier':
        """Create a Tier from a store/API record (camelCase or snake_case keys)."""
        return cls(
            id=data.get("id"),
            min_quantity=int(data.get("minQuantity", data.get("min_quantity", 1))),
            price=to_price(data.get("price", data.get("rate", 0))),
            is_active=bool(data.get("isActive", data.get("is_active", True))),
        )


@dataclass
class Variant:
    """
    One row of the pricing matrix.

    ``parent_variant_id`` and ``type_group_id`` travel inside ``parameters`` on
    the wire; on construction they are lifted out of the parameter bag so the
    hierarchy code never has to read untyped keys.
    """
    id: int
    display_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    sort_order: int = 0
    is_active: bool = True
    tiers: list[Tier] = field(default_factory=list)
    parent_variant_id: Optional[int] = None
    type_group_id: Optional[str] = None

    def __post_init__(self):
        parent, group = self.parent_variant_id, self.type_group_id
        self.set_parameters(self.parameters)
        if parent is not None:
            self.parent_variant_id = parent
        if group is not None:
            self.type_group_id = group

    def set_parameters(self, parameters: Optional[dict[str, Any]]):
        """Replace the parameter bag (wire form); the typed edges follow the bag."""
        params = dict(parameters or {})
        raw_parent = params.pop(PARENT_KEY, None)
        self.parent_variant_id = int(raw_parent) if raw_parent not in (None, "") else None
        raw_group = params.pop(TYPE_GROUP_KEY, None)
        self.type_group_id = str(raw_group) if raw_group not in (None, "") else None
        self.parameters = params

    @property
    def is_local(self) -> bool:
        """True for variants created in an edit session and not yet persisted."""
        return self.id < 0

    @property
    def group_key(self) -> str:
        return self.type_group_id or self.display_name

    def min_quantities(self) -> list[int]:
        return [t.min_quantity for t in self.tiers]

    def tier_at(self, min_qty: int) -> Optional[Tier]:
        for tier in self.tiers:
            if tier.min_quantity == min_qty:
                return tier
        return None

    def max_quantity(self, index: int) -> Optional[int]:
        """Upper bound of tier ``index``, derived from the next tier (None = unbounded)."""
        if index < len(self.tiers) - 1:
            return self.tiers[index + 1].min_quantity - 1
        return None

    def wire_parameters(self) -> dict[str, Any]:
        """Parameter bag as stored remotely, with the typed edges folded back in."""
        params = dict(self.parameters)
        if self.parent_variant_id is not None:
            params[PARENT_KEY] = self.parent_variant_id
        if self.type_group_id is not None:
            params[TYPE_GROUP_KEY] = self.type_group_id
        return params

    def to_payload(self) -> dict:
        return {
            "displayName": self.display_name,
            "parameters": self.wire_parameters(),
            "sortOrder": self.sort_order,
            "isActive": self.is_active,
        }

    def copy(self) -> 'Variant':
        return deepcopy(self)

    @classmethod
    def from_payload(cls, data: dict, tiers: Optional[list[Tier]] = None) -> 'Variant':
        """Create a Variant from a store/API record."""
        return cls(
            id=int(data["id"]),
            display_name=data.get("displayName", data.get("variantName", "")),
            parameters=dict(data.get("parameters") or {}),
            sort_order=int(data.get("sortOrder", 0) or 0),
            is_active=bool(data.get("isActive", True)),
            tiers=list(tiers or []),
        )


@dataclass
class RangeChange:
    """A pending boundary operation applied to every variant."""
    kind: str  # "add", "edit" or "remove"
    boundary: int
    new_boundary: Optional[int] = None


@dataclass
class PriceChange:
    """A pending price edit for one cell."""
    variant_id: int
    min_qty: int
    new_price: Decimal


@dataclass
class VariantChange:
    """A pending variant lifecycle change, payload captured at time of edit."""
    kind: str  # "create", "update" or "delete"
    variant_id: int
    display_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    sort_order: int = 0


@dataclass
class OperationFailure:
    """A single store call that did not succeed during a flush."""
    operation: str
    variant_id: int
    min_qty: Optional[int]
    error: str


@dataclass
class FlushReport:
    """Outcome of one reconciliation pass."""
    service_id: int
    applied: list[str] = field(default_factory=list)
    failures: list[OperationFailure] = field(default_factory=list)
    id_map: dict[int, int] = field(default_factory=dict)  # local id -> persisted id

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def calls(self) -> int:
        return len(self.applied) + len(self.failures)

    @property
    def unsynced(self) -> set[tuple[int, Optional[int]]]:
        """(variant_id, min_qty) cells still out of sync; min_qty None = whole variant."""
        return {(f.variant_id, f.min_qty) for f in self.failures}

    def add_failure(self, operation: str, variant_id: int, min_qty: Optional[int], error: Exception):
        self.failures.append(OperationFailure(
            operation=operation,
            variant_id=variant_id,
            min_qty=min_qty,
            error=str(error),
        ))

    def get_summary_text(self) -> str:
        """Get human-readable summary as formatted text."""
        lines = [f"• Applied: {len(self.applied)} operation(s)"]
        for f in self.failures:
            cell = f"variant {f.variant_id}" if f.min_qty is None else f"variant {f.variant_id} @ {f.min_qty}"
            lines.append(f"• Failed {f.operation} ({cell}): {f.error}")
        return "\n".join(lines)
