"""
Range Algebra - pure operations over one variant's tier list.

A tier list is a sequence of PriceRange(min_qty, price). Upper bounds are never
stored: the upper bound of range i is the next range's min_qty - 1, and the last
range is unbounded. Every function returns a new list and leaves its input alone.

Operations:
- normalize: sort, dedupe, fall back to the single default range
- insert_boundary: split the range containing a boundary, both halves keep the price
- edit_boundary: move one range's lower bound
- remove_range: drop one range, its neighbour absorbs the gap
"""
from dataclasses import replace
from decimal import Decimal
from typing import Iterable, Optional

from .models import PriceRange


DEFAULT_MIN_QTY = 1


def default_ranges() -> list[PriceRange]:
    """The tier list every new variant starts with: from 1, unbounded, price 0."""
    return [PriceRange(min_qty=DEFAULT_MIN_QTY, price=Decimal("0"))]


def normalize(ranges: Iterable[PriceRange]) -> list[PriceRange]:
    """
    Sort ranges by min_qty and drop duplicate boundaries (first one wins).

    An empty input yields the default range, so a tier list is never empty.
    """
    result: list[PriceRange] = []
    seen: set[int] = set()
    for r in sorted(ranges, key=lambda r: r.min_qty):
        if r.min_qty in seen:
            continue
        seen.add(r.min_qty)
        result.append(r)
    return result or default_ranges()


def upper_bound(ranges: list[PriceRange], index: int) -> Optional[int]:
    """Derived max_qty for ranges[index] of a normalized list (None = unbounded)."""
    if index < len(ranges) - 1:
        return ranges[index + 1].min_qty - 1
    return None


def with_bounds(ranges: Iterable[PriceRange]) -> list[tuple[int, Optional[int], Decimal]]:
    """Rows of (min_qty, max_qty, price) for rendering."""
    normalized = normalize(ranges)
    return [(r.min_qty, upper_bound(normalized, i), r.price) for i, r in enumerate(normalized)]


def find_index(ranges: list[PriceRange], min_qty: int) -> int:
    """Index of the range starting at min_qty, or -1."""
    for i, r in enumerate(ranges):
        if r.min_qty == min_qty:
            return i
    return -1


def insert_boundary(ranges: Iterable[PriceRange], boundary: int) -> list[PriceRange]:
    """
    Split the range containing ``boundary`` so a new range starts there.

    Both halves inherit the original range's price. A boundary past the last
    range splits the unbounded tail; a boundary below the first range adds a
    leading range priced like the first one. Re-inserting an existing boundary
    is a no-op. Callers reject boundary < 1 before getting here.
    """
    current = normalize(ranges)
    if find_index(current, boundary) != -1:
        return current

    if boundary < current[0].min_qty:
        return normalize([PriceRange(min_qty=boundary, price=current[0].price)] + current)

    target = current[-1]
    for i, r in enumerate(current):
        max_qty = upper_bound(current, i)
        if r.min_qty <= boundary and (max_qty is None or boundary <= max_qty):
            target = r
            break

    return normalize(current + [PriceRange(min_qty=boundary, price=target.price)])


def edit_boundary(ranges: Iterable[PriceRange], index: int, new_boundary: int) -> list[PriceRange]:
    """
    Move the lower bound of ranges[index] to ``new_boundary``.

    No-op when the index is out of range, when the value is unchanged, or when
    another range already starts at ``new_boundary``. The previous range's
    upper bound follows automatically since it is derived.
    """
    current = normalize(ranges)
    if index < 0 or index >= len(current):
        return current
    if any(i != index and r.min_qty == new_boundary for i, r in enumerate(current)):
        return current
    if current[index].min_qty == new_boundary:
        return current

    edited = list(current)
    edited[index] = replace(current[index], min_qty=new_boundary)
    return normalize(edited)


def remove_range(ranges: Iterable[PriceRange], index: int) -> list[PriceRange]:
    """
    Delete ranges[index], letting a neighbour absorb its quantities.

    Removing an inner or last range extends the previous one. Removing the
    first range pulls the next range's lower bound down to 1. A list with a
    single range is returned unchanged.
    """
    current = normalize(ranges)
    if len(current) <= 1 or index < 0 or index >= len(current):
        return current

    remaining = list(current)
    if index == 0:
        remaining[1] = replace(remaining[1], min_qty=DEFAULT_MIN_QTY)
    del remaining[index]
    return normalize(remaining)


def update_price(ranges: Iterable[PriceRange], min_qty: int, price: Decimal) -> list[PriceRange]:
    """Set the price of the range starting at min_qty; other ranges untouched."""
    return [replace(r, price=price) if r.min_qty == min_qty else r for r in normalize(ranges)]
