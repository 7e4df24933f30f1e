"""
Common-Boundary Projector - the shared column layout of a matrix.

Every distinct min_quantity observed across all tiers of all variants becomes a
column. Nothing here mutates a variant; results are recomputed on every change.
"""
from decimal import Decimal
from typing import Iterable, Union

import pandas as pd

from .models import CommonRange, PriceRange, Variant


def _boundaries(source: Union[Variant, Iterable[PriceRange]]) -> list[int]:
    if isinstance(source, Variant):
        return source.min_quantities()
    return [r.min_qty for r in source]


def calculate_common_ranges(sources: Iterable[Union[Variant, Iterable[PriceRange]]]) -> list[CommonRange]:
    """
    Union of all boundaries, sorted, each paired with its derived max_qty.

    Accepts variants or plain range lists.
    """
    all_min_qtys: set[int] = set()
    for source in sources:
        all_min_qtys.update(_boundaries(source))

    sorted_min_qtys = sorted(all_min_qtys)
    return [
        CommonRange(
            min_qty=min_qty,
            max_qty=sorted_min_qtys[idx + 1] - 1 if idx < len(sorted_min_qtys) - 1 else None,
        )
        for idx, min_qty in enumerate(sorted_min_qtys)
    ]


def column_boundary(variants: Iterable[Variant], column_index: int) -> int:
    """min_qty of the common column at ``column_index``; raises IndexError if absent."""
    columns = calculate_common_ranges(variants)
    if column_index < 0 or column_index >= len(columns):
        raise IndexError(f"No common range at index {column_index}")
    return columns[column_index].min_qty


def price_matrix(variants: list[Variant]) -> pd.DataFrame:
    """
    Pivot the matrix into a variant x boundary DataFrame.

    Rows are indexed by variant id and carry the display name; one column per
    common boundary. A variant without a tier at a shared boundary shows an
    implicit zero price there.
    """
    columns = calculate_common_ranges(variants)
    records = []
    for variant in variants:
        row = {"variant_id": variant.id, "display_name": variant.display_name}
        for col in columns:
            tier = variant.tier_at(col.min_qty)
            row[col.min_qty] = tier.price if tier else Decimal("0")
        records.append(row)

    df = pd.DataFrame(records, columns=["variant_id", "display_name"] + [c.min_qty for c in columns])
    return df.set_index("variant_id")


def explicit_cells(variants: list[Variant]) -> pd.DataFrame:
    """Boolean frame aligned with price_matrix: True where the variant defines the tier."""
    columns = calculate_common_ranges(variants)
    data = {
        variant.id: {col.min_qty: variant.tier_at(col.min_qty) is not None for col in columns}
        for variant in variants
    }
    df = pd.DataFrame.from_dict(data, orient="index", columns=[c.min_qty for c in columns])
    df.index.name = "variant_id"
    return df
