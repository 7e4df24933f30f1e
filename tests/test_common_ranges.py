import pytest
import sys
import os
from decimal import Decimal

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from tier_matrix.engine.common_ranges import (
    calculate_common_ranges, column_boundary, explicit_cells, price_matrix,
)
from tier_matrix.engine.models import PriceRange, Tier, Variant


def variant(vid, name, prices):
    return Variant(
        id=vid,
        display_name=name,
        tiers=[Tier(min_quantity=q, price=p, id=vid * 100 + q) for q, p in prices],
    )


@pytest.fixture
def matrix():
    return [
        variant(1, "A", [(1, "10"), (50, "8")]),
        variant(2, "B", [(1, "12"), (100, "9")]),
    ]


def test_union_of_boundaries(matrix):
    columns = calculate_common_ranges(matrix)
    assert [c.min_qty for c in columns] == [1, 50, 100]
    assert [c.max_qty for c in columns] == [49, 99, None]


def test_accepts_plain_range_lists():
    columns = calculate_common_ranges([
        [PriceRange(1), PriceRange(50)],
        [PriceRange(1), PriceRange(100)],
    ])
    assert [c.min_qty for c in columns] == [1, 50, 100]


def test_empty_matrix_has_no_columns():
    assert calculate_common_ranges([]) == []


def test_projection_does_not_mutate(matrix):
    before = [v.min_quantities() for v in matrix]
    calculate_common_ranges(matrix)
    assert [v.min_quantities() for v in matrix] == before


def test_column_labels(matrix):
    labels = [c.label for c in calculate_common_ranges(matrix)]
    assert labels == ["1-49", "50-99", "from 100"]


def test_column_boundary(matrix):
    assert column_boundary(matrix, 2) == 100
    with pytest.raises(IndexError):
        column_boundary(matrix, 3)


def test_price_matrix_fills_implicit_zero(matrix):
    df = price_matrix(matrix)
    assert list(df.columns) == ["display_name", 1, 50, 100]
    assert df.loc[1, 50] == Decimal("8")
    assert df.loc[1, 100] == Decimal("0")
    assert df.loc[2, 50] == Decimal("0")
    assert df.loc[2, "display_name"] == "B"


def test_explicit_cells(matrix):
    mask = explicit_cells(matrix)
    assert bool(mask.loc[1, 50]) is True
    assert bool(mask.loc[1, 100]) is False
    assert bool(mask.loc[2, 100]) is True


def test_variant_max_quantity_is_derived(matrix):
    a = matrix[0]
    assert a.max_quantity(0) == 49
    assert a.max_quantity(1) is None
    a.tiers[1].min_quantity = 60
    assert a.max_quantity(0) == 59
