import pytest
import sys
import os
from decimal import Decimal

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from tier_matrix.engine import range_algebra as ra
from tier_matrix.engine.models import PriceRange


def ranges(*pairs):
    return [PriceRange(min_qty=q, price=Decimal(str(p))) for q, p in pairs]


def as_pairs(rs):
    return [(r.min_qty, r.price) for r in rs]


@pytest.mark.parametrize("raw", [
    ranges((50, 4), (1, 5), (500, 3)),
    ranges((1, 5), (1, 9), (50, 4)),
    ranges((200, 1)),
    [],
])
def test_normalize_shape(raw):
    """Sorted, unique, contiguous, exactly one unbounded range (the last)."""
    result = ra.normalize(raw)
    mins = [r.min_qty for r in result]
    assert mins == sorted(set(mins))

    bounds = [ra.upper_bound(result, i) for i in range(len(result))]
    assert bounds.count(None) == 1
    assert bounds[-1] is None
    for i in range(len(result) - 1):
        assert bounds[i] + 1 == result[i + 1].min_qty


def test_normalize_empty_gives_default():
    assert as_pairs(ra.normalize([])) == [(1, Decimal("0"))]


def test_normalize_duplicate_keeps_first():
    result = ra.normalize(ranges((1, 5), (1, 9)))
    assert as_pairs(result) == [(1, Decimal("5"))]


def test_insert_boundary_inherits_price():
    result = ra.insert_boundary(ranges((1, 10)), 200)
    assert as_pairs(result) == [(1, Decimal("10")), (200, Decimal("10"))]


def test_insert_boundary_splits_containing_range():
    result = ra.insert_boundary(ranges((1, 5), (50, 4), (500, 3)), 100)
    assert as_pairs(result) == [
        (1, Decimal("5")), (50, Decimal("4")), (100, Decimal("4")), (500, Decimal("3")),
    ]


def test_insert_boundary_below_first_range():
    result = ra.insert_boundary(ranges((10, 7), (50, 4)), 5)
    assert as_pairs(result)[0] == (5, Decimal("7"))


@pytest.mark.parametrize("boundary", [1, 50, 75, 1000])
def test_insert_boundary_idempotent(boundary):
    base = ranges((1, 5), (50, 4), (500, 3))
    once = ra.insert_boundary(base, boundary)
    twice = ra.insert_boundary(once, boundary)
    assert once == twice


@pytest.mark.parametrize("boundary", [2, 75, 499, 501, 10000])
def test_insert_then_remove_round_trip(boundary):
    base = ranges((1, 5), (50, 4), (500, 3))
    inserted = ra.insert_boundary(base, boundary)
    restored = ra.remove_range(inserted, ra.find_index(inserted, boundary))
    assert restored == ra.normalize(base)


def test_insert_does_not_mutate_input():
    base = ranges((1, 5), (50, 4))
    snapshot = list(base)
    ra.insert_boundary(base, 20)
    assert base == snapshot


def test_remove_inner_range():
    result = ra.remove_range(ranges((1, 5), (50, 4), (500, 3)), 1)
    assert as_pairs(result) == [(1, Decimal("5")), (500, Decimal("3"))]


def test_remove_first_range_pulls_next_down_to_one():
    result = ra.remove_range(ranges((1, 5), (50, 4), (500, 3)), 0)
    assert as_pairs(result) == [(1, Decimal("4")), (500, Decimal("3"))]


def test_remove_last_range_extends_previous():
    result = ra.remove_range(ranges((1, 5), (50, 4)), 1)
    assert as_pairs(result) == [(1, Decimal("5"))]
    assert ra.upper_bound(result, 0) is None


def test_remove_never_drops_below_one_tier():
    single = ranges((1, 5))
    assert ra.remove_range(single, 0) == single

    rs = ranges((1, 5), (50, 4), (500, 3))
    for _ in range(5):
        rs = ra.remove_range(rs, 0)
    assert len(rs) == 1


@pytest.mark.parametrize("index", [-1, 3, 99])
def test_remove_bad_index_is_noop(index):
    base = ranges((1, 5), (50, 4), (500, 3))
    assert ra.remove_range(base, index) == base


def test_edit_boundary_moves_lower_bound():
    result = ra.edit_boundary(ranges((1, 5), (50, 4), (500, 3)), 1, 100)
    assert as_pairs(result) == [(1, Decimal("5")), (100, Decimal("4")), (500, Decimal("3"))]
    assert ra.upper_bound(result, 0) == 99


def test_edit_boundary_collision_is_noop():
    base = ranges((1, 5), (50, 4), (500, 3))
    assert ra.edit_boundary(base, 1, 500) == base


def test_edit_boundary_same_value_is_noop():
    base = ranges((1, 5), (50, 4))
    assert ra.edit_boundary(base, 1, 50) == base


def test_edit_boundary_past_neighbour_resorts():
    result = ra.edit_boundary(ranges((1, 5), (50, 4), (500, 3)), 1, 800)
    assert [r.min_qty for r in result] == [1, 500, 800]
    assert result[2].price == Decimal("4")


def test_update_price_touches_one_range():
    result = ra.update_price(ranges((1, 5), (50, 4)), 50, Decimal("3.5"))
    assert as_pairs(result) == [(1, Decimal("5")), (50, Decimal("3.5"))]


def test_with_bounds_rows():
    rows = ra.with_bounds(ranges((1, 5), (50, 4)))
    assert rows == [(1, 49, Decimal("5")), (50, None, Decimal("4"))]
