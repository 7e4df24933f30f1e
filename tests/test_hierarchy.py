import pytest
import sys
import os

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from tier_matrix.engine.hierarchy import (
    VariantLevel, classify_level, find_orphans, group_by_type,
)
from tier_matrix.engine.models import Variant


def test_parent_id_means_level_two_regardless_of_other_keys():
    v = Variant(id=9, display_name="Cards", parameters={"parentVariantId": 7, "subType": "A", "type": "x"})
    assert v.parent_variant_id == 7
    assert "parentVariantId" not in v.parameters
    assert classify_level(v) == VariantLevel.SUB_VARIANT


def test_null_parent_id_is_not_level_two():
    v = Variant(id=9, display_name="Cards", parameters={"parentVariantId": None, "type": "Matte"})
    assert classify_level(v) == VariantLevel.VARIANT


@pytest.mark.parametrize("params, expected", [
    ({}, VariantLevel.TYPE),
    ({"color": "red"}, VariantLevel.TYPE),
    ({"type": "Matte"}, VariantLevel.VARIANT),
    ({"type": ""}, VariantLevel.VARIANT),
    ({"density": "350gsm", "color": "red"}, VariantLevel.VARIANT),
])
def test_classify_by_discriminating_keys(params, expected):
    assert classify_level(Variant(id=1, display_name="X", parameters=params)) == expected


def test_custom_discriminating_keys():
    v = Variant(id=1, display_name="X", parameters={"finish": "soft"})
    assert classify_level(v) == VariantLevel.TYPE
    assert classify_level(v, ("finish",)) == VariantLevel.VARIANT


def test_type_group_id_round_trips_through_wire_parameters():
    v = Variant(id=1, display_name="X", parameters={"typeGroupId": "cards", "type": "Matte"})
    assert v.type_group_id == "cards"
    assert v.group_key == "cards"
    assert v.wire_parameters() == {"type": "Matte", "typeGroupId": "cards"}


@pytest.fixture
def cards():
    return [
        Variant(id=1, display_name="Cards"),
        Variant(id=2, display_name="Cards", parameters={"type": "Matte"}),
        Variant(id=3, display_name="Cards", parameters={"type": "Gloss"}),
        Variant(id=4, display_name="Cards", parameters={"parentVariantId": 2, "corners": "round"}),
        Variant(id=5, display_name="Flyers"),
    ]


def test_group_by_type_builds_tree(cards):
    groups = group_by_type(cards)
    assert set(groups) == {"Cards", "Flyers"}

    group = groups["Cards"]
    assert group.root.id == 1
    assert [v.id for v in group.level1[1]] == [2, 3]
    assert [v.id for v in group.level2[2]] == [4]
    assert [(int(level), v.id) for level, v in group.rows()] == [(0, 1), (1, 2), (2, 4), (1, 3)]


def test_level_one_attaches_to_first_type_row_even_if_listed_first():
    variants = [
        Variant(id=2, display_name="Cards", parameters={"type": "Matte"}),
        Variant(id=1, display_name="Cards"),
        Variant(id=6, display_name="Cards"),
    ]
    group = group_by_type(variants)["Cards"]
    assert [v.id for v in group.level0] == [1, 6]
    assert [v.id for v in group.level1[1]] == [2]
    assert 6 not in group.level1


def test_missing_parent_is_dropped_from_tree_but_reported(cards):
    variants = [v for v in cards if v.id != 2]
    groups = group_by_type(variants)
    shown = [v.id for _, v in groups["Cards"].rows()]
    assert 4 not in shown
    assert [v.id for v in find_orphans(variants)] == [4]


def test_parent_in_other_group_is_orphan():
    variants = [
        Variant(id=1, display_name="Cards"),
        Variant(id=2, display_name="Cards", parameters={"type": "Matte"}),
        Variant(id=3, display_name="Flyers", parameters={"parentVariantId": 2}),
    ]
    assert [v.id for v in find_orphans(variants)] == [3]


def test_type_group_id_keeps_renamed_variants_together():
    variants = [
        Variant(id=1, display_name="Cards", type_group_id="g1"),
        Variant(id=2, display_name="Business Cards", parameters={"type": "Matte"}, type_group_id="g1"),
    ]
    groups = group_by_type(variants)
    assert list(groups) == ["g1"]
    assert [v.id for v in groups["g1"].level1[1]] == [2]
