"""
Variant Hierarchy Classifier.

Assigns each variant a structural level from its parameters and groups a flat
variant list into the type -> variant -> sub-variant tree the matrix renders.

Levels:
    0 - "type" row: no discriminating key, or an empty parameter set
    1 - "variant" row: has a discriminating key (value may be empty)
    2 - "sub-variant" row: has a parent_variant_id
"""
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional

from .models import Variant

logger = logging.getLogger(__name__)


DEFAULT_DISCRIMINATING_KEYS = ("type", "density")


class VariantLevel(IntEnum):
    TYPE = 0
    VARIANT = 1
    SUB_VARIANT = 2


@dataclass
class TypeGroup:
    """All variants sharing one group key, arranged by level."""
    key: str
    level0: list[Variant] = field(default_factory=list)
    level1: dict[int, list[Variant]] = field(default_factory=dict)  # level-0 id -> children
    level2: dict[int, list[Variant]] = field(default_factory=dict)  # level-1 id -> children

    @property
    def root(self) -> Optional[Variant]:
        return self.level0[0] if self.level0 else None

    def rows(self) -> list[tuple[VariantLevel, Variant]]:
        """Flatten the group in render order: each parent followed by its children."""
        out = []
        for root in self.level0:
            out.append((VariantLevel.TYPE, root))
            for child in self.level1.get(root.id, []):
                out.append((VariantLevel.VARIANT, child))
                for grandchild in self.level2.get(child.id, []):
                    out.append((VariantLevel.SUB_VARIANT, grandchild))
        return out


def classify_level(variant: Variant, discriminating_keys: Iterable[str] = DEFAULT_DISCRIMINATING_KEYS) -> VariantLevel:
    """Structural level of a variant; a pure function of its parameters."""
    if variant.parent_variant_id is not None:
        return VariantLevel.SUB_VARIANT
    params = variant.parameters or {}
    if params and any(key in params for key in discriminating_keys):
        return VariantLevel.VARIANT
    return VariantLevel.TYPE


def group_by_type(
    variants: Iterable[Variant],
    discriminating_keys: Iterable[str] = DEFAULT_DISCRIMINATING_KEYS,
) -> dict[str, TypeGroup]:
    """
    Group variants by group key (type_group_id, falling back to display name).

    Level-1 variants hang under the group's first level-0 variant. Level-2
    variants hang under the level-1 variant their parent_variant_id names and
    are left out when that parent is not in the group.
    """
    keys = tuple(discriminating_keys)
    variants = list(variants)
    grouped: dict[str, TypeGroup] = {}
    pending_level1: dict[str, list[Variant]] = {}
    pending_level2: dict[str, list[Variant]] = {}

    for variant in variants:
        group = grouped.setdefault(variant.group_key, TypeGroup(key=variant.group_key))
        level = classify_level(variant, keys)
        if level == VariantLevel.TYPE:
            group.level0.append(variant)
        elif level == VariantLevel.VARIANT:
            pending_level1.setdefault(group.key, []).append(variant)
        else:
            pending_level2.setdefault(group.key, []).append(variant)

    level1_ids: dict[str, set[int]] = {}
    for key, children in pending_level1.items():
        group = grouped[key]
        if group.root is None:
            logger.debug(f"Group '{key}' has no type row; {len(children)} variant row(s) not shown")
            continue
        group.level1.setdefault(group.root.id, []).extend(children)
        level1_ids[key] = {c.id for c in children}

    for key, children in pending_level2.items():
        group = grouped[key]
        for child in children:
            if child.parent_variant_id in level1_ids.get(key, set()):
                group.level2.setdefault(child.parent_variant_id, []).append(child)

    return grouped


def find_orphans(
    variants: Iterable[Variant],
    discriminating_keys: Iterable[str] = DEFAULT_DISCRIMINATING_KEYS,
) -> list[Variant]:
    """Variants present in the list but missing from the rendered hierarchy."""
    variants = list(variants)
    shown = {
        v.id
        for group in group_by_type(variants, discriminating_keys).values()
        for _, v in group.rows()
    }
    return [v for v in variants if v.id not in shown]
