"""Engine subpackage - range algebra, common ranges and variant hierarchy."""
from .models import Tier, Variant, PriceRange, CommonRange, FlushReport
from .common_ranges import calculate_common_ranges
from .hierarchy import classify_level, group_by_type, VariantLevel

__all__ = [
    'Tier', 'Variant', 'PriceRange', 'CommonRange', 'FlushReport',
    'calculate_common_ranges', 'classify_level', 'group_by_type', 'VariantLevel',
]
