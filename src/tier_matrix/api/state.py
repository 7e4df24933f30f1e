"""
Shared API state: the tier store every router talks to.
"""
import logging
from typing import Optional

from ..config.settings import get_settings
from ..services.tier_store import CsvTierStore, TierStore

logger = logging.getLogger(__name__)

_store: Optional[TierStore] = None


def get_store() -> TierStore:
    """Get the process-wide store, opening the CSV store on first use."""
    global _store
    if _store is None:
        settings = get_settings()
        _store = CsvTierStore(settings.variants_csv, settings.tiers_csv)
        logger.info(f"API using CSV store at {settings.variants_csv.parent}")
    return _store


def set_store(store: Optional[TierStore]):
    """Swap the store (tests, alternative backends); None re-opens the CSV store lazily."""
    global _store
    _store = store
