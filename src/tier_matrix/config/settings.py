"""
Centralized settings and path configuration for the tier matrix engine.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

ENV_PREFIX = 'TIER_MATRIX_'


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    # Walk up from this file to find the project root
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists() or (parent / 'data' / 'variants.csv').exists():
            return parent
    # Fallback to 3 levels up from src/tier_matrix/config
    return Path(__file__).resolve().parent.parent.parent.parent


def _env(name: str, default: str) -> str:
    return os.environ.get(f'{ENV_PREFIX}{name}', default)


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path

    # CSV tier store
    variants_csv: Path
    tiers_csv: Path

    # Remote tier store used by scripts/seed_demo.py --api
    api_base_url: str = 'http://127.0.0.1:8000'

    # Reconciler / editor knobs
    flush_batch_size: int = 5
    price_debounce_seconds: float = 1.0
    tiers_cache_ttl_seconds: float = 30.0

    # Parameter keys that make a variant a level-1 row
    discriminating_keys: tuple = ('type', 'density')

    log_level: str = 'INFO'

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and TIER_MATRIX_* environment variables."""
        root = project_root or get_project_root()
        data_dir = Path(_env('DATA_DIR', str(root / 'data')))

        keys = tuple(k.strip() for k in _env('DISCRIMINATING_KEYS', 'type,density').split(',') if k.strip())

        return cls(
            project_root=root,
            variants_csv=data_dir / 'variants.csv',
            tiers_csv=data_dir / 'tiers.csv',
            api_base_url=_env('API_BASE_URL', 'http://127.0.0.1:8000'),
            flush_batch_size=int(_env('FLUSH_BATCH_SIZE', '5')),
            price_debounce_seconds=float(_env('PRICE_DEBOUNCE_SECONDS', '1.0')),
            tiers_cache_ttl_seconds=float(_env('TIERS_CACHE_TTL_SECONDS', '30')),
            discriminating_keys=keys,
            log_level=_env('LOG_LEVEL', 'INFO').upper(),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Forget the cached settings (tests change the environment between loads)."""
    global _settings
    _settings = None
