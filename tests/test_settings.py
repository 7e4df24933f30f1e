import sys
import os
from pathlib import Path

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from tier_matrix.config import settings as settings_module
from tier_matrix.config.settings import Settings, get_settings, reset_settings


def test_defaults(tmp_path, monkeypatch):
    for name in list(os.environ):
        if name.startswith("TIER_MATRIX_"):
            monkeypatch.delenv(name)
    s = Settings.load(project_root=tmp_path)
    assert s.variants_csv == tmp_path / "data" / "variants.csv"
    assert s.tiers_csv == tmp_path / "data" / "tiers.csv"
    assert s.flush_batch_size == 5
    assert s.price_debounce_seconds == 1.0
    assert s.tiers_cache_ttl_seconds == 30.0
    assert s.discriminating_keys == ("type", "density")


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("TIER_MATRIX_DATA_DIR", str(tmp_path / "elsewhere"))
    monkeypatch.setenv("TIER_MATRIX_FLUSH_BATCH_SIZE", "2")
    monkeypatch.setenv("TIER_MATRIX_DISCRIMINATING_KEYS", "finish, size")
    monkeypatch.setenv("TIER_MATRIX_LOG_LEVEL", "debug")
    monkeypatch.setenv("TIER_MATRIX_PRICE_DEBOUNCE_SECONDS", "0.5")
    monkeypatch.setenv("TIER_MATRIX_API_BASE_URL", "http://pricing.internal:9000")
    s = Settings.load(project_root=tmp_path)
    assert s.tiers_csv == Path(tmp_path / "elsewhere" / "tiers.csv")
    assert s.flush_batch_size == 2
    assert s.discriminating_keys == ("finish", "size")
    assert s.log_level == "DEBUG"
    assert s.price_debounce_seconds == 0.5
    assert s.api_base_url == "http://pricing.internal:9000"


def test_get_settings_is_cached(monkeypatch):
    reset_settings()
    first = get_settings()
    assert get_settings() is first
    reset_settings()
    assert settings_module._settings is None
