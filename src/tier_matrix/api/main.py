from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import sys
from pathlib import Path

# Add src to path for internal imports
src_path = Path(__file__).parent.parent.parent
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from tier_matrix import __version__
from tier_matrix.config.settings import get_settings
from tier_matrix.api.variants_api import router as variants_router
from tier_matrix.api.state import get_store
from tier_matrix.utils.logger import setup_logging

setup_logging(get_settings().log_level)

app = FastAPI(
    title="Tier Matrix API",
    description="Variant and volume-tier storage for the pricing matrix editor",
    version=__version__
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include variants / tiers API
app.include_router(variants_router)


@app.get("/")
async def root():
    return {"status": "online", "message": "Tier Matrix API Active"}


@app.get("/system/status")
async def get_status():
    settings = get_settings()
    store = get_store()
    return {
        "store": type(store).__name__,
        "flush_batch_size": settings.flush_batch_size,
        "tiers_cache_ttl_seconds": settings.tiers_cache_ttl_seconds,
        "variants_csv_exists": settings.variants_csv.exists(),
    }
