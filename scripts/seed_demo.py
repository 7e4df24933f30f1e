#!/usr/bin/env python
"""
Seed a demo pricing matrix.

Builds one service's variants and breakpoints through an edit session and
flushes it to the CSV store (default) or to a running API (--api or --api-url).

Usage:
    python scripts/seed_demo.py [--service-id 1] [--api | --api-url http://127.0.0.1:8000]
"""
import argparse
import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from tier_matrix.config.settings import get_settings
from tier_matrix.engine.edit_session import LocalEditSession
from tier_matrix.services.http_store import HttpTierStore
from tier_matrix.services.tier_store import CsvTierStore
from tier_matrix.utils.logger import setup_logging


# (type row, [(variant name params, {breakpoint: price}), ...])
DEMO_MATRIX = [
    ("Business Cards", [
        ({"type": "Matte", "density": "350gsm"}, {1: "0.90", 100: "0.45", 500: "0.20"}),
        ({"type": "Gloss", "density": "350gsm"}, {1: "1.00", 100: "0.50", 500: "0.25"}),
    ]),
    ("Flyers A5", [
        ({"type": "Recycled", "density": "130gsm"}, {1: "0.60", 100: "0.30", 500: "0.12"}),
    ]),
]


async def seed(store, service_id: int):
    settings = get_settings()
    session = await LocalEditSession.open(
        store,
        service_id,
        batch_size=settings.flush_batch_size,
        discriminating_keys=settings.discriminating_keys,
    )
    if session.variants:
        print(f"Service {service_id} already has {len(session.variants)} variant(s); nothing to do.")
        return None

    for name, children in DEMO_MATRIX:
        session.create_variant(name)
        for params, prices in children:
            child = session.create_variant(name, params)
            for boundary, price in prices.items():
                session.add_boundary(boundary)
                session.set_price(child.id, boundary, price)

    # One sub-variant under the first business card variant
    matte = next(v for v in session.variants if v.parameters.get("type") == "Matte")
    rounded = session.create_variant("Business Cards", {"corners": "rounded"}, parent_variant_id=matte.id)
    for column in session.common_ranges:
        base = matte.tier_at(column.min_qty)
        session.set_price(rounded.id, column.min_qty, (base.price if base else Decimal("0")) + Decimal("0.05"))

    return await session.flush()


async def run(args):
    settings = get_settings()
    api_url = args.api_url or (settings.api_base_url if args.api else None)
    if api_url:
        async with HttpTierStore(api_url) as store:
            return await seed(store, args.service_id)
    return await seed(CsvTierStore(settings.variants_csv, settings.tiers_csv), args.service_id)


def main():
    parser = argparse.ArgumentParser(description="Seed a demo tier matrix")
    parser.add_argument("--service-id", type=int, default=1)
    parser.add_argument("--api", action="store_true", help="Seed through the REST API at TIER_MATRIX_API_BASE_URL")
    parser.add_argument("--api-url", help="Seed through the REST API instead of the CSV files")
    args = parser.parse_args()

    setup_logging(get_settings().log_level)

    print("=" * 60)
    print("TIER MATRIX DEMO SEED")
    print("=" * 60)
    print()

    report = asyncio.run(run(args))
    if report is None:
        return

    print(report.get_summary_text())
    print()
    if not report.ok:
        print("❌ SEED INCOMPLETE")
        sys.exit(1)
    print("=" * 60)
    print("✅ SEED COMPLETE")
    print("=" * 60)


if __name__ == "__main__":
    main()
