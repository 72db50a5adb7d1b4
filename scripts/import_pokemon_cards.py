#!/usr/bin/env python3
"""Import Pokemon cards for every catalog set that has none yet.

Usage:
    python scripts/import_pokemon_cards.py [--language en] [--set "Base Set"] [--limit 5]
"""
import argparse
import asyncio
import os

from dotenv import load_dotenv

# Load .env before importing project modules so their settings pick it up
load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))
load_dotenv()  # also load from current working directory as fallback

from slabmarket.etl.importer import CardStoreError, ImportOptions, run_import
from slabmarket.utils.logger import etl_logger


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import Pokemon TCG cards into the catalog")
    parser.add_argument("--language", help="Only import sets in this language (e.g. en)")
    parser.add_argument("--set", dest="set_filter", help="Only import the set with this name")
    parser.add_argument("--limit", type=int, help="Import at most this many sets")
    return parser.parse_args(argv)


def require_env() -> None:
    if not os.environ.get("SUPABASE_URL") or not (
        os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get("SUPABASE_SERVICE_KEY")
    ):
        raise SystemExit("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY environment variables.")


async def main(argv=None) -> int:
    args = parse_args(argv)
    require_env()
    etl_logger.info(
        f"POKEMON_TCG_API_KEY: {'set' if os.environ.get('POKEMON_TCG_API_KEY') else 'not set (free tier)'}"
    )
    options = ImportOptions.from_env(
        language=args.language, set_filter=args.set_filter, limit=args.limit
    )
    try:
        stats = await run_import(options)
    except CardStoreError as e:
        etl_logger.error(f"❌ {e}")
        return 1
    return 1 if stats.sets_failed and not stats.sets_processed else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
