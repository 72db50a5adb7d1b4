#!/usr/bin/env python3
"""Generate slugs for cards stored without one. Run after adding the slug column."""
import argparse
import os

from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(__file__), "..", ".env"))
load_dotenv()

from slabmarket.etl.slug_backfill import BATCH_SIZE, backfill_slugs


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Backfill card slugs")
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    args = parser.parse_args(argv)

    result = backfill_slugs(batch_size=args.batch_size)
    print(
        f"found={result.found} updated={result.updated} "
        f"collisions={result.collisions} failed={result.failed}"
    )
    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
