"""Generate slugs for cards stored without one."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pytz
from supabase import Client

from slabmarket.utils.logger import etl_logger as logger, log_success
from slabmarket.utils.slug import generate_card_slug, resolve_slug_collision
from slabmarket.utils.supabase import get_supabase, supabase_select

CARDS_TABLE = "cards"
BATCH_SIZE = 1000
UPDATE_CHUNK_SIZE = 100


@dataclass
class SlugBackfillResult:
    found: int = 0
    updated: int = 0
    collisions: int = 0
    failed: int = 0


def plan_slug_updates(cards: list[dict], existing_slugs: set[str]) -> tuple[list[dict], int]:
    """``[{id, slug}]`` for ``cards`` plus the number of collisions resolved.

    ``existing_slugs`` is extended in place so later cards see earlier ones.
    """
    updates = []
    collisions = 0
    for card in cards:
        slug = generate_card_slug(card.get("name"), card.get("set_name"), card.get("card_number"))
        unique = resolve_slug_collision(slug, existing_slugs, seed=str(card["id"]))
        if unique != slug:
            collisions += 1
        existing_slugs.add(unique)
        updates.append({"id": card["id"], "slug": unique})
    return updates, collisions


def backfill_slugs(
    *,
    batch_size: int = BATCH_SIZE,
    chunk_size: int = UPDATE_CHUNK_SIZE,
    client: Optional[Client] = None,
) -> SlugBackfillResult:
    """Slug one batch of slug-less cards. Per-row update failures are counted, not raised."""
    client = client or get_supabase()
    result = SlugBackfillResult()

    res = (
        client.table(CARDS_TABLE)
        .select("id, name, set_name, card_number, slug")
        .is_("slug", "null")
        .limit(batch_size)
        .execute()
    )
    cards = list(res.data or [])
    result.found = len(cards)
    if not cards:
        logger.info("✅ No cards without slugs found")
        return result
    logger.info(f"📦 Found {len(cards)} cards without slugs")

    try:
        rows = supabase_select(CARDS_TABLE, columns="slug", client=client)
    except Exception as e:
        logger.warning(f"⚠️ Could not fetch existing slugs: {e}")
        rows = []
    existing_slugs = {row["slug"] for row in rows if row.get("slug")}
    logger.info(f"   {len(existing_slugs)} existing slugs")

    updates, result.collisions = plan_slug_updates(cards, existing_slugs)
    if result.collisions:
        logger.warning(f"⚠️ Resolved {result.collisions} slug collisions with a hash suffix")

    total_chunks = (len(updates) + chunk_size - 1) // chunk_size
    for index in range(total_chunks):
        chunk = updates[index * chunk_size : (index + 1) * chunk_size]
        logger.info(f"   Chunk {index + 1}/{total_chunks} ({len(chunk)} cards)")
        for update in chunk:
            try:
                client.table(CARDS_TABLE).update(
                    {
                        "slug": update["slug"],
                        "updated_at": datetime.now(pytz.UTC).isoformat(),
                    }
                ).eq("id", update["id"]).execute()
                result.updated += 1
            except Exception as e:
                result.failed += 1
                logger.error(f"❌ Error updating card {update['id']}: {e}")

    log_success(logger, f"Updated {result.updated} cards with slugs ({result.failed} failed)")
    return result
