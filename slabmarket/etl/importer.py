"""
Pokemon catalog import.

Per set: fetch cards from the Pokemon TCG API, drop in-batch duplicates,
normalize, skip cards already stored (exact key), validate, skip fuzzy
duplicates, optionally re-host images, resolve slug collisions and insert in
chunks. Sets are processed one after another; a failing set is logged and the
run moves on.
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx
import pytz
from supabase import Client

from slabmarket.etl import pokemon_api
from slabmarket.etl.pokemon_api import CatalogApiError
from slabmarket.etl.utils import (
    DEFAULT_SIMILARITY_THRESHOLD,
    find_potential_duplicates,
    normalize_card,
    upload_image_to_storage,
    validate_card,
)
from slabmarket.models.card import ImportStats
from slabmarket.utils.logger import (
    etl_logger as logger,
    log_database_operation,
    log_import_progress,
)
from slabmarket.utils.slug import (
    card_identity_key,
    generate_deterministic_id,
    resolve_slug_collision,
)
from slabmarket.utils.supabase import get_supabase, supabase_select

CARDS_TABLE = "cards"
SETS_TABLE = "sets"
CATEGORY_ID = "pokemon-tcg"
INSERT_CHUNK_SIZE = 500
CHUNK_DELAY = 0.1


class CardStoreError(Exception):
    """Datastore read or insert failure. ``stats`` holds progress made before it."""

    def __init__(self, message: str, stats: Optional[ImportStats] = None):
        super().__init__(message)
        self.stats = stats or ImportStats()


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() == "true"


@dataclass
class ImportOptions:
    language: Optional[str] = None
    set_filter: Optional[str] = None
    limit: Optional[int] = None
    upload_images: bool = False
    fuzzy_matching: bool = True
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    chunk_size: int = INSERT_CHUNK_SIZE
    chunk_delay: float = CHUNK_DELAY
    page_delay: float = pokemon_api.PAGE_DELAY

    @classmethod
    def from_env(cls, **overrides) -> "ImportOptions":
        """UPLOAD_CARD_IMAGES, FUZZY_MATCHING and SIMILARITY_THRESHOLD, then overrides."""
        options = cls(
            upload_images=_env_flag("UPLOAD_CARD_IMAGES", False),
            fuzzy_matching=os.environ.get("FUZZY_MATCHING", "").strip().lower() != "false",
            similarity_threshold=float(
                os.environ.get("SIMILARITY_THRESHOLD") or DEFAULT_SIMILARITY_THRESHOLD
            ),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(options, key, value)
        return options


def _now_iso() -> str:
    return datetime.now(pytz.UTC).isoformat()


def _card_label(card: dict) -> str:
    number = card.get("card_number")
    suffix = f" #{number}" if number else ""
    return f"{card.get('set_name')} / {card.get('name')}{suffix}"


# ===============================================================
# Datastore reads
# ===============================================================
def fetch_sets(
    language: Optional[str] = None,
    set_filter: Optional[str] = None,
    client: Optional[Client] = None,
) -> list[dict]:
    """Sets ordered by language, era, name; optionally filtered."""
    client = client or get_supabase()
    query = (
        client.table(SETS_TABLE)
        .select("id, name, era, language, release_year")
        .order("language")
        .order("era")
        .order("name")
    )
    if language:
        logger.info(f"   Filtering by language: {language}")
        query = query.eq("language", language)

    try:
        sets = list(query.execute().data or [])
    except Exception as e:
        raise CardStoreError(f"Failed to load sets: {e}") from e
    logger.info(f"✅ Found {len(sets)} sets in database")

    if set_filter:
        wanted = set_filter.lower()
        sets = [s for s in sets if (s.get("name") or "").lower() == wanted]
        logger.info(f"   Filtered to {len(sets)} set(s) matching {set_filter!r}")
    return sets


def set_names_with_cards(client: Optional[Client] = None) -> set[str]:
    rows = supabase_select(CARDS_TABLE, columns="set_name", client=client)
    return {row["set_name"] for row in rows if row.get("set_name")}


def get_existing_cards(set_name: str, client: Optional[Client] = None) -> list[dict]:
    try:
        rows = supabase_select(
            CARDS_TABLE,
            {"set_name": set_name},
            columns="id, name, set_name, card_number, slug",
            client=client,
        )
    except Exception as e:
        raise CardStoreError(f"Failed to fetch existing cards: {e}") from e
    logger.info(f"   Found {len(rows)} existing cards for {set_name!r}")
    return rows


# ===============================================================
# Mapping
# ===============================================================
def dedupe_api_cards(cards: list[dict], set_name: str) -> list[dict]:
    """First occurrence wins per (set, name, number)."""
    unique: dict[str, dict] = {}
    for card in cards:
        key = card_identity_key(set_name, card.get("name"), card.get("number"))
        unique.setdefault(key, card)
    return list(unique.values())


def map_card_payload(raw_card: dict, card_set: dict) -> dict:
    """Normalized row plus deterministic id, category and timestamps."""
    record = normalize_card(raw_card, card_set)
    key = card_identity_key(card_set.get("name"), raw_card.get("name"), raw_card.get("number"))
    now = _now_iso()
    return {
        "id": generate_deterministic_id(key),
        **record.model_dump(),
        "category_id": CATEGORY_ID,
        "created_at": now,
        "updated_at": now,
    }


# ===============================================================
# Insert pipeline
# ===============================================================
async def _rehost_images(
    cards: list[dict],
    stats: ImportStats,
    client: Client,
    http_client: Optional[httpx.AsyncClient],
) -> None:
    logger.info("🖼️ Uploading images to storage...")
    for card in cards:
        image_url = card.get("image_url")
        if not image_url or "supabase.co" in image_url:
            continue
        storage_url = await upload_image_to_storage(
            image_url, card["slug"], client, http_client=http_client
        )
        if storage_url:
            card["image_url"] = storage_url
            stats.image_uploads += 1
        else:
            stats.image_upload_errors += 1
    logger.info(f"   Uploaded {stats.image_uploads} images")


async def upsert_cards(
    new_cards: list[dict],
    existing_cards: list[dict],
    options: ImportOptions,
    *,
    client: Optional[Client] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ImportStats:
    """Filter, validate and insert mapped cards for one set.

    ``total`` is left to the caller. Raises CardStoreError when a chunk insert
    fails; cards in earlier chunks stay inserted and are counted in its stats.
    """
    client = client or get_supabase()
    stats = ImportStats()

    existing_keys = {
        card_identity_key(c.get("set_name"), c.get("name"), c.get("card_number"))
        for c in existing_cards
    }
    taken_slugs = {c["slug"] for c in existing_cards if c.get("slug")}

    to_process = [
        card
        for card in new_cards
        if card_identity_key(card["set_name"], card["name"], card["card_number"])
        not in existing_keys
    ]
    exact_duplicates = len(new_cards) - len(to_process)
    if not to_process:
        logger.info(f"✅ All {len(new_cards)} cards already exist")
        stats.skipped += len(new_cards)
        return stats
    logger.info(
        f"   {len(to_process)} new cards to process ({exact_duplicates} exact duplicates skipped)"
    )

    # -------------------------
    # Validation
    # -------------------------
    valid_cards = []
    for card in to_process:
        ok, errors = validate_card(card)
        if ok:
            valid_cards.append(card)
            continue
        stats.validation_errors += 1
        message = f"{_card_label(card)}: {', '.join(errors)}"
        stats.add_error(message)
        logger.warning(f"⚠️ Validation error for {message}")

    # -------------------------
    # Fuzzy duplicates
    # -------------------------
    cards_to_insert = valid_cards
    if options.fuzzy_matching and existing_cards:
        logger.info(f"🔍 Fuzzy matching (threshold: {options.similarity_threshold})")
        cards_to_insert = []
        for card in valid_cards:
            matches = find_potential_duplicates(
                card, existing_cards, options.similarity_threshold
            )
            if not matches:
                cards_to_insert.append(card)
                continue
            stats.duplicate_detections += 1
            described = ", ".join(
                f"{m.card.get('name')!r} ({m.similarity * 100:.1f}%)" for m in matches
            )
            logger.info(f"   Potential duplicate: {card['name']!r} matches {described}")

    if options.upload_images and cards_to_insert:
        await _rehost_images(cards_to_insert, stats, client, http_client)

    # -------------------------
    # Slug collisions
    # -------------------------
    for card in cards_to_insert:
        slug = resolve_slug_collision(card["slug"], taken_slugs, seed=card["id"])
        if slug != card["slug"]:
            logger.warning(f"⚠️ Slug collision: {card['slug']!r} -> {slug!r}")
            card["slug"] = slug
        taken_slugs.add(slug)

    if not cards_to_insert:
        logger.info("⚠️ No valid cards to insert after validation and deduplication")
        stats.skipped += len(new_cards)
        return stats

    # -------------------------
    # Insert in chunks
    # -------------------------
    chunk_size = max(1, options.chunk_size)
    total_chunks = (len(cards_to_insert) + chunk_size - 1) // chunk_size
    for index in range(total_chunks):
        chunk = cards_to_insert[index * chunk_size : (index + 1) * chunk_size]
        try:
            client.table(CARDS_TABLE).insert(chunk).execute()
        except Exception as e:
            message = f"Failed to insert cards (chunk {index + 1}/{total_chunks}): {e}"
            stats.skipped += len(new_cards) - stats.inserted
            stats.add_error(message)
            raise CardStoreError(message, stats) from e

        stats.inserted += len(chunk)
        log_database_operation(logger, "Inserted", len(chunk), CARDS_TABLE)
        if options.chunk_delay > 0:
            await asyncio.sleep(options.chunk_delay)

    stats.skipped += len(new_cards) - stats.inserted
    return stats


async def import_set(
    card_set: dict,
    options: ImportOptions,
    *,
    client: Optional[Client] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ImportStats:
    """Fetch and import one set. Errors propagate to the caller."""
    client = client or get_supabase()
    set_name = card_set["name"]

    cards = await pokemon_api.fetch_cards_for_set(
        set_name,
        card_set.get("id"),
        client=http_client,
        page_delay=options.page_delay,
    )
    if not cards:
        logger.info(f"⚠️ No cards found for {set_name}, skipping")
        return ImportStats()

    unique_cards = dedupe_api_cards(cards, set_name)
    in_batch_duplicates = len(cards) - len(unique_cards)
    logger.info(f"   {len(unique_cards)} unique of {len(cards)} fetched")

    mapped = [map_card_payload(card, card_set) for card in unique_cards]
    existing = get_existing_cards(set_name, client=client)

    try:
        stats = await upsert_cards(
            mapped, existing, options, client=client, http_client=http_client
        )
    except CardStoreError as e:
        e.stats.total += len(cards)
        e.stats.skipped += in_batch_duplicates
        raise

    stats.total += len(cards)
    stats.skipped += in_batch_duplicates
    logger.info(f"✅ {set_name}: {stats.inserted} inserted, {stats.skipped} skipped")
    return stats


async def run_import(
    options: Optional[ImportOptions] = None,
    *,
    client: Optional[Client] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ImportStats:
    """Import every selected set that has no cards yet and return merged stats."""
    options = options or ImportOptions.from_env()
    client = client or get_supabase()
    totals = ImportStats()

    logger.info("🚀 Pokemon catalog import")
    logger.info(f"   Upload images: {'enabled' if options.upload_images else 'disabled'}")
    logger.info(f"   Fuzzy matching: {'enabled' if options.fuzzy_matching else 'disabled'}")
    logger.info(f"   Similarity threshold: {options.similarity_threshold}")

    sets = fetch_sets(options.language, options.set_filter, client=client)
    if not sets:
        logger.info("No sets found with current filters. Nothing to import.")
        return totals

    populated = set_names_with_cards(client=client)
    pending = [s for s in sets if s.get("name") not in populated]
    logger.info(f"   Sets with cards: {len(populated)}, sets to import: {len(pending)}")
    if options.limit:
        pending = pending[: options.limit]

    for index, card_set in enumerate(pending, 1):
        log_import_progress(logger, index, len(pending), card_set["name"])
        try:
            totals += await import_set(
                card_set, options, client=client, http_client=http_client
            )
            totals.sets_processed += 1
        except CardStoreError as e:
            logger.error(f"❌ Import of {card_set['name']} failed: {e}")
            totals += e.stats
            totals.sets_failed += 1
        except CatalogApiError as e:
            logger.error(f"❌ Import of {card_set['name']} failed: {e}")
            totals.add_error(f"{card_set['name']}: {e}")
            totals.sets_failed += 1
        except Exception as e:
            logger.error(f"💥 Unexpected error importing {card_set['name']}: {e}", exc_info=True)
            totals.add_error(f"{card_set['name']}: {e}")
            totals.sets_failed += 1

    log_import_report(totals, options)
    return totals


def format_import_report(stats: ImportStats, options: ImportOptions) -> list[str]:
    lines = [
        "=" * 60,
        "=== Import Statistics ===",
        f"Sets processed: {stats.sets_processed} (failed: {stats.sets_failed})",
        f"Total cards processed: {stats.total}",
        f"Inserted: {stats.inserted}",
        f"Skipped: {stats.skipped}",
        f"Validation errors: {stats.validation_errors}",
        f"Duplicate detections (fuzzy matching): {stats.duplicate_detections}",
    ]
    if options.upload_images:
        lines.append(f"Images uploaded: {stats.image_uploads}")
        lines.append(f"Image upload errors: {stats.image_upload_errors}")
    if stats.errors:
        lines.append(f"First {len(stats.errors)} errors:")
        lines.extend(f"  - {message}" for message in stats.errors)
    lines.append("=" * 60)
    return lines


def log_import_report(stats: ImportStats, options: ImportOptions) -> None:
    for line in format_import_report(stats, options):
        logger.info(line)
