"""
ETL helpers: card normalization, validation, fuzzy duplicate detection,
image re-hosting and certificate format detection.
"""

import hashlib
import re
from typing import Any, Optional
from urllib.parse import urlparse

import httpx
from supabase import Client

from slabmarket.models.card import CardRecord, DuplicateCandidate
from slabmarket.utils.logger import etl_logger as logger
from slabmarket.utils.similarity import calculate_similarity
from slabmarket.utils.slug import generate_card_slug

DEFAULT_SIMILARITY_THRESHOLD = 0.85
NAME_WEIGHT = 0.7
NUMBER_WEIGHT = 0.3

MIN_CARD_YEAR = 1900
MAX_CARD_YEAR = 2100

IMAGE_BUCKET = "card-images"
IMAGE_FOLDER = "cards"
IMAGE_DOWNLOAD_TIMEOUT = 30.0

_slug_re = re.compile(r"^[a-z0-9-]+$")
_release_year_re = re.compile(r"^(\d{4})")
_image_ext_re = re.compile(r"\.(jpg|jpeg|png|webp|gif)$", re.I)

_cert_prefixes = {
    "PSA": re.compile(r"^PSA\s?\d+$", re.I),
    "BGS": re.compile(r"^BGS\s?\d+$", re.I),
    "CGC": re.compile(r"^CGC\s?\d+$", re.I),
}


def _trimmed_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ===============================================================
# Normalize
# ===============================================================
def normalize_card(raw_card: dict, card_set: dict) -> CardRecord:
    """Map a Pokemon TCG API card plus its ``sets`` row to a CardRecord. Pure."""
    number = raw_card.get("number")
    card_number = str(number) if number not in (None, "") else None
    name = (raw_card.get("name") or "").strip()
    set_name = (card_set.get("name") or "").strip()

    year = None
    if card_set.get("release_year"):
        year = int(card_set["release_year"])
    elif raw_card.get("releaseDate"):
        match = _release_year_re.match(str(raw_card["releaseDate"]))
        if match:
            year = int(match.group(1))

    images = raw_card.get("images") or {}
    image_url = images.get("large") or images.get("small") or None

    return CardRecord(
        name=name,
        set_name=set_name,
        card_number=card_number,
        slug=generate_card_slug(name, set_name, card_number),
        year=year,
        rarity=_trimmed_or_none(raw_card.get("rarity")),
        description=_trimmed_or_none(raw_card.get("flavorText")),
        image_url=image_url,
    )


# ===============================================================
# Validate
# ===============================================================
def _is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def validate_card(card: dict) -> tuple[bool, list[str]]:
    """Check a normalized card dict. Returns ``(valid, errors)``."""
    errors = []

    name = card.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("Name is required and must be a non-empty string")

    set_name = card.get("set_name")
    if not isinstance(set_name, str) or not set_name.strip():
        errors.append("Set name is required and must be a non-empty string")

    year = card.get("year")
    if year is not None:
        if (
            isinstance(year, bool)
            or not isinstance(year, (int, float))
            or not MIN_CARD_YEAR <= year <= MAX_CARD_YEAR
        ):
            errors.append(f"Year must be a number between {MIN_CARD_YEAR} and {MAX_CARD_YEAR}")

    card_number = card.get("card_number")
    if card_number is not None and not isinstance(card_number, (str, int)):
        errors.append("Card number must be a string or number")

    image_url = card.get("image_url")
    if image_url is not None:
        if not isinstance(image_url, str):
            errors.append("Image URL must be a string")
        elif not _is_valid_url(image_url):
            errors.append("Image URL must be a valid URL")

    slug = card.get("slug")
    if slug is not None:
        if not isinstance(slug, str) or not slug:
            errors.append("Slug must be a non-empty string")
        elif not _slug_re.match(slug):
            errors.append("Slug must contain only lowercase letters, numbers, and hyphens")

    return len(errors) == 0, errors


# ===============================================================
# Duplicates
# ===============================================================
def find_potential_duplicates(
    card: dict,
    existing_cards: list[dict],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    name_weight: float = NAME_WEIGHT,
    number_weight: float = NUMBER_WEIGHT,
) -> list[DuplicateCandidate]:
    """Existing cards in the same set scoring at or above ``threshold``, best first.

    A missing card number on either side counts as a full number match.
    """
    matches = []
    for existing in existing_cards:
        if existing.get("set_name") != card.get("set_name"):
            continue

        name_similarity = calculate_similarity(
            (card.get("name") or "").lower(), (existing.get("name") or "").lower()
        )

        number_similarity = 1.0
        if card.get("card_number") and existing.get("card_number"):
            number_similarity = calculate_similarity(
                str(card["card_number"]), str(existing["card_number"])
            )

        combined = name_weight * name_similarity + number_weight * number_similarity
        # Float noise can push an identical pair a hair above 1
        combined = min(combined, 1.0)
        if combined >= threshold:
            matches.append(
                DuplicateCandidate(
                    card=existing,
                    similarity=combined,
                    nameSimilarity=name_similarity,
                    numberSimilarity=number_similarity,
                )
            )

    return sorted(matches, key=lambda m: m.similarity, reverse=True)


# ===============================================================
# Images
# ===============================================================
def image_extension(image_url: str, content_type: Optional[str]) -> str:
    match = _image_ext_re.search(urlparse(image_url).path)
    if match:
        return match.group(1).lower()
    content_type = content_type or ""
    for ext in ("png", "webp", "gif"):
        if ext in content_type:
            return ext
    return "jpg"


def storage_path(slug: str, image_url: str, extension: str) -> str:
    digest = hashlib.md5(f"{slug}{image_url}".encode("utf-8")).hexdigest()[:8]
    return f"{IMAGE_FOLDER}/{slug}-{digest}.{extension}"


async def upload_image_to_storage(
    image_url: Optional[str],
    slug: str,
    client: Client,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """Copy ``image_url`` into the card-images bucket; public URL or ``None``."""
    if not image_url:
        return None

    try:
        if http_client is not None:
            response = await http_client.get(image_url, timeout=IMAGE_DOWNLOAD_TIMEOUT)
        else:
            async with httpx.AsyncClient(
                follow_redirects=True, timeout=IMAGE_DOWNLOAD_TIMEOUT
            ) as session:
                response = await session.get(image_url)

        if response.status_code != 200:
            logger.warning(f"⚠️ Failed to download image {image_url}: {response.status_code}")
            return None

        content_type = response.headers.get("content-type")
        extension = image_extension(image_url, content_type)
        path = storage_path(slug, image_url, extension)

        bucket = client.storage.from_(IMAGE_BUCKET)
        bucket.upload(
            path,
            response.content,
            {"content-type": content_type or f"image/{extension}", "upsert": "true"},
        )
        return bucket.get_public_url(path)
    except Exception as e:
        logger.warning(f"⚠️ Error uploading image for {slug}: {e}")
        return None


# ===============================================================
# Certificates
# ===============================================================
def detect_certificate_format(card: dict) -> dict:
    """Guess the grading company from a ``cert_number`` like ``"PSA 12345678"``."""
    cert_number = card.get("cert_number") or None
    grade = card.get("grade") or None

    grading_company = None
    if cert_number:
        for company, pattern in _cert_prefixes.items():
            if pattern.match(str(cert_number)):
                grading_company = company
                break

    return {
        "grading_company": grading_company,
        "grade": grade,
        "cert_number": cert_number,
    }
