import hashlib
import re
import unicodedata
import uuid
from typing import Any, Optional

# Fixed namespace for card ids; changing it re-keys every imported card.
CARD_UUID_NAMESPACE = "3c7c5669-9c35-4d90-9f3f-9ad44e3d8adc"

SLUG_HASH_LENGTH = 6

_combining_marks_re = re.compile(r"[\u0300-\u036f]")
_non_slug_chars_re = re.compile(r"[^a-z0-9_\s-]")
_separator_run_re = re.compile(r"[\s_-]+")
_edge_hyphens_re = re.compile(r"^-+|-+$")


# ===============================================================
# Slugs
# ===============================================================
def generate_slug(text: Any) -> str:
    """Turn free text into a lowercase, ASCII, hyphen-separated slug.

    ``None`` and empty input give ``""``. Already-slugged input is returned
    unchanged.
    """
    if text is None or text == "":
        return ""

    value = str(text).lower()
    value = unicodedata.normalize("NFD", value)
    value = _combining_marks_re.sub("", value)
    value = value.strip()
    value = _non_slug_chars_re.sub("", value)
    value = _separator_run_re.sub("-", value)
    return _edge_hyphens_re.sub("", value)


def generate_card_slug(name: Any, set_name: Any, card_number: Any = None) -> str:
    """Compose ``{set}-{name}[-{number}]`` from slugged parts."""
    slug = f"{generate_slug(set_name)}-{generate_slug(name)}"
    if card_number is not None and card_number != "":
        slug = f"{slug}-{generate_slug(card_number)}"
    return slug


# ===============================================================
# Identity
# ===============================================================
def card_identity_key(set_name: Any, name: Any, card_number: Any = None) -> str:
    """Semantic key ``{set}::{name}::{number}`` used for ids and exact dedupe."""
    number = "" if card_number is None else str(card_number)
    return f"{set_name or ''}::{name or ''}::{number}"


def generate_deterministic_id(key: str, namespace: str = CARD_UUID_NAMESPACE) -> str:
    """Version-5 UUID of ``key`` under ``namespace``; stable across re-imports."""
    return str(uuid.uuid5(uuid.UUID(str(namespace)), key))


def slug_hash_suffix(seed: str, length: int = SLUG_HASH_LENGTH) -> str:
    return hashlib.md5(seed.encode("utf-8")).hexdigest()[:length]


def resolve_slug_collision(slug: str, taken: set[str], seed: str) -> str:
    """Return ``slug`` or a hash-suffixed variant that is not in ``taken``.

    The first attempt appends ``md5(seed)[:6]``. If that is taken too, the seed
    is salted with a counter until a free slug is found. The store's unique
    constraint on ``slug`` stays the final backstop.
    """
    if slug not in taken:
        return slug

    candidate = f"{slug}-{slug_hash_suffix(seed)}"
    attempt = 1
    while candidate in taken:
        candidate = f"{slug}-{slug_hash_suffix(f'{seed}:{attempt}')}"
        attempt += 1
    return candidate


def optional_slug(text: Optional[str]) -> Optional[str]:
    """``generate_slug`` that maps empty results to ``None``."""
    slug = generate_slug(text)
    return slug or None
