"""
Shape rules for values scraped from certificate pages.

A loose pattern on a certificate page can capture navigation labels, footer
links or a provider logo instead of the field it was aimed at. Every scraped
field goes through these checks before it is returned, and cached payloads go
through them again on read. A failing value is dropped, never repaired.
"""

import re
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlparse

CARD_NAME_MAX_LENGTH = 80
SET_NAME_MAX_LENGTH = 100
CARD_NUMBER_MAX_LENGTH = 16
GRADE_MAX_LENGTH = 24
MAX_WORDS = 14
MIN_YEAR = 1900
MAX_POPULATION = 10_000_000

# Page chrome that must never be taken for a field value (compared upper-cased)
NAVIGATION_TEXT = {
    "ITEM INFORMATION",
    "CERT NUMBER",
    "CERT VERIFICATION",
    "LABEL TYPE",
    "REVERSE CERT NUMBER/BARCODE",
    "POPULATION",
    "POPULATION REPORT",
    "POP HIGHER",
    "SHOP",
    "SERVICES",
    "SIGN IN",
    "LOG IN",
    "MY ACCOUNT",
    "MENU",
    "SEARCH",
    "HOME",
    "CONTACT US",
    "PRIVACY POLICY",
    "TERMS OF USE",
    "AUCTION PRICES",
    "PRICE GUIDE",
    "SUBMIT",
    "N/A",
    "NONE",
    "UNKNOWN",
}

_forbidden_chars_re = re.compile(r"[<>{}\[\]=|;\\\"@$%^~`]")
_card_number_re = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-/. ]*$")
_grade_re = re.compile(
    r"^(?:(?:[A-Z][A-Z+\-]*\s){0,3})?(?:10|[1-9](?:\.5)?)$|^AUTHENTIC(?: ALTERED)?$"
)

# Filename / path markers of site chrome rather than slab photos
IMAGE_REJECT_MARKERS = (
    "logo",
    "icon",
    "favicon",
    "placeholder",
    "sprite",
    "badge",
    "banner",
    "avatar",
    "spinner",
    "loading",
    "blank.",
    "no-image",
    "noimage",
    "default-image",
    "social",
    "apple-touch",
    "header",
    "footer",
    "/static/",
    "/assets/img/",
    "/assets/images/",
    "tracking",
    "pixel",
)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def _looks_like_label_text(text: str) -> bool:
    upper = text.upper().rstrip(":")
    return upper in NAVIGATION_TEXT


def _is_upper_text(text: str) -> bool:
    # Certificate labels print subject and brand in capitals; mixed case is page chrome.
    return not any(ch.islower() for ch in text)


def validate_card_name(value: Any) -> Optional[str]:
    text = _clean(value)
    if not text:
        return None
    if len(text) > CARD_NAME_MAX_LENGTH or len(text.split()) > MAX_WORDS:
        return None
    if _forbidden_chars_re.search(text) or not _is_upper_text(text):
        return None
    if not any(ch.isalpha() for ch in text) or _looks_like_label_text(text):
        return None
    return text


def validate_set_name(value: Any) -> Optional[str]:
    text = _clean(value)
    if not text:
        return None
    if len(text) > SET_NAME_MAX_LENGTH or len(text.split()) > MAX_WORDS:
        return None
    if _forbidden_chars_re.search(text) or not _is_upper_text(text):
        return None
    if not any(ch.isalpha() for ch in text) or _looks_like_label_text(text):
        return None
    return text


def validate_card_number(value: Any) -> Optional[str]:
    text = _clean(value)
    if not text:
        return None
    text = text.lstrip("#").strip()
    if not text or len(text) > CARD_NUMBER_MAX_LENGTH:
        return None
    if not _card_number_re.match(text) or not any(ch.isdigit() for ch in text):
        return None
    return text


def validate_year(value: Any, now: Optional[datetime] = None) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        year = value
    else:
        match = re.match(r"^\s*(\d{4})\b", str(value))
        if not match:
            return None
        year = int(match.group(1))
    max_year = (now or datetime.now()).year + 1
    if MIN_YEAR <= year <= max_year:
        return year
    return None


def validate_grade(value: Any) -> Optional[str]:
    text = _clean(value)
    if not text:
        return None
    text = text.upper()
    if len(text) > GRADE_MAX_LENGTH or not _grade_re.match(text):
        return None
    return text


def validate_population(value: Any) -> Optional[int]:
    text = _clean(value)
    if not text:
        return None
    text = text.replace(",", "")
    if not text.isdigit():
        return None
    population = int(text)
    if population > MAX_POPULATION:
        return None
    return population


def is_rejected_image_url(url: str) -> bool:
    """True when the URL looks like a logo, icon, placeholder or chrome asset."""
    lowered = url.lower()
    return any(marker in lowered for marker in IMAGE_REJECT_MARKERS)


def validate_image_url(value: Any) -> Optional[str]:
    text = _clean(value)
    if not text or " " in text:
        return None
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    if parsed.path.lower().endswith((".svg", ".ico")):
        return None
    if is_rejected_image_url(text):
        return None
    return text


FIELD_VALIDATORS = {
    "card_name": validate_card_name,
    "set_name": validate_set_name,
    "card_number": validate_card_number,
    "year": validate_year,
    "grade": validate_grade,
    "image_url": validate_image_url,
}


def invalid_fields(data: Optional[dict]) -> list[str]:
    """Names of fields in ``data`` that are present but fail their shape rule."""
    if not data:
        return []
    bad = []
    for field, validator in FIELD_VALIDATORS.items():
        value = data.get(field)
        if value is None or value == "":
            continue
        if validator(value) is None:
            bad.append(field)
    pop = data.get("pop_report")
    if pop:
        if not isinstance(pop, dict) or validate_population(pop.get("population")) is None:
            bad.append("pop_report")
    return bad
