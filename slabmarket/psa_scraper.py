"""
PSA certificate page scraper.

PSA has no public lookup API we can rely on, so the certificate page HTML is
parsed directly. The page layout changes without notice and the site pushes
back on automated traffic, so extraction is an ordered cascade of strategies
per field (bounded "Item Information" section first, then broader scopes),
and every value is shape-validated before it is accepted.
"""

import json
import os
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import httpx
from bs4 import BeautifulSoup, NavigableString, Tag

from slabmarket.models.certificate import ScrapeResult
from slabmarket.utils.cert_validation import (
    FIELD_VALIDATORS,
    IMAGE_EXTENSIONS,
    is_rejected_image_url,
    validate_image_url,
    validate_population,
)
from slabmarket.utils.httpx import get_random_headers, httpx_get_page, is_block_page
from slabmarket.utils.logger import scraper_logger as logger

PSA_BASE_URL = os.environ.get("PSA_BASE_URL", "https://www.psacard.com").rstrip("/")
REQUEST_JITTER = (0.5, 1.5)
REQUEST_TIMEOUT = 25.0

ITEM_SECTION_HEADING = "Item Information"
MIN_SECTION_TEXT = 40
SECTION_MAX_CHARS = 20_000
BROAD_SCOPE_CHARS = 40_000
VALUE_MAX_CHARS = 120

FIELD_LABELS = {
    "set_name": ("Brand/Title", "Brand", "Title"),
    "card_name": ("Subject", "Player"),
    "card_number": ("Card Number", "Card No.", "Card #"),
    "year": ("Year",),
    "grade": ("Item Grade", "Card Grade", "Grade"),
    "population": ("Population", "PSA Population"),
}

# Every label the value patterns must stop at
KNOWN_LABELS = sorted(
    {label for labels in FIELD_LABELS.values() for label in labels}
    | {
        "Cert Number",
        "Certification Number",
        "Label Type",
        "Reverse Cert Number/Barcode",
        "Category",
        "Sport",
        "Variety/Pedigree",
        "Variety",
        "Autograph Grade",
        "Pop Higher",
        "Population Higher",
        "Population Report",
        "Sales History",
        ITEM_SECTION_HEADING,
    },
    key=len,
    reverse=True,
)
_labels_alt = "|".join(re.escape(label) for label in KNOWN_LABELS)

LABEL_TAGS = ["dt", "th", "td", "span", "div", "p", "strong", "b", "label", "h4", "h5", "h6", "li"]
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
MAJOR_HEADING_TAGS = ["h1", "h2", "h3"]
SECTION_BOUNDARY_TAGS = {"h1", "h2", "h3", "footer", "nav", "header", "form"}

KNOWN_IMAGE_HOSTS = (
    "d1htnxwo4o0jhw.cloudfront.net",
    "psacard.s3.amazonaws.com",
    "images.psacard.com",
)
IMAGE_SOURCE_WEIGHTS = {"jsonld": 20, "selector": 15, "meta": 10, "style": 5, "scan": 0}
MIN_IMAGE_SCORE = 20

SLAB_IMAGE_SELECTORS = [
    "img[src*='/cert/']",
    "img[data-src*='/cert/']",
    "[class*='cert-image'] img",
    "[class*='certImage'] img",
    "[class*='slab'] img",
    "[class*='gallery'] img",
    "[class*='carousel'] img",
    "[class*='swiper'] img",
    "img[alt*='cert' i]",
    "img[alt*='front' i]",
    "img[alt*='back' i]",
]
IMAGE_URL_ATTRS = (
    "data-zoom-image",
    "data-full",
    "data-large",
    "data-src",
    "data-lazy-src",
    "data-original",
    "src",
)
RESIZE_QUERY_KEYS = {
    "w", "h", "width", "height", "crop", "fit", "resize", "size", "quality",
    "q", "auto", "dpr", "format", "fm", "mode", "scale", "rect",
}
THUMB_SEGMENTS = {"thumb", "thumbs", "thumbnail", "thumbnails", "small", "sm", "medium", "preview"}

_ws_re = re.compile(r"\s+")
_year_re = re.compile(r"\b(19\d{2}|20\d{2})\b")
_grade_token_re = re.compile(
    r"\b((?:GEM\s+MT|MINT|NM-MT\+?|NM\+?|EX-MT\+?|EX\+?|VG-EX\+?|VG\+?|GOOD\+?|FR|PR)\s+(?:10|[1-9](?:\.5)?))\b"
)
_psa_grade_re = re.compile(r"\bPSA\s+(10|[1-9](?:\.5)?)\b")
_background_url_re = re.compile(
    r"background(?:-image)?\s*:\s*url\(\s*(['\"]?)(?P<url>[^'\")]+)\1\s*\)", re.I
)
_raw_image_url_re = re.compile(r"https?://[^\s\"'<>()]+?\.(?:jpe?g|png|webp)(?:\?[^\s\"'<>()]*)?", re.I)
_thumb_suffix_re = re.compile(r"[-_](?:thumb|thumbnail|small|sm)(?=\.(?:jpe?g|png|webp|gif)$)", re.I)


# ===============================================================
# Errors
# ===============================================================
class CertificateError(Exception):
    """Base class for certificate lookup failures."""

    error_type = "fetch"


class CertificateBlockedError(CertificateError):
    """PSA refused the request (captcha, 403, block interstitial)."""

    error_type = "blocked"


class CertificateFetchError(CertificateError):
    """Network failure, timeout or unexpected HTTP status."""

    error_type = "fetch"


class CertificateParseError(CertificateError):
    """The page was fetched but no field survived validation."""

    error_type = "parse"


# ===============================================================
# Page scopes
# ===============================================================
@dataclass
class PageScope:
    name: str
    soup: BeautifulSoup
    text: str


@dataclass(frozen=True)
class FieldStrategy:
    name: str
    scope: str
    extract: Callable[[PageScope], Iterable[str]]


@dataclass
class ImageCandidate:
    url: str
    source: str
    score: int


def _visible_text(soup) -> str:
    return _ws_re.sub(" ", soup.get_text(" ", strip=True)).strip()


def _clean_soup(html: str) -> BeautifulSoup:
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript", "template", "svg"]):
        tag.decompose()
    return soup


def _own_text(tag: Tag) -> str:
    return _ws_re.sub(" ", tag.get_text(" ", strip=True)).strip()


def _find_section_heading(soup) -> Optional[Tag]:
    target = ITEM_SECTION_HEADING.lower()
    for names in (HEADING_TAGS, ["div", "span", "p", "strong", "button", "a"]):
        for tag in soup.find_all(names):
            if _own_text(tag).rstrip(":").lower() == target:
                return tag
    return None


def _is_section_boundary(node) -> bool:
    if not isinstance(node, Tag):
        return False
    if node.name in SECTION_BOUNDARY_TAGS:
        return True
    return node.find(MAJOR_HEADING_TAGS) is not None


def locate_item_section(soup) -> Optional[str]:
    """HTML of the "Item Information" block: from its heading to the next
    major heading or section boundary, capped at SECTION_MAX_CHARS of text."""
    heading = _find_section_heading(soup)
    if heading is None:
        return None

    # Climb wrappers whose only content is the heading text itself
    node = heading
    heading_text = _own_text(heading)
    while (
        node.parent is not None
        and node.parent.name not in ("body", "html", "[document]")
        and _own_text(node.parent) == heading_text
    ):
        node = node.parent

    parts = []
    collected = 0
    for sibling in node.next_siblings:
        if _is_section_boundary(sibling):
            break
        chunk = str(sibling)
        if isinstance(sibling, Tag):
            collected += len(_own_text(sibling))
        parts.append(chunk)
        if collected > SECTION_MAX_CHARS:
            break
    return "".join(parts)


def build_scopes(html: str) -> dict[str, PageScope]:
    """Section, broad and page scopes, narrowest first.

    The broad scope is the raw HTML from the section heading onwards (bounded),
    used when the section is missing or implausibly short.
    """
    page_soup = _clean_soup(html)
    page = PageScope("page", page_soup, _visible_text(page_soup))
    scopes: dict[str, PageScope] = {}

    section_html = locate_item_section(page_soup)
    if section_html:
        section_soup = BeautifulSoup(section_html, "lxml")
        section_text = _visible_text(section_soup)
        if len(section_text) >= MIN_SECTION_TEXT:
            scopes["section"] = PageScope("section", section_soup, section_text)

    start = html.find(ITEM_SECTION_HEADING)
    if start != -1:
        broad_soup = _clean_soup(html[start : start + BROAD_SCOPE_CHARS])
    else:
        main = page_soup.find("main")
        broad_soup = BeautifulSoup(str(main), "lxml") if main else page_soup
    scopes["broad"] = PageScope("broad", broad_soup, _visible_text(broad_soup))
    scopes["page"] = page
    return scopes


# ===============================================================
# Field extractors
# ===============================================================
def _label_value(tag: Tag) -> Optional[str]:
    """Text of the first non-empty node following a label element."""
    for sibling in tag.next_siblings:
        if isinstance(sibling, Tag):
            text = _own_text(sibling)
        elif isinstance(sibling, NavigableString):
            text = _ws_re.sub(" ", str(sibling)).strip()
        else:
            continue
        text = text.lstrip(":").strip()
        if not text:
            continue
        if len(text) > VALUE_MAX_CHARS:
            return None
        return text
    return None


def markup_values(scope: PageScope, labels: tuple[str, ...]) -> Iterator[str]:
    """Values next to label elements (<dt>/<dd>, <th>/<td>, label spans)."""
    for label in labels:
        target = label.lower()
        for tag in scope.soup.find_all(LABEL_TAGS):
            if _own_text(tag).rstrip(":").strip().lower() != target:
                continue
            value = _label_value(tag)
            if value:
                yield value


def text_values(scope: PageScope, labels: tuple[str, ...]) -> Iterator[str]:
    """Values after ``Label:`` in markup-stripped text, ending at the next known label."""
    for label in labels:
        pattern = re.compile(
            rf"(?:^|\s){re.escape(label)}\s*:?\s+"
            rf"(?P<value>.{{1,{VALUE_MAX_CHARS}}}?)"
            rf"(?=\s+(?:{_labels_alt})\s*:?(?:\s|$)|\s*$)"
        )
        for match in pattern.finditer(scope.text):
            yield match.group("value").strip()


def title_texts(scope: PageScope) -> Iterator[str]:
    soup = scope.soup
    if soup.title:
        yield _own_text(soup.title)
    for h1 in soup.find_all("h1"):
        yield _own_text(h1)


def year_tokens(scope: PageScope) -> Iterator[str]:
    for text in title_texts(scope):
        for match in _year_re.finditer(text):
            yield match.group(1)


def loose_year_tokens(scope: PageScope) -> Iterator[str]:
    for match in _year_re.finditer(scope.text[:VALUE_MAX_CHARS * 10]):
        yield match.group(1)


def grade_tokens(scope: PageScope) -> Iterator[str]:
    for match in _grade_token_re.finditer(scope.text):
        yield match.group(1)
    for text in title_texts(scope):
        for match in _psa_grade_re.finditer(text):
            yield match.group(1)


def _labelled(extractor, labels):
    return lambda scope: extractor(scope, labels)


def _labelled_strategies(field: str) -> list[FieldStrategy]:
    labels = FIELD_LABELS[field]
    strategies = []
    for scope in ("section", "broad", "page"):
        strategies.append(FieldStrategy(f"{scope}:markup", scope, _labelled(markup_values, labels)))
        strategies.append(FieldStrategy(f"{scope}:text", scope, _labelled(text_values, labels)))
    return strategies


FIELD_STRATEGIES: dict[str, list[FieldStrategy]] = {
    "set_name": _labelled_strategies("set_name"),
    "card_name": _labelled_strategies("card_name"),
    "card_number": _labelled_strategies("card_number"),
    "year": _labelled_strategies("year")
    + [
        FieldStrategy("page:title-year", "page", year_tokens),
        FieldStrategy("broad:first-year", "broad", loose_year_tokens),
    ],
    "grade": _labelled_strategies("grade")
    + [
        FieldStrategy("broad:grade-token", "broad", grade_tokens),
        FieldStrategy("page:grade-token", "page", grade_tokens),
    ],
    "population": _labelled_strategies("population"),
}

_FIELD_VALIDATORS = dict(FIELD_VALIDATORS, population=validate_population)


def extract_field(field: str, scopes: dict[str, PageScope]):
    """Run the strategy cascade for ``field``; first validated value wins.

    Returns ``(value, strategy_name)`` or ``(None, None)``.
    """
    validator = _FIELD_VALIDATORS[field]
    for strategy in FIELD_STRATEGIES[field]:
        scope = scopes.get(strategy.scope)
        if scope is None:
            continue
        for candidate in strategy.extract(scope):
            value = validator(candidate)
            if value is not None:
                return value, strategy.name
    return None, None


# ===============================================================
# Slab image
# ===============================================================
def _srcset_urls(srcset: str) -> list[str]:
    entries = []
    for part in srcset.split(","):
        bits = part.strip().split()
        if not bits:
            continue
        width = 0
        if len(bits) > 1 and bits[1].lower().endswith("w") and bits[1][:-1].isdigit():
            width = int(bits[1][:-1])
        entries.append((width, bits[0]))
    return [url for _, url in sorted(entries, key=lambda e: e[0], reverse=True)]


def _tag_image_urls(tag: Tag) -> Iterator[str]:
    for attr in ("srcset", "data-srcset"):
        if tag.get(attr):
            yield from _srcset_urls(tag[attr])
    for attr in IMAGE_URL_ATTRS:
        value = tag.get(attr)
        if value:
            yield value.strip()


def _walk_jsonld_images(node) -> Iterator[str]:
    if isinstance(node, list):
        for item in node:
            yield from _walk_jsonld_images(item)
    elif isinstance(node, dict):
        for key, value in node.items():
            if key in ("image", "contentUrl", "thumbnailUrl"):
                if isinstance(value, str):
                    yield value
                elif isinstance(value, dict):
                    for sub_key in ("url", "contentUrl"):
                        if isinstance(value.get(sub_key), str):
                            yield value[sub_key]
                else:
                    yield from _walk_jsonld_images(value)
            elif isinstance(value, (dict, list)):
                yield from _walk_jsonld_images(value)
    elif isinstance(node, str) and node.startswith("http"):
        yield node


def jsonld_images(soup, html: str) -> Iterator[str]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            payload = json.loads(script.string or script.get_text() or "")
        except ValueError:
            continue
        yield from _walk_jsonld_images(payload)


def selector_images(soup, html: str) -> Iterator[str]:
    for selector in SLAB_IMAGE_SELECTORS:
        for tag in soup.select(selector):
            yield from _tag_image_urls(tag)


def meta_images(soup, html: str) -> Iterator[str]:
    for attrs in ({"property": "og:image"}, {"name": "twitter:image"}):
        tag = soup.find("meta", attrs=attrs)
        if tag and tag.get("content"):
            yield tag["content"].strip()


def style_images(soup, html: str) -> Iterator[str]:
    for match in _background_url_re.finditer(html):
        yield match.group("url").strip()


def scan_images(soup, html: str) -> Iterator[str]:
    for tag in soup.find_all(["img", "source", "a"]):
        if tag.name == "a":
            href = tag.get("href") or ""
            if urlparse(href).path.lower().endswith(IMAGE_EXTENSIONS):
                yield href
            continue
        yield from _tag_image_urls(tag)
    for match in _raw_image_url_re.finditer(html):
        yield match.group(0)


IMAGE_STRATEGIES = [
    ("jsonld", jsonld_images),
    ("selector", selector_images),
    ("meta", meta_images),
    ("style", style_images),
    ("scan", scan_images),
]


def is_thumbnail_url(url: str) -> bool:
    parsed = urlparse(url)
    segments = {s.lower() for s in parsed.path.split("/") if s}
    if segments & THUMB_SEGMENTS or _thumb_suffix_re.search(parsed.path):
        return True
    keys = {k.lower() for k, _ in parse_qsl(parsed.query)}
    return bool(keys & RESIZE_QUERY_KEYS)


def to_full_size_url(url: str) -> str:
    """Strip resize/crop query params and thumbnail path segments."""
    parsed = urlparse(url)
    query = [
        (k, v)
        for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if k.lower() not in RESIZE_QUERY_KEYS
    ]
    segments = [s for s in parsed.path.split("/") if s.lower() not in THUMB_SEGMENTS]
    path = _thumb_suffix_re.sub("", "/".join(segments))
    return urlunparse(parsed._replace(path=path, query=urlencode(query)))


def score_image_url(url: str, cert_number: str, source: str) -> Optional[int]:
    """How much ``url`` looks like the slab photo; ``None`` if it is chrome."""
    if is_rejected_image_url(url):
        return None
    parsed = urlparse(url)
    path = parsed.path.lower()
    if path.endswith((".svg", ".ico")):
        return None

    score = IMAGE_SOURCE_WEIGHTS.get(source, 0)
    if "/cert/" in path:
        score += 50
    if cert_number and cert_number in url:
        score += 40
    if parsed.netloc.lower() in KNOWN_IMAGE_HOSTS:
        score += 30
    if path.endswith(IMAGE_EXTENSIONS):
        score += 5
    if is_thumbnail_url(url):
        score -= 25
    return score


def extract_slab_image(
    soup, html: str, cert_number: str, base_url: str = PSA_BASE_URL
) -> Optional[str]:
    candidates: dict[str, ImageCandidate] = {}
    for source, finder in IMAGE_STRATEGIES:
        for raw in finder(soup, html):
            if not raw or raw.startswith("data:"):
                continue
            url = urljoin(f"{base_url}/", raw.replace("&amp;", "&"))
            if url in candidates:
                continue
            score = score_image_url(url, cert_number, source)
            if score is None:
                continue
            candidates[url] = ImageCandidate(url, source, score)

    ranked = sorted(candidates.values(), key=lambda c: c.score, reverse=True)
    for candidate in ranked:
        if candidate.score < MIN_IMAGE_SCORE:
            break
        image_url = validate_image_url(to_full_size_url(candidate.url))
        if image_url:
            logger.debug(f"🖼️ slab image via {candidate.source} (score {candidate.score}): {image_url}")
            return image_url
    return None


# ===============================================================
# Parse + fetch
# ===============================================================
def parse_certificate_html(
    html: str, cert_number: str, base_url: str = PSA_BASE_URL
) -> dict:
    """Extract certificate fields from a PSA cert page.

    Raises CertificateParseError when none of card name, set name, card number,
    year or grade survived validation.
    """
    scopes = build_scopes(html)
    data: dict = {"certificate_number": cert_number}
    for field in ("card_name", "set_name", "card_number", "year", "grade"):
        value, strategy = extract_field(field, scopes)
        data[field] = value
        if value is not None:
            logger.debug(f"   {field} = {value!r} ({strategy})")

    population, _ = extract_field("population", scopes)
    if population is not None and data["grade"]:
        data["pop_report"] = {"grade": data["grade"], "population": population}

    raw_soup = BeautifulSoup(html, "lxml")
    data["image_url"] = extract_slab_image(raw_soup, html, cert_number, base_url)

    core = ("card_name", "set_name", "card_number", "year", "grade")
    if all(data[field] is None for field in core):
        raise CertificateParseError("Unable to parse certificate page")
    return data


def certificate_url(cert_number: str, base_url: str = PSA_BASE_URL) -> str:
    return f"{base_url}/cert/{cert_number}"


async def fetch_certificate_html(
    cert_number: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    base_url: str = PSA_BASE_URL,
    jitter: tuple[float, float] = REQUEST_JITTER,
) -> str:
    url = certificate_url(cert_number, base_url)
    headers = get_random_headers()
    headers["Referer"] = f"{base_url}/cert"
    try:
        response = await httpx_get_page(
            url,
            client=client,
            headers=headers,
            request_timeout=REQUEST_TIMEOUT,
            jitter=jitter,
        )
    except httpx.TimeoutException as e:
        raise CertificateFetchError(f"Timed out fetching certificate page: {e}") from e
    except httpx.HTTPError as e:
        raise CertificateFetchError(f"Network error fetching certificate page: {e}") from e

    if response.status_code == 403:
        raise CertificateBlockedError("PSA is blocking automated requests (HTTP 403)")
    if response.status_code == 429:
        raise CertificateBlockedError("PSA is rate limiting requests (HTTP 429)")
    if response.status_code == 404:
        raise CertificateFetchError("Certificate page not found (HTTP 404)")
    if response.status_code >= 400:
        raise CertificateFetchError(f"PSA returned HTTP {response.status_code}")

    html = response.text
    if is_block_page(html, content_marker=ITEM_SECTION_HEADING):
        raise CertificateBlockedError("PSA returned a bot-check page instead of the certificate")
    return html


async def fetch_certificate_data(
    cert_number: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    base_url: str = PSA_BASE_URL,
    jitter: tuple[float, float] = REQUEST_JITTER,
) -> ScrapeResult:
    """Fetch and parse one certificate. Never raises for lookup failures."""
    logger.info(f"🔍 Fetching PSA cert {cert_number}")
    try:
        html = await fetch_certificate_html(
            cert_number, client=client, base_url=base_url, jitter=jitter
        )
        data = parse_certificate_html(html, cert_number, base_url)
    except CertificateError as e:
        logger.warning(f"⚠️ PSA cert {cert_number} failed ({e.error_type}): {e}")
        return ScrapeResult(ok=False, error=str(e), error_type=e.error_type)

    logger.info(
        f"✅ PSA cert {cert_number}: {data.get('card_name')} / {data.get('set_name')} / grade {data.get('grade')}"
    )
    return ScrapeResult(ok=True, data=data)
