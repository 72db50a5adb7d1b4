"""Pokemon TCG API client: paginated card fetch per set."""

import asyncio
import os
import time
from typing import Optional

import httpx

from slabmarket.utils.logger import etl_logger as logger

POKEMON_TCG_API_BASE = os.environ.get("POKEMON_TCG_API_BASE", "https://api.pokemontcg.io/v2")
PAGE_SIZE = 10
REQUEST_TIMEOUT = 60.0
PAGE_DELAY = 1.0
MAX_SET_ID_LENGTH = 50
USER_AGENT = "slabmarket-catalog-import/1.0"


class CatalogApiError(Exception):
    """Upstream catalog failure before any page was fetched."""


def build_set_query(set_name: str, set_id: Optional[str]) -> str:
    """``set.id:"x"`` when the id looks like an API id, else ``set.name:"x"``."""
    id_looks_invalid = not set_id or "--" in set_id or len(set_id) > MAX_SET_ID_LENGTH
    if not id_looks_invalid:
        return f'set.id:"{set_id}"'
    escaped = set_name.replace('"', '\\"')
    return f'set.name:"{escaped}"'


def api_headers(api_key: Optional[str] = None) -> dict:
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    api_key = api_key if api_key is not None else os.environ.get("POKEMON_TCG_API_KEY")
    if api_key:
        headers["X-Api-Key"] = api_key
    return headers


async def fetch_cards_for_set(
    set_name: str,
    set_id: Optional[str],
    *,
    client: Optional[httpx.AsyncClient] = None,
    base_url: str = POKEMON_TCG_API_BASE,
    api_key: Optional[str] = None,
    page_size: int = PAGE_SIZE,
    request_timeout: float = REQUEST_TIMEOUT,
    page_delay: float = PAGE_DELAY,
) -> list[dict]:
    """
    Fetch every card of a set, one page at a time, until a short page.

    - each page request is bounded by ``request_timeout``
    - on timeout, transport error or non-2xx, the cards fetched so far are
      returned; with nothing fetched yet CatalogApiError is raised
    """
    query = build_set_query(set_name, set_id)
    logger.info(f"🔍 Fetching cards for set {set_name!r} (query: {query})")

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(follow_redirects=True)

    cards: list[dict] = []
    page = 1
    try:
        while True:
            params = {"q": query, "pageSize": page_size, "page": page}
            started = time.monotonic()
            try:
                response = await asyncio.wait_for(
                    client.get(
                        f"{base_url}/cards", params=params, headers=api_headers(api_key)
                    ),
                    timeout=request_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(f"⏱️ Page {page} timed out after {request_timeout}s")
                if cards:
                    logger.warning(f"⚠️ Timeout - returning {len(cards)} cards fetched so far")
                    return cards
                raise CatalogApiError(
                    f"Request timeout after {request_timeout}s - no cards fetched"
                )
            except httpx.HTTPError as e:
                logger.error(f"❌ Page {page} request failed: {e}")
                if cards:
                    logger.warning(f"⚠️ Error - returning {len(cards)} cards fetched so far")
                    return cards
                raise CatalogApiError(f"Pokemon TCG API request failed: {e}") from e

            elapsed_ms = int((time.monotonic() - started) * 1000)
            if response.status_code >= 400:
                if cards:
                    logger.warning(
                        f"⚠️ API error ({response.status_code}) - returning {len(cards)} cards fetched so far"
                    )
                    return cards
                raise CatalogApiError(
                    f"Pokemon TCG API error ({response.status_code}): {response.text[:200]}"
                )

            try:
                body = response.json()
            except ValueError as e:
                body = None
                logger.error(f"❌ Page {page} returned a non-JSON body: {e}")
            if not isinstance(body, dict):
                if cards:
                    logger.warning(f"⚠️ Bad response - returning {len(cards)} cards fetched so far")
                    return cards
                raise CatalogApiError(
                    f"Pokemon TCG API returned an unexpected body: {response.text[:200]}"
                )

            batch = body.get("data") or []
            cards.extend(batch)
            logger.info(
                f"   ✅ Page {page}: {len(batch)} cards (total: {len(cards)}, {elapsed_ms}ms)"
            )

            if len(batch) < page_size:
                break

            page += 1
            if page_delay > 0:
                await asyncio.sleep(page_delay)
    finally:
        if owns_client:
            await client.aclose()

    logger.info(f"📦 Total cards fetched for {set_name!r}: {len(cards)}")
    return cards
