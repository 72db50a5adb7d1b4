"""HTTP client utilities with browser-like headers and bot-block detection."""

import asyncio
import logging
import random
from typing import Optional
from urllib.parse import urlencode, urlparse

import httpx
from bs4 import BeautifulSoup

from slabmarket.utils.logger import httpx_logger as logger

# Disable verbose httpx logging to prevent spam
logging.getLogger("httpx").setLevel(logging.WARNING)

# Modern browser user agents
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:123.0) Gecko/20100101 Firefox/123.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

ACCEPT_LANGUAGES = [
    "en-US,en;q=0.9",
    "en-GB,en;q=0.9",
    "en-US,en;q=0.9,es;q=0.8",
    "en-GB,en-US;q=0.9,en;q=0.8",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "DNT": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-User": "?1",
    "Pragma": "no-cache",
    "Cache-Control": "no-cache",
}

# Phrases that only appear on challenge / block interstitials
BLOCK_INDICATORS = [
    "verify you are a human",
    "please verify yourself",
    "access denied",
    "captcha",
    "temporarily unavailable",
    "just a moment",
    "attention required",
    "unusual traffic",
    "blocked for unusual activity",
    "automated requests",
]


def get_random_headers() -> dict:
    """
    Generate random browser-like headers for HTTP requests.
    """
    headers = dict(DEFAULT_HEADERS)
    headers["User-Agent"] = random.choice(USER_AGENTS)
    headers["Accept-Language"] = random.choice(ACCEPT_LANGUAGES)

    ua = headers["User-Agent"].lower()
    if "chrome" in ua:
        version = random.choice(["120", "121", "122"])
        headers["sec-ch-ua"] = (
            f'"Chromium";v="{version}", "Not(A:Brand";v="24", "Google Chrome";v="{version}"'
        )
        headers["sec-ch-ua-mobile"] = "?0"
        headers["sec-ch-ua-platform"] = random.choice(['"Windows"', '"macOS"', '"Linux"'])

    return headers


def build_referer(url: str, params: Optional[dict[str, str]] = None) -> str:
    """Build a realistic Referer (site origin, or the page itself with params)."""
    parsed = urlparse(url)
    origin = f"{parsed.scheme}://{parsed.netloc}"
    if params:
        return f"{origin}{parsed.path}?{urlencode(params)}"
    return f"{origin}/"


def is_block_page(html: str, content_marker: Optional[str] = None) -> bool:
    """Detect captcha / access-denied interstitials.

    The <title> is checked first. The body text is only checked when the page
    lacks ``content_marker``, since real pages can mention "captcha" in
    scripts or footers.
    """
    if not html:
        return False
    soup = BeautifulSoup(html, "lxml")
    title = (soup.title.get_text(" ", strip=True) if soup.title else "").lower()
    if any(marker in title for marker in BLOCK_INDICATORS):
        return True

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(" ", strip=True).lower()
    if content_marker and content_marker.lower() in text:
        return False
    return any(marker in text for marker in BLOCK_INDICATORS)


async def human_delay(jitter: tuple[float, float]) -> None:
    low, high = jitter
    if high <= 0:
        return
    await asyncio.sleep(random.uniform(low, high))


async def httpx_get_page(
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    headers: Optional[dict[str, str]] = None,
    referer: Optional[str] = None,
    request_timeout: float = 25.0,
    jitter: tuple[float, float] = (0.5, 1.5),
) -> httpx.Response:
    """GET ``url`` with a human-like delay and browser headers.

    The response is returned whatever its status; callers decide what a 403 or
    404 means for them. Transport errors (timeouts, connection failures)
    propagate as ``httpx`` exceptions.
    """
    if headers is None:
        headers = get_random_headers()
    headers.setdefault("Referer", referer or build_referer(url))

    await human_delay(jitter)

    if client is not None:
        logger.info(f"🔍 GET {url}")
        return await client.get(url, headers=headers, timeout=request_timeout)

    async with httpx.AsyncClient(
        follow_redirects=True,
        http2=True,
        timeout=httpx.Timeout(float(request_timeout)),
        max_redirects=10,
    ) as session:
        logger.info(f"🔍 GET {url}")
        return await session.get(url, headers=headers)
