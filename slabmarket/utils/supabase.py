"""Supabase client configuration and shared query helpers."""

import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

from slabmarket.utils.logger import supabase_logger as sb_logger

# Load environment variables from .env file
load_dotenv()

_client: Optional[Client] = None


def _get_supabase_credentials() -> tuple[str, str]:
    """Get and validate Supabase credentials from environment."""
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or os.environ.get(
        "SUPABASE_SERVICE_KEY"
    )

    if not url or not key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY environment variables are required"
        )

    return url, key


def _create_supabase_client() -> Client:
    """Create the Supabase client from environment credentials."""
    url, key = _get_supabase_credentials()

    sb_logger.info("🔧 Initializing Supabase connection...")
    sb_logger.info(f"   🌐 URL: {url}")
    sb_logger.info(f"   🔑 Key: {key[:20]}...")

    try:
        client = create_client(url, key)
        sb_logger.info("✅ Supabase client created")
        return client
    except Exception as e:
        sb_logger.error(f"❌ Supabase connection failed: {e}")
        raise


def get_supabase() -> Client:
    """Return the process-wide Supabase client, creating it on first use."""
    global _client
    if _client is None:
        _client = _create_supabase_client()
    return _client


# ===============================================================
# query helpers
# ===============================================================
def supabase_apply_filter(query, filters: dict | None):
    """Apply a filter dict to a query builder.

    Plain values become equality filters. Dict values support the operators
    ``in``, ``neq``, ``gte`` and ``is`` (``{"is": None}`` -> ``IS NULL``).
    """
    if not filters:
        return query
    for k, v in filters.items():
        if v is None:
            sb_logger.debug(f"supabase_apply_filter: skipping filter {k}=None")
            continue

        if isinstance(v, dict):
            if "in" in v:
                in_val = v.get("in")
                if not isinstance(in_val, (list, tuple)) or len(in_val) == 0:
                    sb_logger.debug(
                        f"supabase_apply_filter: skipping filter {k} IN {in_val!r} (None/invalid/empty)"
                    )
                else:
                    query = query.in_(k, list(in_val))
                continue

            if "neq" in v:
                if v.get("neq") is not None:
                    query = query.neq(k, v["neq"])
                continue

            if "gte" in v:
                if v.get("gte") is not None:
                    query = query.gte(k, v["gte"])
                continue

            if "is" in v:
                query = query.is_(k, "null" if v["is"] is None else v["is"])
                continue

            sb_logger.debug(
                f"supabase_apply_filter: unrecognized filter object for key={k}: {v!r} (skipping)"
            )
            continue

        query = query.eq(k, v)
    return query


def supabase_select(
    table: str,
    filters: dict | None = None,
    columns: str = "*",
    client: Optional[Client] = None,
) -> list[dict]:
    """Select rows from ``table`` matching ``filters``. Errors propagate."""
    client = client or get_supabase()
    q = supabase_apply_filter(client.table(table).select(columns), filters)
    res = q.execute()
    return list(getattr(res, "data", []) or [])


def supabase_count(
    table: str, filters: dict | None = None, client: Optional[Client] = None
) -> int:
    """Count rows in ``table`` matching ``filters`` (exact count)."""
    client = client or get_supabase()
    q = supabase_apply_filter(
        client.table(table).select("*", count="exact"), filters
    )
    res = q.execute()
    count = getattr(res, "count", None)
    if count is None:
        return len(getattr(res, "data", []) or [])
    return int(count)
