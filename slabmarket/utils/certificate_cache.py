"""certificate_cache table access: TTL lookup, upsert and per-user rate counting."""

from datetime import datetime, timedelta
from typing import Optional

import pytz
from dateutil import parser as date_parser
from supabase import Client

from slabmarket.models.certificate import (
    CertificateCacheEntry,
    CertificateVerificationResult,
)
from slabmarket.utils.logger import supabase_logger as logger
from slabmarket.utils.supabase import get_supabase, supabase_apply_filter, supabase_count

CACHE_TABLE = "certificate_cache"
CACHE_TTL = timedelta(hours=24)
RATE_LIMIT_WINDOW = timedelta(seconds=60)
RATE_LIMIT_MAX_REQUESTS = 10


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def parse_timestamp(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = date_parser.isoparse(str(value))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = pytz.UTC.localize(ts)
    return ts


def cache_key(grading_company: str, certificate_number: str) -> tuple[str, str]:
    return grading_company.strip().lower(), certificate_number.strip()


def is_fresh(
    entry: CertificateCacheEntry,
    now: Optional[datetime] = None,
    ttl: timedelta = CACHE_TTL,
) -> bool:
    """An entry is usable while strictly younger than ``ttl``."""
    checked_at = parse_timestamp(entry.last_checked_at)
    if checked_at is None:
        return False
    return (now or utcnow()) - checked_at < ttl


def get_cached_entry(
    grading_company: str,
    certificate_number: str,
    *,
    now: Optional[datetime] = None,
    ttl: timedelta = CACHE_TTL,
    client: Optional[Client] = None,
) -> Optional[CertificateCacheEntry]:
    """Most recent entry for the key checked within ``ttl``, or ``None``."""
    client = client or get_supabase()
    company, number = cache_key(grading_company, certificate_number)
    cutoff = (now or utcnow()) - ttl

    query = supabase_apply_filter(
        client.table(CACHE_TABLE).select("*"),
        {
            "grading_company": company,
            "certificate_number": number,
            "last_checked_at": {"gte": cutoff.isoformat()},
        },
    )
    res = query.order("last_checked_at", desc=True).limit(1).execute()
    rows = getattr(res, "data", None) or []
    if not rows:
        return None

    entry = CertificateCacheEntry(**rows[0])
    if not is_fresh(entry, now=now, ttl=ttl):
        return None
    return entry


def upsert_cache_entry(
    grading_company: str,
    certificate_number: str,
    result: CertificateVerificationResult,
    user_id: Optional[str],
    *,
    now: Optional[datetime] = None,
    client: Optional[Client] = None,
) -> None:
    """Write the result (success or failure) with a fresh timestamp. Errors propagate."""
    client = client or get_supabase()
    company, number = cache_key(grading_company, certificate_number)
    row = {
        "grading_company": company,
        "certificate_number": number,
        "data": result.data.model_dump(mode="json") if result.data else None,
        "verified": result.verified,
        "valid": result.valid,
        "last_checked_at": (now or utcnow()).isoformat(),
        "user_id": user_id,
    }
    client.table(CACHE_TABLE).upsert(
        row, on_conflict="grading_company,certificate_number"
    ).execute()
    logger.debug(f"💾 cached {company}/{number} (valid={result.valid})")


def count_recent_requests(
    user_id: str,
    *,
    now: Optional[datetime] = None,
    window: timedelta = RATE_LIMIT_WINDOW,
    client: Optional[Client] = None,
) -> int:
    """Cache writes by ``user_id`` in the trailing ``window``."""
    since = (now or utcnow()) - window
    return supabase_count(
        CACHE_TABLE,
        {"user_id": user_id, "last_checked_at": {"gte": since.isoformat()}},
        client=client,
    )
