import os
from datetime import datetime
from typing import Optional

import httpx
from fastapi import HTTPException
from pydantic import ValidationError
from supabase import Client

from slabmarket import certificate_verifier
from slabmarket.models.certificate import (
    CertificateData,
    CertificateVerificationResult,
    GradingCompany,
    VerificationRequestOptions,
    VerifyRequest,
)
from slabmarket.utils import certificate_cache
from slabmarket.utils.cert_validation import invalid_fields
from slabmarket.utils.logger import log_api_request, verify_logger as logger
from slabmarket.utils.safe_handler import safe_handler


def dev_bypass_allowed() -> bool:
    """Dev bypass needs a non-production ENV and ALLOW_DEV_BYPASS=true."""
    env = (os.environ.get("ENV") or os.environ.get("APP_ENV") or "development").lower()
    if env == "production":
        return False
    return os.environ.get("ALLOW_DEV_BYPASS", "").lower() == "true"


def effective_options(options: Optional[VerificationRequestOptions]) -> VerificationRequestOptions:
    """Drop a requested dev bypass unless the environment allows it."""
    options = options or VerificationRequestOptions()
    if options.dev_bypass and not dev_bypass_allowed():
        logger.warning("🚫 dev_bypass requested but not allowed in this environment; ignoring")
        return VerificationRequestOptions(skip_cache=options.skip_cache, dev_bypass=False)
    return options


def _result_from_cache(entry) -> Optional[CertificateVerificationResult]:
    """Build a result from a cache row, or ``None`` if it must be refreshed."""
    if not entry.valid:
        return None
    bad = invalid_fields(entry.data)
    if bad:
        logger.warning(
            f"🧹 Cached {entry.grading_company}/{entry.certificate_number} has invalid {bad}; refreshing"
        )
        return None
    try:
        data = CertificateData(**entry.data) if entry.data else None
    except ValidationError as e:
        logger.warning(
            f"🧹 Cached {entry.grading_company}/{entry.certificate_number} does not match the current shape; refreshing ({e.error_count()} errors)"
        )
        return None
    return CertificateVerificationResult(
        verified=entry.verified, valid=entry.valid, data=data, cached=True
    )


@safe_handler(default_detail="Certificate verification failed")
async def verify_certificate_handler(
    payload: VerifyRequest,
    user_id: Optional[str],
    options: Optional[VerificationRequestOptions] = None,
    *,
    client: Optional[Client] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
) -> CertificateVerificationResult:
    """
    Rate limit -> cache lookup -> live verification -> cache write.

    - 429 when the user wrote RATE_LIMIT_MAX_REQUESTS cache rows in the window
    - cached rows are re-validated on read; a bad row counts as a miss
    - the cache write never blocks the response
    """
    options = effective_options(options)
    resolved = GradingCompany.from_name(payload.grading_company)
    company = resolved.value if resolved else payload.grading_company
    cert_number = certificate_verifier.normalize_cert_number(payload.certificate_number)
    log_api_request(
        logger, "POST", "/verify-certificate", {"company": company, "cert": cert_number}
    )

    # -------------------------
    # Rate limit
    # -------------------------
    if user_id and not options.dev_bypass:
        recent = certificate_cache.count_recent_requests(user_id, now=now, client=client)
        if recent >= certificate_cache.RATE_LIMIT_MAX_REQUESTS:
            raise HTTPException(
                status_code=429,
                detail="Too many verification requests. Please wait a minute and try again.",
            )

    # -------------------------
    # Cache
    # -------------------------
    if not options.skip_cache:
        try:
            entry = certificate_cache.get_cached_entry(
                company, cert_number, now=now, client=client
            )
        except Exception as e:
            logger.error(f"❌ Cache lookup failed, verifying live: {e}")
            entry = None
        if entry is not None:
            cached = _result_from_cache(entry)
            if cached is not None:
                logger.info(f"⚡ Cache hit {company}/{cert_number}")
                return cached

    # -------------------------
    # Verify + cache write
    # -------------------------
    result = await certificate_verifier.verify_certificate(
        company, cert_number, payload.grade, client=http_client
    )
    try:
        certificate_cache.upsert_cache_entry(
            company, cert_number, result, user_id, now=now, client=client
        )
    except Exception as e:
        logger.error(f"❌ Failed to cache {company}/{cert_number}: {e}")

    return result
