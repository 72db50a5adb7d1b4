import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError

from slabmarket.handlers.verify_certificate import (
    effective_options,
    verify_certificate_handler,
)
from slabmarket.models.certificate import (
    CertificateVerificationResult,
    VerificationRequestOptions,
    VerifyRequest,
)
from slabmarket.utils.logger import api_logger
from slabmarket.utils.supabase import get_supabase

router = APIRouter()


# Dependency injection
def get_supabase_client():
    """Dependency injection for the Supabase client."""
    return get_supabase()


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_user_id(request: Request, client) -> str:
    """User id for the bearer token; 401 when missing or rejected."""
    token = _bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    try:
        res = client.auth.get_user(token)
    except Exception as e:
        api_logger.warning(f"🔒 Token rejected: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = getattr(res, "user", None)
    if user is None or not getattr(user, "id", None):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return str(user.id)


async def _parse_verify_request(request: Request) -> VerifyRequest:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not body.get("grading_company") or not body.get("certificate_number"):
        raise HTTPException(
            status_code=400,
            detail="grading_company and certificate_number are required",
        )
    try:
        return VerifyRequest(
            grading_company=str(body["grading_company"]),
            certificate_number=str(body["certificate_number"]),
            grade=str(body["grade"]) if body.get("grade") is not None else None,
        )
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid request body")


# ===============================================================
# CERTIFICATE VERIFICATION
# ===============================================================


@router.post(
    "/verify-certificate",
    summary="Verify a graded card certificate",
    response_model=CertificateVerificationResult,
    response_model_exclude_none=True,
)
async def verify_certificate_endpoint(
    request: Request,
    skip_cache: bool = Query(False, description="Ignore cached results and verify live"),
    dev_bypass: bool = Query(
        False, description="Skip auth and rate limit (non-production only)"
    ),
    client=Depends(get_supabase_client),
):
    """Verify a certificate. Every verification outcome is a 200; check ``valid``."""
    options = effective_options(
        VerificationRequestOptions(skip_cache=skip_cache, dev_bypass=dev_bypass)
    )

    user_id = None
    if not options.dev_bypass:
        user_id = resolve_user_id(request, client)

    payload = await _parse_verify_request(request)
    return await verify_certificate_handler(payload, user_id, options, client=client)
