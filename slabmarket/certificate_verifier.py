"""Certificate verification per grading company.

PSA certificates are checked against the live certificate page. BGS, CGC and
SGC have no upstream integration yet: their numbers are format-checked and a
placeholder payload is returned with ``verified=False`` and
``verification_method="format_only"`` so callers can tell them apart from a
real lookup.
"""

import re
from datetime import datetime
from typing import Optional

import httpx
import pytz

from slabmarket import psa_scraper
from slabmarket.models.certificate import (
    CertificateData,
    CertificateVerificationResult,
    GradingCompany,
    PopReport,
    VerificationMethod,
)
from slabmarket.utils.logger import verify_logger as logger
from slabmarket.utils.slug import optional_slug

MIN_CERT_LENGTH = 4

CERT_NUMBER_PATTERNS = {
    GradingCompany.PSA: re.compile(r"^\d{6,10}$"),
    GradingCompany.BGS: re.compile(r"^[A-Z0-9]{6,12}$", re.I),
    GradingCompany.CGC: re.compile(r"^\d{6,10}$"),
    GradingCompany.SGC: re.compile(r"^\d{6,12}$"),
}

# Placeholder grade reported by the format-only companies when none is claimed
STUB_DEFAULT_GRADE = "10"


def _invalid(error: str) -> CertificateVerificationResult:
    return CertificateVerificationResult(verified=False, valid=False, error=error)


def normalize_cert_number(cert_number: Optional[str]) -> str:
    return re.sub(r"\s+", "", cert_number or "")


def check_cert_format(company: GradingCompany, cert_number: str) -> Optional[str]:
    """Return an error message when ``cert_number`` is malformed for ``company``."""
    if len(cert_number) < MIN_CERT_LENGTH:
        return "Invalid certificate number format"
    if not CERT_NUMBER_PATTERNS[company].match(cert_number):
        return f"Invalid {company.display_name} certificate number format"
    return None


def _pop_report(data: dict) -> Optional[PopReport]:
    pop = data.get("pop_report")
    if not pop:
        return None
    return PopReport(grade=pop["grade"], population=pop["population"])


async def _verify_psa(
    cert_number: str, grade: Optional[str], client: Optional[httpx.AsyncClient]
) -> CertificateVerificationResult:
    result = await psa_scraper.fetch_certificate_data(cert_number, client=client)
    if not result.ok:
        return _invalid(result.error or "Unable to verify certificate")

    scraped = result.data or {}
    scraped_grade = scraped.get("grade")
    if grade and scraped_grade and grade.strip().upper() not in scraped_grade.upper():
        logger.warning(
            f"⚠️ PSA {cert_number}: claimed grade {grade!r} differs from certificate grade {scraped_grade!r}"
        )

    data = CertificateData(
        certificate_number=cert_number,
        grade=scraped_grade,
        grading_company=GradingCompany.PSA.display_name,
        card_name=scraped.get("card_name"),
        set_name=scraped.get("set_name"),
        card_number=scraped.get("card_number"),
        year=scraped.get("year"),
        set_slug=optional_slug(scraped.get("set_name")),
        image_url=scraped.get("image_url"),
        pop_report=_pop_report(scraped),
        verification_method=VerificationMethod.scrape,
    )
    return CertificateVerificationResult(verified=True, valid=True, data=data)


def _verify_format_only(
    company: GradingCompany, cert_number: str, grade: Optional[str]
) -> CertificateVerificationResult:
    data = CertificateData(
        certificate_number=cert_number,
        grade=grade or STUB_DEFAULT_GRADE,
        grading_company=company.display_name,
        grading_date=datetime.now(pytz.UTC).date().isoformat(),
        verification_method=VerificationMethod.format_only,
    )
    return CertificateVerificationResult(verified=False, valid=True, data=data)


async def verify_certificate(
    grading_company: Optional[str],
    cert_number: Optional[str],
    grade: Optional[str] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> CertificateVerificationResult:
    """Verify one certificate. Format failures return before any network call."""
    company = GradingCompany.from_name(grading_company)
    if company is None:
        return _invalid(f"Unsupported grading company: {grading_company}")

    cert_number = normalize_cert_number(cert_number)
    format_error = check_cert_format(company, cert_number)
    if format_error:
        logger.info(f"❌ {company.display_name} {cert_number!r}: {format_error}")
        return _invalid(format_error)

    if company is GradingCompany.PSA:
        return await _verify_psa(cert_number, grade, client)

    logger.info(f"📋 {company.display_name} {cert_number}: format check only")
    return _verify_format_only(company, cert_number, grade)
