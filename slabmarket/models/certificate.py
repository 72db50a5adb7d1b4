from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class GradingCompany(str, Enum):
    """Grading companies accepted by the verification endpoint."""

    PSA = "psa"
    BGS = "bgs"
    CGC = "cgc"
    SGC = "sgc"

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["GradingCompany"]:
        """Resolve a user-supplied company name or alias (case-insensitive)."""
        if not name:
            return None
        key = " ".join(name.strip().lower().split())
        return _COMPANY_ALIASES.get(key)

    @property
    def display_name(self) -> str:
        return self.value.upper()


_COMPANY_ALIASES = {
    "psa": GradingCompany.PSA,
    "psa grading": GradingCompany.PSA,
    "bgs": GradingCompany.BGS,
    "beckett": GradingCompany.BGS,
    "bgs / beckett": GradingCompany.BGS,
    "bgs/beckett": GradingCompany.BGS,
    "cgc": GradingCompany.CGC,
    "cgc cards": GradingCompany.CGC,
    "sgc": GradingCompany.SGC,
    "sgc grading": GradingCompany.SGC,
}


class VerificationMethod(str, Enum):
    scrape = "scrape"
    # BGS/CGC/SGC: format check only, no upstream lookup yet
    format_only = "format_only"


# Request Models
class VerifyRequest(BaseModel):
    """Body of POST /verify-certificate."""

    grading_company: str = Field(..., min_length=1, description="PSA, BGS, CGC or SGC")
    certificate_number: str = Field(..., min_length=1, description="Certificate / serial number")
    grade: Optional[str] = Field(None, description="Grade claimed by the seller")

    class Config:
        json_schema_extra = {
            "example": {
                "grading_company": "PSA",
                "certificate_number": "12345678",
                "grade": "10",
            }
        }


@dataclass(frozen=True)
class VerificationRequestOptions:
    """Operational escape hatches. Defaults are the production behaviour."""

    skip_cache: bool = False
    dev_bypass: bool = False


# Response Models
class PopReport(BaseModel):
    grade: str
    population: int


class CertificateData(BaseModel):
    certificate_number: str
    grade: Optional[str] = None
    grading_company: str
    card_name: Optional[str] = None
    set_name: Optional[str] = None
    card_number: Optional[str] = None
    year: Optional[int] = None
    set_slug: Optional[str] = None
    image_url: Optional[str] = None
    grading_date: Optional[str] = None
    pop_report: Optional[PopReport] = None
    verification_method: VerificationMethod = VerificationMethod.scrape


class CertificateVerificationResult(BaseModel):
    """Outcome of a verification. ``data`` is only set when ``valid`` is true."""

    verified: bool
    valid: bool
    data: Optional[CertificateData] = None
    error: Optional[str] = None
    cached: bool = False


class ScrapeResult(BaseModel):
    """Outcome of one PSA certificate page scrape."""

    ok: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    # "blocked" | "fetch" | "parse" when ok is False
    error_type: Optional[str] = None


class CertificateCacheEntry(BaseModel):
    """Row of the ``certificate_cache`` table."""

    grading_company: str
    certificate_number: str
    data: Optional[dict[str, Any]] = None
    verified: bool = False
    valid: bool = False
    last_checked_at: str
    user_id: Optional[str] = None
