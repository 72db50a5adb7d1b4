import pytest

from slabmarket import psa_scraper
from slabmarket.certificate_verifier import check_cert_format, verify_certificate
from slabmarket.models.certificate import GradingCompany, ScrapeResult, VerificationMethod

# ---------- company + format ----------


@pytest.mark.parametrize(
    "name, company",
    [("PSA", GradingCompany.PSA), ("psa", GradingCompany.PSA), ("Beckett", GradingCompany.BGS), ("BGS / Beckett", GradingCompany.BGS), (" cgc ", GradingCompany.CGC), ("SGC Grading", GradingCompany.SGC)],
)
def test_company_aliases(name, company):
    assert GradingCompany.from_name(name) is company


@pytest.mark.parametrize(
    "company, cert, ok",
    [
        (GradingCompany.PSA, "123456", True),
        (GradingCompany.PSA, "1234567890", True),
        (GradingCompany.PSA, "12345", False),
        (GradingCompany.PSA, "12345678901", False),
        (GradingCompany.PSA, "1234567A", False),
        (GradingCompany.BGS, "abc12345", True),
        (GradingCompany.SGC, "123456789012", True),
        (GradingCompany.CGC, "123", False),
    ],
)
def test_cert_format(company, cert, ok):
    assert (check_cert_format(company, cert) is None) is ok


# ---------- verify ----------


@pytest.mark.asyncio
async def test_short_psa_cert_is_invalid_without_network(scrape_calls):
    result = await verify_certificate("PSA", "12345")

    assert result.valid is False
    assert result.verified is False
    assert result.data is None
    assert result.error
    assert scrape_calls == []


@pytest.mark.asyncio
async def test_cert_under_four_chars(scrape_calls):
    result = await verify_certificate("PSA", "123")
    assert result.error == "Invalid certificate number format"
    assert scrape_calls == []


@pytest.mark.asyncio
async def test_unknown_company(scrape_calls):
    result = await verify_certificate("ACME", "12345678")
    assert (result.valid, result.verified) == (False, False)
    assert result.error == "Unsupported grading company: ACME"
    assert scrape_calls == []


@pytest.mark.asyncio
async def test_psa_success_populates_data_and_set_slug(scrape_calls):
    result = await verify_certificate("psa", "12345678", "10")

    assert (result.valid, result.verified) == (True, True)
    assert scrape_calls == ["12345678"]
    data = result.data
    assert data.grading_company == "PSA"
    assert data.card_name == "CHARIZARD-HOLO"
    assert data.set_slug == "pokemon-game"
    assert data.pop_report.population == 121
    assert data.verification_method is VerificationMethod.scrape


@pytest.mark.asyncio
async def test_psa_scrape_failure_omits_data(monkeypatch):
    async def failing_fetch(cert_number, **kwargs):
        return ScrapeResult(ok=False, error="PSA is blocking automated requests (HTTP 403)", error_type="blocked")

    monkeypatch.setattr(psa_scraper, "fetch_certificate_data", failing_fetch)

    result = await verify_certificate("PSA", "12345678")

    assert (result.valid, result.verified) == (False, False)
    assert result.data is None
    assert "blocking" in result.error


@pytest.mark.asyncio
@pytest.mark.parametrize("company", ["BGS", "CGC", "SGC"])
async def test_format_only_companies_are_not_verified(company, scrape_calls):
    result = await verify_certificate(company, "1234567", "9.5")

    assert result.valid is True
    assert result.verified is False
    assert result.data.verification_method is VerificationMethod.format_only
    assert result.data.grade == "9.5"
    assert result.data.grading_company == company
    assert scrape_calls == []
