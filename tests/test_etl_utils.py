import httpx
import pytest
import respx

from slabmarket.etl.utils import (
    detect_certificate_format,
    find_potential_duplicates,
    image_extension,
    normalize_card,
    storage_path,
    upload_image_to_storage,
    validate_card,
)

BASE_SET = {"id": "base1", "name": "Base Set", "release_year": 1999}


def _valid_card(**overrides):
    card = {
        "name": "Charizard",
        "set_name": "Base Set",
        "card_number": "4",
        "slug": "base-set-charizard-4",
        "year": 1999,
        "image_url": "https://images.pokemontcg.io/base1/4_hires.png",
    }
    card.update(overrides)
    return card


# ---------- normalize_card ----------


def test_normalize_prefers_set_release_year_and_large_image():
    raw = {
        "name": "  Charizard ",
        "number": "4",
        "releaseDate": "2001/01/09",
        "images": {"small": "https://img/small.png", "large": "https://img/large.png"},
        "rarity": " Rare Holo ",
        "flavorText": " Spits fire. ",
    }
    card = normalize_card(raw, {"name": " Base Set ", "release_year": 1999})
    assert card.name == "Charizard"
    assert card.set_name == "Base Set"
    assert card.card_number == "4"
    assert card.year == 1999
    assert card.image_url == "https://img/large.png"
    assert card.rarity == "Rare Holo"
    assert card.description == "Spits fire."
    assert card.slug == "base-set-charizard-4"


def test_normalize_falls_back_to_release_date_and_small_image():
    raw = {"name": "Pikachu", "number": 58, "releaseDate": "1999/01/09", "images": {"small": "https://img/s.png"}}
    card = normalize_card(raw, {"name": "Base Set"})
    assert card.year == 1999
    assert card.card_number == "58"
    assert card.image_url == "https://img/s.png"


def test_normalize_absent_optionals_are_none():
    card = normalize_card({"name": "Pikachu"}, {"name": "Base Set"})
    assert card.card_number is None
    assert card.year is None
    assert card.image_url is None
    assert card.rarity is None
    assert card.description is None
    assert card.slug == "base-set-pikachu"


def test_normalize_blank_strings_become_none():
    card = normalize_card({"name": "Pikachu", "rarity": "   ", "releaseDate": "unknown"}, {"name": "Base Set"})
    assert card.rarity is None
    assert card.year is None


# ---------- validate_card ----------


def test_validate_accepts_well_formed_card():
    assert validate_card(_valid_card()) == (True, [])


@pytest.mark.parametrize("year", [1900, 2100])
def test_validate_year_bounds_inclusive(year):
    ok, _ = validate_card(_valid_card(year=year))
    assert ok


@pytest.mark.parametrize("year", [1899, 2101, "1999"])
def test_validate_year_out_of_range(year):
    ok, errors = validate_card(_valid_card(year=year))
    assert not ok
    assert any("Year" in e for e in errors)


@pytest.mark.parametrize("slug", ["Base-Set-Charizard", "base_set_charizard", "base set", "base.set"])
def test_validate_rejects_bad_slug(slug):
    ok, errors = validate_card(_valid_card(slug=slug))
    assert not ok
    assert any("Slug" in e for e in errors)


@pytest.mark.parametrize("field", ["name", "set_name"])
@pytest.mark.parametrize("value", [None, "", "   "])
def test_validate_requires_name_and_set(field, value):
    ok, errors = validate_card(_valid_card(**{field: value}))
    assert not ok
    assert any("required" in e for e in errors)


def test_validate_rejects_malformed_image_url():
    ok, errors = validate_card(_valid_card(image_url="not a url"))
    assert not ok
    assert errors == ["Image URL must be a valid URL"]


# ---------- find_potential_duplicates ----------

EXISTING = {"name": "Charizard", "set_name": "Base Set", "card_number": "4/102"}


def test_identical_card_scores_one_at_any_threshold():
    for threshold in (0.0, 0.5, 0.85, 1.0):
        matches = find_potential_duplicates(dict(EXISTING), [EXISTING], threshold)
        assert len(matches) == 1
        assert matches[0].similarity == 1.0
        assert matches[0].nameSimilarity == 1.0
        assert matches[0].numberSimilarity == 1.0


def test_other_set_never_matches():
    candidate = dict(EXISTING, set_name="Base Set 2")
    assert find_potential_duplicates(candidate, [EXISTING], 0.0) == []


def test_missing_number_is_not_a_penalty():
    candidate = {"name": "charizard", "set_name": "Base Set", "card_number": None}
    matches = find_potential_duplicates(candidate, [EXISTING], 0.99)
    assert matches and matches[0].numberSimilarity == 1.0


def test_raising_threshold_never_adds_results():
    existing = [
        EXISTING,
        {"name": "Charmander", "set_name": "Base Set", "card_number": "46/102"},
        {"name": "Charmeleon", "set_name": "Base Set", "card_number": "24/102"},
        {"name": "Chansey", "set_name": "Base Set", "card_number": "3/102"},
    ]
    candidate = {"name": "Charizard", "set_name": "Base Set", "card_number": "4"}
    low = find_potential_duplicates(candidate, existing, 0.5)
    high = find_potential_duplicates(candidate, existing, 0.95)
    assert len(high) <= len(low)


def test_results_sorted_descending():
    existing = [
        {"name": "Charmander", "set_name": "Base Set", "card_number": "46/102"},
        EXISTING,
        {"name": "Charizrd", "set_name": "Base Set", "card_number": "4/102"},
    ]
    candidate = dict(EXISTING)
    matches = find_potential_duplicates(candidate, existing, 0.3)
    assert len(matches) == 3
    assert matches[0].card == EXISTING
    for first, second in zip(matches, matches[1:]):
        assert first.similarity >= second.similarity


def test_weights_are_configurable():
    candidate = {"name": "Charizard", "set_name": "Base Set", "card_number": "99/102"}
    default = find_potential_duplicates(candidate, [EXISTING], 0.0)[0]
    name_only = find_potential_duplicates(candidate, [EXISTING], 0.0, name_weight=1.0, number_weight=0.0)[0]
    assert name_only.similarity == 1.0
    assert default.similarity < 1.0


# ---------- certificate format ----------


@pytest.mark.parametrize(
    "cert, company",
    [("PSA 12345678", "PSA"), ("psa12345678", "PSA"), ("BGS 1234567", "BGS"), ("CGC 1234567", "CGC"), ("12345678", None)],
)
def test_detect_certificate_format(cert, company):
    result = detect_certificate_format({"cert_number": cert, "grade": "10"})
    assert result == {"grading_company": company, "grade": "10", "cert_number": cert}


def test_detect_certificate_format_without_cert():
    assert detect_certificate_format({}) == {"grading_company": None, "grade": None, "cert_number": None}


# ---------- image re-hosting ----------


def test_image_extension_from_url_then_content_type():
    assert image_extension("https://img/x/4_hires.PNG", None) == "png"
    assert image_extension("https://img/x/4", "image/webp") == "webp"
    assert image_extension("https://img/x/4", None) == "jpg"


def test_storage_path_is_stable():
    path = storage_path("base-set-charizard-4", "https://img/4.png", "png")
    assert path == storage_path("base-set-charizard-4", "https://img/4.png", "png")
    assert path.startswith("cards/base-set-charizard-4-") and path.endswith(".png")
    assert len(path.rsplit("-", 1)[1]) == len("12345678.png")


@pytest.mark.asyncio
@respx.mock
async def test_upload_image_to_storage(fake_supabase):
    url = "https://images.pokemontcg.io/base1/4_hires.png"
    respx.get(url).mock(
        return_value=httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})
    )

    public_url = await upload_image_to_storage(url, "base-set-charizard-4", fake_supabase)

    path = storage_path("base-set-charizard-4", url, "png")
    assert public_url.endswith(f"/card-images/{path}")
    assert ("card-images", path) in fake_supabase.storage.objects


@pytest.mark.asyncio
@respx.mock
async def test_upload_image_failures_return_none(fake_supabase):
    respx.get("https://img.example/missing.png").mock(return_value=httpx.Response(404))
    assert await upload_image_to_storage("https://img.example/missing.png", "slug", fake_supabase) is None

    respx.get("https://img.example/ok.png").mock(return_value=httpx.Response(200, content=b"x"))
    fake_supabase.storage.fail_uploads = True
    assert await upload_image_to_storage("https://img.example/ok.png", "slug", fake_supabase) is None

    assert await upload_image_to_storage(None, "slug", fake_supabase) is None
