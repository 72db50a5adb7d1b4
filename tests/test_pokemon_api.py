import httpx
import pytest
import respx

from slabmarket.etl.pokemon_api import (
    CatalogApiError,
    api_headers,
    build_set_query,
    fetch_cards_for_set,
)

BASE = "https://api.test/v2"
CARDS_URL = f"{BASE}/cards"


def _page(count, start=0):
    return httpx.Response(
        200, json={"data": [{"id": f"c{i}", "name": f"Card {i}", "number": str(i)} for i in range(start, start + count)]}
    )


# ---------- query building ----------


def test_query_uses_set_id_when_usable():
    assert build_set_query("Base Set", "base1") == 'set.id:"base1"'


@pytest.mark.parametrize("set_id", [None, "", "base--unlimited", "x" * 51])
def test_query_falls_back_to_set_name(set_id):
    assert build_set_query('Team "Rocket"', set_id) == 'set.name:"Team \\"Rocket\\""'


def test_api_key_header_only_when_configured():
    assert api_headers("secret")["X-Api-Key"] == "secret"
    assert "X-Api-Key" not in api_headers("")


# ---------- pagination ----------


@pytest.mark.asyncio
@respx.mock
async def test_paginates_until_short_page():
    route = respx.get(CARDS_URL).mock(side_effect=[_page(10), _page(10, 10), _page(3, 20)])

    cards = await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)

    assert len(cards) == 23
    assert route.call_count == 3
    last = route.calls.last.request.url.params
    assert last["page"] == "3"
    assert last["pageSize"] == "10"
    assert last["q"] == 'set.id:"base1"'


@pytest.mark.asyncio
@respx.mock
async def test_returns_partial_results_on_http_error():
    respx.get(CARDS_URL).mock(side_effect=[_page(10), httpx.Response(500, text="boom")])

    cards = await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)

    assert len(cards) == 10


@pytest.mark.asyncio
@respx.mock
async def test_returns_partial_results_on_timeout():
    respx.get(CARDS_URL).mock(side_effect=[_page(10), httpx.ReadTimeout("slow")])

    cards = await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)

    assert len(cards) == 10


@pytest.mark.asyncio
@respx.mock
async def test_raises_when_first_page_fails():
    respx.get(CARDS_URL).mock(return_value=httpx.Response(503, text="down"))

    with pytest.raises(CatalogApiError, match="503"):
        await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)


@pytest.mark.asyncio
@respx.mock
async def test_raises_when_first_page_times_out():
    respx.get(CARDS_URL).mock(side_effect=httpx.ConnectTimeout("slow"))

    with pytest.raises(CatalogApiError):
        await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)


@pytest.mark.asyncio
@respx.mock
async def test_non_json_first_page_is_an_api_error():
    respx.get(CARDS_URL).mock(return_value=httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(CatalogApiError, match="unexpected body"):
        await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)


@pytest.mark.asyncio
@respx.mock
async def test_non_json_later_page_returns_partial_results():
    respx.get(CARDS_URL).mock(
        side_effect=[_page(10), httpx.Response(200, text="<html>maintenance</html>")]
    )

    cards = await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)

    assert len(cards) == 10


@pytest.mark.asyncio
@respx.mock
async def test_json_list_body_is_an_api_error():
    respx.get(CARDS_URL).mock(return_value=httpx.Response(200, json=[{"id": "c1"}]))

    with pytest.raises(CatalogApiError):
        await fetch_cards_for_set("Base Set", "base1", base_url=BASE, page_delay=0)
