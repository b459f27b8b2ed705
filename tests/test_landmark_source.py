"""Tests for the Overpass-backed landmark source."""
from urllib.parse import parse_qs

import httpx
import pytest

from colombo.core.errors import DecodeError, InvalidArgument, NetworkError, ProviderError
from colombo.services.landmark_source import (
    OverpassLandmarkSource,
    PoiCategory,
    build_query,
    parse_element,
)

from conftest import EIFFEL_TOWER, mock_client

ELEMENTS = {
    "elements": [
        {"type": "way", "id": 5013364, "center": {"lat": 48.8582602, "lon": 2.2944991},
         "tags": {"name": "Tour Eiffel", "tourism": "attraction", "website": "https://www.toureiffel.paris",
                  "addr:housenumber": "5", "addr:street": "Avenue Anatole France",
                  "addr:postcode": "75007", "addr:city": "Paris"}},
        {"type": "node", "id": 42, "lat": 48.8590, "lon": 2.2950,
         "tags": {"name": "Statue", "historic": "memorial", "phone": "+33 1 00 00 00 00"}},
        {"type": "node", "id": 43, "lat": 48.8591, "lon": 2.2951, "tags": {"historic": "memorial"}},
        {"type": "node", "id": 42, "lat": 48.8590, "lon": 2.2950, "tags": {"name": "Statue"}},
    ]
}


class TestParsing:
    def test_way_uses_center(self):
        found = parse_element(ELEMENTS["elements"][0])
        assert found.external_id == "way/5013364"
        assert found.coordinate.latitude == pytest.approx(48.8582602)
        assert found.website_url == "https://www.toureiffel.paris"
        assert found.address.formatted() == "5, Avenue Anatole France, Paris, 75007"

    def test_node_uses_lat_lon(self):
        found = parse_element(ELEMENTS["elements"][1])
        assert found.external_id == "node/42"
        assert found.phone == "+33 1 00 00 00 00"
        assert found.address is None

    def test_nameless_element_dropped(self):
        assert parse_element(ELEMENTS["elements"][2]) is None

    def test_element_without_position_dropped(self):
        assert parse_element({"type": "relation", "id": 1, "tags": {"name": "Somewhere"}}) is None

    def test_query_names_every_selector(self):
        query = build_query(EIFFEL_TOWER, 50, PoiCategory.MUSEUM, timeout=25)
        assert query.startswith("[out:json][timeout:25];")
        assert '["tourism"="museum"](around:50,48.8584,2.2945);' in query
        assert '["tourism"="gallery"](around:50,48.8584,2.2945);' in query
        assert query.endswith("out center tags;")


class TestSearchNearby:
    @pytest.mark.asyncio
    async def test_posts_query_and_dedupes(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json=ELEMENTS)

        async with mock_client(handler) as client:
            source = OverpassLandmarkSource(url="https://overpass.test/api/interpreter", client=client)
            found = await source.search_nearby(EIFFEL_TOWER, 50)

        assert seen["method"] == "POST"
        assert "(around:50,48.8584,2.2945)" in seen["form"]["data"][0]
        assert [c.external_id for c in found] == ["way/5013364", "node/42"]

    @pytest.mark.asyncio
    async def test_empty_result_is_empty_list(self):
        async with mock_client(lambda request: httpx.Response(200, json={"elements": []})) as client:
            assert await OverpassLandmarkSource(client=client).search_nearby(EIFFEL_TOWER, 50) == []

    @pytest.mark.asyncio
    async def test_rejects_non_positive_radius(self):
        async with mock_client(lambda request: httpx.Response(200, json={"elements": []})) as client:
            with pytest.raises(InvalidArgument):
                await OverpassLandmarkSource(client=client).search_nearby(EIFFEL_TOWER, 0)

    @pytest.mark.asyncio
    async def test_forbidden_is_provider_error(self):
        async with mock_client(lambda request: httpx.Response(403)) as client:
            with pytest.raises(ProviderError) as exc_info:
                await OverpassLandmarkSource(client=client).search_nearby(EIFFEL_TOWER, 50)
        assert not isinstance(exc_info.value, NetworkError)

    @pytest.mark.asyncio
    async def test_server_error_is_network_error(self):
        async with mock_client(lambda request: httpx.Response(504)) as client:
            with pytest.raises(NetworkError):
                await OverpassLandmarkSource(client=client).search_nearby(EIFFEL_TOWER, 50)

    @pytest.mark.asyncio
    async def test_transport_error_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(handler) as client:
            with pytest.raises(NetworkError):
                await OverpassLandmarkSource(client=client).search_nearby(EIFFEL_TOWER, 50)

    @pytest.mark.asyncio
    async def test_malformed_payload_is_decode_error(self):
        async with mock_client(lambda request: httpx.Response(200, json={"remark": "runtime error"})) as client:
            with pytest.raises(DecodeError):
                await OverpassLandmarkSource(client=client).search_nearby(EIFFEL_TOWER, 50)
