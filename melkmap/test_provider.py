"""
Tests for the viewport request/response mapping.
"""
import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from melkmap.models import FilterCriteria, Tile
from melkmap.provider import (
    POST_DETAILS_PATH,
    VIEWPORT_PATH,
    DivarProvider,
    Listings,
    Overflow,
    TransportError,
    build_form_data,
    build_viewport_payload,
    classify_viewport,
    parse_post_details,
)

TILE = Tile(min_lat=35.70, max_lat=35.71, min_lng=51.40, max_lng=51.41)


def test_form_data_defaults():
    data = build_form_data(FilterCriteria())
    assert data == {
        "map_free_roaming": {"boolean": {"value": True}},
        "category": {"str": {"value": "apartment-sell"}},
    }


def test_form_data_with_filters():
    filters = FilterCriteria(elevator=True, parking=False, size=(50, 120),
                             price=(1e9, 5e9), advertiser_type="business")
    data = build_form_data(filters)
    assert data["elevator"] == {"boolean": {"value": True}}
    assert data["parking"] == {"boolean": {"value": False}}
    assert "balcony" not in data
    assert data["size"] == {"number_range": {"minimum": 50, "maximum": 120}}
    assert data["price"]["number_range"]["maximum"] == 5e9
    assert data["business-type"] == {"str": {"value": "real-estate-business"}}
    person = build_form_data(FilterCriteria(advertiser_type="person"))
    assert person["business-type"] == {"str": {"value": "personal"}}


def test_filter_criteria_from_dict():
    f = FilterCriteria.from_dict({"size": [40, 90], "advertiserType": "person"})
    assert f.size == (40, 90)
    assert f.advertiser_type == "person"
    with pytest.raises(ValueError):
        FilterCriteria(advertiser_type="agency")


def test_viewport_payload_bbox():
    payload = build_viewport_payload(TILE, FilterCriteria())
    bbox = payload["camera_info"]["bbox"]
    assert bbox == {
        "min_latitude": 35.70,
        "min_longitude": 51.40,
        "max_latitude": 35.71,
        "max_longitude": 51.41,
    }
    assert "form_data" in payload["search_data"]


@pytest.mark.parametrize("payload, expected", [
    ({"posts": [{"a": 1}], "clusters": []}, Listings(posts=[{"a": 1}])),
    ({"posts": [], "clusters": [{}]}, Listings(posts=[])),
    ({"posts": [], "clusters": [{}, {}, {}]}, Overflow(cluster_count=3)),
    ({}, Listings(posts=[])),
    ({"posts": "nope", "clusters": None}, Listings(posts=[])),
])
def test_classify_viewport(payload, expected):
    assert classify_viewport(payload) == expected


@pytest.mark.parametrize("payload", [None, [], "error"])
def test_classify_viewport_garbage(payload):
    assert isinstance(classify_viewport(payload), TransportError)


def test_parse_post_details():
    payload = {"sections": [
        {"section_name": "TITLE", "widgets": []},
        {"section_name": "DESCRIPTION", "widgets": [{"data": {"text": "نورگیر عالی"}}]},
        {"section_name": "LOCATION", "widgets": [
            {"widget_type": "MAP_ROW", "data": {}},
            {"widget_type": "TEXT_ROW", "data": {"value": "تهران، ونک"}},
        ]},
    ]}
    details = parse_post_details(payload)
    assert details.description == "نورگیر عالی"
    assert details.address == "تهران، ونک"
    assert len(details.sections) == 3
    assert parse_post_details({"error": "gone"}) is None
    assert parse_post_details(None) is None


class FakeResponse:
    def __init__(self, status=200, payload=None, bad_json=False):
        self.status = status
        self.ok = 200 <= status < 300
        self._payload = payload
        self._bad_json = bad_json

    async def json(self):
        if self._bad_json:
            raise ValueError("Expecting value")
        return self._payload


class FakeRequest:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def _answer(self, method, url, data=None):
        self.calls.append((method, url, data))
        if self.error is not None:
            raise self.error
        return self.response

    async def post(self, url, data=None):
        return await self._answer("POST", url, data)

    async def get(self, url):
        return await self._answer("GET", url)


def started(request):
    provider = DivarProvider(base_url="http://proxy.local/")
    provider._request = request
    return provider


def query(provider):
    return asyncio.run(provider.query_tile(TILE, FilterCriteria()))


def test_query_tile_maps_responses():
    request = FakeRequest(FakeResponse(payload={"posts": [{"x": 1}], "clusters": []}))
    assert query(started(request)) == Listings(posts=[{"x": 1}])
    method, url, body = request.calls[0]
    assert (method, url) == ("POST", "http://proxy.local" + VIEWPORT_PATH)
    assert body["camera_info"]["bbox"]["min_latitude"] == 35.70

    overflow = FakeRequest(FakeResponse(payload={"posts": [], "clusters": [{}, {}]}))
    assert query(started(overflow)) == Overflow(cluster_count=2)


def test_query_tile_transport_errors():
    assert query(started(FakeRequest(FakeResponse(status=502)))) == TransportError(detail="HTTP 502", status=502)
    assert isinstance(query(started(FakeRequest(FakeResponse(bad_json=True)))), TransportError)
    failed = query(started(FakeRequest(error=PlaywrightError("net::ERR_CONNECTION_RESET"))))
    assert isinstance(failed, TransportError)
    assert "ERR_CONNECTION_RESET" in failed.detail


def test_fetch_post_details():
    ok = FakeRequest(FakeResponse(payload={"sections": [
        {"section_name": "DESCRIPTION", "widgets": [{"data": {"text": "desc"}}]},
    ]}))
    details = asyncio.run(started(ok).fetch_post_details("abc"))
    assert details.description == "desc"
    assert ok.calls[0][1] == "http://proxy.local" + POST_DETAILS_PATH.format(token="abc")

    forbidden = FakeRequest(FakeResponse(status=403))
    assert asyncio.run(started(forbidden).fetch_post_details("abc")) is None


def test_provider_must_be_started():
    with pytest.raises(RuntimeError):
        asyncio.run(DivarProvider().query_tile(TILE, FilterCriteria()))
