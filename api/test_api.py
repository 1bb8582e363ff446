"""
Tests for the crawl and cache endpoints.
"""
import json

import pytest
from fastapi.testclient import TestClient

from melkmap.conftest import ScriptedProvider, feature, make_post, small_square
from melkmap.database import ResultCache
from melkmap.provider import Listings, TransportError

from api.database import get_cache, get_provider_factory
from api.main import app

AREA = feature(small_square(), id="sq")


class ProviderSession:
    """Async context manager handing out a scripted provider."""

    def __init__(self, provider):
        self.provider = provider

    async def __aenter__(self):
        return self.provider

    async def __aexit__(self, *exc):
        return None


def tile_posts(tile):
    return Listings([make_post(token=f"{tile.min_lat:.5f}:{tile.min_lng:.5f}")])


@pytest.fixture
def cache():
    return ResultCache()


@pytest.fixture
def provider():
    return ScriptedProvider(by_tile=tile_posts)


@pytest.fixture
def client(cache, provider):
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_provider_factory] = lambda: (lambda: ProviderSession(provider))
    yield TestClient(app)
    app.dependency_overrides.clear()


def events_of(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def test_health(client, cache):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["cached_areas"] == 0


@pytest.mark.parametrize("polygon", [
    None,
    {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]},
    {"type": "Polygon", "coordinates": 5},
    {"type": "MultiPolygon", "coordinates": [5]},
    {"type": "Feature", "geometry": [1, 2]},
])
def test_crawl_rejects_invalid_polygon(client, provider, polygon):
    response = client.post("/api/crawl", json={"polygon": polygon})
    assert response.status_code == 400
    assert provider.calls == []


def test_crawl_streams_progress_then_result(client, cache):
    response = client.post("/api/crawl", json={"polygon": AREA})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")

    events = events_of(response)
    progress = [e for e in events if e["type"] == "progress"]
    assert events[-1]["type"] == "result"
    assert progress[0]["fraction"] == 0.0
    assert [e["fraction"] for e in progress] == sorted(e["fraction"] for e in progress)

    result = events[-1]
    streamed = [x["token"] for e in progress for x in e["new_listings"]]
    assert streamed == [x["token"] for x in result["listings"]]
    assert result["area_id"] == "sq"
    assert result["from_cache"] is False
    assert cache.get("sq").tokens == streamed


def test_second_crawl_is_served_from_cache(client, provider):
    client.post("/api/crawl", json={"polygon": AREA})
    calls = len(provider.calls)

    events = events_of(client.post("/api/crawl", json={"polygon": AREA}))
    assert [e["type"] for e in events] == ["result"]
    assert events[0]["from_cache"] is True
    assert len(provider.calls) == calls

    events_of(client.post("/api/crawl", json={"polygon": AREA, "force_refresh": True}))
    assert len(provider.calls) == 2 * calls


def test_all_tiles_failing_streams_error(client, cache, provider):
    provider.by_tile = lambda tile: TransportError(detail="HTTP 502", status=502)
    events = events_of(client.post("/api/crawl", json={"polygon": AREA}))
    assert events[-1]["type"] == "error"
    assert events[-1]["error"] == "crawl_aborted"
    assert cache.get("sq") is None


def test_posts_and_cache_endpoints(client):
    assert client.get("/api/posts/sq").status_code == 404
    client.post("/api/crawl", json={"polygon": AREA})

    posts = client.get("/api/posts/sq")
    assert posts.status_code == 200
    assert posts.json()["from_cache"] is True
    count = len(posts.json()["listings"])
    assert count >= 1

    summary = client.get("/api/posts/sq/summary").json()
    assert summary["total_listings"] == count

    csv = client.get("/api/posts/sq/export/csv")
    assert csv.status_code == 200
    assert csv.headers["content-type"].startswith("text/csv")
    assert csv.text.splitlines()[0].startswith("token,")
    assert len(csv.text.splitlines()) == count + 1

    entries = client.get("/api/cache").json()
    assert [(e["area_id"], e["listing_count"]) for e in entries] == [("sq", count)]

    assert client.delete("/api/cache/sq").json() == {"evicted": "sq"}
    assert client.delete("/api/cache/sq").status_code == 404
    assert client.get("/api/posts/sq").status_code == 404
    assert client.delete("/api/cache").json() == {"evicted": 0}


def test_metrics_count_cached_listings(client):
    assert client.get("/metrics").json()["cached_areas"] == 0
    client.post("/api/crawl", json={"polygon": AREA})
    metrics = client.get("/metrics").json()
    assert metrics["cached_areas"] == 1
    assert metrics["cached_listings"] == len(client.get("/api/posts/sq").json()["listings"])


def test_filters_accept_camel_case_advertiser(client, provider):
    body = {"polygon": AREA, "filters": {"advertiserType": "business", "size": [50, 90]}}
    events = events_of(client.post("/api/crawl", json=body))
    assert events[-1]["type"] == "result"
    assert client.post("/api/crawl", json={"polygon": AREA, "filters": {"advertiserType": "agency"}}).status_code == 422


class BrokenSession:
    async def __aenter__(self):
        raise RuntimeError("driver missing")

    async def __aexit__(self, *exc):
        return None


def test_provider_start_failure_streams_error(client, cache):
    app.dependency_overrides[get_provider_factory] = lambda: BrokenSession
    response = client.post("/api/crawl", json={"polygon": AREA})
    assert response.status_code == 200
    events = events_of(response)
    assert events[-1]["type"] == "error"
    assert events[-1]["error"] == "crawl_failed"
    assert "driver missing" in events[-1]["detail"]
    assert cache.get("sq") is None
