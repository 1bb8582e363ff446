"""
Shared pytest fixtures: raw provider posts and a scripted provider.
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from melkmap.provider import Listings, TileProvider


def make_post(
    token: Optional[str] = "abc",
    size: Optional[str] = "۸۵ متر",
    per_area: Optional[str] = "۴۵٬۰۰۰٬۰۰۰ تومان",
    total: Optional[str] = "۳٬۸۲۵٬۰۰۰٬۰۰۰ تومان",
    lat: Any = 35.7,
    lng: Any = 51.4,
    extra_chips: Optional[List[Dict[str, Any]]] = None,
    properties: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a viewport post in the provider's current card layout."""
    chips: List[Dict[str, Any]] = []
    if size is not None:
        chips.append({"title": size})
    chips.extend(extra_chips or [])

    price_fields = []
    if total is not None:
        price_fields.append({"title": "قیمت:", "value": total})
    if per_area is not None:
        price_fields.append({"title": "متری:", "value": per_area})

    card: Dict[str, Any] = {
        "title": "آپارتمان ۸۵ متری",
        "chips": chips,
        "price_fields": price_fields,
        "images": ["https://img.example/1.jpg"],
    }
    if token is not None:
        card["token"] = token

    return {
        "map_post_card": card,
        "map_pin_feature": {
            "lat": lat,
            "lon": lng,
            "properties": {"properties": dict(properties or {"source": "شخصی", "neighborhood": "ونک"})},
        },
    }


class ScriptedProvider(TileProvider):
    """
    Provider answering from a list of responses, one per call in call order,
    or from ``by_tile(tile)`` when given. An exception instance is raised
    instead of returned. Falls back to an empty Listings answer when the
    list is exhausted; ``delay(tile)`` sets a per-tile sleep in seconds.
    """

    def __init__(self, responses=None, by_tile=None, delay=None):
        self.responses = list(responses or [])
        self.by_tile = by_tile
        self.delay = delay
        self.calls = []

    async def query_tile(self, tile, filters):
        self.calls.append(tile)
        await asyncio.sleep(self.delay(tile) if self.delay else 0)
        if self.by_tile is not None:
            response = self.by_tile(tile)
        elif self.responses:
            response = self.responses.pop(0)
        else:
            response = Listings(posts=[])
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def post_factory():
    return make_post


# Unit square in (lng, lat)
UNIT_SQUARE = {
    "type": "Polygon",
    "coordinates": [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]],
}


def feature(geometry: Dict[str, Any], **properties) -> Dict[str, Any]:
    return {"type": "Feature", "properties": properties, "geometry": geometry}


def small_square(lng: float = 51.40, lat: float = 35.70, side_deg: float = 0.02) -> Dict[str, Any]:
    return {
        "type": "Polygon",
        "coordinates": [[
            [lng, lat], [lng + side_deg, lat], [lng + side_deg, lat + side_deg],
            [lng, lat + side_deg], [lng, lat],
        ]],
    }
