"""
Provider client boundary and the Divar map viewport adapter.

The orchestrator only depends on ``TileProvider.query_tile`` and its three
possible outcomes. Retries on 429, request signing and header rotation are
the job of the proxy in front of the provider; ``DivarProvider`` just talks
to whatever base URL it is given.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .models import FilterCriteria, Tile

DIVAR_BASE_URL = "https://api.divar.ir"
VIEWPORT_PATH = "/v8/mapview/viewport"
POST_DETAILS_PATH = "/v5/posts/{token}"
CATEGORY_SLUG = "apartment-sell"
DEFAULT_TIMEOUT_MS = 30_000

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Accept-Language": "fa,en;q=0.9",
    "Referer": "https://divar.ir/",
}

logger = logging.getLogger(__name__)


@dataclass
class Listings:
    """Tile answered with individual posts."""
    posts: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Overflow:
    """Tile too dense: the provider answered with clusters instead of pins."""
    cluster_count: int


@dataclass
class TransportError:
    """Tile query failed before a usable answer was received."""
    detail: str
    status: Optional[int] = None


ProviderResponse = Union[Listings, Overflow, TransportError]


class TileProvider:
    """Contract consumed by the crawl orchestrator."""

    async def query_tile(self, tile: Tile, filters: FilterCriteria) -> ProviderResponse:
        raise NotImplementedError


@dataclass
class PostDetails:
    description: str = ""
    address: str = ""
    sections: List[Dict[str, Any]] = field(default_factory=list)


def build_form_data(filters: FilterCriteria) -> Dict[str, Any]:
    """Translate filter criteria to the provider's form_data dictionary."""
    data: Dict[str, Any] = {
        "map_free_roaming": {"boolean": {"value": True}},
        "category": {"str": {"value": CATEGORY_SLUG}},
    }
    if filters.advertiser_type is not None:
        business_type = "real-estate-business" if filters.advertiser_type == "business" else "personal"
        data["business-type"] = {"str": {"value": business_type}}
    for name in ("elevator", "parking", "balcony"):
        value = getattr(filters, name)
        if value is not None:
            data[name] = {"boolean": {"value": bool(value)}}
    for name in ("size", "price"):
        rng = getattr(filters, name)
        if rng is not None:
            data[name] = {"number_range": {"minimum": rng[0], "maximum": rng[1]}}
    return data


def build_viewport_payload(tile: Tile, filters: FilterCriteria) -> Dict[str, Any]:
    """Build the viewport request body for one tile."""
    return {
        "search_data": {"form_data": {"data": build_form_data(filters)}},
        "camera_info": {
            "bbox": {
                "min_latitude": tile.min_lat,
                "min_longitude": tile.min_lng,
                "max_latitude": tile.max_lat,
                "max_longitude": tile.max_lng,
            },
            "zoom": 99,
        },
    }


def classify_viewport(payload: Any) -> ProviderResponse:
    """Map a decoded viewport answer to a provider response."""
    if not isinstance(payload, dict):
        return TransportError(detail="Empty or non-object viewport response")
    clusters = payload.get("clusters")
    clusters = clusters if isinstance(clusters, list) else []
    if len(clusters) > 1:
        return Overflow(cluster_count=len(clusters))
    posts = payload.get("posts")
    return Listings(posts=posts if isinstance(posts, list) else [])


def parse_post_details(payload: Any) -> Optional[PostDetails]:
    """Extract description and address from a post details answer."""
    sections = payload.get("sections") if isinstance(payload, dict) else None
    if not isinstance(sections, list):
        return None

    details = PostDetails(sections=sections)
    for section in sections:
        if not isinstance(section, dict):
            continue
        widgets = section.get("widgets") if isinstance(section.get("widgets"), list) else []
        if section.get("section_name") == "DESCRIPTION" and widgets:
            data = widgets[0].get("data") if isinstance(widgets[0], dict) else None
            text = data.get("text") if isinstance(data, dict) else None
            details.description = text if isinstance(text, str) else ""
        if section.get("section_name") == "LOCATION":
            for widget in widgets:
                if not isinstance(widget, dict) or widget.get("widget_type") != "TEXT_ROW":
                    continue
                data = widget.get("data")
                value = data.get("value") if isinstance(data, dict) else None
                if isinstance(value, str) and value:
                    details.address = value
    return details


class DivarProvider(TileProvider):
    """
    Viewport client backed by Playwright's API request context.

    Use as an async context manager so the underlying driver is started and
    stopped exactly once per crawl session.
    """

    def __init__(
        self,
        base_url: str = DIVAR_BASE_URL,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        headers: Optional[Dict[str, str]] = None,
        logger=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms
        self.headers = dict(DEFAULT_HEADERS, **(headers or {}))
        self.logger = logger or logging.getLogger(__name__)
        self._pw = None
        self._request = None

    async def __aenter__(self) -> "DivarProvider":
        self._pw = await async_playwright().start()
        self._request = await self._pw.request.new_context(
            base_url=self.base_url,
            extra_http_headers=self.headers,
            timeout=self.timeout_ms,
        )
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._request is not None:
            await self._request.dispose()
            self._request = None
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None

    def _require_context(self):
        if self._request is None:
            raise RuntimeError("DivarProvider is not started; use 'async with DivarProvider()'")
        return self._request

    async def query_tile(self, tile: Tile, filters: FilterCriteria) -> ProviderResponse:
        request = self._require_context()
        body = build_viewport_payload(tile, filters)
        self.logger.debug(f"Querying viewport for tile {tile.label()}")
        try:
            response = await request.post(self.base_url + VIEWPORT_PATH, data=body)
        except PlaywrightError as e:
            self.logger.warning(f"Viewport request failed for tile {tile.label()}: {e}")
            return TransportError(detail=str(e))

        if not response.ok:
            self.logger.warning(f"Viewport returned HTTP {response.status} for tile {tile.label()}")
            return TransportError(detail=f"HTTP {response.status}", status=response.status)

        try:
            payload = await response.json()
        except (PlaywrightError, ValueError) as e:
            return TransportError(detail=f"Invalid JSON: {e}", status=response.status)

        result = classify_viewport(payload)
        if isinstance(result, Listings):
            self.logger.debug(f"Tile {tile.label()}: {len(result.posts)} posts")
        return result

    async def fetch_post_details(self, token: str) -> Optional[PostDetails]:
        """Fetch description and address of a single post; None on any failure."""
        request = self._require_context()
        try:
            response = await request.get(self.base_url + POST_DETAILS_PATH.format(token=token))
        except PlaywrightError as e:
            self.logger.error(f"Error fetching post details for token {token}: {e}")
            return None

        if response.status == 403:
            self.logger.warning(f"Got 403 for token {token}, skipping details fetch")
            return None
        if not response.ok:
            self.logger.error(f"Post details for {token} returned HTTP {response.status}")
            return None

        try:
            payload = await response.json()
        except (PlaywrightError, ValueError) as e:
            self.logger.error(f"Invalid post details JSON for {token}: {e}")
            return None
        return parse_post_details(payload)
