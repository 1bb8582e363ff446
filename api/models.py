"""
Pydantic models for API request/response serialization.
"""
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from melkmap.models import FilterCriteria


class FiltersIn(BaseModel):
    """Search filters; omitted fields put no constraint on the crawl."""
    model_config = ConfigDict(populate_by_name=True)

    elevator: Optional[bool] = None
    parking: Optional[bool] = None
    balcony: Optional[bool] = None
    size: Optional[Tuple[float, float]] = None
    price: Optional[Tuple[float, float]] = None
    advertiser_type: Optional[Literal["person", "business"]] = Field(None, alias="advertiserType")

    def to_criteria(self) -> FilterCriteria:
        return FilterCriteria(
            elevator=self.elevator,
            parking=self.parking,
            balcony=self.balcony,
            size=self.size,
            price=self.price,
            advertiser_type=self.advertiser_type,
        )


class CrawlRequest(BaseModel):
    """Input model for a crawl: a GeoJSON Feature or geometry plus filters."""
    polygon: Optional[Dict[str, Any]] = None
    filters: FiltersIn = FiltersIn()
    force_refresh: bool = False


class LocationOut(BaseModel):
    lat: float
    lng: float


class ListingOut(BaseModel):
    """Output model for listing data."""
    token: str
    location: LocationOut
    price_per_area: float
    area_size: float
    total_price: Optional[float] = None
    title: str = ""
    subtitle: str = ""
    subtitle1: str = ""
    subtitle2: str = ""
    subtitle3: str = ""
    has_elevator: bool = True
    has_parking: bool = True
    has_storage: bool = True
    tags: List[str] = []
    image_url: Optional[str] = None
    advertiser: str = ""
    neighborhood: str = ""
    created_at: str = ""
    building_age: Optional[str] = None
    floor: Optional[str] = None
    room_count: Optional[int] = None
    description: str = ""
    address: str = ""
    raw: Dict[str, Any] = {}


class TileOut(BaseModel):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float
    depth: int = 0


class TileFailureOut(BaseModel):
    tile: TileOut
    reason: str
    detail: str = ""
    cluster_count: Optional[int] = None


class CrawlResultOut(BaseModel):
    """Response model for a finished or cached crawl."""
    area_id: str
    completed_at: str
    tile_count: int
    from_cache: bool = False
    listings: List[ListingOut]
    failed_tiles: List[TileFailureOut] = []


class CacheEntryOut(BaseModel):
    area_id: str
    stored_at: float
    listing_count: int
