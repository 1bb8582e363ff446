"""
Data models for the polygon listing crawler.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Tile:
    """Axis-aligned rectangle used as one provider query."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float
    depth: int = 0

    def __post_init__(self):
        if not (self.min_lat < self.max_lat and self.min_lng < self.max_lng):
            raise ValueError(f"Degenerate tile: {self}")

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    def split(self) -> List["Tile"]:
        """Split into four quadrants (SW, SE, NW, NE)."""
        mid_lat = (self.min_lat + self.max_lat) / 2
        mid_lng = (self.min_lng + self.max_lng) / 2
        d = self.depth + 1
        return [
            Tile(self.min_lat, mid_lat, self.min_lng, mid_lng, d),
            Tile(self.min_lat, mid_lat, mid_lng, self.max_lng, d),
            Tile(mid_lat, self.max_lat, self.min_lng, mid_lng, d),
            Tile(mid_lat, self.max_lat, mid_lng, self.max_lng, d),
        ]

    def label(self) -> str:
        """Human-readable tile identifier for logging."""
        mid_lat = (self.min_lat + self.max_lat) / 2
        mid_lng = (self.min_lng + self.max_lng) / 2
        return f"({mid_lat:.4f}, {mid_lng:.4f}) d{self.depth}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Tile":
        return cls(d["min_lat"], d["max_lat"], d["min_lng"], d["max_lng"], d.get("depth", 0))


@dataclass
class FilterCriteria:
    """Provider-side search filters. ``None`` means no constraint."""

    elevator: Optional[bool] = None
    parking: Optional[bool] = None
    balcony: Optional[bool] = None
    size: Optional[Tuple[float, float]] = None
    price: Optional[Tuple[float, float]] = None
    advertiser_type: Optional[str] = None

    def __post_init__(self):
        if self.advertiser_type not in (None, "person", "business"):
            raise ValueError(f"Unknown advertiser type: {self.advertiser_type!r}")
        for name in ("size", "price"):
            rng = getattr(self, name)
            if rng is not None:
                lo, hi = rng
                setattr(self, name, (lo, hi))

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "FilterCriteria":
        d = d or {}
        return cls(
            elevator=d.get("elevator"),
            parking=d.get("parking"),
            balcony=d.get("balcony"),
            size=tuple(d["size"]) if d.get("size") is not None else None,
            price=tuple(d["price"]) if d.get("price") is not None else None,
            advertiser_type=d.get("advertiser_type", d.get("advertiserType")),
        )


@dataclass
class Location:
    lat: float
    lng: float


@dataclass
class Listing:
    """Canonical listing extracted from one provider map pin."""

    token: str
    location: Location
    price_per_area: float
    area_size: float
    total_price: Optional[float] = None

    # Card text
    title: str = ""
    subtitle: str = ""
    subtitle1: str = ""
    subtitle2: str = ""
    subtitle3: str = ""

    # Feature flags (absent only when the provider shows them crossed out)
    has_elevator: bool = True
    has_parking: bool = True
    has_storage: bool = True

    tags: List[str] = field(default_factory=list)
    image_url: Optional[str] = None

    # Extra chip/properties data
    advertiser: str = ""
    neighborhood: str = ""
    created_at: str = ""
    building_age: Optional[str] = None
    floor: Optional[str] = None
    room_count: Optional[int] = None

    # Detailed info (populated in second pass)
    description: str = ""
    address: str = ""

    raw: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Listing":
        d = dict(d)
        loc = d.pop("location")
        return cls(location=Location(lat=loc["lat"], lng=loc["lng"]), **d)


@dataclass
class TileFailure:
    """A tile whose listings are missing from a crawl result."""

    tile: Tile
    reason: str  # "overflow" or "transport"
    detail: str = ""
    cluster_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tile": self.tile.to_dict(),
            "reason": self.reason,
            "detail": self.detail,
            "cluster_count": self.cluster_count,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TileFailure":
        return cls(
            tile=Tile.from_dict(d["tile"]),
            reason=d["reason"],
            detail=d.get("detail", ""),
            cluster_count=d.get("cluster_count"),
        )


@dataclass
class CrawlResult:
    """Merged, deduplicated listings of one crawl over one area."""

    area_id: str
    listings: List[Listing]
    completed_at: str
    tile_count: int = 0
    failed_tiles: List[TileFailure] = field(default_factory=list)
    from_cache: bool = field(default=False, compare=False)

    @property
    def tokens(self) -> List[str]:
        return [x.token for x in self.listings]

    def get(self, token: str) -> Optional[Listing]:
        for x in self.listings:
            if x.token == token:
                return x
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "area_id": self.area_id,
            "listings": [x.to_dict() for x in self.listings],
            "completed_at": self.completed_at,
            "tile_count": self.tile_count,
            "failed_tiles": [f.to_dict() for f in self.failed_tiles],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any], from_cache: bool = False) -> "CrawlResult":
        return cls(
            area_id=d["area_id"],
            listings=[Listing.from_dict(x) for x in d.get("listings", [])],
            completed_at=d["completed_at"],
            tile_count=d.get("tile_count", 0),
            failed_tiles=[TileFailure.from_dict(f) for f in d.get("failed_tiles", [])],
            from_cache=from_cache,
        )
