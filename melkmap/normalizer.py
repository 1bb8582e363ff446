"""
Normalization of raw provider map pins into canonical listings.

The viewport endpoint returns loosely structured posts: a ``map_post_card``
(newer layout) and a ``map_pin_feature`` whose nested ``properties`` carry
the legacy fields. Nothing in that payload is guaranteed to exist, so every
lookup below goes through ``_dig`` or an explicit type check.
"""
import logging
from typing import Any, Dict, List, Optional

from .models import Listing, Location
from .utils import clean_text, parse_leading_int, parse_localized_number, to_english_digits

logger = logging.getLogger(__name__)

AREA_MARKER = "متر"
FLOOR_MARKER = "طبقه"
BUILDING_AGE_MARKERS = ("ساخت", "سال")
ROOM_MARKERS = ("خواب", "اتاق")
PER_AREA_PRICE_LABEL = "متری:"
TOTAL_PRICE_LABEL = "قیمت:"

# A chip carrying one of these icons and no title means the feature is absent
# (the provider draws it crossed out). Every other listing has the feature.
FEATURE_ICON_RULES: Dict[str, str] = {
    "has_elevator": "elevator",
    "has_parking": "parking",
    "has_storage": "storage",
}


def _dig(obj: Any, *path: str) -> Any:
    """Follow a key path through nested dicts, returning None on any gap."""
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _first_str(*values: Any) -> str:
    for v in values:
        if isinstance(v, str) and v:
            return v
    return ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value


def raw_chips(card: Any, properties: Any) -> List[Any]:
    chips = _as_list(_dig(card, "chips"))
    if not chips:
        chips = _as_list(_dig(properties, "chips"))
    return chips


def chip_title(chip: Any) -> str:
    if isinstance(chip, dict):
        title = chip.get("title")
        return title if isinstance(title, str) else ""
    if isinstance(chip, str):
        return chip
    return ""


def extract_size(chips: List[Any]) -> Optional[int]:
    """Area size from the first chip labelled with the area unit."""
    for chip in chips:
        title = chip_title(chip)
        if AREA_MARKER in title and FLOOR_MARKER not in title:
            return parse_leading_int(title)
    return None


def _price_field(card: Any, label: str) -> Optional[str]:
    for pf in _as_list(_dig(card, "price_fields")):
        if isinstance(pf, dict) and pf.get("title") == label:
            value = pf.get("value")
            return value if isinstance(value, str) else None
    return None


def extract_price_per_area(card: Any, properties: Any) -> Optional[float]:
    price = parse_localized_number(_price_field(card, PER_AREA_PRICE_LABEL))
    if price is None:
        price = parse_localized_number(_dig(properties, "subtitle2"))
    return price


def extract_total_price(card: Any, properties: Any) -> Optional[float]:
    field = _price_field(card, TOTAL_PRICE_LABEL)
    if field is not None:
        total = parse_localized_number(field)
    else:
        total = parse_localized_number(_dig(properties, "subtitle1"))
    return total or None


def _icon_urls(chip: Dict[str, Any]) -> List[str]:
    urls = []
    for key in ("icon_url_light", "icon_url_dark"):
        value = chip.get(key)
        if isinstance(value, str):
            urls.append(value)
    return urls


def extract_features(chips: List[Any]) -> Dict[str, bool]:
    """Apply FEATURE_ICON_RULES to every chip; flags default to True."""
    flags = {name: True for name in FEATURE_ICON_RULES}
    for chip in chips:
        if not isinstance(chip, dict) or chip_title(chip):
            continue
        urls = _icon_urls(chip)
        for name, pattern in FEATURE_ICON_RULES.items():
            if any(pattern in u for u in urls):
                flags[name] = False
    return flags


def _find_tag(tags: List[str], markers) -> Optional[str]:
    for t in tags:
        if any(m in t for m in markers):
            return t
    return None


def normalize(raw: Any) -> Optional[Listing]:
    """
    Convert one raw provider post into a Listing.

    Returns None (listing dropped) when the post has no usable coordinates,
    area size, price per area or token.
    """
    if not isinstance(raw, dict):
        return None

    card = _dig(raw, "map_post_card")
    pin = _dig(raw, "map_pin_feature")
    properties = _dig(pin, "properties", "properties")
    if not isinstance(properties, dict):
        properties = {}

    lat = _dig(pin, "lat")
    if not _is_number(lat):
        lat = properties.get("lat")
    lng = _dig(pin, "lon")
    if not _is_number(lng):
        lng = properties.get("lon")
    if not (_is_number(lat) and _is_number(lng)):
        logger.debug("Dropping post without coordinates")
        return None

    chips = raw_chips(card, properties)
    size = extract_size(chips)
    if size is None:
        logger.debug(f"Dropping post without size chip: {[chip_title(c) for c in chips]}")
        return None

    price = extract_price_per_area(card, properties)
    if price is None:
        logger.debug("Dropping post without price per area")
        return None

    token = _dig(card, "token")
    if not isinstance(token, str) or not token:
        token = properties.get("token")
    if not isinstance(token, str) or not token:
        logger.debug("Dropping post without token")
        return None

    tags = [clean_text(t) for t in (chip_title(c) for c in chips) if t]

    images = _as_list(_dig(card, "images")) or _as_list(properties.get("images"))
    image_url = _first_str(images[0] if images else None, properties.get("image_url")) or None

    building_age_tag = _find_tag(tags, BUILDING_AGE_MARKERS)
    building_age = None
    if building_age_tag:
        digits = "".join(ch for ch in to_english_digits(building_age_tag) if ch.isdigit())
        building_age = digits or None
    room_tag = _find_tag(tags, ROOM_MARKERS)

    flags = extract_features(chips)

    return Listing(
        token=token,
        location=Location(lat=float(lat), lng=float(lng)),
        price_per_area=float(price),
        area_size=float(size),
        total_price=extract_total_price(card, properties),
        title=_first_str(_dig(card, "title"), properties.get("title")),
        subtitle=_first_str(properties.get("subtitle")),
        subtitle1=_first_str(properties.get("subtitle1")),
        subtitle2=_first_str(properties.get("subtitle2")),
        subtitle3=_first_str(properties.get("subtitle3")),
        has_elevator=flags["has_elevator"],
        has_parking=flags["has_parking"],
        has_storage=flags["has_storage"],
        tags=tags,
        image_url=image_url,
        advertiser=_first_str(properties.get("source")),
        neighborhood=_first_str(properties.get("neighborhood")),
        created_at=_first_str(properties.get("created_at")),
        building_age=building_age,
        floor=_find_tag(tags, (FLOOR_MARKER,)),
        room_count=parse_leading_int(room_tag),
        raw={
            "map_post_card": card,
            "map_pin_feature": pin,
            **properties,
        },
    )
