"""
Export utilities for crawl results.
"""
import json
from typing import Any, Dict, List, Optional

import pandas as pd

from .models import CrawlResult, Listing


def _range(values: List[float]) -> Optional[Dict[str, float]]:
    if not values:
        return None
    return {"min": min(values), "max": max(values), "avg": sum(values) / len(values)}


def summarize_result(result: CrawlResult) -> Dict[str, Any]:
    """Counts, price/size ranges and location bounds of a crawl result."""
    listings = result.listings
    bounds = None
    if listings:
        lats = [x.location.lat for x in listings]
        lngs = [x.location.lng for x in listings]
        bounds = {"min_lat": min(lats), "max_lat": max(lats), "min_lng": min(lngs), "max_lng": max(lngs)}
    return {
        "area_id": result.area_id,
        "completed_at": result.completed_at,
        "total_listings": len(listings),
        "tile_count": result.tile_count,
        "failed_tiles": len(result.failed_tiles),
        "overflow_tiles": sum(1 for f in result.failed_tiles if f.reason == "overflow"),
        "price_range": _range([x.price_per_area for x in listings]),
        "size_range": _range([x.area_size for x in listings]),
        "location_bounds": bounds,
    }


def listings_to_dataframe(listings: List[Listing]) -> pd.DataFrame:
    """Flatten listings into one row each (raw payload excluded)."""
    rows = []
    for x in listings:
        rows.append({
            "token": x.token,
            "title": x.title,
            "lat": x.location.lat,
            "lng": x.location.lng,
            "area_size": x.area_size,
            "price_per_area": x.price_per_area,
            "total_price": x.total_price,
            "has_elevator": x.has_elevator,
            "has_parking": x.has_parking,
            "has_storage": x.has_storage,
            "room_count": x.room_count,
            "floor": x.floor,
            "building_age": x.building_age,
            "advertiser": x.advertiser,
            "neighborhood": x.neighborhood,
            "created_at": x.created_at,
            "subtitle1": x.subtitle1,
            "subtitle2": x.subtitle2,
            "subtitle3": x.subtitle3,
            "tags": "|".join(x.tags),
            "image_url": x.image_url or "",
            "description": x.description,
            "address": x.address,
        })
    return pd.DataFrame(rows, columns=[
        "token", "title", "lat", "lng", "area_size", "price_per_area", "total_price",
        "has_elevator", "has_parking", "has_storage", "room_count", "floor", "building_age",
        "advertiser", "neighborhood", "created_at", "subtitle1", "subtitle2", "subtitle3",
        "tags", "image_url", "description", "address",
    ])


def save_output_rows(result: CrawlResult, out_path: str, logger=None):
    """Save a crawl result to CSV, Excel or JSON (with summary) by extension."""
    lower = out_path.lower()
    if lower.endswith(".json"):
        data = {"summary": summarize_result(result), **result.to_dict()}
        with open(out_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        count = len(result.listings)
    else:
        df = listings_to_dataframe(result.listings)
        if lower.endswith(".xlsx"):
            df.to_excel(out_path, index=False)
        else:
            df.to_csv(out_path, index=False)
        count = len(df)

    if logger:
        logger.info(f">>> Saved {count} rows to {out_path}")
    else:
        print(f">>> Saved {count} rows to {out_path}")
