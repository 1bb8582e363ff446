"""
Polygon to tile decomposition.

A polygon is covered with a regular grid of roughly square cells; only cells
that touch the polygon are kept. Grid rows and columns are counted the way
turf's ``squareGrid`` counts them (whole cells along the south and west edges,
haversine distance), then stretched so the grid partitions the bounding box
exactly and no strip along the edges is left unqueried.
"""
import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from shapely.geometry import MultiPolygon, Polygon, box
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from .errors import InvalidPolygon, NoPolygonSelected
from .models import Tile
from .utils import KM_PER_DEGREE, haversine_km

DEFAULT_CELL_SIDE_KM = 1.0
MIN_CELL_SIDE_KM = 0.1

logger = logging.getLogger(__name__)


def extract_geometry(polygon: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return the geometry dict of a GeoJSON Feature or bare geometry."""
    if not polygon:
        raise NoPolygonSelected("No polygon selected. Please draw an area first.")
    if not isinstance(polygon, dict):
        raise InvalidPolygon(f"Expected a GeoJSON object, got {type(polygon).__name__}.")
    if polygon.get("type") == "Feature":
        geometry = polygon.get("geometry")
        if not geometry:
            raise NoPolygonSelected("Feature has no geometry.")
        if not isinstance(geometry, dict):
            raise InvalidPolygon("Feature geometry must be a GeoJSON object.")
        return geometry
    return polygon


def _ring(coords: Any) -> List[Tuple[float, float]]:
    if not isinstance(coords, list):
        raise InvalidPolygon("Polygon ring must be a list of coordinates.")
    if not coords:
        raise InvalidPolygon("Polygon ring is empty.")
    try:
        pts = [(float(c[0]), float(c[1])) for c in coords]
    except (TypeError, ValueError, IndexError, KeyError) as e:
        raise InvalidPolygon(f"Malformed coordinate in ring: {e}") from e
    if len(pts) < 3:
        raise InvalidPolygon("Polygon must have at least 3 coordinates. Please draw a complete area.")
    if len(set(pts)) < 3:
        raise InvalidPolygon("Polygon must have at least 3 distinct points.")
    return pts


def _polygon(rings: Any) -> Polygon:
    if not isinstance(rings, list) or not rings:
        raise InvalidPolygon("Invalid polygon coordinates. Please draw a valid area.")
    shell = _ring(rings[0])
    holes = [_ring(r) for r in rings[1:]]
    try:
        return Polygon(shell, holes)
    except (TypeError, KeyError, IndexError, ValueError) as e:
        raise InvalidPolygon(f"Invalid polygon coordinates: {e}") from e


def to_shape(polygon: Optional[Dict[str, Any]]) -> BaseGeometry:
    """Build a Shapely geometry from GeoJSON, validating coordinate counts."""
    geometry = extract_geometry(polygon)
    gtype = geometry.get("type")
    coords = geometry.get("coordinates")
    if not coords:
        raise NoPolygonSelected("Invalid polygon coordinates. Please draw a valid area.")
    if not isinstance(coords, list):
        raise InvalidPolygon("Polygon coordinates must be a list.")

    if gtype == "Polygon":
        return _polygon(coords)
    if gtype == "MultiPolygon":
        return MultiPolygon([_polygon(p) for p in coords])
    raise InvalidPolygon(f"Unsupported geometry type: {gtype!r}")


def effective_cell_side(bounds: Tuple[float, float, float, float], cell_side_km: float) -> float:
    """Shrink the cell side for polygons narrower than one cell."""
    min_lng, min_lat, max_lng, max_lat = bounds
    mean_lat = (min_lat + max_lat) / 2
    height_km = (max_lat - min_lat) * KM_PER_DEGREE
    width_km = (max_lng - min_lng) * KM_PER_DEGREE * math.cos(math.radians(mean_lat))

    min_dim_km = min(width_km, height_km)
    if min_dim_km < cell_side_km:
        adjusted = max(min_dim_km / 2, MIN_CELL_SIDE_KM)
        logger.info(
            f"Polygon area is small ({width_km:.2f}x{height_km:.2f} km). "
            f"Adjusting grid cell size to {adjusted:.3f} km."
        )
        return adjusted
    return cell_side_km


def _grid_edges(lo: float, hi: float, count: int) -> List[float]:
    step = (hi - lo) / count
    edges = [lo + i * step for i in range(count)]
    edges.append(hi)
    return edges


def decompose(polygon: Optional[Dict[str, Any]], cell_side_km: float = DEFAULT_CELL_SIDE_KM) -> List[Tile]:
    """
    Decompose a GeoJSON polygon into an ordered list of query tiles.

    Tiles are returned row by row from south to north, west to east within
    a row. Falls back to the polygon bounding box as a single tile when no
    grid cell intersects the polygon.
    """
    if cell_side_km <= 0:
        raise ValueError("cell_side_km must be positive")

    shape = to_shape(polygon)
    min_lng, min_lat, max_lng, max_lat = shape.bounds
    if not (min_lat < max_lat and min_lng < max_lng):
        raise InvalidPolygon("Polygon has zero area.")

    side = effective_cell_side(shape.bounds, cell_side_km)

    width_km = haversine_km(min_lat, min_lng, min_lat, max_lng)
    height_km = haversine_km(min_lat, min_lng, max_lat, min_lng)
    columns = int(width_km // side)
    rows = int(height_km // side)

    tiles: List[Tile] = []
    if columns > 0 and rows > 0:
        target = prep(shape)
        lat_edges = _grid_edges(min_lat, max_lat, rows)
        lng_edges = _grid_edges(min_lng, max_lng, columns)
        for r in range(rows):
            for c in range(columns):
                cell = box(lng_edges[c], lat_edges[r], lng_edges[c + 1], lat_edges[r + 1])
                if target.intersects(cell):
                    tiles.append(Tile(
                        min_lat=lat_edges[r],
                        max_lat=lat_edges[r + 1],
                        min_lng=lng_edges[c],
                        max_lng=lng_edges[c + 1],
                    ))

    if not tiles:
        logger.warning("No grid cells intersected the polygon. Using polygon bounding box as single cell.")
        tiles.append(Tile(min_lat=min_lat, max_lat=max_lat, min_lng=min_lng, max_lng=max_lng))

    logger.info(f"Generated {len(tiles)} tiles ({rows}x{columns} grid, cell {side:.3f} km)")
    return tiles
