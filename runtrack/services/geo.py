from __future__ import annotations

from math import asin, cos, radians, sin, sqrt
from typing import Sequence, TypeVar
from urllib.parse import urlencode

from shapely.geometry import LineString, mapping

from runtrack.schemas.run_state import PathPoint

EARTH_RADIUS_KM = 6371.0
MILES_PER_KM = 0.621371

DEFAULT_STATIC_MAP_URL = "https://staticmap.openstreetmap.de/staticmap.php"
ROUTE_STYLE = "weight:3|color:0x007AFF"

T = TypeVar("T")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers using the haversine formula."""
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    # Rounding can push `a` a hair past 1 for antipodal points.
    return 2 * EARTH_RADIUS_KM * asin(sqrt(min(1.0, a)))


def miles_from_km(km: float) -> float:
    return km * MILES_PER_KM


def haversine_mi(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return miles_from_km(haversine_km(lat1, lon1, lat2, lon2))


def simplify_path(points: Sequence[T], max_points: int) -> list[T]:
    """Down-sample `points` for rendering by keeping every n-th point.

    The stride rounds up, so at most `max_points` strided points are kept. The last
    point is always kept so a drawn route ends where the run ended, which means the
    result can hold `max_points + 1` entries. Distance is never computed from the
    simplified path.
    """
    if max_points < 1:
        raise ValueError("max_points must be at least 1")
    if len(points) <= max_points:
        return list(points)

    step = -(-len(points) // max_points)
    simplified = list(points[::step])
    if (len(points) - 1) % step != 0:
        simplified.append(points[-1])
    return simplified


def build_static_map_url(
    path: Sequence[PathPoint],
    width: int = 600,
    height: int = 200,
    *,
    max_points: int = 40,
    base_url: str = DEFAULT_STATIC_MAP_URL,
) -> str:
    """OpenStreetMap static-map URL that draws the route centred on its bounding box."""
    size = f"{width}x{height}"
    points = simplify_path(path, max_points) if path else []
    if not points:
        return f"{base_url}?" + urlencode({"center": "0,0", "zoom": 1, "size": size}, safe=",")

    lats = [p.lat for p in points]
    lngs = [p.lng for p in points]
    lat_center = (min(lats) + max(lats)) / 2
    lng_center = (min(lngs) + max(lngs)) / 2
    encoded = "|".join(f"{p.lat:.6f},{p.lng:.6f}" for p in points)

    params = {
        "center": f"{lat_center:.6f},{lng_center:.6f}",
        "zoom": 14,
        "size": size,
        "maptype": "mapnik",
        "path": f"{ROUTE_STYLE}|{encoded}",
    }
    return f"{base_url}?" + urlencode(params, safe=",|:")


def path_to_geojson(path: Sequence[PathPoint], properties: dict | None = None) -> dict:
    """GeoJSON Feature for a route; geometry is null when there is no line to draw."""
    geometry = None
    if len(path) >= 2:
        # GeoJSON orders coordinates lon/lat.
        geometry = mapping(LineString([(p.lng, p.lat) for p in path]))

    return {
        "type": "Feature",
        "geometry": geometry,
        "properties": {**(properties or {}), "point_count": len(path)},
    }
