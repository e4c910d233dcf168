"""Bounding boxes, centroids and coordinate-order repair for neighborhood geometry.

Every box handled here is ``[min_lng, min_lat, max_lng, max_lat]``. Functions
return ``None`` instead of raising on bad input; callers substitute
``FALLBACK_BBOX`` for the territory.
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from pyproj import Transformer

from riskmap.settings import FALLBACK_BBOX

BBox = List[float]

_LON_LAT_CRS = {
    'urn:ogc:def:crs:OGC:1.3:CRS84',
    'urn:ogc:def:crs:OGC::CRS84',
    'urn:ogc:def:crs:EPSG::4326',
    'EPSG:4326',
}


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _within_world(lng: float, lat: float) -> bool:
    return -180.0 <= lng <= 180.0 and -90.0 <= lat <= 90.0


def _geometries(obj: object) -> Iterator[Dict]:
    if isinstance(obj, list):
        for item in obj:
            yield from _geometries(item)
        return
    if not isinstance(obj, dict):
        return
    kind = obj.get('type')
    if kind == 'FeatureCollection':
        yield from _geometries(obj.get('features') or [])
    elif kind == 'Feature':
        yield from _geometries(obj.get('geometry'))
    elif kind == 'GeometryCollection':
        yield from _geometries(obj.get('geometries') or [])
    elif 'coordinates' in obj:
        yield obj


def _positions(coords: object) -> Iterator[Sequence]:
    if not isinstance(coords, (list, tuple)) or not coords:
        return
    if not isinstance(coords[0], (list, tuple)):
        if len(coords) >= 2:
            yield coords
        return
    for item in coords:
        yield from _positions(item)


def bounding_box_of(obj: object) -> Optional[BBox]:
    """Bounding box of a geometry, feature, collection or list of features."""
    min_lng = min_lat = math.inf
    max_lng = max_lat = -math.inf
    for geometry in _geometries(obj):
        for position in _positions(geometry.get('coordinates')):
            lng, lat = position[0], position[1]
            if not (_is_number(lng) and _is_number(lat)):
                continue
            min_lng, max_lng = min(min_lng, lng), max(max_lng, lng)
            min_lat, max_lat = min(min_lat, lat), max(max_lat, lat)
    if min_lng == math.inf:
        return None
    if min_lng >= max_lng or min_lat >= max_lat:
        return None
    if not (_within_world(min_lng, min_lat) and _within_world(max_lng, max_lat)):
        return None
    return [float(min_lng), float(min_lat), float(max_lng), float(max_lat)]


def _box_pairs(raw: object) -> Optional[Tuple[Tuple[float, float], Tuple[float, float]]]:
    if not isinstance(raw, (list, tuple)):
        return None
    if len(raw) == 2 and all(isinstance(pair, (list, tuple)) and len(pair) == 2 for pair in raw):
        flat = [raw[0][0], raw[0][1], raw[1][0], raw[1][1]]
    elif len(raw) == 4:
        flat = list(raw)
    else:
        return None
    if not all(_is_number(value) for value in flat):
        return None
    return (float(flat[0]), float(flat[1])), (float(flat[2]), float(flat[3]))


def _looks_swapped(first: Tuple[float, float], second: Tuple[float, float]) -> bool:
    # A box already in min-before-max order is taken as lng/lat
    if first[0] < second[0] and first[1] < second[1]:
        return False
    return all(abs(pair[0]) <= 90 and abs(pair[1]) <= 180 for pair in (first, second))


def normalize_bounding_box(raw: object, detect_swap: bool = True) -> Optional[BBox]:
    """Coerce ``[x1, y1, x2, y2]`` or ``[[x1, y1], [x2, y2]]`` into a valid box.

    Boxes that arrive out of order and whose pairs fit ``|a| <= 90, |b| <= 180``
    are read as lat/lng and swapped; an ordered box is always taken as lng/lat.
    Anything still outside world bounds or degenerate is rejected rather than
    clamped.
    """
    pairs = _box_pairs(raw)
    if pairs is None:
        return None
    first, second = pairs
    if detect_swap and _looks_swapped(first, second):
        first, second = (first[1], first[0]), (second[1], second[0])
    min_lng, max_lng = sorted((first[0], second[0]))
    min_lat, max_lat = sorted((first[1], second[1]))
    if min_lng >= max_lng or min_lat >= max_lat:
        return None
    if not (_within_world(min_lng, min_lat) and _within_world(max_lng, max_lat)):
        return None
    return [min_lng, min_lat, max_lng, max_lat]


def combine_bounding_boxes(boxes: Iterable[object]) -> Optional[BBox]:
    valid = [box for box in (normalize_bounding_box(raw) for raw in boxes or []) if box is not None]
    if not valid:
        return None
    return [
        min(box[0] for box in valid),
        min(box[1] for box in valid),
        max(box[2] for box in valid),
        max(box[3] for box in valid),
    ]


def _outer_rings(geometry: Dict) -> List[Sequence]:
    kind = geometry.get('type')
    coords = geometry.get('coordinates') or []
    if kind == 'Polygon':
        return coords[:1]
    if kind == 'MultiPolygon':
        return [polygon[0] for polygon in coords if polygon]
    return []


def centroid_of(geometry: Optional[Dict]) -> Optional[Dict[str, float]]:
    """Vertex mean of the outer ring(s); holes are ignored.

    Only a representative point for tabular joins and scatter samples, not an
    area-weighted centroid.
    """
    if not isinstance(geometry, dict):
        return None
    if geometry.get('type') == 'Feature':
        return centroid_of(geometry.get('geometry'))
    if geometry.get('type') == 'Point':
        coords = geometry.get('coordinates') or []
        if len(coords) >= 2 and _is_number(coords[0]) and _is_number(coords[1]):
            return {'lon': float(coords[0]), 'lat': float(coords[1])}
        return None
    points = [
        (position[0], position[1])
        for ring in _outer_rings(geometry)
        for position in ring
        if len(position) >= 2 and _is_number(position[0]) and _is_number(position[1])
    ]
    if not points:
        return None
    return {
        'lon': sum(lon for lon, _ in points) / len(points),
        'lat': sum(lat for _, lat in points) / len(points),
    }


def bbox_corners(bbox: BBox) -> List[List[float]]:
    return [[bbox[0], bbox[1]], [bbox[2], bbox[3]]]


def frame_region(obj: object) -> BBox:
    return bounding_box_of(obj) or list(FALLBACK_BBOX)


def point_in_polygon(point: Sequence[float], ring: Sequence[Sequence[float]]) -> bool:
    x, y = point[0], point[1]
    inside = False
    j = len(ring) - 1
    for i in range(len(ring)):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def find_feature_at_point(point: Sequence[float], collection: Optional[Dict]) -> Optional[Dict]:
    if not collection:
        return None
    for feature in collection.get('features') or []:
        geometry = feature.get('geometry')
        if not geometry:
            continue
        if any(point_in_polygon(point, ring) for ring in _outer_rings(geometry)):
            return feature
    return None


def _crs_name(collection: Dict) -> Optional[str]:
    crs = collection.get('crs')
    if not isinstance(crs, dict):
        return None
    return (crs.get('properties') or {}).get('name')


def _transform_coords(coords: object, transformer: Transformer) -> object:
    if isinstance(coords, (list, tuple)) and len(coords) >= 2 and _is_number(coords[0]):
        lng, lat = transformer.transform(coords[0], coords[1])
        return [round(lng, 6), round(lat, 6), *coords[2:]]
    if isinstance(coords, (list, tuple)):
        return [_transform_coords(item, transformer) for item in coords]
    return coords


def reproject_collection(collection: Dict) -> Dict:
    """Reproject a collection declaring a legacy projected ``crs`` to lon/lat."""
    name = _crs_name(collection)
    if not name or name in _LON_LAT_CRS:
        return collection
    transformer = Transformer.from_crs(name, 'EPSG:4326', always_xy=True)
    features = []
    for feature in collection.get('features') or []:
        if not isinstance(feature, dict):
            continue
        geometry = feature.get('geometry')
        if isinstance(geometry, dict) and 'coordinates' in geometry:
            geometry = {**geometry, 'coordinates': _transform_coords(geometry['coordinates'], transformer)}
        features.append({**feature, 'geometry': geometry})
    reprojected = {key: value for key, value in collection.items() if key != 'crs'}
    reprojected['features'] = features
    return reprojected
