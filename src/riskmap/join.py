"""Merge tabular neighborhood risk rows into boundary features."""
from __future__ import annotations

import math
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from unidecode import unidecode

from riskmap.settings import CITY_LABELS, RISK_FIELDS
from riskmap.spatial import centroid_of

_WHITESPACE = re.compile(r'\s+')

CITY_FIELDS = ['city', 'il', 'City']
DISTRICT_FIELDS = ['ilce_adi', 'district', 'ilce', 'District']
NEIGHBORHOOD_FIELDS = ['mahalle_adi', 'mahalle', 'name', 'Name', 'clean_name']
ID_FIELDS = ['mah_id', 'MAH_ID', 'id']


def normalize_key_text(value: object) -> str:
    """Lowercase ASCII-folded form of a Turkish place name.

    ``'İSTANBUL'``, ``'Istanbul'`` and ``'istanbul'`` all become ``'istanbul'``;
    dotted and dotless I both fold to ``i``.
    """
    if value is None:
        return ''
    if isinstance(value, float) and math.isnan(value):
        return ''
    text = unidecode(str(value)).lower()
    return _WHITESPACE.sub(' ', text).strip()


def make_join_key(city: object, district: object, neighborhood: object) -> str:
    return '|'.join([normalize_key_text(city), normalize_key_text(district), normalize_key_text(neighborhood)])


def _first(props: Dict, fields: Sequence[str]) -> object:
    for field in fields:
        value = props.get(field)
        if value is None or value == '':
            continue
        if isinstance(value, float) and math.isnan(value):
            continue
        return value
    return None


def _id_text(value: object) -> str:
    if value is None or isinstance(value, bool):
        return ''
    if isinstance(value, float):
        if math.isnan(value):
            return ''
        if value.is_integer():
            value = int(value)
    return str(value).strip()


def _to_number(value: object) -> Optional[float]:
    if value is None or value == '' or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _lookup_keys(props: Dict) -> List[str]:
    city = _city_key(props)
    ident = _id_text(_first(props, ID_FIELDS))
    district = _first(props, DISTRICT_FIELDS)
    neighborhood = _first(props, NEIGHBORHOOD_FIELDS)
    keys = []
    if ident:
        if city:
            keys.append(f"id:{city}|{ident}")
        keys.append(f"id:{ident}")
    if district is not None and neighborhood is not None:
        if city:
            keys.append('name:' + make_join_key(city, district, neighborhood))
        keys.append('name:' + make_join_key('', district, neighborhood))
    return keys


def _city_key(props: Dict) -> str:
    return normalize_key_text(_first(props, CITY_FIELDS))


def _pick(candidates: Dict[str, Tuple[int, Dict]], city: str) -> Optional[Tuple[int, Dict]]:
    # candidates maps row city -> last row seen for that city
    if not city:
        return max(candidates.values(), key=lambda hit: hit[0])
    return candidates.get(city) or candidates.get('')


def city_from_path(path: str) -> Optional[str]:
    lowered = path.lower()
    for token, label in CITY_LABELS.items():
        if token in lowered:
            return label
    return None


def percent_scaled_fields(rows: Sequence[Dict]) -> List[str]:
    """Risk fields whose finite values peak in ``(1, 100]``."""
    fields = []
    for field in RISK_FIELDS:
        values = [number for number in (_to_number(row.get(field)) for row in rows) if number is not None]
        if values and 1.0 < max(values) <= 100.0:
            fields.append(field)
    return fields


def harmonize_scale(rows: Optional[Iterable[Dict]]) -> List[Dict]:
    """Copy of ``rows`` with percentage risk columns turned into fractions.

    The scale is decided per column over the whole table, so a ``1`` next to
    a ``50`` is read as 1%. Columns peaking above 100 are left as they are.
    """
    rows = list(rows or [])
    fields = percent_scaled_fields(rows)
    if not fields:
        return rows
    harmonized = []
    for row in rows:
        row = dict(row)
        for field in fields:
            number = _to_number(row.get(field))
            if number is not None:
                row[field] = number / 100.0
        harmonized.append(row)
    return harmonized


def _features_of(features: object) -> List[Dict]:
    if isinstance(features, dict):
        return list(features.get('features') or [])
    return list(features or [])


def _merge(feature: Dict, row: Dict) -> Dict:
    props = feature.get('properties') or {}
    merged = {**props, **row}
    for axis in ('lon', 'lat'):
        if _to_number(merged.get(axis)) is None and _to_number(props.get(axis)) is not None:
            merged[axis] = props[axis]
    if _first(merged, CITY_FIELDS) is None and _first(props, CITY_FIELDS) is not None:
        merged['city'] = _first(props, CITY_FIELDS)
    return {**feature, 'properties': merged}


def _feature_props(feature: Dict) -> Dict:
    props = feature.get('properties') or {}
    if _first(props, ID_FIELDS) is None and feature.get('id') is not None:
        return {**props, 'id': feature['id']}
    return props


def match_rows(features: object, rows: Optional[Iterable[Dict]]) -> Tuple[List[Dict], Dict[str, int]]:
    """Join and report ``matched``, ``unmatched`` feature and ``orphan`` row counts.

    City-less keys only pair a feature with a row from the same city or a row
    that names no city, so identifiers never leak between cities.
    """
    rows = harmonize_scale(rows)
    lookup: Dict[str, Dict[str, Tuple[int, Dict]]] = {}
    for position, row in enumerate(rows):
        city = _city_key(row)
        for key in _lookup_keys(row):
            lookup.setdefault(key, {})[city] = (position, row)

    joined = []
    used = set()
    matched = 0
    for feature in _features_of(features):
        props = _feature_props(feature)
        city = _city_key(props)
        hit = None
        for key in _lookup_keys(props):
            if key in lookup:
                hit = _pick(lookup[key], city)
            if hit is not None:
                break
        if hit is None:
            joined.append(feature)
            continue
        matched += 1
        used.add(hit[0])
        joined.append(_merge(feature, hit[1]))

    summary = {
        'matched': matched,
        'unmatched': len(joined) - matched,
        'orphans': len(rows) - len(used),
    }
    return joined, summary


def join_rows_to_features(features: object, rows: Optional[Iterable[Dict]]) -> Dict:
    """Enrich features with their table rows; row values win on key collisions.

    Features without a row pass through untouched and rows without a feature
    are dropped. Duplicate row keys resolve to the last row seen.
    """
    joined, _ = match_rows(features, rows)
    collection = {key: value for key, value in features.items() if key != 'features'} if isinstance(features, dict) else {}
    collection['type'] = 'FeatureCollection'
    collection['features'] = joined
    return collection


def normalize_properties(props: Optional[Dict]) -> Dict:
    if not props:
        return {}
    return {
        'city': _first(props, CITY_FIELDS),
        'district': _first(props, DISTRICT_FIELDS),
        'neighborhood': _first(props, NEIGHBORHOOD_FIELDS),
        'mah_id': _first(props, ['mah_id', 'id']),
        'risk_score': _to_number(props.get('risk_score')),
        'vs30_mean': _to_number(_first(props, ['vs30_mean', 'vs30'])),
        'population': _to_number(_first(props, ['toplam_nufus', 'population'])),
        'building_count': _to_number(_first(props, ['toplam_bina', 'building_count'])),
        'lon': _to_number(props.get('lon')),
        'lat': _to_number(props.get('lat')),
        'year': _to_number(props.get('year')),
    }


def extract_point_samples(rows: Optional[Iterable[Dict]], features: object = None) -> List[Dict]:
    """Flat records with a representative point, for scatter views.

    Joined features use their centroid (or their own lon/lat); without features
    the raw rows are used when they carry lon/lat. Records without a point are
    skipped.
    """
    samples = []
    feature_list = _features_of(features)
    if feature_list:
        for feature in feature_list:
            props = feature.get('properties') or {}
            point = centroid_of(feature.get('geometry')) or {'lon': props.get('lon'), 'lat': props.get('lat')}
            lon, lat = _to_number(point.get('lon')), _to_number(point.get('lat'))
            if lon is None or lat is None:
                continue
            samples.append({**normalize_properties(props), 'lon': lon, 'lat': lat})
        return samples
    for row in harmonize_scale(rows):
        record = normalize_properties(row)
        if record.get('lon') is None or record.get('lat') is None:
            continue
        samples.append(record)
    return samples


def available_districts(collection: object) -> List[Dict[str, str]]:
    districts: Dict[str, Dict[str, str]] = {}
    for feature in _features_of(collection):
        props = feature.get('properties') or {}
        district = _first(props, DISTRICT_FIELDS)
        city = _first(props, CITY_FIELDS)
        if district and city:
            districts[str(district)] = {'name': str(district), 'city': str(city)}
    return sorted(districts.values(), key=lambda entry: (normalize_key_text(entry['name']), entry['name']))


def _filter(collection: Optional[Dict], selected: Optional[Sequence[str]], fields: Sequence[str]) -> Optional[Dict]:
    if not collection or not selected:
        return collection
    wanted = {normalize_key_text(value) for value in selected}
    return {
        **collection,
        'features': [
            feature
            for feature in collection.get('features') or []
            if normalize_key_text(_first(feature.get('properties') or {}, fields)) in wanted
        ],
    }


def filter_by_city(collection: Optional[Dict], cities: Optional[Sequence[str]]) -> Optional[Dict]:
    return _filter(collection, cities, CITY_FIELDS)


def filter_by_districts(collection: Optional[Dict], districts: Optional[Sequence[str]]) -> Optional[Dict]:
    return _filter(collection, districts, DISTRICT_FIELDS)
