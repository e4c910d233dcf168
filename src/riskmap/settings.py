"""Runtime configuration for the risk map pipeline."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional


def _env_bbox(name: str, default: List[float]) -> List[float]:
    raw = os.environ.get(name)
    if not raw:
        return default
    parts = [part.strip() for part in raw.split(',')]
    if len(parts) != 4:
        raise RuntimeError(f"{name} must hold four comma separated numbers, got {raw!r}")
    return [float(part) for part in parts]


def _env_timeout(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if not raw:
        return None
    return float(raw)


BASE_PATH = os.environ.get('RISKMAP_BASE_PATH', '/')
OUTPUT_DIR = Path(os.environ.get('RISKMAP_OUTPUT', Path.cwd() / 'risk_map'))
FETCH_TIMEOUT = _env_timeout('RISKMAP_FETCH_TIMEOUT')

# Türkiye, wide enough for both Istanbul and Ankara
FALLBACK_BBOX = _env_bbox('RISKMAP_FALLBACK_BBOX', [25.5, 35.8, 44.9, 42.3])

NEIGHBORHOOD_PATHS = [
    'data/boundaries/ankara_neighborhoods.geojson',
    'data/boundaries/istanbul_neighborhoods.geojson',
]
LEGACY_NEIGHBORHOOD_PATHS = [
    'data/ankara_mahalle_risk.geojson',
    'data/istanbul_mahalle_risk.geojson',
]
DISTRICT_PATHS = [
    'data/boundaries/ankara_districts.geojson',
    'data/boundaries/istanbul_districts.geojson',
]
PROVINCE_PATHS = [
    'data/boundaries/ankara_province.geojson',
    'data/boundaries/istanbul_province_polygon.geojson',
]
RISK_TABLE_TEMPLATE = 'data/risk/{year}.csv'
AVAILABLE_YEARS = [2025, 2026]

CITY_LABELS: Dict[str, str] = {
    'ankara': 'Ankara',
    'istanbul': 'Istanbul',
}

DEFAULT_CLASS_COUNT = 5
JENKS_MIN_DISTINCT = 20
NO_DATA_COLOR = '#cccccc'
DEFAULT_METRIC = 'risk_score'
METRICS = ['risk_score', 'vs30_mean', 'population', 'building_count']

PALETTE_5 = ['#feedde', '#fdbe85', '#fd8d3c', '#e6550d', '#a63603']

_RISK_RAMP = ['#FEF3C7', '#FCD34D', '#F59E0B', '#EF4444', '#991B1B']
_POPULATION_RAMP = ['#CCFBF1', '#5EEAD4', '#14B8A6', '#0F766E', '#134E4A']
_BUILDING_RAMP = ['#E9D5FF', '#C084FC', '#9333EA', '#7E22CE', '#581C87']

COLOR_RAMPS: Dict[str, List[str]] = {
    'risk_score': _RISK_RAMP,
    'vs30_mean': ['#DBEAFE', '#93C5FD', '#3B82F6', '#1D4ED8', '#1E3A8A'],
    'population': _POPULATION_RAMP,
    'toplam_nufus': _POPULATION_RAMP,
    'building_count': _BUILDING_RAMP,
    'toplam_bina': _BUILDING_RAMP,
    'pga_scenario_mw72': _RISK_RAMP,
    'pga_scenario_mw75': ['#FEF3C7', '#FCD34D', '#F59E0B', '#DC2626', '#7F1D1D'],
    'ml_risk_score': ['#D1FAE5', '#A7F3D0', '#FCD34D', '#F59E0B', '#DC2626'],
    'ml_predicted_class': ['#10B981', '#FBBF24', '#F59E0B', '#EF4444', '#991B1B'],
}

# Fixed thresholds shared with the printed legend
RISK_BINS = [0.0, 0.18, 0.23, 0.30, 0.43, 1.0]
RISK_COLORS = ['#F7E6B5', '#F3C74E', '#E79A3C', '#C3423B', '#7A1E1E']
RISK_LABELS_EN = ['Very Low', 'Low', 'Medium', 'High', 'Very High']

# Fields whose values may arrive as percentages
RISK_FIELDS = ['risk_score', 'ml_risk_score']
