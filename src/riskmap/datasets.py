"""Per-year dataset assembly: concurrent loads, join, filtering and CSV export."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from riskmap.classify import choose_breaks, class_index_of, color_ramp_for, legend_items
from riskmap.join import available_districts, filter_by_city, filter_by_districts, match_rows
from riskmap.loader import Result, RiskDataLoader
from riskmap.settings import (
    DEFAULT_CLASS_COUNT,
    DEFAULT_METRIC,
    DISTRICT_PATHS,
    LEGACY_NEIGHBORHOOD_PATHS,
    NEIGHBORHOOD_PATHS,
    PROVINCE_PATHS,
    RISK_LABELS_EN,
    RISK_TABLE_TEMPLATE,
)
from riskmap.spatial import BBox, frame_region

EXPORT_COLUMNS = ['mah_id', 'city', 'ilce_adi', 'mahalle_adi', 'risk_score', 'vs30_mean', 'toplam_nufus', 'toplam_bina']


class LoadToken:
    """Cooperative cancellation flag; cancelling never aborts an in-flight request."""

    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class YearData:
    year: int
    features: Dict
    rows: List[Dict]
    districts: List[Dict[str, str]]
    district_boundaries: Optional[Dict] = None
    province_boundaries: Optional[Dict] = None
    join_summary: Dict[str, int] = field(default_factory=dict)


@dataclass
class Choropleth:
    metric: str
    features: List[Dict]
    breaks: List[float]
    palette: List[str]
    legend: List[Dict]
    bbox: BBox

    def as_dict(self) -> Dict:
        return {
            'metric': self.metric,
            'breaks': self.breaks,
            'palette': self.palette,
            'legend': self.legend,
            'bbox': self.bbox,
            'feature_count': len(self.features),
        }


async def _neighborhoods(loader: RiskDataLoader) -> Optional[Dict]:
    geojson = await loader.fetch_geometry_many(NEIGHBORHOOD_PATHS)
    if not geojson or not geojson['features']:
        geojson = await loader.fetch_geometry_many(LEGACY_NEIGHBORHOOD_PATHS)
    return geojson


async def load_year(loader: RiskDataLoader, year: int, token: Optional[LoadToken] = None) -> Result[YearData]:
    """Load boundaries and the risk table for ``year`` and join them.

    All fetches start together; the join runs once every one of them settled.
    A load whose token was cancelled meanwhile yields ``Result.empty('superseded')``.
    """
    print(f"ℹ️  Loading data for year {year}")
    neighborhoods, districts, provinces, rows = await asyncio.gather(
        _neighborhoods(loader),
        loader.fetch_geometry_many(DISTRICT_PATHS),
        loader.fetch_geometry_many(PROVINCE_PATHS),
        loader.fetch_table(RISK_TABLE_TEMPLATE.format(year=year)),
    )
    if token is not None and token.cancelled:
        return Result.empty('superseded')
    if neighborhoods is None:
        return Result.empty(f"no neighborhood boundaries for {year}")

    features, summary = match_rows(neighborhoods, rows)
    joined = {'type': 'FeatureCollection', 'features': features}
    print(
        f"ℹ️  Joined {summary['matched']}/{len(features)} features for {year} "
        f"({summary['unmatched']} without data, {summary['orphans']} rows without geometry)"
    )
    return Result.success(
        YearData(
            year=year,
            features=joined,
            rows=rows,
            districts=available_districts(joined),
            district_boundaries=districts,
            province_boundaries=provinces,
            join_summary=summary,
        )
    )


def build_choropleth(
    collection: Optional[Dict],
    metric: str = DEFAULT_METRIC,
    cities: Optional[Sequence[str]] = None,
    districts: Optional[Sequence[str]] = None,
    k: int = DEFAULT_CLASS_COUNT,
) -> Choropleth:
    subset = filter_by_districts(filter_by_city(collection, cities), districts) or {'features': []}
    features = subset.get('features') or []
    values = [(feature.get('properties') or {}).get(metric) for feature in features]
    breaks = choose_breaks(values, k)
    return Choropleth(
        metric=metric,
        features=features,
        breaks=breaks,
        palette=color_ramp_for(metric),
        legend=legend_items(breaks),
        bbox=frame_region(features),
    )


class DashboardState:
    """Committed year data plus the user's selection; stale loads are discarded."""

    def __init__(self, loader: RiskDataLoader) -> None:
        self.loader = loader
        self.data: Optional[YearData] = None
        self.cities: List[str] = []
        self.districts: List[str] = []
        self.metric = DEFAULT_METRIC
        self._token: Optional[LoadToken] = None

    async def request_year(self, year: int) -> bool:
        if self._token is not None:
            self._token.cancel()
        token = LoadToken()
        self._token = token
        result = await load_year(self.loader, year, token)
        if token.cancelled or not result.ok:
            return False
        self.data = result.value
        return True

    def select(
        self,
        cities: Optional[Sequence[str]] = None,
        districts: Optional[Sequence[str]] = None,
        metric: Optional[str] = None,
    ) -> None:
        if cities is not None:
            self.cities = list(cities)
        if districts is not None:
            self.districts = list(districts)
        if metric is not None:
            self.metric = metric

    def choropleth(self, k: int = DEFAULT_CLASS_COUNT) -> Choropleth:
        collection = self.data.features if self.data else None
        return build_choropleth(collection, self.metric, self.cities, self.districts, k)


def export_frame(
    features: Sequence[Dict],
    metric: str,
    breaks: Sequence[float],
    labels: Sequence[str] = RISK_LABELS_EN,
) -> pd.DataFrame:
    if len(labels) != max(len(breaks) - 1, 0):
        labels = [item['range'] for item in legend_items(breaks)]
    rows = []
    for feature in features:
        props = feature.get('properties') or {}
        row = {column: props.get(column) for column in EXPORT_COLUMNS}
        index = class_index_of(props.get(metric), breaks)
        row[f'{metric}_class_index'] = index + 1 if index >= 0 else None
        row[f'{metric}_class_label'] = labels[index] if 0 <= index < len(labels) else None
        rows.append(row)
    columns = EXPORT_COLUMNS + [f'{metric}_class_index', f'{metric}_class_label']
    df = pd.DataFrame(rows, columns=columns)
    df[f'{metric}_class_index'] = df[f'{metric}_class_index'].astype('Int64')
    return df


def write_export_csv(df: pd.DataFrame, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False, encoding='utf-8-sig')
