#!/usr/bin/env python3
"""Generate risk map assets (joined GeoJSON, choropleth classes, CSV export) for one year."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from riskmap.datasets import DashboardState, export_frame, write_export_csv
from riskmap.join import extract_point_samples
from riskmap.loader import RiskDataLoader
from riskmap.settings import AVAILABLE_YEARS, BASE_PATH, DEFAULT_CLASS_COUNT, DEFAULT_METRIC, METRICS, OUTPUT_DIR


def _display(path: Path) -> Path:
    try:
        return path.relative_to(Path.cwd())
    except ValueError:
        return path


def _write_json(payload: Dict, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding='utf-8')
    print(f"✔️  Wrote {_display(path)}")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Build choropleth-ready risk map assets for one year.')
    parser.add_argument('--year', type=int, default=AVAILABLE_YEARS[0], help='Risk table year')
    parser.add_argument('--base', default=BASE_PATH, help='Base URL or directory holding data/')
    parser.add_argument('--metric', default=DEFAULT_METRIC, help=f"Metric to classify (e.g. {', '.join(METRICS)})")
    parser.add_argument('--city', action='append', default=[], help='Restrict to a city (repeatable)')
    parser.add_argument('--district', action='append', default=[], help='Restrict to a district (repeatable)')
    parser.add_argument('--classes', type=int, default=DEFAULT_CLASS_COUNT, help='Number of classes')
    parser.add_argument('--output', type=Path, default=OUTPUT_DIR, help='Output directory')
    return parser.parse_args(argv)


async def _build(args: argparse.Namespace) -> int:
    state = DashboardState(RiskDataLoader(base_path=args.base))
    if not await state.request_year(args.year):
        print(f"⚠️  No neighborhood data could be loaded for {args.year}", file=sys.stderr)
        return 1
    state.select(cities=args.city, districts=args.district, metric=args.metric)
    choropleth = state.choropleth(args.classes)
    data = state.data

    _write_json(
        {'type': 'FeatureCollection', 'features': choropleth.features},
        args.output / 'joined.geojson',
    )
    payload = choropleth.as_dict()
    payload.update(
        {
            'year': data.year,
            'districts': data.districts,
            'join': data.join_summary,
            'scatter': extract_point_samples(data.rows, choropleth.features),
        }
    )
    _write_json(payload, args.output / 'choropleth.json')

    export_path = args.output / 'export.csv'
    write_export_csv(export_frame(choropleth.features, choropleth.metric, choropleth.breaks), export_path)
    print(f"✔️  Wrote {_display(export_path)}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    return asyncio.run(_build(_parse_args(argv)))


if __name__ == '__main__':
    sys.exit(main())
