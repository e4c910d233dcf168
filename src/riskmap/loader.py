"""Fetch, parse and memoize boundary GeoJSON and risk tables.

Failures never escape: a missing or broken resource is reported with a warning
and surfaces as an empty ``Result``, so the map renders whatever did load.
"""
from __future__ import annotations

import asyncio
import io
import json
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Generic, List, Optional, Sequence, TypeVar

import aiohttp
import pandas as pd
from pyproj.exceptions import CRSError

from riskmap.join import city_from_path
from riskmap.settings import BASE_PATH, FETCH_TIMEOUT
from riskmap.spatial import reproject_collection

T = TypeVar('T')

_ABSOLUTE_URL = re.compile(r'^https?://', re.IGNORECASE)


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> 'Result[T]':
        return cls(value=value)

    @classmethod
    def empty(cls, reason: str) -> 'Result[T]':
        return cls(error=reason)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.ok else default


@dataclass
class ResourceCache:
    """Parsed resources keyed by the path the caller asked for. Cleared only on request."""

    geometry: Dict[str, Dict] = field(default_factory=dict)
    tables: Dict[str, List[Dict]] = field(default_factory=dict)

    def clear(self) -> None:
        self.geometry.clear()
        self.tables.clear()

    def __len__(self) -> int:
        return len(self.geometry) + len(self.tables)


def resolve_resource(path: str, base: str = BASE_PATH) -> str:
    if _ABSOLUTE_URL.match(path):
        return path
    return f"{(base or '').rstrip('/')}/{path.lstrip('/')}"


def _warn(message: str) -> None:
    print(f"⚠️  {message}", file=sys.stderr)


def _records(df: pd.DataFrame) -> List[Dict]:
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient='records')


def parse_table(data: bytes) -> List[Dict]:
    df = pd.read_csv(io.BytesIO(data), skip_blank_lines=True, encoding='utf-8-sig')
    df.columns = [str(col).strip() for col in df.columns]
    return _records(df)


def _tag_city(collection: Dict, path: str) -> Dict:
    city = city_from_path(path)
    features = []
    for feature in collection.get('features') or []:
        if not isinstance(feature, dict):
            continue
        props = feature.get('properties')
        if not isinstance(props, dict):
            props = {}
        features.append({**feature, 'properties': {**props, 'city': props.get('city') or city}})
    return {**collection, 'features': features}


class RiskDataLoader:
    """Async loader for one dashboard session.

    Concurrent requests for the same uncached path are not coalesced; each
    fetches once and the last one to finish populates the cache.
    """

    def __init__(
        self,
        base_path: str = BASE_PATH,
        cache: Optional[ResourceCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: Optional[float] = FETCH_TIMEOUT,
    ) -> None:
        self.base_path = base_path
        self.cache = cache if cache is not None else ResourceCache()
        self.session = session
        self.timeout = timeout

    def resolve(self, path: str) -> str:
        return resolve_resource(path, self.base_path)

    async def _read_url(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        if self.session is not None:
            async with self.session.get(url, timeout=timeout) as response:
                response.raise_for_status()
                return await response.read()
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=timeout) as response:
                response.raise_for_status()
                return await response.read()

    async def _read(self, path: str) -> bytes:
        target = self.resolve(path)
        if _ABSOLUTE_URL.match(target):
            return await self._read_url(target)
        if target.startswith('file://'):
            target = target[len('file://'):]
        read = asyncio.to_thread(Path(target).read_bytes)
        if self.timeout is not None:
            return await asyncio.wait_for(read, self.timeout)
        return await read

    async def load_geometry(self, path: str) -> Result[Dict]:
        if path in self.cache.geometry:
            return Result.success(self.cache.geometry[path])
        try:
            payload = json.loads(await self._read(path))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            _warn(f"Data file missing: {path} ({exc}). Rendering available layers only.")
            return Result.empty(str(exc))
        if not isinstance(payload, dict) or not isinstance(payload.get('features'), list):
            _warn(f"Not a FeatureCollection: {path}. Rendering available layers only.")
            return Result.empty('not a FeatureCollection')
        try:
            collection = _tag_city(reproject_collection(payload), path)
        except CRSError as exc:
            _warn(f"Unknown coordinate reference system in {path}: {exc}")
            return Result.empty(str(exc))
        self.cache.geometry[path] = collection
        return Result.success(collection)

    async def fetch_geometry(self, path: str) -> Optional[Dict]:
        return (await self.load_geometry(path)).unwrap_or(None)

    async def fetch_geometry_many(self, paths: Sequence[str]) -> Optional[Dict]:
        results = await asyncio.gather(*(self.load_geometry(path) for path in paths))
        survivors = [result.value for result in results if result.ok]
        if not survivors:
            return None
        return {
            'type': 'FeatureCollection',
            'features': [feature for collection in survivors for feature in collection.get('features') or []],
        }

    async def load_table(self, path: str) -> Result[List[Dict]]:
        if path in self.cache.tables:
            return Result.success(self.cache.tables[path])
        try:
            rows = parse_table(await self._read(path))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            _warn(f"Data file missing: {path} ({exc}). Please provide it.")
            return Result.empty(str(exc))
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
            _warn(f"Error parsing CSV: {path}. {exc}")
            return Result.empty(str(exc))
        self.cache.tables[path] = rows
        return Result.success(rows)

    async def fetch_table(self, path: str) -> List[Dict]:
        return (await self.load_table(path)).unwrap_or([])

    def invalidate_cache(self) -> None:
        self.cache.clear()
