"""
Data context for the dashboard.

DashboardData owns everything loaded and computed for one statistical year:
the fused grid, the road network, the source tables, the per-metric maxima,
the traffic allocation and the road summaries. DataRegistry hands out one
context per year so that different years never share state.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, Optional

from aggregation import aggregate_range, rank_cells, rank_roads
from config import GRID_SOURCES, load_config, resolve_location
from geojson_loader import get_empty_geojson, load_geojson_or_empty
from grid_metrics import empty_maxima, fuse_grid_metrics
from road_metrics import rollup_road_metrics
from source_loader import load_sources
from traffic import allocate_traffic, apply_traffic_allocation

logger = logging.getLogger(__name__)


class DashboardData:
    """
    Loaded and fused data for one statistical year.

    The initial load() joins the non-traffic sources. Traffic is the most
    expensive source, so it is only loaded when ensure_traffic() is awaited;
    concurrent callers share the same in-flight load.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, year=None):
        self.config = config or load_config()
        self.year = year if year is not None else self.config.get('year')
        self.key_field = self.config['grid']['key_field']
        self.id_field = self.config['roads']['id_field']
        self.codes_field = self.config['roads']['codes_field']

        self.grid = None
        self.roads = None
        self.tables = {}
        self.maxima = empty_maxima()
        self.traffic_allocation = None
        self.road_metrics = None

        self._traffic_task = None
        self._roads_task = None

    def __repr__(self):
        cells = len((self.grid or {}).get('features') or [])
        return f"<DashboardData year={self.year} cells={cells} traffic={self.traffic_loaded}>"

    @property
    def loaded(self) -> bool:
        return self.grid is not None

    @property
    def traffic_loaded(self) -> bool:
        return self.traffic_allocation is not None

    def _location(self, section: str) -> str:
        return resolve_location(self.config, self.config[section]['location'], self.year)

    async def load(self) -> Dict[str, Any]:
        """Load the grid and the grid-keyed sources concurrently, then fuse them."""
        self._traffic_task = None
        return await self._load_grid()

    async def _load_grid(self) -> Dict[str, Any]:
        logger.info("=" * 60)
        logger.info(f"Loading grid data for {self.year}")
        logger.info("=" * 60)

        timeout = self.config.get('request_timeout', 120)
        grid, tables = await asyncio.gather(
            asyncio.to_thread(load_geojson_or_empty, self._location('grid'), timeout),
            load_sources(GRID_SOURCES, self.config, self.year),
        )

        self.tables.update(tables)
        self.grid, self.maxima = fuse_grid_metrics(
            grid,
            tables['population'],
            tables['labor'],
            tables['floor'],
            tables['road_area'],
            key_field=self.key_field,
        )

        # Any earlier traffic merge belonged to the previous grid
        self.traffic_allocation = None
        self.road_metrics = None

        logger.info(f"✓ Grid ready: {len(self.grid['features'])} cells")
        return self.grid

    async def ensure_roads(self) -> Dict[str, Any]:
        """Load the road network once."""
        if self.roads is not None:
            return self.roads
        task = self._roads_task
        if task is None or task.done():
            task = self._roads_task = asyncio.ensure_future(self._load_roads())
        return await task

    async def _load_roads(self) -> Dict[str, Any]:
        timeout = self.config.get('request_timeout', 120)
        roads = await asyncio.to_thread(load_geojson_or_empty, self._location('roads'), timeout)
        self.roads = roads if roads is not None else get_empty_geojson()
        return self.roads

    async def ensure_traffic(self) -> Dict[str, Any]:
        """
        Make sure traffic is loaded and merged into the grid.

        The first call starts the load; later calls await the same task.
        Returns the refreshed grid.
        """
        if self.traffic_loaded:
            return self.grid
        task = self._traffic_task
        if task is None or task.done():
            task = self._traffic_task = asyncio.ensure_future(self._hydrate_traffic())
        return await task

    async def _hydrate_traffic(self) -> Dict[str, Any]:
        if not self.loaded:
            await self._load_grid()

        logger.info(f"Loading traffic data for {self.year}...")
        roads, tables = await asyncio.gather(
            self.ensure_roads(),
            load_sources(['traffic'], self.config, self.year),
        )
        if self._traffic_task is not asyncio.current_task():
            # load() replaced the grid while traffic was loading
            logger.info(f"Discarding stale traffic load for {self.year}")
            return self.grid

        self.tables.update(tables)

        allocation = allocate_traffic(
            roads,
            tables['traffic'],
            id_field=self.id_field,
            codes_field=self.codes_field,
        )
        self.grid, traffic_max = apply_traffic_allocation(self.grid, allocation, self.key_field)
        self.maxima['traffic_max'] = traffic_max
        self.traffic_allocation = allocation
        self.road_metrics = None

        logger.info(f"✓ Traffic merged into grid ({len(allocation)} cells carry traffic)")
        return self.grid

    async def ensure_road_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Roll grid metrics up onto road links (loads traffic first)."""
        if self.road_metrics is not None:
            return self.road_metrics
        await self.ensure_traffic()
        self.road_metrics = rollup_road_metrics(
            self.roads,
            self.grid,
            self.tables.get('traffic'),
            key_field=self.key_field,
            id_field=self.id_field,
            codes_field=self.codes_field,
        )
        return self.road_metrics

    def aggregate(self, metric: str, selection=None) -> Dict[str, Any]:
        return aggregate_range(self.grid, metric, selection, key_field=self.key_field)

    def rank(self, source: str, metric: str, limit=None):
        """Top-N report rows for 'grid' or 'road' (road summaries must be loaded)."""
        if limit is None:
            limit = self.config.get('report_limit', 20)
        if source == 'road':
            return rank_roads(self.road_metrics or {}, metric, limit)
        return rank_cells(self.grid, metric, limit, key_field=self.key_field)


class DataRegistry:
    """
    One DashboardData per statistical year, for the synchronous Dash callbacks.

    The Flask development server may run callbacks on several threads, so
    loading through the registry is serialized.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or load_config()
        self._contexts = {}
        self._lock = threading.RLock()

    def _year(self, year):
        if year in (None, ''):
            return self.config.get('year')
        try:
            return int(year)
        except (TypeError, ValueError):
            return year

    def get(self, year=None) -> DashboardData:
        """Context for a year, created (not loaded) on first use."""
        year = self._year(year)
        with self._lock:
            if year not in self._contexts:
                self._contexts[year] = DashboardData(self.config, year)
            return self._contexts[year]

    def loaded(self, year=None) -> DashboardData:
        with self._lock:
            data = self.get(year)
            if not data.loaded:
                asyncio.run(data.load())
            return data

    def with_traffic(self, year=None) -> DashboardData:
        with self._lock:
            data = self.loaded(year)
            if not data.traffic_loaded:
                asyncio.run(data.ensure_traffic())
            return data

    def with_road_metrics(self, year=None) -> DashboardData:
        with self._lock:
            data = self.with_traffic(year)
            if data.road_metrics is None:
                asyncio.run(data.ensure_road_metrics())
            return data

    def is_cached(self, year=None) -> bool:
        return self._year(year) in self._contexts

    def reset(self, year=None):
        """Drop one year's context, or every context when year is None."""
        with self._lock:
            if year is None:
                self._contexts.clear()
                logger.info("All data contexts cleared")
            else:
                self._contexts.pop(self._year(year), None)
                logger.info(f"Data context for {year} cleared")
