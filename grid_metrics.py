"""
Grid metrics fusion.

Joins the population, labor, floor-area and road-area sources onto the grid
cells by cell code, normalizes every metric onto a 0-100 scale against its
maximum over the grid, and derives the age-bracket ratios and the composite
score. Operations return a new feature collection; inputs are not modified.
"""
import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from source_loader import SourceTable, normalize_id

logger = logging.getLogger(__name__)


ROAD_AREA_FIELDS = ['total', 'nat', 'pref', 'muni', 'other']

# Metric name -> raw grid attribute (ranking, aggregation, filtering)
METRIC_ATTRIBUTES = {
    'traffic': 'traffic_value',
    'population': 'population_value',
    'labor': 'labor_value',
    'floor': 'floor_value',
    'road_area': 'road_area_total',
    'road_area_nat': 'road_area_nat',
    'road_area_pref': 'road_area_pref',
    'road_area_muni': 'road_area_muni',
    'road_area_other': 'road_area_other',
    'ratio_0_14': 'ratio_0_14',
    'ratio_15_64': 'ratio_15_64',
    'ratio_65_over': 'ratio_65_over',
    'score': 'score_norm',
}

# Metric name -> 0-100 attribute (map colouring)
NORMALIZED_ATTRIBUTES = {
    'traffic': 'traffic_norm',
    'population': 'population_norm',
    'labor': 'labor_norm',
    'floor': 'floor_norm',
    'road_area': 'road_area_total_norm',
    'road_area_nat': 'road_area_nat_norm',
    'road_area_pref': 'road_area_pref_norm',
    'road_area_muni': 'road_area_muni_norm',
    'road_area_other': 'road_area_other_norm',
    'ratio_0_14': 'ratio_0_14',
    'ratio_15_64': 'ratio_15_64',
    'ratio_65_over': 'ratio_65_over',
    'score': 'score_norm',
}

METRIC_LABELS = {
    'traffic': 'Traffic volume',
    'population': 'Population',
    'labor': 'Labor force',
    'floor': 'Floor area',
    'road_area': 'Road area (total)',
    'road_area_nat': 'Road area (national)',
    'road_area_pref': 'Road area (prefectural)',
    'road_area_muni': 'Road area (municipal)',
    'road_area_other': 'Road area (other)',
    'ratio_0_14': 'Age 0-14 share',
    'ratio_15_64': 'Age 15-64 share',
    'ratio_65_over': 'Age 65+ share',
    'score': 'Need score',
}

# Metrics whose values depend on the traffic source
TRAFFIC_METRICS = {'traffic', 'score'}


def metric_attribute(metric: str) -> str:
    """Raw attribute for a metric name; unknown names are used as-is."""
    return METRIC_ATTRIBUTES.get(metric, metric)


def normalized_attribute(metric: str) -> str:
    return NORMALIZED_ATTRIBUTES.get(metric, metric)


def metric_label(metric: str) -> str:
    return METRIC_LABELS.get(metric, metric)


def features_of(collection: Any) -> List[Dict[str, Any]]:
    """Feature list of a collection (a FeatureCollection dict or a plain list)."""
    if collection is None:
        return []
    if isinstance(collection, dict):
        return list(collection.get('features') or [])
    return list(collection)


def cell_code(feature: Dict[str, Any], key_field: str = 'KEY_CODE') -> Optional[str]:
    props = feature.get('properties') or {}
    return normalize_id(props.get(key_field))


def to_number(value: Any) -> float:
    """Finite float for any value; None, text and NaN/inf read as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def running_max(values: np.ndarray) -> float:
    """Maximum over the grid, never below 0."""
    if len(values) == 0:
        return 0.0
    return max(0.0, float(np.max(values)))


def normalize(values: np.ndarray, maximum: float) -> np.ndarray:
    """Scale to 0-100 against maximum; all zeros when maximum is 0."""
    values = np.asarray(values, dtype=float)
    if maximum > 0:
        return (values / maximum) * 100.0
    return np.zeros_like(values)


def safe_ratio(part: np.ndarray, total: np.ndarray) -> np.ndarray:
    """part / total as a percentage, 0 wherever total is 0."""
    part = np.asarray(part, dtype=float)
    total = np.asarray(total, dtype=float)
    out = np.zeros_like(part)
    np.divide(part, total, out=out, where=total > 0)
    return out * 100.0


def composite_score(traffic_norm, population_norm, floor_norm):
    return (np.asarray(traffic_norm, dtype=float)
            + np.asarray(population_norm, dtype=float)
            + np.asarray(floor_norm, dtype=float)) / 3.0


def with_properties(feature: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a feature whose properties are merged with updates."""
    copied = dict(feature)
    copied['properties'] = {**(feature.get('properties') or {}), **updates}
    return copied


def replace_features(collection: Any, features: List[Dict[str, Any]]) -> Dict[str, Any]:
    base = dict(collection) if isinstance(collection, dict) else {}
    base.setdefault('type', 'FeatureCollection')
    base['features'] = features
    return base


def empty_maxima() -> Dict[str, float]:
    maxima = {
        'traffic_max': 0.0,
        'population_max': 0.0,
        'labor_max': 0.0,
        'floor_max': 0.0,
    }
    for field in ROAD_AREA_FIELDS:
        maxima[f'road_area_{field}_max'] = 0.0
    return maxima


def fuse_grid_metrics(grid: Any,
                      population: Optional[SourceTable],
                      labor: Optional[SourceTable],
                      floor: Optional[SourceTable],
                      road_area: Optional[SourceTable],
                      traffic_by_cell: Optional[Mapping[str, float]] = None,
                      key_field: str = 'KEY_CODE') -> Tuple[Dict[str, Any], Dict[str, float]]:
    """
    Join the grid-keyed sources onto every cell and derive normalized values.

    Args:
        grid: Grid FeatureCollection (cell code in properties[key_field])
        population: Table with total / pop0_14 / pop15_64 / pop65_over
        labor: Table with total
        floor: Table with total
        road_area: Table with total / nat / pref / muni / other
        traffic_by_cell: Allocated traffic per cell code; traffic reads as 0
            when omitted (see traffic.apply_traffic_allocation)
        key_field: Property holding the cell code

    Returns:
        (new grid FeatureCollection, per-metric maxima)

    Cells absent from a source get zeros. Normalization needs the global
    maximum, so the values are gathered first and scaled in a second step.
    """
    population = population if population is not None else SourceTable.empty()
    labor = labor if labor is not None else SourceTable.empty()
    floor = floor if floor is not None else SourceTable.empty()
    road_area = road_area if road_area is not None else SourceTable.empty()

    features = features_of(grid)
    codes = [cell_code(feature, key_field) for feature in features]

    frame = pd.DataFrame(index=range(len(codes)))
    frame['population_value'] = population.lookup(codes, 'total')
    frame['pop_0_14'] = population.lookup(codes, 'pop0_14')
    frame['pop_15_64'] = population.lookup(codes, 'pop15_64')
    frame['pop_65_over'] = population.lookup(codes, 'pop65_over')
    frame['labor_value'] = labor.lookup(codes, 'total')
    frame['floor_value'] = floor.lookup(codes, 'total')
    for field in ROAD_AREA_FIELDS:
        frame[f'road_area_{field}'] = road_area.lookup(codes, field)

    if traffic_by_cell:
        frame['traffic_value'] = [
            to_number(traffic_by_cell.get(code, 0.0)) if code is not None else 0.0
            for code in codes
        ]
    else:
        frame['traffic_value'] = 0.0

    maxima = {
        'traffic_max': running_max(frame['traffic_value'].to_numpy()),
        'population_max': running_max(frame['population_value'].to_numpy()),
        'labor_max': running_max(frame['labor_value'].to_numpy()),
        'floor_max': running_max(frame['floor_value'].to_numpy()),
    }
    for field in ROAD_AREA_FIELDS:
        maxima[f'road_area_{field}_max'] = running_max(frame[f'road_area_{field}'].to_numpy())

    frame['traffic_norm'] = normalize(frame['traffic_value'], maxima['traffic_max'])
    frame['population_norm'] = normalize(frame['population_value'], maxima['population_max'])
    frame['labor_norm'] = normalize(frame['labor_value'], maxima['labor_max'])
    frame['floor_norm'] = normalize(frame['floor_value'], maxima['floor_max'])
    for field in ROAD_AREA_FIELDS:
        frame[f'road_area_{field}_norm'] = normalize(
            frame[f'road_area_{field}'], maxima[f'road_area_{field}_max']
        )

    frame['score_norm'] = composite_score(
        frame['traffic_norm'], frame['population_norm'], frame['floor_norm']
    )

    total = frame['population_value'].to_numpy()
    frame['ratio_0_14'] = safe_ratio(frame['pop_0_14'], total)
    frame['ratio_15_64'] = safe_ratio(frame['pop_15_64'], total)
    frame['ratio_65_over'] = safe_ratio(frame['pop_65_over'], total)

    records = frame.to_dict('records')
    fused = [
        with_properties(feature, {key: float(value) for key, value in record.items()})
        for feature, record in zip(features, records)
    ]

    matched = sum(1 for code in codes if code is not None and code in population)
    logger.info(
        f"Fused metrics onto {len(fused)} grid cells "
        f"({matched} matched population rows, population max {maxima['population_max']:.0f})"
    )

    return replace_features(grid, fused), maxima
