"""
Range aggregation, ranking and filtering over the fused grid.

These run on every analyst interaction (selection, metric or year changes),
so they work directly on the in-memory feature properties.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from grid_metrics import cell_code, features_of, metric_attribute, metric_label, to_number
from source_loader import normalize_id

logger = logging.getLogger(__name__)

MIN_REPORT_LIMIT = 1
MAX_REPORT_LIMIT = 100


def selection_codes(selection: Optional[Iterable[Any]]) -> set:
    """Normalized cell codes of an analyst selection (the input is not modified)."""
    codes = {normalize_id(code) for code in (selection or [])}
    codes.discard(None)
    return codes


def aggregate_range(grid: Any, metric: str, selection: Optional[Iterable[str]] = None,
                    key_field: str = 'KEY_CODE') -> Dict[str, Any]:
    """
    Sum / average / extremes of one metric, overall and within a selection.

    Args:
        grid: Fused grid FeatureCollection
        metric: Metric name (see grid_metrics.METRIC_ATTRIBUTES) or attribute key
        selection: Cell codes chosen by the analyst; None or empty means no range
        key_field: Property holding the cell code

    Returns:
        Dict with overall_sum, overall_count, overall_average and the range_*
        statistics. range_* values are None when there is no selection.

    Cells whose value is exactly 0 are left out of every statistic. This also
    drops genuine zero measurements, which cannot be told apart from missing
    data here.
    """
    attribute = metric_attribute(metric)
    selected = selection_codes(selection)
    has_range = bool(selected)

    overall_sum = 0.0
    overall_count = 0
    range_sum = 0.0
    range_count = 0
    range_max = None
    range_max_id = None
    range_min = None
    range_min_id = None

    for feature in features_of(grid):
        props = feature.get('properties') or {}
        value = to_number(props.get(attribute))
        if value == 0:
            continue

        overall_sum += value
        overall_count += 1

        if not has_range:
            continue
        code = cell_code(feature, key_field)
        if code is None or code not in selected:
            continue

        range_sum += value
        range_count += 1
        if range_max is None or value > range_max:
            range_max = value
            range_max_id = code
        if range_min is None or value < range_min:
            range_min = value
            range_min_id = code

    result = {
        'metric': metric,
        'attribute': attribute,
        'overall_sum': overall_sum,
        'overall_count': overall_count,
        'overall_average': overall_sum / overall_count if overall_count > 0 else None,
        'range_sum': None,
        'range_count': None,
        'range_average': None,
        'range_max': None,
        'range_max_id': None,
        'range_min': None,
        'range_min_id': None,
    }

    if has_range:
        result.update({
            'range_sum': range_sum,
            'range_count': range_count,
            'range_average': range_sum / range_count if range_count > 0 else None,
            'range_max': range_max,
            'range_max_id': range_max_id,
            'range_min': range_min,
            'range_min_id': range_min_id,
        })

    return result


def clamp_limit(limit: Any, default: int = 20) -> int:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = default
    return max(MIN_REPORT_LIMIT, min(MAX_REPORT_LIMIT, limit))


def _ranked(rows: List[Dict[str, Any]], metric: str, limit: Any) -> List[Dict[str, Any]]:
    # sorted() is stable: equal values keep their input order
    ordered = sorted(rows, key=lambda row: row['value'], reverse=True)[:clamp_limit(limit)]
    return [
        {'rank': position, 'id': row['id'], 'metric': metric, 'value': row['value']}
        for position, row in enumerate(ordered, start=1)
    ]


def rank_cells(grid: Any, metric: str, limit: Any = 20,
               key_field: str = 'KEY_CODE') -> List[Dict[str, Any]]:
    """Top-N grid cells by a metric, highest first."""
    attribute = metric_attribute(metric)
    rows = []
    for feature in features_of(grid):
        props = feature.get('properties') or {}
        code = cell_code(feature, key_field)
        rows.append({'id': code or '-', 'value': to_number(props.get(attribute))})
    return _ranked(rows, metric, limit)


def rank_roads(road_metrics: Mapping[str, Dict[str, Any]], metric: str,
               limit: Any = 20) -> List[Dict[str, Any]]:
    """Top-N road links by a rolled-up metric, highest first."""
    attribute = metric_attribute(metric)
    rows = [
        {'id': entry.get('id', linkid), 'value': to_number(entry.get(attribute))}
        for linkid, entry in (road_metrics or {}).items()
    ]
    return _ranked(rows, metric, limit)


def _within(value: float, lower: Any, upper: Any) -> bool:
    if lower is not None and lower != '' and value < to_number(lower):
        return False
    if upper is not None and upper != '' and value > to_number(upper):
        return False
    return True


def filter_cells(grid: Any, criteria: List[Dict[str, Any]], mode: str = 'and',
                 key_field: str = 'KEY_CODE') -> List[str]:
    """
    Cell codes whose metrics fall inside the given bounds.

    Each criterion is {'metric': name, 'min': lower or None, 'max': upper or None}.
    With mode 'and' every criterion must hold, with 'or' any one of them.
    An empty criteria list matches every cell.
    """
    active = [c for c in (criteria or []) if c and c.get('metric')]
    matches = []
    for feature in features_of(grid):
        code = cell_code(feature, key_field)
        if code is None:
            continue
        if not active:
            matches.append(code)
            continue

        props = feature.get('properties') or {}
        checks = [
            _within(to_number(props.get(metric_attribute(c['metric']))), c.get('min'), c.get('max'))
            for c in active
        ]
        if (mode == 'or' and any(checks)) or (mode != 'or' and all(checks)):
            matches.append(code)
    return matches


def format_value(metric: str, value: Any) -> str:
    """Display formatting: ratios as percentages, score with one decimal, counts rounded."""
    if value is None:
        return '-'
    number = to_number(value)
    if metric.startswith('ratio_'):
        return f"{number:.1f}%"
    if metric == 'score':
        return f"{number:.1f}"
    return f"{round(number):,}"


def ranking_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """Ranking rows as a CSV-ready DataFrame."""
    return pd.DataFrame(
        [
            {
                'rank': row['rank'],
                'id': row['id'],
                'metric': metric_label(row['metric']),
                'value': row['value'],
            }
            for row in rows
        ],
        columns=['rank', 'id', 'metric', 'value'],
    )


def aggregate_frame(aggregate: Dict[str, Any]) -> pd.DataFrame:
    """One row per statistic of an aggregate_range() result."""
    statistics = [
        'range_sum', 'range_count', 'range_average', 'overall_average', 'overall_count',
        'range_max', 'range_max_id', 'range_min', 'range_min_id',
    ]
    return pd.DataFrame({
        'metric': [metric_label(aggregate.get('metric', ''))] * len(statistics),
        'statistic': statistics,
        'value': [aggregate.get(name) for name in statistics],
    })


def selection_frame(grid: Any, metric: str, selection: Optional[Iterable[str]],
                    key_field: str = 'KEY_CODE') -> pd.DataFrame:
    """Value of one metric for every selected cell, in grid order."""
    attribute = metric_attribute(metric)
    selected = selection_codes(selection)
    rows = []
    for feature in features_of(grid):
        code = cell_code(feature, key_field)
        if code is None or code not in selected:
            continue
        props = feature.get('properties') or {}
        rows.append({'id': code, 'metric': metric_label(metric), 'value': to_number(props.get(attribute))})
    return pd.DataFrame(rows, columns=['id', 'metric', 'value'])
