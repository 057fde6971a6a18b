"""
Traffic allocation from road links onto grid cells.

A link's traffic volume is split evenly across the cells listed in its
`kye_code` attribute. The resulting per-cell totals are merged into the grid
in a separate refresh step, because the traffic source is loaded on demand.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from grid_metrics import (
    cell_code,
    composite_score,
    features_of,
    normalize,
    replace_features,
    running_max,
    to_number,
    with_properties,
)
from source_loader import SourceTable, normalize_id

logger = logging.getLogger(__name__)


def split_cell_codes(raw: Any) -> List[str]:
    """Split an underscore-delimited code list; empty segments are dropped."""
    text = normalize_id(raw)
    if not text:
        return []
    return [code.strip() for code in text.split('_') if code.strip()]


def link_id(feature: Dict[str, Any], id_field: str = 'linkid') -> Optional[str]:
    """Link id from properties[id_field], falling back to the feature id."""
    props = feature.get('properties') or {}
    value = normalize_id(props.get(id_field))
    if value is None:
        value = normalize_id(feature.get('id'))
    return value


def traffic_mapping(traffic_by_link: Any) -> Mapping[str, float]:
    """Accept either a SourceTable from the traffic source or a plain mapping."""
    if traffic_by_link is None:
        return {}
    if isinstance(traffic_by_link, SourceTable):
        return traffic_by_link.column('traffic')
    return traffic_by_link


def allocate_traffic(road_links: Any, traffic_by_link: Any,
                     id_field: str = 'linkid',
                     codes_field: str = 'kye_code') -> Dict[str, float]:
    """
    Distribute each link's traffic across the grid cells it references.

    Args:
        road_links: Road FeatureCollection (or list of features)
        traffic_by_link: {link id: traffic volume} or the traffic SourceTable
        id_field: Property holding the link id
        codes_field: Property holding the underscore-delimited cell codes

    Returns:
        {cell code: allocated traffic}. A cell referenced by several links
        receives the sum of their shares.

    Links with zero/unknown traffic or no referenced codes contribute nothing.
    A link whose id_field is blank is matched by its feature id, the same
    fallback rollup_road_metrics uses, so both views see the same links.
    """
    traffic = traffic_mapping(traffic_by_link)
    allocation: Dict[str, float] = {}
    contributing = 0

    for feature in features_of(road_links):
        linkid = link_id(feature, id_field)
        if linkid is None:
            continue
        value = to_number(traffic.get(linkid, 0.0))
        if value <= 0:
            continue
        codes = split_cell_codes((feature.get('properties') or {}).get(codes_field))
        if not codes:
            continue

        share = value / len(codes)
        for code in codes:
            allocation[code] = allocation.get(code, 0.0) + share
        contributing += 1

    logger.info(f"Allocated traffic from {contributing} links onto {len(allocation)} grid cells")
    return allocation


def apply_traffic_allocation(grid: Any, allocation: Mapping[str, float],
                             key_field: str = 'KEY_CODE') -> Tuple[Dict[str, Any], float]:
    """
    Refresh traffic_value, traffic_norm and score_norm on every cell.

    The rest of each cell's attributes (population_norm, floor_norm, ...)
    must already be fused. Returns (new grid, traffic maximum).
    """
    allocation = allocation or {}
    features = features_of(grid)
    codes = [cell_code(feature, key_field) for feature in features]

    traffic = np.array(
        [to_number(allocation.get(code, 0.0)) if code is not None else 0.0 for code in codes],
        dtype=float,
    )
    traffic_max = running_max(traffic)
    traffic_norm = normalize(traffic, traffic_max)

    population_norm = [to_number((f.get('properties') or {}).get('population_norm')) for f in features]
    floor_norm = [to_number((f.get('properties') or {}).get('floor_norm')) for f in features]
    score = composite_score(traffic_norm, population_norm, floor_norm)

    refreshed = [
        with_properties(feature, {
            'traffic_value': float(traffic[i]),
            'traffic_norm': float(traffic_norm[i]),
            'score_norm': float(score[i]),
        })
        for i, feature in enumerate(features)
    ]

    logger.info(f"Traffic refreshed on {len(refreshed)} grid cells (max {traffic_max:.1f})")
    return replace_features(grid, refreshed), traffic_max
