"""
Per-link rollup of grid metrics along the road network.
"""
import logging
from typing import Any, Dict

from grid_metrics import cell_code, features_of, to_number
from traffic import link_id, split_cell_codes, traffic_mapping

logger = logging.getLogger(__name__)


def _ratio(part: float, total: float) -> float:
    return (part / total) * 100.0 if total > 0 else 0.0


def build_grid_index(grid: Any, key_field: str = 'KEY_CODE') -> Dict[str, Dict[str, Any]]:
    """Map cell code -> cell properties. Cells without a code are left out."""
    index = {}
    for feature in features_of(grid):
        code = cell_code(feature, key_field)
        if code is not None:
            index[code] = feature.get('properties') or {}
    return index


def rollup_road_metrics(road_links: Any, grid: Any, traffic_by_link: Any = None,
                        key_field: str = 'KEY_CODE',
                        id_field: str = 'linkid',
                        codes_field: str = 'kye_code') -> Dict[str, Dict[str, Any]]:
    """
    Summarize the referenced grid cells of every road link.

    Population, labor, floor area and the age brackets are summed over the
    referenced cells; ratios come from the summed totals. score_norm is the
    mean over the cells that carry a score, so cells without one do not pull
    the average down. traffic_value is the link's own traffic, looked up by id.

    Returns:
        {link id: summary record}; links without an id are left out.
    """
    traffic = traffic_mapping(traffic_by_link)
    grid_index = build_grid_index(grid, key_field)
    summaries = {}

    for feature in features_of(road_links):
        linkid = link_id(feature, id_field)
        if linkid is None:
            continue
        codes = split_cell_codes((feature.get('properties') or {}).get(codes_field))

        population = labor = floor = 0.0
        pop0 = pop15 = pop65 = 0.0
        score_sum = 0.0
        score_count = 0
        cell_count = 0

        for code in codes:
            props = grid_index.get(code)
            if props is None:
                continue
            cell_count += 1
            population += to_number(props.get('population_value'))
            labor += to_number(props.get('labor_value'))
            floor += to_number(props.get('floor_value'))
            pop0 += to_number(props.get('pop_0_14'))
            pop15 += to_number(props.get('pop_15_64'))
            pop65 += to_number(props.get('pop_65_over'))
            if props.get('score_norm') is not None:
                score_sum += to_number(props.get('score_norm'))
                score_count += 1

        summaries[linkid] = {
            'id': linkid,
            'traffic_value': to_number(traffic.get(linkid, 0.0)),
            'population_value': population,
            'labor_value': labor,
            'floor_value': floor,
            'pop_0_14': pop0,
            'pop_15_64': pop15,
            'pop_65_over': pop65,
            'ratio_0_14': _ratio(pop0, population),
            'ratio_15_64': _ratio(pop15, population),
            'ratio_65_over': _ratio(pop65, population),
            'score_norm': score_sum / score_count if score_count > 0 else 0.0,
            'cell_count': cell_count,
        }

    logger.info(f"Rolled up metrics for {len(summaries)} road links")
    return summaries
