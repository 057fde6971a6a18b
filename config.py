"""
Configuration for the planning dashboard.

Defaults live in DEFAULT_CONFIG; environment variables override the few
settings that differ between deployments.
"""
import copy
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


DEFAULT_CONFIG = {
    # Local directory or base URL that relative source locations resolve against
    'data_root': 'data',

    # Statistical year used when the analyst has not picked one
    'year': 2020,
    'years': [2015, 2020],

    'request_timeout': 120,

    # Top-N report size (clamped to 1-100 in aggregation.clamp_limit)
    'report_limit': 20,

    'grid': {
        'location': 'grid/messyude-ta001.geojson',
        'key_field': 'KEY_CODE',
    },

    'roads': {
        'location': 'roads/hirosima/roads.geojson',
        'id_field': 'linkid',
        'codes_field': 'kye_code',
    },

    'sources': {
        'population': {
            'location': 'statistical/tblT001101H34.csv',
            'key': 'KEY_CODE',
            'fields': {
                'total': 'T001101001',
                'pop0_14': 'T001101004',
                'pop15_64': 'T001101010',
                'pop65_over': 'T001101019',
            },
        },
        'labor': {
            'location': 'statistical/tblT001102H34.csv',
            'key': 'KEY_CODE',
            'fields': {
                'total': 'T001102001',
            },
        },
        'floor': {
            'location': 'yukamenseki/hirosima/yukamenseki_hirosima.csv',
            'key': 'KEY_CODE',
            'fields': {
                'total': 'total_floor_area',
            },
        },
        'road_area': {
            'location': 'road_area/hirosima/road_area.csv',
            'key': 'KEY_CODE',
            'fields': {
                'total': 'road_area_total',
                'nat': 'road_area_nat',
                'pref': 'road_area_pref',
                'muni': 'road_area_muni',
                'other': 'road_area_other',
            },
        },
        'traffic': {
            'location': 'traffic/hirosima/traffic.csv',
            'key': 'linkid',
            'fields': {},
            # Every column starting with the prefix is summed into one field
            'prefix_fields': {
                'traffic': 'koutuuryou',
            },
        },
    },
}

# Sources joined during the initial fuse; traffic is hydrated on demand
GRID_SOURCES = ['population', 'labor', 'floor', 'road_area']


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build the effective configuration.

    Args:
        overrides: Nested dict merged over DEFAULT_CONFIG

    Returns:
        A fresh configuration dict (safe to mutate)
    """
    config = _deep_merge(DEFAULT_CONFIG, overrides or {})

    data_root = os.environ.get('DASHBOARD_DATA_ROOT')
    if data_root:
        config['data_root'] = data_root

    year = os.environ.get('DASHBOARD_YEAR')
    if year:
        try:
            config['year'] = int(year)
        except ValueError:
            logger.warning(f"Ignoring invalid DASHBOARD_YEAR={year!r}")

    timeout = os.environ.get('DASHBOARD_REQUEST_TIMEOUT')
    if timeout:
        try:
            config['request_timeout'] = float(timeout)
        except ValueError:
            logger.warning(f"Ignoring invalid DASHBOARD_REQUEST_TIMEOUT={timeout!r}")

    return config


def resolve_location(config: Dict[str, Any], location: str, year=None) -> str:
    """Format {year} into a location and join it onto data_root when relative."""
    if year is None:
        year = config.get('year')
    location = location.format(year=year)

    if location.startswith(('http://', 'https://')) or os.path.isabs(location):
        return location

    root = str(config.get('data_root') or '').format(year=year)
    if not root:
        return location
    if root.startswith(('http://', 'https://')):
        return root.rstrip('/') + '/' + location.lstrip('/')
    return os.path.join(root, location)


def source_location(config: Dict[str, Any], name: str, year=None) -> str:
    """Resolved location of a tabular source by name."""
    return resolve_location(config, config['sources'][name]['location'], year)
