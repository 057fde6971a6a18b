"""
Shared fixtures: small in-memory grids, road links and source tables.
"""
import sys
import os
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from source_loader import parse_source  # noqa: E402


def square(x, y, size=0.01):
    return {
        'type': 'Polygon',
        'coordinates': [[
            [x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]
        ]],
    }


def make_cell(code, x=132.45, y=34.38, **props):
    return {
        'type': 'Feature',
        'properties': {'KEY_CODE': code, **props},
        'geometry': square(x, y),
    }


def make_link(linkid, codes, feature_id=None):
    feature = {
        'type': 'Feature',
        'properties': {'linkid': linkid, 'kye_code': codes},
        'geometry': {'type': 'LineString', 'coordinates': [[132.45, 34.38], [132.46, 34.39]]},
    }
    if feature_id is not None:
        feature['id'] = feature_id
    return feature


def collection(features):
    return {'type': 'FeatureCollection', 'features': features}


POPULATION_CSV = (
    "KEY_CODE,T001101001,T001101004,T001101010,T001101019\n"
    "A,100,10,60,30\n"
    "B,200,20,120,60\n"
)

FLOOR_CSV = (
    "KEY_CODE,total_floor_area\n"
    "A,500\n"
    "B,250\n"
)

TRAFFIC_CSV = (
    "linkid,koutuuryou_am,koutuuryou_pm,note\n"
    "L1,70,50,x\n"
    "L2,30,0,y\n"
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep deployment settings out of the tests."""
    for name in ('DASHBOARD_DATA_ROOT', 'DASHBOARD_YEAR', 'DASHBOARD_REQUEST_TIMEOUT'):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def grid():
    return collection([make_cell('A'), make_cell('B', x=132.46), make_cell('C', x=132.47)])


@pytest.fixture
def population_table():
    return parse_source(
        POPULATION_CSV,
        'KEY_CODE',
        fields={
            'total': 'T001101001',
            'pop0_14': 'T001101004',
            'pop15_64': 'T001101010',
            'pop65_over': 'T001101019',
        },
        name='population',
    )


@pytest.fixture
def floor_table():
    return parse_source(FLOOR_CSV, 'KEY_CODE', fields={'total': 'total_floor_area'}, name='floor')


@pytest.fixture
def traffic_table():
    return parse_source(TRAFFIC_CSV, 'linkid', prefix_fields={'traffic': 'koutuuryou'}, name='traffic')


@pytest.fixture
def roads():
    return collection([make_link('L1', 'A_B'), make_link('L2', 'C')])
