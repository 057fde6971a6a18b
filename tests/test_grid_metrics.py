import copy

import numpy as np
import pytest

from conftest import collection, make_cell
from grid_metrics import (
    composite_score,
    empty_maxima,
    fuse_grid_metrics,
    metric_attribute,
    normalize,
    safe_ratio,
    to_number,
)
from source_loader import SourceTable, parse_source


def props_by_code(grid):
    return {f['properties']['KEY_CODE']: f['properties'] for f in grid['features']}


# ============================================================================
# Helpers
# ============================================================================

def test_to_number_coerces_invalid_values():
    assert to_number('3.5') == 3.5
    assert to_number(None) == 0.0
    assert to_number('abc') == 0.0
    assert to_number(float('nan')) == 0.0
    assert to_number(float('inf')) == 0.0


def test_normalize_against_maximum():
    assert list(normalize([0, 50, 200], 200)) == [0.0, 25.0, 100.0]


def test_normalize_zero_maximum_is_all_zero():
    assert list(normalize([0, 0], 0)) == [0.0, 0.0]


def test_safe_ratio_zero_total():
    assert list(safe_ratio([5, 10], [0, 40])) == [0.0, 25.0]


def test_composite_score_is_mean_of_three():
    assert composite_score([30], [60], [90])[0] == pytest.approx(60.0)


def test_metric_attribute_passthrough():
    assert metric_attribute('population') == 'population_value'
    assert metric_attribute('custom_field') == 'custom_field'


# ============================================================================
# Fusion
# ============================================================================

def test_fuse_joins_population_and_normalizes(grid, population_table):
    fused, maxima = fuse_grid_metrics(grid, population_table, None, None, None)
    cells = props_by_code(fused)

    assert maxima['population_max'] == 200.0
    assert cells['A']['population_value'] == 100.0
    assert cells['A']['population_norm'] == pytest.approx(50.0)
    assert cells['B']['population_norm'] == pytest.approx(100.0)
    assert cells['A']['ratio_0_14'] == pytest.approx(10.0)
    assert cells['A']['ratio_15_64'] == pytest.approx(60.0)
    assert cells['A']['ratio_65_over'] == pytest.approx(30.0)


def test_cell_absent_from_population_reads_zero(grid, population_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, None, None)
    c = props_by_code(fused)['C']
    assert c['population_value'] == 0.0
    assert c['population_norm'] == 0.0
    assert c['ratio_0_14'] == c['ratio_15_64'] == c['ratio_65_over'] == 0.0


def test_normalized_values_stay_in_range(grid, population_table, floor_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, floor_table, None)
    for props in props_by_code(fused).values():
        for key, value in props.items():
            if key.endswith('_norm'):
                assert 0.0 <= value <= 100.0, key


def test_zero_maximum_gives_zero_norms(grid):
    fused, maxima = fuse_grid_metrics(grid, None, None, None, None)
    assert maxima == empty_maxima()
    for props in props_by_code(fused).values():
        assert props['labor_norm'] == 0.0
        assert props['road_area_total_norm'] == 0.0
        assert props['score_norm'] == 0.0


def test_score_without_traffic(grid, population_table, floor_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, floor_table, None)
    cells = props_by_code(fused)
    # A: population 50, floor 100, traffic 0
    assert cells['A']['score_norm'] == pytest.approx(50.0)
    # B: population 100, floor 50
    assert cells['B']['score_norm'] == pytest.approx(50.0)


def test_score_with_traffic(grid, population_table, floor_table):
    fused, maxima = fuse_grid_metrics(
        grid, population_table, None, floor_table, None, traffic_by_cell={'A': 40.0, 'C': 80.0}
    )
    cells = props_by_code(fused)
    assert maxima['traffic_max'] == 80.0
    assert cells['A']['traffic_norm'] == pytest.approx(50.0)
    assert cells['A']['score_norm'] == pytest.approx((50.0 + 50.0 + 100.0) / 3)
    assert cells['C']['score_norm'] == pytest.approx(100.0 / 3)


def test_road_area_fields_are_joined(grid):
    road_area = parse_source(
        "KEY_CODE,road_area_total,road_area_nat,road_area_pref,road_area_muni,road_area_other\n"
        "A,100,10,20,30,40\n",
        'KEY_CODE',
        fields={
            'total': 'road_area_total',
            'nat': 'road_area_nat',
            'pref': 'road_area_pref',
            'muni': 'road_area_muni',
            'other': 'road_area_other',
        },
    )
    fused, maxima = fuse_grid_metrics(grid, None, None, None, road_area)
    a = props_by_code(fused)['A']
    assert a['road_area_total'] == 100.0
    assert a['road_area_muni'] == 30.0
    assert a['road_area_nat_norm'] == pytest.approx(100.0)
    assert maxima['road_area_other_max'] == 40.0


def test_fuse_is_idempotent(grid, population_table, floor_table):
    first, first_max = fuse_grid_metrics(grid, population_table, None, floor_table, None)
    second, second_max = fuse_grid_metrics(grid, population_table, None, floor_table, None)
    assert first == second
    assert first_max == second_max


def test_fuse_does_not_modify_input(grid, population_table):
    before = copy.deepcopy(grid)
    fuse_grid_metrics(grid, population_table, None, None, None)
    assert grid == before


def test_fuse_keeps_other_properties_and_geometry(population_table):
    cell = make_cell('A', name='Naka')
    fused, _ = fuse_grid_metrics(collection([cell]), population_table, None, None, None)
    feature = fused['features'][0]
    assert feature['properties']['name'] == 'Naka'
    assert feature['geometry'] == cell['geometry']


def test_numeric_codes_join_text_keys(population_table):
    table = parse_source("KEY_CODE,T001101001\n5134001,80\n", 'KEY_CODE', fields={'total': 'T001101001'})
    grid = collection([make_cell(5134001.0)])
    fused, _ = fuse_grid_metrics(grid, table, None, None, None)
    assert fused['features'][0]['properties']['population_value'] == 80.0


def test_cells_without_code_get_zeros(population_table):
    grid = collection([make_cell(None), make_cell('A')])
    fused, _ = fuse_grid_metrics(grid, population_table, None, None, None)
    assert fused['features'][0]['properties']['population_value'] == 0.0
    assert fused['features'][1]['properties']['population_value'] == 100.0


def test_empty_grid():
    fused, maxima = fuse_grid_metrics(collection([]), SourceTable.empty(), None, None, None)
    assert fused['features'] == []
    assert all(value == 0.0 for value in maxima.values())


def test_values_are_plain_floats(grid, population_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, None, None)
    for value in fused['features'][0]['properties'].values():
        if isinstance(value, (float, np.floating)):
            assert type(value) is float
