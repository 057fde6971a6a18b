from conftest import collection, make_cell
from aggregation import aggregate_range
from grid_metrics import fuse_grid_metrics
from visualizations import (
    MAP_CENTER,
    create_initial_map,
    create_grid_map,
    create_ranking_chart,
    get_score_color,
    grid_to_geodataframe,
    selected_cell_codes,
)


def test_geodataframe_indexed_by_code(grid, population_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, None, None)
    gdf = grid_to_geodataframe(fused)
    assert list(gdf.index) == ['A', 'B', 'C']
    assert gdf.loc['B', 'population_norm'] == 100.0


def test_grid_map_has_choropleth(grid, population_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, None, None)
    fig = create_grid_map(fused, 'population')
    assert fig.data[0].type == 'choroplethmap'
    assert list(fig.data[0].locations) == ['A', 'B', 'C']


def test_grid_map_with_circles_and_highlight(grid, population_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, None, None)
    fig = create_grid_map(fused, 'population', secondary_metric='ratio_65_over',
                          highlight_codes=['A'])
    assert len(fig.data) >= 3


def test_grid_map_filtered_to_nothing(grid, population_table):
    fused, _ = fuse_grid_metrics(grid, population_table, None, None, None)
    fig = create_grid_map(fused, 'population', visible_codes=[])
    assert len(fig.data) == 0


def test_grid_map_empty_grid():
    fig = create_grid_map(collection([]), 'population')
    assert len(fig.data) == 0


def test_selected_cell_codes():
    selected = {'points': [{'location': 'A'}, {'pointIndex': 3}, {'location': 5134001}]}
    assert selected_cell_codes(selected) == ['A', '5134001']
    assert selected_cell_codes(None) == []


def test_ranking_chart_orders_top_first():
    rows = [{'rank': 1, 'id': 'B', 'metric': 'score', 'value': 70.0},
            {'rank': 2, 'id': 'C', 'metric': 'score', 'value': 40.0}]
    fig = create_ranking_chart(rows, 'score')
    assert list(fig.data[0].y) == ['C', 'B']


def test_score_color():
    assert get_score_color(10) == "danger"
    assert get_score_color(90) == "success"


def test_cells_without_geometry_are_dropped():
    cell = make_cell('A')
    cell['geometry'] = None
    assert len(grid_to_geodataframe(collection([cell, make_cell('B')]))) == 1


def test_numeric_codes_with_missing_cell_match_engine_codes():
    gapped_grid = collection([
        make_cell(5134001, population_value=10.0),
        make_cell(5134002, x=132.46, population_value=20.0),
        make_cell(None, x=132.47, population_value=5.0),
    ])
    gdf = grid_to_geodataframe(gapped_grid)
    assert list(gdf.index) == ['5134001', '5134002']

    fig = create_grid_map(gapped_grid, 'population')
    points = [{'location': location} for location in fig.data[0].locations]
    codes = selected_cell_codes({'points': points})

    result = aggregate_range(gapped_grid, 'population', codes)
    assert codes == ['5134001', '5134002']
    assert result['range_count'] == 2
    assert result['range_sum'] == 30.0


def test_highlight_and_filter_accept_numeric_codes():
    grid = collection([
        make_cell(5134001, population_norm=50.0),
        make_cell(5134002, x=132.46, population_norm=100.0),
    ])
    fig = create_grid_map(grid, 'population', highlight_codes=[5134001.0],
                          visible_codes=[5134002.0])
    assert list(fig.data[0].locations) == ['5134002']
    # one choropleth trace plus the outline of the highlighted cell
    assert len(fig.data) == 2


def test_initial_map_uses_map_layout():
    fig = create_initial_map()
    assert fig.data[0].type == 'scattermap'
    assert fig.layout.map.center.lat == MAP_CENTER['lat']
