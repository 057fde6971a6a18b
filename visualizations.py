import geopandas as gpd
import plotly.graph_objects as go
import plotly.express as px
import numpy as np
import logging

from grid_metrics import features_of, metric_label, normalized_attribute
from source_loader import normalize_id

# Setup logging
logger = logging.getLogger(__name__)

# Map starts over Hiroshima city centre
MAP_CENTER = {'lat': 34.3853, 'lon': 132.4553}
MAP_ZOOM = 12.5

# Color schemes for different metrics
COLOR_SCHEMES = {
    'traffic': 'Oranges',
    'population': 'Teal',
    'labor': 'Purples',
    'floor': 'YlOrBr',
    'road_area': 'Greys',
    'ratio_0_14': 'Blues',
    'ratio_15_64': 'Tealgrn',
    'ratio_65_over': 'OrRd',
    'score': 'GnBu'
}

HOVER_COLUMNS = {
    'population_value': ':.0f',
    'labor_value': ':.0f',
    'floor_value': ':.0f',
    'traffic_value': ':.0f',
    'ratio_65_over': ':.1f',
    'score_norm': ':.1f',
}


# ============================================================================
# MAP VISUALIZATION FUNCTIONS
# ============================================================================

def grid_to_geodataframe(grid, key_field='KEY_CODE') -> gpd.GeoDataFrame:
    """
    Build a GeoDataFrame indexed by cell code from the fused grid.

    Cells without a code or geometry cannot be drawn and are dropped.
    """
    features = [f for f in features_of(grid) if f.get('geometry')]
    if not features:
        return gpd.GeoDataFrame()

    gdf = gpd.GeoDataFrame.from_features(features, crs='EPSG:4326')
    if key_field not in gdf.columns:
        return gpd.GeoDataFrame()

    gdf = gdf.copy()
    gdf['cell_code'] = gdf[key_field].map(normalize_id)
    gdf = gdf[gdf['cell_code'].notna()]
    gdf = gdf.drop_duplicates('cell_code').set_index('cell_code')
    return gdf


def create_grid_map(grid, metric, secondary_metric=None, highlight_codes=None,
                    visible_codes=None, key_field='KEY_CODE') -> go.Figure:
    """
    Choropleth of one metric's 0-100 value over the grid.

    Args:
        grid: Fused grid FeatureCollection
        metric: Metric coloured on the cells
        secondary_metric: Optional metric drawn as circles at cell centres
        highlight_codes: Cells outlined as the current top-N report
        visible_codes: When given, only these cells are coloured (filter)
        key_field: Property holding the cell code

    Returns:
        Plotly figure
    """
    gdf = grid_to_geodataframe(grid, key_field)
    if len(gdf) == 0:
        return create_empty_figure("No grid data to display")

    column = normalized_attribute(metric)
    if column not in gdf.columns:
        return create_empty_figure(f"{metric_label(metric)} is not available")

    display_gdf = gdf
    if visible_codes is not None:
        display_gdf = gdf[gdf.index.isin({normalize_id(code) for code in visible_codes})]
        if len(display_gdf) == 0:
            return create_empty_figure("No cells match the current filter")

    hover_data = {col: fmt for col, fmt in HOVER_COLUMNS.items() if col in display_gdf.columns}

    fig = px.choropleth_map(
        display_gdf,
        geojson=display_gdf.geometry.__geo_interface__,
        locations=display_gdf.index,
        color=column,
        color_continuous_scale=COLOR_SCHEMES.get(metric, 'Viridis'),
        hover_name=display_gdf.index,
        hover_data=hover_data,
        labels={column: metric_label(metric)},
        map_style="carto-positron",
        center=MAP_CENTER,
        zoom=MAP_ZOOM,
        opacity=0.45,
        range_color=[0, 100]
    )

    if secondary_metric:
        add_cell_circles(fig, display_gdf, secondary_metric)

    if highlight_codes:
        add_highlight_outline(fig, gdf, highlight_codes)

    fig.update_layout(
        height=700,
        margin={"r": 0, "t": 30, "l": 0, "b": 0},
        clickmode='event+select',
        dragmode='lasso',
        uirevision='grid-map',
        coloraxis_colorbar=dict(title=metric_label(metric))
    )

    return fig


def add_cell_circles(fig, gdf, metric):
    """Circles at cell centres sized by a second metric (0-100 -> 0-14 px)."""
    column = normalized_attribute(metric)
    if column not in gdf.columns:
        return fig

    centres = gdf.geometry.to_crs('EPSG:3857').centroid.to_crs('EPSG:4326')
    values = gdf[column].fillna(0).to_numpy(dtype=float)
    sizes = np.interp(values, [0, 30, 60, 100], [0, 4, 8, 14])

    fig.add_trace(go.Scattermap(
        lat=centres.y,
        lon=centres.x,
        mode='markers',
        marker=dict(size=sizes, color='#1f2937', opacity=0.6),
        text=[f"{code}: {value:.1f}" for code, value in zip(gdf.index, values)],
        hovertemplate='%{text}<extra></extra>',
        name=metric_label(metric),
        showlegend=False
    ))
    return fig


def add_highlight_outline(fig, gdf, codes):
    """Outline the given cells in red."""
    target = gdf[gdf.index.isin({normalize_id(code) for code in codes})]
    if len(target) == 0:
        return fig

    for geom in target.geometry.boundary:
        lines = getattr(geom, 'geoms', [geom])
        for line in lines:
            lon, lat = line.xy
            fig.add_trace(go.Scattermap(
                lat=list(lat),
                lon=list(lon),
                mode='lines',
                line=dict(color='#dc2626', width=2.4),
                hoverinfo='skip',
                showlegend=False
            ))
    return fig


def create_initial_map() -> go.Figure:
    """Create initial empty map over the study area"""
    fig = go.Figure(go.Scattermap(
        lat=[MAP_CENTER['lat']],
        lon=[MAP_CENTER['lon']],
        mode='text',
        text=[''],
        showlegend=False,
        hoverinfo='skip'
    ))

    fig.update_layout(
        map={
            'style': "carto-positron",
            'center': MAP_CENTER,
            'zoom': MAP_ZOOM
        },
        margin={"r": 0, "t": 50, "l": 0, "b": 0},
        height=700,
        paper_bgcolor='white',
        annotations=[{
            'text': "Loading grid data...",
            'xref': "paper",
            'yref': "paper",
            'x': 0.5,
            'y': 0.5,
            'showarrow': False,
            'font': {'size': 16, 'color': "#7f8c8d"},
            'bgcolor': "rgba(255,255,255,0.9)",
            'bordercolor': "#bdc3c7",
            'borderwidth': 2,
            'borderpad': 10
        }]
    )

    return fig


def create_empty_figure(message: str) -> go.Figure:
    """Create an empty figure with a message"""
    fig = go.Figure()
    fig.add_annotation(
        text=message,
        xref="paper",
        yref="paper",
        x=0.5,
        y=0.5,
        showarrow=False,
        font=dict(size=16, color="gray")
    )
    fig.update_layout(
        xaxis=dict(showgrid=False, showticklabels=False, zeroline=False),
        yaxis=dict(showgrid=False, showticklabels=False, zeroline=False),
        paper_bgcolor='white',
        plot_bgcolor='white',
        height=400
    )
    return fig


# ============================================================================
# CHART VISUALIZATION FUNCTIONS
# ============================================================================

def create_ranking_chart(rows, metric) -> go.Figure:
    """Horizontal bar chart of a top-N report"""
    if not rows:
        return create_empty_figure("Run a report to see the ranking")

    ordered = list(reversed(rows))
    fig = go.Figure(go.Bar(
        x=[row['value'] for row in ordered],
        y=[str(row['id']) for row in ordered],
        orientation='h',
        marker=dict(color='steelblue'),
        hovertemplate='%{y}: %{x:,.1f}<extra></extra>'
    ))
    fig.update_layout(
        title=f"Top {len(rows)} by {metric_label(metric)}",
        xaxis_title=metric_label(metric),
        height=max(300, 22 * len(rows) + 100),
        margin={"r": 10, "t": 50, "l": 120, "b": 40},
        paper_bgcolor='white',
        plot_bgcolor='rgba(240,240,240,0.5)',
        font=dict(family="Arial", size=12)
    )
    return fig


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def get_score_color(score: float) -> str:
    """Return color based on score value for Bootstrap badges/progress bars"""
    if score < 25:
        return "danger"
    elif score < 50:
        return "warning"
    elif score < 75:
        return "info"
    else:
        return "success"


def selected_cell_codes(selected_data) -> list:
    """Cell codes from a Dash map selection (box/lasso)"""
    if not selected_data:
        return []
    codes = []
    for point in selected_data.get('points') or []:
        location = normalize_id(point.get('location'))
        if location is not None:
            codes.append(location)
    return codes
