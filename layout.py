from dash import html, dcc
import dash_bootstrap_components as dbc

from config import load_config
from grid_metrics import METRIC_LABELS
from visualizations import create_initial_map, create_empty_figure

# Metrics offered for the map colour and the reports
METRIC_OPTIONS = [{'label': label, 'value': metric} for metric, label in METRIC_LABELS.items()]

ROAD_METRIC_OPTIONS = [
    {'label': METRIC_LABELS[metric], 'value': metric}
    for metric in ['traffic', 'population', 'labor', 'floor',
                   'ratio_0_14', 'ratio_15_64', 'ratio_65_over', 'score']
]

# ============================================================================
# STYLING AND LAYOUT COMPONENTS
# ============================================================================

def create_navbar() -> dbc.Navbar:
    """Create navigation bar"""
    return dbc.Navbar(
        dbc.Container([
            dbc.Row([
                dbc.Col([
                    html.I(className="fas fa-city fa-2x text-white me-3"),
                    html.Div([
                        html.H3("Hiroshima Grid Planning Dashboard", className="mb-0 text-white"),
                        html.Small(
                            "Population, floor area, road area and traffic by grid cell",
                            className="text-white-50"
                        )
                    ])
                ], width="auto", className="d-flex align-items-center"),
            ], className="g-0 w-100 justify-content-between")
        ], fluid=True),
        color="dark",
        dark=True,
        className="mb-4 shadow"
    )


def create_metric_card(title: str, value: str, icon: str,
                       color: str = "primary", subtitle: str = None) -> dbc.Card:
    """Create a metric display card"""
    body = [
        html.I(className=f"{icon} fa-2x text-{color} mb-2"),
        html.H3(value, className="mb-0 mt-2"),
        html.P(title, className="text-muted mb-0 small")
    ]
    if subtitle:
        body.append(html.Small(subtitle, className="text-muted"))
    return dbc.Card([
        dbc.CardBody([
            html.Div(body, className="text-center")
        ])
    ], className="shadow-sm border-0 h-100")


def create_control_section(title: str, children: list,
                           icon: str = "fas fa-cog") -> dbc.Card:
    """Create a control section card"""
    return dbc.Card([
        dbc.CardHeader([
            html.I(className=f"{icon} me-2"),
            html.Strong(title)
        ], className="bg-light"),
        dbc.CardBody(children)
    ], className="mb-3 shadow-sm border-0")


def create_filter_row(index: int, default_metric: str) -> dbc.Row:
    """One filter criterion: metric with optional lower/upper bounds"""
    return dbc.Row([
        dbc.Col([
            dcc.Dropdown(
                id=f'filter-metric-{index}',
                options=METRIC_OPTIONS,
                value=default_metric,
                clearable=True,
                className="small"
            )
        ], width=6),
        dbc.Col([
            dbc.Input(id=f'filter-min-{index}', type='number', placeholder='min',
                      size="sm", min=0)
        ], width=3),
        dbc.Col([
            dbc.Input(id=f'filter-max-{index}', type='number', placeholder='max',
                      size="sm", min=0)
        ], width=3),
    ], className="mb-2 g-1 align-items-center")


def create_sidebar(config) -> html.Div:
    """Left-hand controls"""
    years = sorted(set(config["years"]) | {config["year"]})
    return html.Div([
        create_control_section("Statistical Year", [
            dbc.RadioItems(
                id='year-select',
                options=[{'label': str(year), 'value': year} for year in years],
                value=config["year"],
                inline=True
            )
        ], icon="fas fa-calendar"),

        create_control_section("Map", [
            html.Label("Colour cells by", className="fw-bold small mb-1"),
            dcc.Dropdown(id='map-metric', options=METRIC_OPTIONS,
                         value='population', clearable=False, className="mb-3"),
            html.Label("Circles at cell centres", className="fw-bold small mb-1"),
            dcc.Dropdown(id='map-secondary-metric', options=METRIC_OPTIONS,
                         value=None, clearable=True, placeholder="None"),
            html.Small("Traffic and score load the traffic data on first use.",
                       className="text-muted d-block mt-2")
        ], icon="fas fa-map"),

        create_control_section("Range Aggregation", [
            html.Label("Metric", className="fw-bold small mb-1"),
            dcc.Dropdown(id='aggregate-metric', options=METRIC_OPTIONS,
                         value='population', clearable=False, className="mb-2"),
            html.Small("Use box or lasso select on the map to choose cells. "
                       "Cells with a value of exactly 0 are not counted.",
                       className="text-muted")
        ], icon="fas fa-object-group"),

        create_control_section("Top-N Report", [
            dbc.RadioItems(
                id='report-source',
                options=[
                    {'label': 'Grid cells', 'value': 'grid'},
                    {'label': 'Road links', 'value': 'road'}
                ],
                value='grid',
                inline=True,
                className="mb-2"
            ),
            dcc.Dropdown(id='report-metric', options=METRIC_OPTIONS,
                         value='score', clearable=False, className="mb-2"),
            dbc.InputGroup([
                dbc.InputGroupText("Top", className="small"),
                dbc.Input(id='report-limit', type='number', min=1, max=100, step=1,
                          value=config["report_limit"]),
            ], size="sm", className="mb-2"),
            dbc.Button([html.I(className="fas fa-list-ol me-2"), "Run Report"],
                       id='run-report-btn', color="primary", size="sm", className="w-100")
        ], icon="fas fa-trophy"),

        create_control_section("Filter Cells", [
            create_filter_row(0, 'population'),
            create_filter_row(1, None),
            dbc.RadioItems(
                id='filter-mode',
                options=[{'label': 'All (AND)', 'value': 'and'},
                         {'label': 'Any (OR)', 'value': 'or'}],
                value='and',
                inline=True,
                className="small mb-2"
            ),
            dbc.ButtonGroup([
                dbc.Button("Apply", id='apply-filter-btn', color="secondary", size="sm"),
                dbc.Button("Clear", id='clear-filter-btn', color="light", size="sm"),
            ], className="w-100")
        ], icon="fas fa-filter"),

        create_control_section("Export", [
            dbc.Button([html.I(className="fas fa-download me-2"), "Report CSV"],
                       id='export-report-btn', color="success", size="sm",
                       className="w-100 mb-2"),
            dbc.Button([html.I(className="fas fa-download me-2"), "Aggregate CSV"],
                       id='export-aggregate-btn', color="success", size="sm",
                       className="w-100 mb-2", outline=True),
            dbc.Button([html.I(className="fas fa-download me-2"), "Selection CSV"],
                       id='export-selection-btn', color="success", size="sm",
                       className="w-100", outline=True),
        ], icon="fas fa-file-csv"),
    ])


def create_layout(config=None):
    """Create the complete dashboard layout"""
    return html.Div([
        create_navbar(),

        dbc.Container([
            dbc.Row([
                dbc.Col([create_sidebar(config or load_config())], width=3),

                dbc.Col([
                    html.Div(id='status-alert'),

                    dbc.Card([
                        dbc.CardBody([
                            dcc.Loading(
                                dcc.Graph(
                                    id='grid-map',
                                    figure=create_initial_map(),
                                    config={'displayModeBar': True, 'scrollZoom': True}
                                ),
                                type="circle"
                            )
                        ], className="p-0")
                    ], className="shadow-sm border-0 mb-3"),

                    html.Div(id='aggregate-cards', className="mb-3"),

                    dbc.Row([
                        dbc.Col([
                            dbc.Card([
                                dbc.CardHeader([
                                    html.I(className="fas fa-trophy me-2"),
                                    html.Strong("Ranking")
                                ], className="bg-light"),
                                dbc.CardBody([
                                    html.Div(id='ranking-table',
                                             children=html.P("Run a report to see the ranking",
                                                             className="text-muted small mb-0"))
                                ])
                            ], className="shadow-sm border-0 h-100")
                        ], md=5),
                        dbc.Col([
                            dbc.Card([
                                dbc.CardBody([
                                    dcc.Graph(
                                        id='ranking-chart',
                                        figure=create_empty_figure("Run a report to see the ranking")
                                    )
                                ])
                            ], className="shadow-sm border-0 h-100")
                        ], md=7)
                    ], className="mb-4")
                ], width=9)
            ])
        ], fluid=True, className="px-4"),

        # Data stores
        dcc.Store(id='selection-store'),
        dcc.Store(id='report-store'),
        dcc.Store(id='filter-store'),
        dcc.Download(id='download-export')

    ], style={"backgroundColor": "#f8f9fa", "minHeight": "100vh"})
