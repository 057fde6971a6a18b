import dash
from dash import Input, Output, State, dcc, html
from dash.exceptions import PreventUpdate
import dash_bootstrap_components as dbc
import logging

from aggregation import (
    aggregate_frame,
    clamp_limit,
    filter_cells,
    format_value,
    ranking_frame,
    selection_frame,
)
from grid_metrics import TRAFFIC_METRICS, metric_label
from layout import METRIC_OPTIONS, ROAD_METRIC_OPTIONS, create_metric_card
from visualizations import (
    create_empty_figure,
    create_grid_map,
    create_ranking_chart,
    get_score_color,
    selected_cell_codes,
)

# Setup logging
logger = logging.getLogger(__name__)

FILTER_ROWS = 2


def needs_traffic(*metrics) -> bool:
    return any(metric in TRAFFIC_METRICS for metric in metrics if metric)


def error_alert(title: str, error: Exception) -> dbc.Alert:
    return dbc.Alert([
        html.H5(title, className="alert-heading"),
        html.P(f"Error: {str(error)}"),
        html.Hr(),
        html.P("Check the console for detailed error information.",
               className="mb-0 small")
    ], color="danger", className="m-3", dismissable=True)


def register_callbacks(app, registry):
    """Register all Dash callbacks against a DataRegistry"""

    def context_for(year, *metrics):
        """Loaded context for a year; traffic is hydrated only when a metric needs it."""
        if needs_traffic(*metrics):
            return registry.with_traffic(year)
        return registry.loaded(year)

    # ========================================================================
    # SELECTION AND FILTER CALLBACKS
    # ========================================================================

    @app.callback(
        Output('selection-store', 'data'),
        [Input('grid-map', 'selectedData'),
         Input('year-select', 'value')]
    )
    def update_selection(selected_data, year):
        """Keep the box/lasso selection as a list of cell codes"""
        if dash.ctx.triggered_id == 'year-select':
            return []
        return selected_cell_codes(selected_data)

    @app.callback(
        Output('filter-store', 'data'),
        [Input('apply-filter-btn', 'n_clicks'),
         Input('clear-filter-btn', 'n_clicks')],
        [State('filter-mode', 'value'),
         State('year-select', 'value')]
        + [State(f'filter-metric-{i}', 'value') for i in range(FILTER_ROWS)]
        + [State(f'filter-min-{i}', 'value') for i in range(FILTER_ROWS)]
        + [State(f'filter-max-{i}', 'value') for i in range(FILTER_ROWS)],
        prevent_initial_call=True
    )
    def apply_filter(apply_clicks, clear_clicks, mode, year, *values):
        """Store the codes of cells that pass the filter (None clears it)"""
        if dash.ctx.triggered_id == 'clear-filter-btn':
            return None

        metrics = values[:FILTER_ROWS]
        lows = values[FILTER_ROWS:2 * FILTER_ROWS]
        highs = values[2 * FILTER_ROWS:]
        criteria = [
            {'metric': metric, 'min': low, 'max': high}
            for metric, low, high in zip(metrics, lows, highs)
            if metric
        ]
        if not criteria:
            return None

        try:
            data = context_for(year, *metrics)
            codes = filter_cells(data.grid, criteria, mode, key_field=data.key_field)
            logger.info(f"Filter matched {len(codes)} cells ({mode}, {len(criteria)} criteria)")
            return codes
        except Exception as e:
            logger.error(f"Filter failed: {e}", exc_info=True)
            return None

    # ========================================================================
    # MAP UPDATE CALLBACKS
    # ========================================================================

    @app.callback(
        [Output('grid-map', 'figure'),
         Output('status-alert', 'children')],
        [Input('year-select', 'value'),
         Input('map-metric', 'value'),
         Input('map-secondary-metric', 'value'),
         Input('filter-store', 'data'),
         Input('report-store', 'data')]
    )
    def update_map(year, metric, secondary_metric, filter_codes, report):
        """Redraw the grid choropleth"""
        try:
            data = context_for(year, metric, secondary_metric)

            highlight = None
            if report and report.get('source') == 'grid' and report.get('year') == year:
                highlight = [row['id'] for row in report.get('rows') or []]

            fig = create_grid_map(
                data.grid,
                metric,
                secondary_metric=secondary_metric,
                highlight_codes=highlight,
                visible_codes=filter_codes,
                key_field=data.key_field
            )
            return fig, None

        except Exception as e:
            logger.error(f"Map update failed: {e}", exc_info=True)
            return create_empty_figure("Map could not be drawn"), error_alert("Map Update Failed", e)

    # ========================================================================
    # AGGREGATION CALLBACKS
    # ========================================================================

    @app.callback(
        Output('aggregate-cards', 'children'),
        [Input('selection-store', 'data'),
         Input('aggregate-metric', 'value'),
         Input('year-select', 'value')]
    )
    def update_aggregate(selection, metric, year):
        """Metric cards for the overall and selected-range statistics"""
        try:
            data = context_for(year, metric)
            result = data.aggregate(metric, selection)
        except Exception as e:
            logger.error(f"Aggregation failed: {e}", exc_info=True)
            return error_alert("Aggregation Failed", e)

        label = metric_label(metric)
        if result['range_count'] is None:
            range_note = "Select cells on the map"
        else:
            range_note = f"{result['range_count']} of {len(selection)} selected cells counted"

        max_note = f"cell {result['range_max_id']}" if result['range_max_id'] else None
        min_note = f"cell {result['range_min_id']}" if result['range_min_id'] else None

        average_color = "primary"
        if metric == 'score' and result['range_average'] is not None:
            average_color = get_score_color(result['range_average'])

        return dbc.Row([
            dbc.Col([
                create_metric_card(f"{label}: range sum",
                                   format_value(metric, result['range_sum']),
                                   "fas fa-plus-circle", "primary", range_note)
            ], md=3),
            dbc.Col([
                create_metric_card(f"{label}: range average",
                                   format_value(metric, result['range_average']),
                                   "fas fa-balance-scale", average_color,
                                   f"overall {format_value(metric, result['overall_average'])}")
            ], md=3),
            dbc.Col([
                create_metric_card(f"{label}: range max",
                                   format_value(metric, result['range_max']),
                                   "fas fa-arrow-up", "success", max_note)
            ], md=3),
            dbc.Col([
                create_metric_card(f"{label}: range min",
                                   format_value(metric, result['range_min']),
                                   "fas fa-arrow-down", "warning", min_note)
            ], md=3)
        ])

    # ========================================================================
    # REPORT CALLBACKS
    # ========================================================================

    @app.callback(
        [Output('report-metric', 'options'),
         Output('report-metric', 'value')],
        [Input('report-source', 'value')],
        [State('report-metric', 'value')]
    )
    def update_report_metrics(source, current):
        """Road links only carry the rolled-up metrics"""
        options = ROAD_METRIC_OPTIONS if source == 'road' else METRIC_OPTIONS
        allowed = {option['value'] for option in options}
        return options, current if current in allowed else 'score'

    @app.callback(
        [Output('report-store', 'data'),
         Output('ranking-table', 'children'),
         Output('ranking-chart', 'figure')],
        [Input('run-report-btn', 'n_clicks')],
        [State('report-source', 'value'),
         State('report-metric', 'value'),
         State('report-limit', 'value'),
         State('year-select', 'value')],
        prevent_initial_call=True
    )
    def run_report(n_clicks, source, metric, limit, year):
        """Top-N ranking of grid cells or road links"""
        if n_clicks is None:
            raise PreventUpdate

        logger.info("=" * 60)
        logger.info(f"Running {source} report: top {limit} by {metric} ({year})")
        logger.info("=" * 60)

        try:
            if source == 'road':
                data = registry.with_road_metrics(year)
            else:
                data = context_for(year, metric)

            rows = data.rank(source, metric, clamp_limit(limit, data.config.get('report_limit', 20)))
            logger.info(f"✓ Report ready with {len(rows)} rows")

            report = {'source': source, 'metric': metric, 'year': year, 'rows': rows}
            return report, create_ranking_table(rows, source, metric), create_ranking_chart(rows, metric)

        except Exception as e:
            logger.error(f"Report failed: {e}", exc_info=True)
            return None, error_alert("Report Failed", e), create_empty_figure("Report failed")

    def create_ranking_table(rows, source, metric):
        if not rows:
            return html.P("No rows to rank", className="text-muted small mb-0")

        id_header = "Link ID" if source == 'road' else "Cell code"
        body = [
            html.Tr([
                html.Td(row['rank'], className="text-center"),
                html.Td(row['id']),
                html.Td(format_value(metric, row['value']), className="text-end")
            ], className="align-middle")
            for row in rows
        ]
        return dbc.Table([
            html.Thead(
                html.Tr([
                    html.Th("Rank", className="text-center"),
                    html.Th(id_header),
                    html.Th(metric_label(metric), className="text-end")
                ], className="table-primary")
            ),
            html.Tbody(body)
        ], bordered=True, hover=True, responsive=True, striped=True, size="sm",
            className="mb-0")

    # ========================================================================
    # EXPORT CALLBACKS
    # ========================================================================

    @app.callback(
        Output('download-export', 'data'),
        [Input('export-report-btn', 'n_clicks'),
         Input('export-aggregate-btn', 'n_clicks'),
         Input('export-selection-btn', 'n_clicks')],
        [State('report-store', 'data'),
         State('selection-store', 'data'),
         State('aggregate-metric', 'value'),
         State('year-select', 'value')],
        prevent_initial_call=True
    )
    def export_csv(report_clicks, aggregate_clicks, selection_clicks,
                   report, selection, metric, year):
        """Download the current report, aggregate or selection as CSV"""
        trigger = dash.ctx.triggered_id

        if trigger == 'export-report-btn':
            if not report or not report.get('rows'):
                raise PreventUpdate
            out = ranking_frame(report['rows'])
            filename = f"report_{report['source']}_{report['metric']}_{report['year']}.csv"
            return dcc.send_data_frame(out.to_csv, filename, index=False)

        data = context_for(year, metric)

        if trigger == 'export-aggregate-btn':
            out = aggregate_frame(data.aggregate(metric, selection))
            return dcc.send_data_frame(out.to_csv, f"aggregate_{metric}_{year}.csv", index=False)

        if trigger == 'export-selection-btn':
            if not selection:
                raise PreventUpdate
            out = selection_frame(data.grid, metric, selection, key_field=data.key_field)
            return dcc.send_data_frame(out.to_csv, f"selection_{metric}_{year}.csv", index=False)

        raise PreventUpdate
