from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, List

import dash_bootstrap_components as dbc
from dash import dcc, html

from crosslink.ui.ids import IDs, graph_id

if TYPE_CHECKING:
    from crosslink.ui.config import AppConfig


def build_graph_card(dataset_name: str) -> dbc.Card:
    return dbc.Card(
        [
            dbc.CardHeader(html.Strong(dataset_name), className="p-2"),
            dbc.CardBody(
                dcc.Graph(
                    id=graph_id(dataset_name),
                    style={"height": "450px"},
                    config={"responsive": True},
                ),
            ),
        ],
        className="mt-3",
    )


def build_controls() -> html.Div:
    return html.Div(
        [
            dbc.Button(
                "Reset selection",
                id=IDs.Control.RESET_SELECTION_BTN,
                color="secondary",
                size="sm",
                className="me-3",
            ),
            dcc.Checklist(
                id=IDs.Control.FILTER_TO_SELECTION,
                options=[{"label": " Filter other views to selection", "value": "on"}],
                value=[],
                inline=True,
            ),
            html.Div(id=IDs.Control.STATUS_BAR, className="ms-auto text-muted"),
        ],
        className="d-flex align-items-center mt-3",
    )


def build_layout(ctx: "AppConfig"):
    """
    Called once per page load (Dash serves a layout function fresh each time),
    so every browser tab gets its own link session id.
    """
    cards: List[dbc.Col] = [
        dbc.Col(build_graph_card(name), md=6) for name in ctx.dataset_names
    ]

    if not cards:
        body = dbc.Card(
            dbc.CardBody("No datasets configured. Add one under config/datasets/."),
            className="mt-3",
        )
    else:
        body = dbc.Row(cards, className="gx-3")

    return dbc.Container(
        fluid=True,
        children=[
            html.H2(ctx.global_config.ui_title, className="mt-3"),

            # App-level stores
            dcc.Store(id=IDs.Store.SESSION_ID, data=uuid.uuid4().hex, storage_type="memory"),
            dcc.Store(id=IDs.Store.LINK_MUTATION, storage_type="memory"),
            dcc.Store(id=IDs.Store.LINK_NOTIFICATIONS, data=[], storage_type="memory"),

            build_controls(),
            body,
        ],
    )
