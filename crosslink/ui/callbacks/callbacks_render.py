from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

import plotly.graph_objs as go

from crosslink.core.exceptions import KeyResolutionError
from crosslink.core.session import LinkSession
from crosslink.ui.ids import widget_source_id
from crosslink.ui.plotly_selection import linked_scatter

if TYPE_CHECKING:
    from crosslink.ui.config import AppConfig

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helper: Empty/Error Figures
# -----------------------------------------------------------------------------
def _message_figure(title: str, details: Optional[str] = None) -> go.Figure:
    fig = go.Figure()
    text = title if details is None else f"{title}\n\n{details}"
    fig.add_annotation(
        text=text,
        showarrow=False,
        xref="paper",
        yref="paper",
        x=0.5,
        y=0.5,
    )
    fig.update_xaxes(visible=False)
    fig.update_yaxes(visible=False)
    fig.update_layout(margin=dict(l=40, r=40, t=40, b=40))
    return fig


def render_figure(ctx: AppConfig, session: LinkSession, dataset_name: str) -> go.Figure:
    """
    Re-read one linked dataset (filtered by everyone but itself, with the group's
    selection) and draw it.
    """
    ds = next((d for d in session.datasets() if d.name == dataset_name), None)
    if ds is None:
        return _message_figure(f"The dataset '{dataset_name}' is not available.")

    cfg = ctx.frames.config(dataset_name)

    try:
        snapshot = ds.read_linked(exclude_source=widget_source_id(dataset_name))
    except KeyResolutionError as e:
        logger.error("Row keys could not be resolved", extra={"dataset": dataset_name, "error": str(e)})
        return _message_figure("Rows could not be matched across views.", str(e))

    missing = [c for c in (cfg.x, cfg.y) if c not in snapshot.frame.columns]
    if missing:
        return _message_figure(
            f"Columns {missing} not found in '{dataset_name}'.",
            "Set 'x' and 'y' in the dataset config.",
        )

    return linked_scatter(
        snapshot,
        cfg.x,
        cfg.y,
        title=dataset_name,
        column=ds.selection_column,
    )


def render_figures(ctx: AppConfig, session: LinkSession) -> List[go.Figure]:
    figures: List[go.Figure] = []
    for name in ctx.dataset_names:
        try:
            figures.append(render_figure(ctx, session, name))
        except Exception:
            logger.exception("Error while rendering linked graph", extra={"dataset": name})
            figures.append(
                _message_figure(
                    "Something went wrong while rendering this view.",
                    "If this keeps happening, grab the logs and open an issue.",
                )
            )
    return figures
