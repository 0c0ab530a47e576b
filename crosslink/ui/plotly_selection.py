from __future__ import annotations

from typing import Any, Dict, List, Optional

import pandas as pd
import plotly.graph_objs as go

from crosslink.core.snapshot import Snapshot


def keys_from_selected_data(selected_data: Optional[Dict[str, Any]]) -> Optional[List[str]]:
    """
    Row keys from a Plotly `selectedData` event.

    Points carry their row key in `customdata` (either the key itself or a list whose
    first element is the key). Returns None when there is no selection (double-click
    reset or initial callback), which callers treat as "clear".
    """
    if not selected_data:
        return None

    points = selected_data.get("points") or []
    keys: List[str] = []
    for point in points:
        custom = point.get("customdata")
        if custom is None:
            continue
        if isinstance(custom, (list, tuple)):
            if not custom:
                continue
            custom = custom[0]
        keys.append(str(custom))
    return keys


def selected_points(snapshot: Snapshot, column: str = "selected") -> Optional[List[int]]:
    """
    Positions of selected rows for a trace's `selectedpoints`.

    None means the selection is inactive, so Plotly draws every point normally.
    """
    if column not in snapshot.frame.columns:
        return None
    values = snapshot.frame[column]
    if len(values) and values.isna().all():
        return None
    mask = values.fillna(False).astype(bool).to_numpy()
    return [i for i, flag in enumerate(mask) if flag]


def linked_scatter(
    snapshot: Snapshot,
    x: str,
    y: str,
    *,
    title: str = "",
    column: str = "selected",
) -> go.Figure:
    """
    Single-trace scatter whose points carry their row key, with the group's
    selection applied as `selectedpoints`.
    """
    frame = snapshot.frame
    fig = go.Figure()

    if frame.empty:
        fig.update_layout(title=f"{title} (no rows)", xaxis={"visible": False}, yaxis={"visible": False})
        return fig

    fig.add_trace(
        go.Scatter(
            x=frame[x],
            y=frame[y],
            mode="markers",
            customdata=pd.Series(snapshot.keys, dtype=object).to_numpy(),
            selectedpoints=selected_points(snapshot, column),
            marker={"size": 6},
            selected={"marker": {"color": "crimson"}},
            unselected={"marker": {"opacity": 0.3}},
        )
    )
    fig.update_layout(
        title=title,
        dragmode="lasso",
        margin=dict(l=40, r=40, t=40, b=40),
        uirevision="linked",
    )
    return fig
