from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import dash
from dash import ALL, Input, Output, State, exceptions, html

from crosslink.core.link_group import ConsumerHandle
from crosslink.core.session import LinkSession
from crosslink.ui.callbacks.callbacks_render import render_figures
from crosslink.ui.ids import IDs, widget_source_id
from crosslink.ui.plotly_selection import keys_from_selected_data
from crosslink.ui.remote import RemoteConsumer

if TYPE_CHECKING:
    from crosslink.ui.config import AppConfig

logger = logging.getLogger(__name__)

FILTER_ON = "on"


def _session_for(ctx: AppConfig, session_id: str) -> LinkSession:
    """Session for this browser tab, with one remote consumer attached per graph."""
    session = ctx.sessions.ensure_session(session_id)
    with session.lock:
        for name in ctx.dataset_names:
            _graph_handle(session, name)
    return session


def _graph_handle(session: LinkSession, dataset_name: str) -> Optional[ConsumerHandle]:
    ds = next((d for d in session.datasets() if d.name == dataset_name), None)
    if ds is None or ds.group is None:
        return None

    source_id = widget_source_id(dataset_name)
    handle = ds.group.get(source_id)
    if handle is None:
        handle = ds.group.attach(RemoteConsumer(source_id), source_id=source_id)
    return handle


def apply_graph_selection(
    session: LinkSession,
    dataset_name: str,
    selected_data: Optional[Dict[str, Any]],
    *,
    filter_to_selection: bool = False,
) -> Optional[int]:
    """
    Turn one graph's brushing gesture into link mutations.

    An empty event clears the selection (and that graph's filter source). With
    filter_to_selection the brushed keys also become the graph's filter source, so
    the other views in the group only show those rows.
    """
    handle = _graph_handle(session, dataset_name)
    if handle is None:
        logger.warning("Selection from unknown graph ignored", extra={"dataset": dataset_name})
        return None

    keys = keys_from_selected_data(selected_data)
    if keys is None:
        sequence = handle.clear_selection()
        if handle.id in handle.group.filter.sources:
            sequence = handle.mutate_filter(None)
        return sequence

    sequence = handle.mutate_selection(keys)
    if filter_to_selection:
        sequence = handle.mutate_filter(keys)
    return sequence


def apply_wire_mutations(session: LinkSession, payload: Any) -> List[Optional[int]]:
    """Apply one wire message or a list of them, in order. Returns the applied sequences."""
    if payload is None:
        return []
    messages = payload if isinstance(payload, list) else [payload]
    return [session.bridge.receive(msg) for msg in messages]


def reset_selection(session: LinkSession) -> None:
    """Server-side reset: clear every group's selection and lift every filter source."""
    for name in session.group_names():
        session.bridge.server_clear_selection(name)
        session.bridge.lift_filters(name)


def collect_notifications(session: LinkSession) -> Dict[str, List[Dict[str, Any]]]:
    """Drain every remote consumer's outbox, keyed by widget id."""
    out: Dict[str, List[Dict[str, Any]]] = {}
    for name in session.group_names():
        for handle in session.group(name).consumers():
            consumer = handle.consumer
            if isinstance(consumer, RemoteConsumer):
                pending = consumer.drain_outbox()
                if pending:
                    out[consumer.widget_id] = pending
    return out


def status_text(session: LinkSession) -> html.Span:
    parts: List[Any] = []
    for name in session.group_names():
        keys, active = session.group(name).selection.get()
        visible, filtering = session.group(name).filter.get()
        label = f"{len(keys)} selected" if active else "no selection"
        if filtering:
            label += f", {len(visible)} visible"
        parts.extend([html.Strong(f"{name}: "), label, " "])
    return html.Span(parts or ["No link groups yet"])


def run_sync(
    ctx: AppConfig,
    session_id: str,
    triggered_id: Any,
    selected_all: Optional[List[Any]] = None,
    wire_payload: Any = None,
    filter_opts: Optional[List[str]] = None,
):
    """
    Apply one trigger to the session and render its outputs.

    Dash may run callbacks for the same tab on several threads; the session lock
    covers mutation, rendering and outbox collection so one request never renders
    another's half-applied state.
    """
    session = _session_for(ctx, session_id)
    selected_all = selected_all or []

    with session.lock:
        try:
            if triggered_id == IDs.Control.RESET_SELECTION_BTN:
                reset_selection(session)
            elif triggered_id == IDs.Store.LINK_MUTATION:
                apply_wire_mutations(session, wire_payload)
            elif isinstance(triggered_id, dict) and triggered_id.get("type") == IDs.Pattern.LINKED_GRAPH:
                name = triggered_id["index"]
                idx = ctx.dataset_names.index(name) if name in ctx.dataset_names else None
                selected = selected_all[idx] if idx is not None and idx < len(selected_all) else None
                apply_graph_selection(
                    session,
                    name,
                    selected,
                    filter_to_selection=FILTER_ON in (filter_opts or []),
                )
        except Exception:
            logger.exception(
                "Error while applying link mutation",
                extra={"session": session_id, "trigger": str(triggered_id)},
            )

        figures = render_figures(ctx, session)
        return figures, collect_notifications(session), status_text(session)


def register_sync_callbacks(app: dash.Dash, ctx: AppConfig) -> None:
    # ---------------------------------------------------------
    # Graph brushing / wire messages / reset -> link state -> figures
    # ---------------------------------------------------------
    @app.callback(
        Output({"type": IDs.Pattern.LINKED_GRAPH, "index": ALL}, "figure"),
        Output(IDs.Store.LINK_NOTIFICATIONS, "data"),
        Output(IDs.Control.STATUS_BAR, "children"),
        Input({"type": IDs.Pattern.LINKED_GRAPH, "index": ALL}, "selectedData"),
        Input(IDs.Store.LINK_MUTATION, "data"),
        Input(IDs.Control.RESET_SELECTION_BTN, "n_clicks"),
        State(IDs.Control.FILTER_TO_SELECTION, "value"),
        State(IDs.Store.SESSION_ID, "data"),
    )
    def sync_link_state(selected_all, wire_payload, _reset_clicks, filter_opts, session_id):
        if not session_id:
            raise exceptions.PreventUpdate
        return run_sync(ctx, session_id, dash.ctx.triggered_id, selected_all, wire_payload, filter_opts)
