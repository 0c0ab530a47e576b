from __future__ import annotations

import threading
from pathlib import Path

import pandas as pd

from crosslink.config.model import DatasetConfig, GlobalConfig, LinkConfig
from crosslink.core.scheduler import ManualScheduler
from crosslink.services.session_service import FrameCache, LinkSessionManager
from crosslink.ui.callbacks.callbacks_render import render_figures
from crosslink.ui.callbacks.callbacks_sync import (
    _session_for,
    apply_graph_selection,
    apply_wire_mutations,
    collect_notifications,
    reset_selection,
    run_sync,
    status_text,
)
from crosslink.ui.config import AppConfig
from crosslink.ui.ids import IDs, widget_source_id


def _make_ctx(tmp_path: Path, power_y: str = "qsec") -> AppConfig:
    pd.DataFrame({"model": ["a", "b", "c"], "wt": [1.0, 2.0, 3.0], "mpg": [30.0, 20.0, 10.0]}).to_csv(
        tmp_path / "weight.csv", index=False
    )
    pd.DataFrame({"model": ["c", "a", "b"], "hp": [90, 110, 150], "qsec": [18.0, 16.5, 15.0]}).to_csv(
        tmp_path / "power.csv", index=False
    )

    source = tmp_path / "datasets" / "cfg.json"
    cfgs = {
        "power": DatasetConfig.from_raw(
            {"name": "power", "file": str(tmp_path / "power.csv"), "group": "cars", "key": "model",
             "x": "hp", "y": power_y},
            source,
            0,
        ),
        "weight": DatasetConfig.from_raw(
            {"name": "weight", "file": str(tmp_path / "weight.csv"), "group": "cars", "key": "model",
             "x": "wt", "y": "mpg"},
            source,
            1,
        ),
    }
    frames = FrameCache(cfgs)
    link = LinkConfig()
    return AppConfig(
        config_root=tmp_path,
        global_config=GlobalConfig(ui_title="Test", link=link, datasets=list(cfgs.values())),
        dataset_names=sorted(cfgs),
        frames=frames,
        sessions=LinkSessionManager(link, frames, scheduler_factory=ManualScheduler),
    )


def _brush(*keys):
    return {"points": [{"customdata": k} for k in keys]}


def test_graph_selection_is_pushed_to_the_other_graph_only(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")

    seq = apply_graph_selection(session, "weight", _brush("a", "b"))
    out = collect_notifications(session)

    assert seq == 1
    assert list(out) == [widget_source_id("power")]
    note = out[widget_source_id("power")][0]
    assert note["sourceId"] == widget_source_id("weight")
    assert note["keys"] == ["a", "b"]
    assert note["active"] is True


def test_filter_to_selection_narrows_other_views(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")

    apply_graph_selection(session, "weight", _brush("a"), filter_to_selection=True)
    figures = render_figures(ctx, session)

    power_fig, weight_fig = figures
    assert list(power_fig.data[0].customdata) == ["a"]
    # the brushing graph is not filtered by its own filter
    assert list(weight_fig.data[0].customdata) == ["a", "b", "c"]
    assert list(weight_fig.data[0].selectedpoints) == [0]


def test_empty_event_clears_selection_and_own_filter(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")
    group = session.group("cars")

    apply_graph_selection(session, "weight", _brush("a"), filter_to_selection=True)
    apply_graph_selection(session, "weight", None)

    assert group.selection.get() == (frozenset(), False)
    assert group.filter.get() == (None, False)


def test_wire_mutations_are_applied_in_order(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")
    power = widget_source_id("power")

    applied = apply_wire_mutations(
        session,
        [
            {"groupId": "cars", "kind": "selection", "sourceId": power, "sequence": 3, "keys": ["c"]},
            {"groupId": "cars", "kind": "selection", "sourceId": power, "sequence": 2, "keys": ["b"]},
            {"groupId": "cars", "kind": "filter", "sourceId": power, "keys": ["a", "c"]},
        ],
    )

    assert applied == [3, None, 4]
    assert session.group("cars").selection.get() == (frozenset({"c"}), True)
    assert apply_wire_mutations(session, None) == []


def test_reset_clears_selection_and_all_filters(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")
    group = session.group("cars")

    apply_graph_selection(session, "weight", _brush("a"), filter_to_selection=True)
    session.bridge.server_mutate_filter("cars", ["a", "b"])
    reset_selection(session)

    assert group.selection.get() == (frozenset(), False)
    assert group.filter.get() == (None, False)


def test_status_text_summarises_groups(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")

    apply_graph_selection(session, "weight", _brush("a", "c"))

    assert "2 selected" in status_text(session).children


def test_missing_axis_column_renders_message(tmp_path):
    ctx = _make_ctx(tmp_path, power_y="nope")
    session = _session_for(ctx, "tab")

    power_fig, weight_fig = render_figures(ctx, session)

    assert len(power_fig.data) == 0
    assert "not found" in power_fig.layout.annotations[0].text
    assert len(weight_fig.data) == 1


def test_reset_lifts_filters_from_gone_or_unknown_widgets(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")
    group = session.group("cars")
    weight = widget_source_id("weight")

    apply_wire_mutations(session, {"groupId": "cars", "kind": "filter", "sourceId": "stale-widget", "keys": ["b"]})
    group.get(weight).detach()
    late = apply_wire_mutations(session, {"groupId": "cars", "kind": "filter", "sourceId": weight, "keys": ["a"]})

    assert late == [None]
    assert group.filter.get() == (frozenset({"b"}), True)

    reset_selection(session)

    assert group.filter.get() == (None, False)
    power_fig = render_figures(ctx, session)[0]
    assert sorted(power_fig.data[0].customdata) == ["a", "b", "c"]


def test_run_sync_waits_for_the_session_lock(tmp_path):
    ctx = _make_ctx(tmp_path)
    session = _session_for(ctx, "tab")
    trigger = {"type": IDs.Pattern.LINKED_GRAPH, "index": "weight"}
    results = []

    worker = threading.Thread(
        target=lambda: results.append(run_sync(ctx, "tab", trigger, [None, _brush("a")]))
    )
    with session.lock:
        worker.start()
        worker.join(timeout=0.1)
        assert worker.is_alive()
        assert session.group("cars").selection.get() == (frozenset(), False)

    worker.join(timeout=5)
    assert not worker.is_alive()

    figures, notifications, _ = results[0]
    assert len(figures) == 2
    assert notifications[widget_source_id("power")][0]["keys"] == ["a"]
    assert session.group("cars").selection.get() == (frozenset({"a"}), True)
