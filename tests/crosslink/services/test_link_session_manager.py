from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from crosslink.config.model import DatasetConfig, LinkConfig
from crosslink.core.scheduler import ManualScheduler
from crosslink.services.session_service import FrameCache, LinkSessionManager


def _make_cfgs(tmp_path: Path) -> dict[str, DatasetConfig]:
    pd.DataFrame({"model": ["a", "b", "c"], "wt": [1.0, 2.0, 3.0]}).to_csv(tmp_path / "weight.csv", index=False)
    pd.DataFrame({"model": ["c", "a", "b"], "hp": [90, 110, 150]}).to_csv(tmp_path / "power.csv", index=False)

    source = tmp_path / "datasets" / "cfg.json"
    return {
        "weight": DatasetConfig.from_raw(
            {"name": "weight", "file": str(tmp_path / "weight.csv"), "group": "cars", "key": "model"}, source, 0
        ),
        "power": DatasetConfig.from_raw(
            {"name": "power", "file": str(tmp_path / "power.csv"), "group": "cars", "key": "model"}, source, 1
        ),
    }


def _make_manager(tmp_path: Path) -> LinkSessionManager:
    frames = FrameCache(_make_cfgs(tmp_path))
    return LinkSessionManager(LinkConfig(), frames, scheduler_factory=ManualScheduler)


def test_frame_cache_loads_lazily_and_once(tmp_path):
    frames = FrameCache(_make_cfgs(tmp_path))

    assert len(frames) == 2
    assert not frames.is_loaded("weight")

    first = frames["weight"]
    assert frames.is_loaded("weight")
    assert frames["weight"] is first
    assert not frames.is_loaded("power")


def test_frame_cache_unknown_name(tmp_path):
    frames = FrameCache(_make_cfgs(tmp_path))

    with pytest.raises(KeyError):
        frames["nope"]


def test_ensure_session_builds_one_dataset_per_config(tmp_path):
    manager = _make_manager(tmp_path)

    session = manager.ensure_session("tab-1")

    assert manager.ensure_session("tab-1") is session
    assert sorted(ds.name for ds in session.datasets("cars")) == ["power", "weight"]
    assert list(manager) == ["tab-1"]


def test_selection_links_datasets_by_key_not_position(tmp_path):
    manager = _make_manager(tmp_path)
    session = manager.ensure_session("tab-1")

    session.bridge.server_mutate_selection("cars", ["a"])

    power = manager.dataset("tab-1", "power").read_with_selection().frame
    assert power["selected"].tolist() == [False, True, False]
    assert manager.dataset("tab-1", "weight").selected_keys() == ["a"]


def test_sessions_are_isolated(tmp_path):
    manager = _make_manager(tmp_path)
    one = manager.ensure_session("tab-1")
    manager.ensure_session("tab-2")

    one.bridge.server_mutate_selection("cars", ["b"])

    assert manager.dataset("tab-2", "weight").selected_keys() == []


def test_close_session(tmp_path):
    manager = _make_manager(tmp_path)
    session = manager.ensure_session("tab-1")

    assert manager.close_session("tab-1") is True
    assert session.closed
    assert "tab-1" not in manager
    assert manager.close_session("tab-1") is False
    assert manager.dataset("tab-1", "weight") is None


def test_close_all(tmp_path):
    manager = _make_manager(tmp_path)
    manager.ensure_session("tab-1")
    manager.ensure_session("tab-2")

    manager.close_all()

    assert len(manager) == 0


def test_oldest_session_is_closed_past_max_sessions(tmp_path):
    frames = FrameCache(_make_cfgs(tmp_path))
    manager = LinkSessionManager(LinkConfig(max_sessions=2), frames, scheduler_factory=ManualScheduler)

    first = manager.ensure_session("tab-1")
    manager.ensure_session("tab-2")
    manager.ensure_session("tab-1")  # touching tab-1 makes tab-2 the oldest
    manager.ensure_session("tab-3")

    assert sorted(manager) == ["tab-1", "tab-3"]
    assert manager.ensure_session("tab-1") is first
    assert not first.closed


def test_many_page_loads_stay_bounded(tmp_path):
    frames = FrameCache(_make_cfgs(tmp_path))
    manager = LinkSessionManager(LinkConfig(max_sessions=3), frames, scheduler_factory=ManualScheduler)

    created = [manager.ensure_session(f"tab-{i}") for i in range(10)]

    assert len(manager) == 3
    assert all(s.closed for s in created[:7])
    assert not any(s.closed for s in created[7:])


def test_idle_sessions_are_closed(tmp_path):
    now = [0.0]
    frames = FrameCache(_make_cfgs(tmp_path))
    manager = LinkSessionManager(
        LinkConfig(session_idle_seconds=60),
        frames,
        scheduler_factory=ManualScheduler,
        clock=lambda: now[0],
    )

    stale = manager.ensure_session("tab-1")
    now[0] = 30.0
    active = manager.ensure_session("tab-2")
    now[0] = 70.0

    assert manager.evict_idle() == ["tab-1"]
    assert stale.closed
    assert not active.closed
    assert list(manager) == ["tab-2"]


def test_idle_eviction_runs_on_ensure_and_can_be_disabled(tmp_path):
    now = [0.0]
    frames = FrameCache(_make_cfgs(tmp_path))
    manager = LinkSessionManager(
        LinkConfig(session_idle_seconds=10), frames, scheduler_factory=ManualScheduler, clock=lambda: now[0]
    )
    old = manager.ensure_session("tab-1")
    now[0] = 100.0

    fresh = manager.ensure_session("tab-1")

    assert old.closed
    assert fresh is not old

    forever = LinkSessionManager(
        LinkConfig(session_idle_seconds=0), frames, scheduler_factory=ManualScheduler, clock=lambda: now[0]
    )
    kept = forever.ensure_session("tab-1")
    now[0] = 1e9
    assert forever.evict_idle() == []
    assert forever.ensure_session("tab-1") is kept
