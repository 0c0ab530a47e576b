import pandas as pd
import pytest

from crosslink.core.dataset import SharedDataset, to_frame
from crosslink.core.exceptions import AmbiguousKeyError, DuplicateKeyError
from crosslink.core.link_group import LinkGroup
from crosslink.core.reactive import ReactiveExpr, ReactiveValue
from crosslink.core.scheduler import ManualScheduler
from crosslink.core.session import LinkSession


def _make_frame(ids=("a", "b", "c")):
    return pd.DataFrame({"id": list(ids), "value": range(len(ids))})


def _make_group(name="cells"):
    return LinkGroup(name, scheduler=ManualScheduler())


def test_static_frame_is_keyed_by_rule():
    ds = SharedDataset(_make_frame(), key="id", group=_make_group())
    snap = ds.read()

    assert list(snap.keys) == ["a", "b", "c"]
    assert snap.frame.index.name == "key"
    assert snap.version == 1


def test_static_frame_without_rule_uses_positions():
    ds = SharedDataset(_make_frame(), group=_make_group())
    assert list(ds.read().keys) == ["0", "1", "2"]


def test_read_returns_an_independent_copy():
    ds = SharedDataset(_make_frame(), key="id", group=_make_group())

    snap = ds.read()
    snap.frame.loc["a", "value"] = 999

    assert ds.read().frame.loc["a", "value"] == 0


def test_producer_without_key_rule_is_rejected():
    with pytest.raises(AmbiguousKeyError):
        SharedDataset(lambda: _make_frame(), group=_make_group())


def test_callable_producer_is_pulled_on_every_read():
    calls = []

    def produce():
        calls.append(1)
        return _make_frame()

    ds = SharedDataset(produce, key="id", group=_make_group())
    ds.read()
    ds.read()

    assert len(calls) == 2
    assert ds.version == 2


def test_reactive_producer_is_pulled_only_after_invalidation():
    source = ReactiveValue(_make_frame())
    ds = SharedDataset(source, key="id", group=_make_group())

    ds.read()
    ds.read()
    assert ds.version == 1

    source.set(_make_frame(("a", "b", "c", "d")))
    assert list(ds.read().keys) == ["a", "b", "c", "d"]
    assert ds.version == 2


def test_selection_column_is_indeterminate_when_inactive():
    ds = SharedDataset(_make_frame(), key="id", group=_make_group())
    col = ds.read_with_selection().frame["selected"]

    assert str(col.dtype) == "boolean"
    assert col.isna().all()


def test_selection_column_is_indeterminate_after_clear():
    group = _make_group()
    ds = SharedDataset(_make_frame(), key="id", group=group)

    group.selection.set(["a", "c"])
    group.selection.clear()

    assert ds.read_with_selection().frame["selected"].isna().all()


def test_selection_column_reflects_active_selection():
    group = _make_group()
    ds = SharedDataset(_make_frame(), key="id", group=group)

    group.selection.set(["b"])
    col = ds.read_with_selection().frame["selected"]
    assert col.tolist() == [False, True, False]

    group.selection.set([])
    col = ds.read_with_selection().frame["selected"]
    assert col.tolist() == [False, False, False]


def test_selection_survives_new_snapshot_by_key():
    session = LinkSession("s", scheduler=ManualScheduler())
    source = ReactiveValue(_make_frame(("a", "b", "c")))
    ds = session.shared_dataset(source, group="cells", key="id")
    handle = session.attach("cells", _NullConsumer(), source_id="w1")

    handle.mutate_selection(["b"])
    source.set(_make_frame(("a", "b", "c", "d")))

    frame = ds.read_with_selection().frame
    assert bool(frame.loc["b", "selected"]) is True
    assert bool(frame.loc["d", "selected"]) is False
    assert ds.selected_keys() == ["b"]


def test_selected_keys_missing_from_snapshot_match_nothing():
    group = _make_group()
    ds = SharedDataset(_make_frame(), key="id", group=group)

    group.selection.set(["zz", "a"])

    assert ds.selected_keys() == ["a"]
    assert group.selection.get()[0] == frozenset({"zz", "a"})


def test_filter_read_intersects_sources_and_excludes_own():
    group = _make_group()
    ds = SharedDataset(_make_frame(("k1", "k2", "k3", "k4")), key="id", group=group)

    group.filter.set("w1", ["k1", "k2", "k3"])
    group.filter.set("w2", ["k2", "k3", "k4"])

    assert list(ds.read_with_filter().keys) == ["k2", "k3"]
    assert list(ds.read_with_filter(exclude_source="w1").keys) == ["k2", "k3", "k4"]


def test_read_linked_combines_filter_and_selection():
    group = _make_group()
    ds = SharedDataset(_make_frame(("k1", "k2", "k3")), key="id", group=group)

    group.filter.set("w1", ["k1", "k2"])
    group.selection.set(["k2"])
    snap = ds.read_linked()

    assert list(snap.keys) == ["k1", "k2"]
    assert snap.frame["selected"].tolist() == [False, True]


def test_duplicate_keys_keep_previous_snapshot():
    source = ReactiveValue(_make_frame())
    ds = SharedDataset(source, key="id", group=_make_group())
    good = ds.read()

    source.set(_make_frame(("a", "a", "b")))
    with pytest.raises(DuplicateKeyError):
        ds.read()

    last = ds.last_good()
    assert list(last.keys) == list(good.keys)
    assert last.version == good.version

    # producer recovers, next read picks it up
    source.set(_make_frame(("x", "y")))
    assert list(ds.read().keys) == ["x", "y"]


def test_dataset_can_follow_a_reactive_expression():
    base = ReactiveValue(_make_frame(("a", "b", "c")))
    expr = ReactiveExpr(lambda df: df[df["value"] > 0], base)
    ds = SharedDataset(expr, key="id", group=_make_group())

    assert list(ds.read().keys) == ["b", "c"]

    base.set(_make_frame(("a", "b", "c", "d")))
    assert list(ds.read().keys) == ["b", "c", "d"]


def test_dataset_invalidation_is_forwarded_to_subscribers():
    source = ReactiveValue(_make_frame())
    ds = SharedDataset(source, key="id", group=_make_group())
    fired = []
    ds.subscribe(lambda: fired.append(1))

    source.invalidate()
    assert fired == [1]

    ds.dispose()
    source.invalidate()
    assert fired == [1]


def test_reads_without_group_raise():
    ds = SharedDataset(_make_frame(), key="id")

    assert len(ds.read()) == 3
    with pytest.raises(RuntimeError):
        ds.read_with_selection()


def test_to_frame_accepts_records_and_rejects_mappings():
    frame = to_frame([{"id": "a"}, {"id": "b"}])
    assert frame["id"].tolist() == ["a", "b"]

    with pytest.raises(TypeError):
        to_frame({"id": ["a"]})


class _NullConsumer:
    def on_selection_changed(self, group_id, keys, active):
        pass

    def on_filter_changed(self, group_id, keys):
        pass
