import pandas as pd
import pytest

from crosslink.config.model import GroupConfig, LinkConfig
from crosslink.core.exceptions import UnknownGroupError
from crosslink.core.link_group import CallbackConsumer
from crosslink.core.reactive import ReactiveValue
from crosslink.core.scheduler import ManualScheduler
from crosslink.core.session import LinkSession


def _make_session(**kwargs):
    return LinkSession("s1", scheduler=ManualScheduler(), **kwargs)


def test_groups_are_created_on_first_reference():
    session = _make_session()

    assert not session.has_group("cells")
    group = session.group("cells")

    assert session.group("cells") is group
    assert group.bridge is session.bridge
    assert session.group_names() == ["cells"]


def test_sessions_do_not_share_groups():
    one = _make_session()
    two = _make_session()

    one.group("cells").selection.set(["a"])

    assert two.group("cells").selection.get() == (frozenset(), False)


def test_group_debounce_comes_from_config():
    config = LinkConfig(debounce_ms=200, groups={"fast": GroupConfig(debounce_ms=20)})
    session = _make_session(config=config)

    assert session.group("slow").observer_debounce == pytest.approx(0.2)
    assert session.group("fast").observer_debounce == pytest.approx(0.02)


def test_selection_column_name_comes_from_config():
    session = _make_session(config=LinkConfig(selection_column="is_selected"))
    ds = session.shared_dataset(pd.DataFrame({"id": ["a"]}), group="cells", key="id")

    assert "is_selected" in ds.read_with_selection().frame.columns


def test_shared_datasets_are_listed_per_group():
    session = _make_session()
    frame = pd.DataFrame({"id": ["a", "b"]})
    cells = session.shared_dataset(frame, group="cells", key="id", name="cells")
    genes = session.shared_dataset(frame, group="genes", key="id", name="genes")

    assert session.datasets() == [cells, genes]
    assert session.datasets("genes") == [genes]


def test_reserved_server_id_cannot_be_attached():
    session = _make_session()

    with pytest.raises(ValueError):
        session.attach("cells", CallbackConsumer(), source_id="server")


def test_duplicate_consumer_id_is_rejected():
    session = _make_session()
    session.attach("cells", CallbackConsumer(), source_id="w1")

    with pytest.raises(ValueError):
        session.attach("cells", CallbackConsumer(), source_id="w1")


def test_generated_consumer_ids_are_unique():
    session = _make_session()
    h1 = session.attach("cells", CallbackConsumer())
    h2 = session.attach("cells", CallbackConsumer())

    assert h1.id != h2.id
    assert h1.id.startswith("cells-")


def test_close_cancels_pending_work_and_releases_sources():
    session = _make_session()
    scheduler = session.scheduler
    received = []
    source = ReactiveValue(pd.DataFrame({"id": ["a"]}))
    session.shared_dataset(source, group="cells", key="id")
    writer = session.attach("cells", CallbackConsumer(), source_id="writer")
    session.attach(
        "cells",
        CallbackConsumer(on_selection=lambda g, k, a: received.append(k)),
        source_id="reader",
        debounce=0.1,
    )

    writer.mutate_selection(["a"])
    session.close()
    scheduler.advance(1.0)

    assert received == []
    assert session.closed
    assert len(source._subscribers) == 0
    with pytest.raises(UnknownGroupError):
        session.group("cells")


def test_writes_to_closed_session_group_are_dropped():
    session = _make_session()
    session.group("cells")
    bridge = session.bridge
    session.close()

    assert bridge.server_mutate_selection("cells", ["a"]) is None
