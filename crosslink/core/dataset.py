from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Mapping, Optional, Union

import pandas as pd

from .keys import KeyResolver, KeyRule, index_rule
from .reactive import ReactiveSource, Unsubscribe, _Subscribers
from .snapshot import Snapshot

if TYPE_CHECKING:
    from .link_group import LinkGroup

logger = logging.getLogger(__name__)

KEY_INDEX_NAME = "key"
DEFAULT_SELECTION_COLUMN = "selected"

DataLike = Union[pd.DataFrame, Iterable[Mapping[str, Any]], Any]


def to_frame(data: DataLike) -> pd.DataFrame:
    """
    Normalise whatever a producer hands us into a DataFrame.

    Accepts:
    - pandas DataFrame (copied, so later producer-side edits cannot leak in)
    - AnnData (its .obs table, keyed by obs_names unless a rule says otherwise)
    - an iterable of row mappings
    """
    if isinstance(data, pd.DataFrame):
        return data.copy()

    if isinstance(data, Snapshot):
        return data.frame.copy()

    # AnnData is optional at this layer; duck-type on the attributes we need
    if hasattr(data, "obs") and hasattr(data, "obs_names"):
        from .adapters.anndata_adapter import obs_frame

        return obs_frame(data)

    if isinstance(data, (str, bytes)) or isinstance(data, Mapping):
        raise TypeError(f"Cannot build a snapshot from {type(data).__name__}; expected rows")

    return pd.DataFrame.from_records(list(data))


class SharedDataset:
    """
    The single source of truth consumers read from.

    Wraps either one fixed snapshot or a producer that yields fresh snapshots:
    - a reactive source (`pull()` + `subscribe()`): re-pulled only after it invalidates
    - a plain callable: pulled on every read

    Reads are projections over the cached snapshot and the bound group's state,
    so they are cheap enough to call on every notification (one O(rows) join).
    Consumers never change the data, only selection/filter overlays.
    """

    def __init__(
        self,
        source: Any,
        *,
        key: Optional[KeyRule] = None,
        group: Optional["LinkGroup"] = None,
        stable_index: bool = False,
        selection_column: str = DEFAULT_SELECTION_COLUMN,
        name: Optional[str] = None,
    ) -> None:
        self.name = name or "dataset"
        self.group = group
        self.selection_column = selection_column

        self._reactive: Optional[ReactiveSource] = None
        self._producer: Optional[Callable[[], Any]] = None
        self._static_data: Any = None

        if isinstance(source, ReactiveSource) and not isinstance(source, pd.DataFrame):
            self._reactive = source
        elif callable(source) and not isinstance(source, pd.DataFrame):
            self._producer = source
        else:
            self._static_data = source

        # AnnData carries its own unique identity; use it when nothing else is given
        if key is None and self._static_data is not None and hasattr(self._static_data, "obs_names"):
            key = index_rule

        self.resolver = KeyResolver.for_source(
            key,
            producer_backed=self.is_producer_backed,
            stable_index=stable_index,
            name=self.name,
        )

        self._snapshot: Optional[Snapshot] = None
        self._version = 0
        self._stale = True
        self._subscribers = _Subscribers()
        self._unsubscribe: Optional[Unsubscribe] = None

        if self._reactive is not None:
            self._unsubscribe = self._reactive.subscribe(self._invalidate)
        elif self._static_data is not None:
            # fixed data is keyed up front so a bad key rule fails at construction
            self._accept(self._static_data)
            self._static_data = None

        logger.info(
            "Shared dataset created",
            extra={
                "dataset": self.name,
                "group": group.name if group is not None else None,
                "producer_backed": self.is_producer_backed,
                "key_rule": self.resolver.describe(),
            },
        )

    def __repr__(self) -> str:
        group = self.group.name if self.group is not None else None
        return f"SharedDataset(name='{self.name}', group={group!r}, version={self._version})"

    @property
    def is_producer_backed(self) -> bool:
        return self._reactive is not None or self._producer is not None

    @property
    def version(self) -> int:
        return self._version

    # -------------------------------------------------------------------------
    # Snapshot management
    # -------------------------------------------------------------------------
    def _invalidate(self) -> None:
        self._stale = True
        self._subscribers.fire()

    def _accept(self, data: Any) -> Snapshot:
        """Key a freshly produced value; only replace the cached snapshot if that succeeds."""
        frame = to_frame(data)
        keys = self.resolver.resolve(frame, dataset=self.name)

        frame.index = keys

        self._version += 1
        self._snapshot = Snapshot(frame=frame, keys=keys, version=self._version)
        self._stale = False

        logger.debug(
            "Snapshot accepted",
            extra={"dataset": self.name, "version": self._version, "n_rows": len(frame)},
        )
        return self._snapshot

    def _current(self) -> Snapshot:
        if self._reactive is not None and (self._stale or self._snapshot is None):
            self._pull_into_cache(self._reactive.pull)
        elif self._producer is not None:
            self._pull_into_cache(self._producer)

        if self._snapshot is None:
            raise RuntimeError(f"Dataset '{self.name}' has no snapshot")
        return self._snapshot

    def _pull_into_cache(self, pull: Callable[[], Any]) -> None:
        try:
            self._accept(pull())
        except Exception:
            # prior snapshot stays intact and the dataset stays stale, so the next read retries
            logger.exception(
                "Failed to accept new snapshot; keeping previous one",
                extra={"dataset": self.name, "version": self._version},
            )
            raise

    def last_good(self) -> Optional[Snapshot]:
        """Most recent successfully keyed snapshot, without pulling."""
        return None if self._snapshot is None else self._snapshot.copy()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def read(self) -> Snapshot:
        """Current data. Pulls from the producer if it has changed since the last read."""
        return self._current().copy()

    def _require_group(self) -> "LinkGroup":
        if self.group is None:
            raise RuntimeError(f"Dataset '{self.name}' is not bound to a link group")
        return self.group

    def _with_selection(self, snap: Snapshot) -> Snapshot:
        group = self._require_group()
        keys, active = group.selection.get()

        frame = snap.frame.copy()
        if active:
            values = pd.array(snap.keys.isin(list(keys)), dtype="boolean")
        else:
            values = pd.array([pd.NA] * len(frame), dtype="boolean")
        frame[self.selection_column] = values
        return Snapshot(frame=frame, keys=snap.keys, version=snap.version)

    def _with_filter(self, snap: Snapshot, exclude_source: Optional[str] = None) -> Snapshot:
        group = self._require_group()
        mask = group.filter.visible(snap.keys, exclude=exclude_source)
        frame = snap.frame.loc[mask].copy()
        return Snapshot(frame=frame, keys=frame.index, version=snap.version)

    def read_with_selection(self) -> Snapshot:
        """
        Current data plus a tri-state selection column (nullable boolean):
        True/False by key when the group's selection is active, NA for every row otherwise.
        """
        return self._with_selection(self._current())

    def read_with_filter(self, exclude_source: Optional[str] = None) -> Snapshot:
        """
        Rows whose key is visible under every registered filter source
        (all rows when none restricts). `exclude_source` ignores one source, typically
        the reading widget's own.
        """
        return self._with_filter(self._current(), exclude_source)

    def read_linked(self, exclude_source: Optional[str] = None) -> Snapshot:
        """Filtered rows with the selection column; what a linked widget usually draws."""
        return self._with_selection(self._with_filter(self._current(), exclude_source))

    def selected_keys(self) -> List[str]:
        """Selected keys that exist in the current snapshot, in row order."""
        group = self._require_group()
        keys, active = group.selection.get()
        if not active:
            return []
        snap_keys = self._current().keys
        return list(snap_keys[snap_keys.isin(list(keys))])

    # -------------------------------------------------------------------------
    # Reactive source interface, so observers can depend on the dataset itself
    # -------------------------------------------------------------------------
    def pull(self) -> Snapshot:
        return self.read()

    def subscribe(self, callback: Callable[[], None]) -> Unsubscribe:
        return self._subscribers.add(callback)

    def dispose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
