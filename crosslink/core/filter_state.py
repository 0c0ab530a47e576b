from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd


@dataclass
class FilterState:
    """
    Visible row keys for one link group, combined across independent filter sources.

    Each source (usually one widget) contributes either a set of visible keys or
    None ("registered, not restricting"). The effective visible set is the
    intersection of every restricting source; with no restricting source every
    row is visible.
    """

    sources: Dict[str, Optional[FrozenSet[str]]] = field(default_factory=dict)

    def register_source(self, source_id: str) -> None:
        self.sources.setdefault(source_id, None)

    def unregister_source(self, source_id: str) -> bool:
        """Drop a source. Returns True if it was restricting, i.e. the effective set changed."""
        if source_id not in self.sources:
            return False
        return self.sources.pop(source_id) is not None

    def set(self, source_id: str, keys: Optional[Iterable[Any]]) -> None:
        """Replace one source's visible set. `None` lifts that source's restriction."""
        self.sources[source_id] = None if keys is None else frozenset(str(k) for k in keys)

    def clear(self, source_id: Optional[str] = None) -> None:
        """Lift one source's restriction, or every source's when source_id is None."""
        if source_id is None:
            for sid in self.sources:
                self.sources[sid] = None
        elif source_id in self.sources:
            self.sources[source_id] = None

    def toggle(self, source_id: str, key: Any) -> None:
        """
        Flip one key in a source's set. A source that is not restricting (None, or
        never registered) narrows to just that key rather than dropping it from "all".
        """
        key = str(key)
        current = self.sources.get(source_id)
        if current is None:
            self.sources[source_id] = frozenset({key})
        elif key in current:
            self.sources[source_id] = current - {key}
        else:
            self.sources[source_id] = current | {key}

    def source_ids(self) -> List[str]:
        return list(self.sources)

    def get(self, exclude: Optional[str] = None) -> Tuple[Optional[FrozenSet[str]], bool]:
        """
        Return (visible_keys, active).

        visible_keys is None when no source restricts (all rows visible).
        `exclude` leaves one source out, so a widget is not filtered by its own filter.
        """
        restricting = [
            keys for sid, keys in self.sources.items() if keys is not None and sid != exclude
        ]
        if not restricting:
            return None, False
        return reduce(lambda a, b: a & b, restricting), True

    def visible(self, keys: pd.Index, exclude: Optional[str] = None) -> np.ndarray:
        """Boolean mask over `keys` for the rows that pass every filter source."""
        visible, active = self.get(exclude)
        if not active:
            return np.ones(len(keys), dtype=bool)
        return keys.isin(list(visible))
