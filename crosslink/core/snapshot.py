from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List

import pandas as pd


@dataclass(frozen=True)
class Snapshot:
    """
    One immutable pull of a dataset.

    - frame: rows indexed by row key (index name "key")
    - keys: the full set of row keys valid at this instant, in row order
    - version: monotonically increasing per SharedDataset, bumped on every accepted pull

    Readers get their own frame copy, so mutating `frame` never leaks back into
    the dataset's cached state.
    """
    frame: pd.DataFrame
    keys: pd.Index
    version: int

    def __len__(self) -> int:
        return len(self.frame)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys)

    def __contains__(self, key: object) -> bool:
        return str(key) in self.keys

    def copy(self) -> "Snapshot":
        return Snapshot(frame=self.frame.copy(), keys=self.keys, version=self.version)

    def rows(self) -> List[Dict[str, Any]]:
        """Rows as plain mappings (column -> value), in key order."""
        return self.frame.to_dict(orient="records")

    def column(self, name: str) -> List[Any]:
        return self.frame[name].tolist()
