from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Tuple


@dataclass
class SelectionState:
    """
    Currently-selected row keys for one link group.

    Fields:

    - keys: selected row keys (strings)
    - active: False means "no selection" (every row indeterminate);
              True with empty keys means "everything explicitly excluded"

    Keys that are absent from the current snapshot are kept as-is; they simply
    match nothing until a later snapshot brings the row back.
    """

    keys: FrozenSet[str] = field(default_factory=frozenset)
    active: bool = False

    def set(self, keys: Iterable[Any], active: bool = True) -> None:
        """Replace the whole selection. Partial selections are never merged."""
        self.keys = frozenset(str(k) for k in keys)
        self.active = bool(active)

    def clear(self) -> None:
        self.keys = frozenset()
        self.active = False

    def toggle(self, key: Any) -> None:
        """Flip one key in or out. Toggling always leaves the selection active."""
        key = str(key)
        if self.active and key in self.keys:
            self.keys = self.keys - {key}
        elif self.active:
            self.keys = self.keys | {key}
        else:
            self.keys = frozenset({key})
        self.active = True

    def get(self) -> Tuple[FrozenSet[str], bool]:
        return self.keys, self.active

    def is_selected(self, key: Any) -> bool:
        return self.active and str(key) in self.keys

    def to_dict(self) -> Dict[str, Any]:
        return {"keys": sorted(self.keys), "active": self.active}
