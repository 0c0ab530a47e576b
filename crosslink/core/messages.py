from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .exceptions import MessageFormatError

SERVER_SOURCE_ID = "server"


class Kind(str, Enum):
    SELECTION = "selection"
    FILTER = "filter"


def _keys_from_wire(raw: Any, *, nullable: bool) -> Optional[Tuple[str, ...]]:
    if raw is None:
        if nullable:
            return None
        raise MessageFormatError("'keys' is required")
    if isinstance(raw, (str, bytes)) or not hasattr(raw, "__iter__"):
        raise MessageFormatError(f"'keys' must be a list, got {type(raw).__name__}")
    return tuple(sorted({str(k) for k in raw}))


def _require_str(data: Mapping[str, Any], wire_name: str) -> str:
    value = data.get(wire_name)
    if value is None or value == "":
        raise MessageFormatError(f"'{wire_name}' is required")
    return str(value)


def _kind_from_wire(raw: Any) -> Kind:
    try:
        return Kind(raw)
    except ValueError:
        raise MessageFormatError(f"Unknown message kind {raw!r}") from None


def _sequence_from_wire(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise MessageFormatError("'sequence' must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise MessageFormatError(f"'sequence' must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class MutationMessage:
    """
    A request to change selection or filter state in one group.

    Wire shape: {groupId, kind, sourceId, sequence, keys}

    - sequence None: assign the group's next sequence on receipt (local/server writes)
    - keys None (filter only): withdraw this source's restriction
    - active (selection only): not carried on the wire; an inbound selection with an
      empty key list clears the selection, any other key list activates it
    """
    group_id: str
    kind: Kind
    source_id: str
    sequence: Optional[int]
    keys: Optional[Tuple[str, ...]]
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groupId": self.group_id,
            "kind": self.kind.value,
            "sourceId": self.source_id,
            "sequence": self.sequence,
            "keys": None if self.keys is None else list(self.keys),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MutationMessage":
        """Parse a wire dict. Unknown fields are ignored."""
        if not isinstance(data, Mapping):
            raise MessageFormatError(f"Message must be an object, got {type(data).__name__}")

        kind = _kind_from_wire(data.get("kind"))
        keys = _keys_from_wire(data.get("keys"), nullable=kind is Kind.FILTER)
        return cls(
            group_id=_require_str(data, "groupId"),
            kind=kind,
            source_id=_require_str(data, "sourceId"),
            sequence=_sequence_from_wire(data.get("sequence")),
            keys=keys,
            active=bool(keys) if kind is Kind.SELECTION else True,
        )


@dataclass(frozen=True)
class Notification:
    """
    An applied mutation pushed to consumers.

    Wire shape: {groupId, kind, sourceId, sequence, keys} plus `active` for selection.
    For filter notifications keys is the effective visible set, or None when
    every row is visible.
    """
    group_id: str
    kind: Kind
    source_id: str
    sequence: int
    keys: Optional[Tuple[str, ...]]
    active: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "groupId": self.group_id,
            "kind": self.kind.value,
            "sourceId": self.source_id,
            "sequence": self.sequence,
            "keys": None if self.keys is None else list(self.keys),
        }
        if self.kind is Kind.SELECTION:
            data["active"] = bool(self.active)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Notification":
        if not isinstance(data, Mapping):
            raise MessageFormatError(f"Notification must be an object, got {type(data).__name__}")

        kind = _kind_from_wire(data.get("kind"))
        sequence = _sequence_from_wire(data.get("sequence"))
        if sequence is None:
            raise MessageFormatError("'sequence' is required")
        return cls(
            group_id=_require_str(data, "groupId"),
            kind=kind,
            source_id=_require_str(data, "sourceId"),
            sequence=sequence,
            keys=_keys_from_wire(data.get("keys"), nullable=kind is Kind.FILTER),
            active=bool(data.get("active", False)) if kind is Kind.SELECTION else None,
        )
