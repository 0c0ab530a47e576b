from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from crosslink.core.messages import SERVER_SOURCE_ID

DEFAULT_DEBOUNCE_MS = 150
DEFAULT_MAX_SESSIONS = 64
DEFAULT_SESSION_IDLE_SECONDS = 3600.0


@dataclass(frozen=True)
class GroupConfig:
    """Per-group overrides. Anything left as None falls back to the global setting."""
    debounce_ms: Optional[int] = None


@dataclass
class DatasetConfig:
    """
    Parsed config entry for a single linked dataset.
    """
    raw: Dict[str, Any]
    source_path: Path
    index: int

    @property
    def name(self) -> str:
        return self.raw.get("name", f"Dataset {self.index}")

    @property
    def path(self) -> Path:
        return Path(self.raw["file"])

    @property
    def group(self) -> str:
        return self.raw.get("group", "default")

    @property
    def key(self) -> Optional[str]:
        """Key column; None means the file's own index (h5ad obs_names) or row position."""
        return self.raw.get("key")

    @property
    def embedding_key(self) -> Optional[str]:
        return self.raw.get("embedding_key")

    @property
    def x(self) -> str:
        return self.raw.get("x", "dim1")

    @property
    def y(self) -> str:
        return self.raw.get("y", "dim2")

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], source_path: Path, index: int) -> DatasetConfig:
        return cls(raw=raw, source_path=source_path, index=index)


@dataclass
class LinkConfig:
    """
    Runtime settings for the linking layer.

    - debounce_ms: observer coalescing window, in milliseconds
    - selection_column: name of the tri-state column added by read_with_selection()
    - server_source_id: reserved origin id for server-side writes
    - groups: per-group overrides keyed by group name
    - max_sessions: live sessions kept per process; the least recently used is closed first
    - session_idle_seconds: sessions untouched this long are closed (0 disables)
    """
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    selection_column: str = "selected"
    server_source_id: str = SERVER_SOURCE_ID
    groups: Dict[str, GroupConfig] = field(default_factory=dict)
    max_sessions: int = DEFAULT_MAX_SESSIONS
    session_idle_seconds: float = DEFAULT_SESSION_IDLE_SECONDS

    def debounce_for(self, group: str) -> float:
        """Observer debounce for a group, in seconds."""
        override = self.groups.get(group)
        ms = override.debounce_ms if override is not None and override.debounce_ms is not None else self.debounce_ms
        return max(ms, 0) / 1000.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LinkConfig:
        groups = {
            str(name): GroupConfig(debounce_ms=(raw or {}).get("debounce_ms"))
            for name, raw in (data.get("groups") or {}).items()
        }
        return cls(
            debounce_ms=int(data.get("debounce_ms", DEFAULT_DEBOUNCE_MS)),
            selection_column=data.get("selection_column", "selected"),
            server_source_id=data.get("server_source_id", SERVER_SOURCE_ID),
            groups=groups,
            max_sessions=int(data.get("max_sessions", DEFAULT_MAX_SESSIONS)),
            session_idle_seconds=float(data.get("session_idle_seconds", DEFAULT_SESSION_IDLE_SECONDS)),
        )


@dataclass
class GlobalConfig:
    ui_title: str
    link: LinkConfig
    datasets: List[DatasetConfig]
    data_root: Optional[Path] = None
