from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional

import pandas as pd

from crosslink.config.loader import key_rule_for, read_dataset_frame
from crosslink.config.model import DatasetConfig, LinkConfig
from crosslink.core.dataset import SharedDataset
from crosslink.core.exceptions import ConfigError
from crosslink.core.scheduler import Scheduler
from crosslink.core.session import LinkSession

logger = logging.getLogger(__name__)


class FrameCache(Mapping[str, pd.DataFrame]):
    """
    Lazily reads configured dataset files, once per process.
    Implements the Mapping interface so callers can treat it like a dict.
    """

    def __init__(self, cfg_by_name: Dict[str, DatasetConfig], data_root: Optional[Path] = None):
        self._cfg_by_name = cfg_by_name
        self._data_root = data_root
        self._loaded: Dict[str, pd.DataFrame] = {}

    def __getitem__(self, name: str) -> pd.DataFrame:
        if name in self._loaded:
            return self._loaded[name]

        cfg = self._cfg_by_name.get(name)
        if cfg is None:
            raise KeyError(f"Unknown dataset '{name}'")

        try:
            logger.info("Lazy-loading dataset", extra={"dataset": cfg.name, "path": str(cfg.path)})
            frame = read_dataset_frame(cfg, self._data_root)
        except ConfigError as e:
            logger.error("Dataset config error on load", extra={"dataset": cfg.name, "error": str(e)})
            raise
        except Exception:
            logger.exception("Unexpected error while loading dataset", extra={"dataset": cfg.name})
            raise

        self._loaded[name] = frame
        return frame

    def __iter__(self) -> Iterator[str]:
        return iter(self._cfg_by_name)

    def __len__(self) -> int:
        return len(self._cfg_by_name)

    def config(self, name: str) -> DatasetConfig:
        return self._cfg_by_name[name]

    def is_loaded(self, name: str) -> bool:
        return name in self._loaded


class LinkSessionManager(Mapping[str, LinkSession]):
    """
    Owns one LinkSession per interactive session (browser tab, notebook kernel, ...).

    Sessions are created on demand by `ensure_session`, each with its own groups and
    its own SharedDataset per configured dataset, so selections never leak between users.

    Tabs never say goodbye, so the manager bounds itself: sessions idle for longer than
    `link_config.session_idle_seconds` are closed, and past `link_config.max_sessions`
    the least recently used session is closed to make room.
    """

    def __init__(
        self,
        link_config: Optional[LinkConfig] = None,
        frames: Optional[FrameCache] = None,
        scheduler_factory=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.link_config = link_config or LinkConfig()
        self.frames = frames
        self._scheduler_factory = scheduler_factory
        self._clock = clock
        # least recently used first
        self._sessions: "OrderedDict[str, LinkSession]" = OrderedDict()
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.RLock()

    def __getitem__(self, session_id: str) -> LinkSession:
        if session_id not in self._sessions:
            raise KeyError(f"Unknown session '{session_id}'")
        return self._sessions[session_id]

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def __len__(self) -> int:
        return len(self._sessions)

    def _new_scheduler(self) -> Optional[Scheduler]:
        return self._scheduler_factory() if self._scheduler_factory is not None else None

    def ensure_session(self, session_id: str) -> LinkSession:
        """Return the session for `session_id`, creating and populating it on first use."""
        with self._lock:
            now = self._clock()
            self.evict_idle(now)

            existing = self._sessions.get(session_id)
            if existing is not None:
                self._touch(session_id, now)
                return existing

            session = LinkSession(session_id, config=self.link_config, scheduler=self._new_scheduler())
            if self.frames is not None:
                for name in self.frames:
                    cfg = self.frames.config(name)
                    session.shared_dataset(
                        self.frames[name],
                        group=cfg.group,
                        key=key_rule_for(cfg),
                        name=name,
                    )

            self._sessions[session_id] = session
            self._touch(session_id, now)
            logger.info("Session created", extra={"session": session_id, "n_datasets": len(session.datasets())})

            self._evict_overflow()
            return session

    def _touch(self, session_id: str, now: float) -> None:
        self._sessions.move_to_end(session_id)
        self._last_seen[session_id] = now

    def _evict_overflow(self) -> None:
        limit = max(self.link_config.max_sessions, 1)
        while len(self._sessions) > limit:
            oldest = next(iter(self._sessions))
            logger.info("Session evicted", extra={"session": oldest, "reason": "max_sessions", "limit": limit})
            self.close_session(oldest)

    def evict_idle(self, now: Optional[float] = None) -> List[str]:
        """Close sessions not used within `session_idle_seconds`. Returns their ids."""
        ttl = self.link_config.session_idle_seconds
        if not ttl or ttl <= 0:
            return []

        with self._lock:
            now = self._clock() if now is None else now
            expired = [sid for sid, seen in self._last_seen.items() if now - seen >= ttl]
            for sid in expired:
                logger.info("Session evicted", extra={"session": sid, "reason": "idle", "idle_seconds": ttl})
                self.close_session(sid)
            return expired

    def dataset(self, session_id: str, name: str) -> Optional[SharedDataset]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return next((ds for ds in session.datasets() if ds.name == name), None)

    def close_session(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._last_seen.pop(session_id, None)
        if session is None:
            return False
        with session.lock:
            session.close()
        return True

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close_session(session_id)
