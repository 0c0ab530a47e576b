from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .dataset import SharedDataset
from .exceptions import UnknownGroupError
from .keys import KeyRule
from .link_group import Consumer, ConsumerHandle, LinkGroup
from .scheduler import ManualScheduler, Scheduler
from .sync_bridge import SyncBridge

if TYPE_CHECKING:
    from crosslink.config.model import LinkConfig

logger = logging.getLogger(__name__)


class LinkSession:
    """
    One interactive session's linking state.

    Holds the explicit registry of LinkGroups (created on first reference by name),
    the SyncBridge that sequences their mutations, and the SharedDatasets built in
    this session. Nothing here is global: two sessions using the same group name
    never see each other's state.
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        config: Optional["LinkConfig"] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        if config is None:
            from crosslink.config.model import LinkConfig

            config = LinkConfig()

        self.session_id = session_id or uuid.uuid4().hex
        self.config = config
        self.scheduler: Scheduler = scheduler or ManualScheduler()
        self.bridge = SyncBridge(self.group, server_source_id=config.server_source_id)
        # held by hosts around a whole mutate-then-render step
        self.lock = self.bridge.lock
        self._groups: Dict[str, LinkGroup] = {}
        self._datasets: List[SharedDataset] = []
        self.closed = False

    def __repr__(self) -> str:
        return f"LinkSession(id='{self.session_id}', groups={sorted(self._groups)})"

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------
    def group(self, name: str) -> LinkGroup:
        """Return the group called `name`, creating it on first reference."""
        if self.closed:
            raise UnknownGroupError(f"Session '{self.session_id}' is closed; group '{name}' is unavailable")

        group = self._groups.get(name)
        if group is None:
            group = LinkGroup(
                name,
                scheduler=self.scheduler,
                observer_debounce=self.config.debounce_for(name),
            )
            group.bridge = self.bridge
            self._groups[name] = group
            logger.info("Link group created", extra={"session": self.session_id, "group": name})
        return group

    def has_group(self, name: str) -> bool:
        return name in self._groups

    def group_names(self) -> List[str]:
        return sorted(self._groups)

    # ------------------------------------------------------------------
    # Convenience wiring
    # ------------------------------------------------------------------
    def shared_dataset(
        self,
        source: Any,
        *,
        group: str,
        key: Optional[KeyRule] = None,
        stable_index: bool = False,
        name: Optional[str] = None,
    ) -> SharedDataset:
        """Build a SharedDataset bound to the named group of this session."""
        ds = SharedDataset(
            source,
            key=key,
            group=self.group(group),
            stable_index=stable_index,
            selection_column=self.config.selection_column,
            name=name,
        )
        self._datasets.append(ds)
        return ds

    def datasets(self, group: Optional[str] = None) -> List[SharedDataset]:
        return [ds for ds in self._datasets if group is None or (ds.group is not None and ds.group.name == group)]

    def attach(
        self,
        group: str,
        consumer: Consumer,
        *,
        source_id: Optional[str] = None,
        debounce: float = 0.0,
    ) -> ConsumerHandle:
        return self.group(group).attach(consumer, source_id=source_id, debounce=debounce)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Destroy every group: detach consumers, cancel timers, release producer subscriptions."""
        if self.closed:
            return
        for group in self._groups.values():
            group.close()
        for ds in self._datasets:
            ds.dispose()
        self._groups.clear()
        self._datasets.clear()
        self.closed = True
        logger.info("Link session closed", extra={"session": self.session_id})
