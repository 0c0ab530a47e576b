from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Optional

from crosslink.core.messages import Notification


class RemoteConsumer:
    """
    Server-side stand-in for a widget living in the browser.

    Notifications are kept in wire form in an outbox until the transport
    (a Dash callback response) picks them up with `drain_outbox()`.
    """

    def __init__(self, widget_id: str) -> None:
        self.widget_id = widget_id
        self._outbox: List[Dict[str, Any]] = []

    def on_notification(self, notification: Notification) -> None:
        self._outbox.append(notification.to_dict())

    def on_selection_changed(self, group_id: str, keys: FrozenSet[str], active: bool) -> None:
        pass

    def on_filter_changed(self, group_id: str, keys: Optional[FrozenSet[str]]) -> None:
        pass

    def drain_outbox(self) -> List[Dict[str, Any]]:
        out, self._outbox = self._outbox, []
        return out

    def __len__(self) -> int:
        return len(self._outbox)
