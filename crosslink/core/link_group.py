from __future__ import annotations

import itertools
import logging
import uuid
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Protocol,
    Set,
    runtime_checkable,
)

from .filter_state import FilterState
from .messages import SERVER_SOURCE_ID, Kind, Notification
from .scheduler import Debouncer, ManualScheduler, Scheduler
from .selection_state import SelectionState

if TYPE_CHECKING:
    from .sync_bridge import SyncBridge

logger = logging.getLogger(__name__)

DEFAULT_OBSERVER_DEBOUNCE = 0.15


@runtime_checkable
class Consumer(Protocol):
    """Notification interface every attached widget/consumer implements."""

    def on_selection_changed(self, group_id: str, keys: FrozenSet[str], active: bool) -> None: ...

    def on_filter_changed(self, group_id: str, keys: Optional[FrozenSet[str]]) -> None: ...


class CallbackConsumer:
    """Adapts plain callables to the Consumer interface. Missing callbacks are ignored."""

    def __init__(
        self,
        on_selection: Optional[Callable[[str, FrozenSet[str], bool], Any]] = None,
        on_filter: Optional[Callable[[str, Optional[FrozenSet[str]]], Any]] = None,
    ) -> None:
        self._on_selection = on_selection
        self._on_filter = on_filter

    def on_selection_changed(self, group_id: str, keys: FrozenSet[str], active: bool) -> None:
        if self._on_selection is not None:
            self._on_selection(group_id, keys, active)

    def on_filter_changed(self, group_id: str, keys: Optional[FrozenSet[str]]) -> None:
        if self._on_filter is not None:
            self._on_filter(group_id, keys)


class ConsumerHandle:
    """
    A consumer's membership in one LinkGroup.

    The handle id doubles as the consumer's source id: it tags every mutation the
    consumer makes and names its filter source.
    """

    def __init__(self, group: "LinkGroup", consumer: Consumer, source_id: str, debounce: float) -> None:
        self.group = group
        self.consumer = consumer
        self.id = source_id
        self.attached = True
        # one window per kind so a filter update never overwrites a pending selection
        self._debouncers: Dict[Kind, Debouncer[Notification]] = {
            Kind.SELECTION: Debouncer(group.scheduler, debounce, self._deliver),
            Kind.FILTER: Debouncer(group.scheduler, debounce, self._deliver),
        }

    def __repr__(self) -> str:
        state = "attached" if self.attached else "detached"
        return f"ConsumerHandle(group='{self.group.name}', id='{self.id}', {state})"

    @property
    def has_pending(self) -> bool:
        return any(d.pending for d in self._debouncers.values())

    def notify(self, notification: Notification) -> None:
        if not self.attached:
            return
        self._debouncers[notification.kind].trigger(notification)

    def cancel_pending(self) -> None:
        for debouncer in self._debouncers.values():
            debouncer.cancel()

    def _deliver(self, n: Notification) -> None:
        if not self.attached:
            return
        try:
            # consumers that speak the wire format take the whole notification
            on_notification = getattr(self.consumer, "on_notification", None)
            if callable(on_notification):
                on_notification(n)
            elif n.kind is Kind.SELECTION:
                self.consumer.on_selection_changed(n.group_id, frozenset(n.keys or ()), bool(n.active))
            else:
                self.consumer.on_filter_changed(n.group_id, None if n.keys is None else frozenset(n.keys))
        except Exception:
            logger.exception(
                "Consumer notification failed",
                extra={"group": n.group_id, "consumer": self.id, "kind": n.kind.value, "sequence": n.sequence},
            )

    # ------------------------------------------------------------------
    # Mutations go through the bridge so they are sequenced and fanned out
    # ------------------------------------------------------------------
    def _bridge(self) -> "SyncBridge":
        if self.group.bridge is None:
            raise RuntimeError(f"Link group '{self.group.name}' is not connected to a SyncBridge")
        return self.group.bridge

    def mutate_selection(self, keys: Iterable[Any], active: bool = True) -> Optional[int]:
        return self._bridge().mutate_selection(self, keys, active=active)

    def clear_selection(self) -> Optional[int]:
        return self._bridge().clear_selection(self)

    def toggle_selection(self, key: Any) -> Optional[int]:
        return self._bridge().toggle_selection(self, key)

    def mutate_filter(self, keys: Optional[Iterable[Any]]) -> Optional[int]:
        return self._bridge().mutate_filter(self, keys)

    def detach(self) -> bool:
        if self.group.bridge is None:
            return self.group.detach(self)
        return self.group.bridge.detach(self)


class ObserverHandle:
    """A reactive observer re-run (debounced) whenever one kind of state changes in a group."""

    def __init__(self, group: "LinkGroup", kind: Kind, callback: Callable[[Notification], Any], debounce: float) -> None:
        self.group = group
        self.kind = kind
        self.active = True
        self._callback = callback
        self._debouncer: Debouncer[Notification] = Debouncer(group.scheduler, debounce, self._run)

    @property
    def has_pending(self) -> bool:
        return self._debouncer.pending

    def trigger(self, notification: Notification) -> None:
        if self.active:
            self._debouncer.trigger(notification)

    def _run(self, notification: Notification) -> None:
        if not self.active:
            return
        try:
            self._callback(notification)
        except Exception:
            logger.exception(
                "Reactive observer failed",
                extra={"group": self.group.name, "kind": self.kind.value, "sequence": notification.sequence},
            )

    def unsubscribe(self) -> None:
        self.active = False
        self._debouncer.cancel()
        self.group._drop_observer(self)


class LinkGroup:
    """
    Named scope tying together every consumer that shares selection/filter state.

    Owns:
    - exactly one SelectionState and one FilterState
    - the attached consumer handles and reactive observers
    - the per-group sequence counter (one total order across both kinds)
    """

    def __init__(
        self,
        name: str,
        *,
        scheduler: Optional[Scheduler] = None,
        observer_debounce: float = DEFAULT_OBSERVER_DEBOUNCE,
    ) -> None:
        self.name = name
        self.scheduler: Scheduler = scheduler or ManualScheduler()
        self.observer_debounce = observer_debounce
        self.selection = SelectionState()
        self.filter = FilterState()
        self.bridge: Optional["SyncBridge"] = None
        self.last_sequence = 0
        self._handles: Dict[str, ConsumerHandle] = {}
        self._observers: List[ObserverHandle] = []
        self._anon_ids = itertools.count(1)
        # ids of consumers that left; late wire messages from them are dropped
        self.detached_ids: Set[str] = set()

    def __repr__(self) -> str:
        return f"LinkGroup(name='{self.name}', consumers={len(self._handles)}, sequence={self.last_sequence})"

    # ------------------------------------------------------------------
    # Sequence bookkeeping
    # ------------------------------------------------------------------
    def next_sequence(self) -> int:
        return self.last_sequence + 1

    def accepts(self, sequence: int) -> bool:
        return sequence > self.last_sequence

    def commit(self, sequence: int) -> None:
        self.last_sequence = max(self.last_sequence, sequence)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def attach(self, consumer: Consumer, *, source_id: Optional[str] = None, debounce: float = 0.0) -> ConsumerHandle:
        """
        Register a consumer for notifications.

        :param source_id: stable id for this consumer (e.g. the widget id); generated if omitted
        :param debounce: delivery window in seconds; 0 delivers synchronously
        """
        if source_id is None:
            source_id = f"{self.name}-{next(self._anon_ids)}-{uuid.uuid4().hex[:6]}"
        if source_id == SERVER_SOURCE_ID:
            raise ValueError(f"'{SERVER_SOURCE_ID}' is reserved for server-side writes")
        if source_id in self._handles:
            raise ValueError(f"Consumer '{source_id}' is already attached to group '{self.name}'")

        handle = ConsumerHandle(self, consumer, source_id, debounce)
        self._handles[source_id] = handle
        self.detached_ids.discard(source_id)
        logger.info("Consumer attached", extra={"group": self.name, "consumer": source_id})
        return handle

    def detach(self, handle: ConsumerHandle) -> bool:
        """
        Remove a consumer immediately: pending notifications are cancelled and its filter
        source is unregistered.

        :return: True if the consumer had been restricting the filter (effective set changed)
        """
        if self._handles.get(handle.id) is not handle:
            return False

        del self._handles[handle.id]
        handle.attached = False
        self.detached_ids.add(handle.id)
        handle.cancel_pending()
        filter_changed = self.filter.unregister_source(handle.id)

        logger.info(
            "Consumer detached",
            extra={"group": self.name, "consumer": handle.id, "filter_changed": filter_changed},
        )
        return filter_changed

    def get(self, source_id: str) -> Optional[ConsumerHandle]:
        return self._handles.get(source_id)

    def consumers(self) -> List[ConsumerHandle]:
        return list(self._handles.values())

    def observe(
        self,
        kind: Kind | str,
        callback: Callable[[Notification], Any],
        *,
        debounce: Optional[float] = None,
    ) -> ObserverHandle:
        """
        Subscribe a reactive observer to "selection changed" or "filter changed".

        Observers see every change, including ones made by the server, and are debounced
        with the group's observer window unless `debounce` is given.
        """
        kind = Kind(kind)
        delay = self.observer_debounce if debounce is None else debounce
        observer = ObserverHandle(self, kind, callback, delay)
        self._observers.append(observer)
        return observer

    def observers(self, kind: Optional[Kind] = None) -> List[ObserverHandle]:
        return [o for o in self._observers if kind is None or o.kind is kind]

    def _drop_observer(self, observer: ObserverHandle) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def close(self) -> None:
        """Detach everything and cancel every pending timer."""
        for handle in list(self._handles.values()):
            self.detach(handle)
        for observer in list(self._observers):
            observer.unsubscribe()
        self.bridge = None
