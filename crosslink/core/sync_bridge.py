from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Iterable, List, Mapping, Optional, Tuple

from .exceptions import CrosslinkError, DetachedConsumerError, MessageFormatError
from .link_group import ConsumerHandle, LinkGroup
from .messages import SERVER_SOURCE_ID, Kind, MutationMessage, Notification

logger = logging.getLogger(__name__)

MAX_RECENT_DISCARDS = 100


@dataclass(frozen=True)
class StaleSequenceDiscard:
    """Record of an out-of-order mutation that was dropped. Not an error."""
    group_id: str
    kind: Kind
    source_id: str
    sequence: int
    last_applied: int


@dataclass
class _Pending:
    message: MutationMessage
    origin: Optional[ConsumerHandle] = None
    toggle_key: Optional[str] = None
    withdraw: bool = False
    result: Optional[int] = None


def _sorted_keys(keys: Optional[Iterable[Any]]) -> Optional[Tuple[str, ...]]:
    if keys is None:
        return None
    return tuple(sorted({str(k) for k in keys}))


class SyncBridge:
    """
    Moves selection/filter mutations between consumers, the server and reactive observers.

    Two explicit queues:
    - inbound: mutation requests, applied strictly in receipt order
    - outbound: notifications produced by each applied mutation

    `drain()` alternates between them: apply one mutation, deliver its notifications,
    then take the next mutation. A consumer that mutates from inside its own callback
    only appends to the inbound queue; the running drain picks it up, so callbacks never
    recurse into each other.

    Sequencing is per group. Messages without a sequence get the group's next one;
    messages that carry one are applied only if it is newer than the last applied
    sequence (last-writer-wins by sequence, not arrival).
    """

    def __init__(self, resolve_group: Callable[[str], LinkGroup], *, server_source_id: str = SERVER_SOURCE_ID) -> None:
        self._resolve_group = resolve_group
        self.server_source_id = server_source_id
        self._inbound: Deque[_Pending] = deque()
        self._outbound: Deque[Tuple[LinkGroup, Notification]] = deque()
        # re-entrant so a consumer mutating from its own callback only queues
        self.lock = threading.RLock()
        self._draining = False
        self.recent_discards: Deque[StaleSequenceDiscard] = deque(maxlen=MAX_RECENT_DISCARDS)

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------
    def submit(self, message: MutationMessage, origin: Optional[ConsumerHandle] = None) -> None:
        """Queue a mutation. Nothing is applied until `drain()` runs."""
        with self.lock:
            self._enqueue(_Pending(message=message, origin=origin))

    def _enqueue(self, pending: _Pending) -> _Pending:
        self._inbound.append(pending)
        return pending

    @property
    def pending(self) -> int:
        return len(self._inbound)

    def drain(self) -> List[Notification]:
        """
        Apply every queued mutation in order and deliver the resulting notifications.

        Returns the notifications produced by this drain. Re-entrant calls return
        immediately; the outer drain finishes the work. A drain from another thread
        waits for the running one to finish.
        """
        with self.lock:
            if self._draining:
                return []

            produced: List[Notification] = []
            self._draining = True
            try:
                while self._inbound or self._outbound:
                    if self._outbound:
                        group, notification = self._outbound.popleft()
                        self._dispatch(group, notification)
                        continue

                    pending = self._inbound.popleft()
                    notification = self._apply_isolated(pending)
                    if notification is not None:
                        produced.append(notification)
            finally:
                self._draining = False
            return produced

    def _run(self, pending: _Pending) -> Optional[int]:
        with self.lock:
            self._enqueue(pending)
            self.drain()
        return pending.result

    # ------------------------------------------------------------------
    # Applying
    # ------------------------------------------------------------------
    def _apply_isolated(self, pending: _Pending) -> Optional[Notification]:
        msg = pending.message
        try:
            group = self._resolve_group(msg.group_id)
            return self._apply(group, pending)
        except CrosslinkError as e:
            logger.warning(
                "Mutation rejected",
                extra={"group": msg.group_id, "source": msg.source_id, "kind": msg.kind.value, "error": str(e)},
            )
        except Exception:
            logger.exception(
                "Unexpected error while applying mutation",
                extra={"group": msg.group_id, "source": msg.source_id, "kind": msg.kind.value},
            )
        return None

    def _apply(self, group: LinkGroup, pending: _Pending) -> Optional[Notification]:
        msg = pending.message

        if pending.origin is not None and not pending.origin.attached:
            # detached between submit and apply
            self._log_detached(pending.origin, msg.kind)
            return None

        if msg.sequence is None:
            sequence = group.next_sequence()
        elif group.accepts(msg.sequence):
            sequence = msg.sequence
        else:
            discard = StaleSequenceDiscard(
                group_id=group.name,
                kind=msg.kind,
                source_id=msg.source_id,
                sequence=msg.sequence,
                last_applied=group.last_sequence,
            )
            self.recent_discards.append(discard)
            logger.info(
                "Stale mutation discarded",
                extra={
                    "group": group.name,
                    "source": msg.source_id,
                    "kind": msg.kind.value,
                    "sequence": msg.sequence,
                    "last_applied": group.last_sequence,
                },
            )
            return None

        if msg.kind is Kind.SELECTION:
            if pending.toggle_key is not None:
                group.selection.toggle(pending.toggle_key)
            elif msg.active:
                group.selection.set(msg.keys or (), active=True)
            else:
                group.selection.clear()
            keys, active = group.selection.get()
            notification = Notification(
                group_id=group.name,
                kind=Kind.SELECTION,
                source_id=msg.source_id,
                sequence=sequence,
                keys=_sorted_keys(keys),
                active=active,
            )
        else:
            if pending.withdraw:
                group.filter.unregister_source(msg.source_id)
            elif pending.toggle_key is not None:
                group.filter.toggle(msg.source_id, pending.toggle_key)
            else:
                group.filter.set(msg.source_id, msg.keys)
            visible, _ = group.filter.get()
            notification = Notification(
                group_id=group.name,
                kind=Kind.FILTER,
                source_id=msg.source_id,
                sequence=sequence,
                keys=_sorted_keys(visible),
            )

        group.commit(sequence)
        pending.result = sequence
        self._outbound.append((group, notification))

        logger.debug(
            "Mutation applied",
            extra={"group": group.name, "source": msg.source_id, "kind": msg.kind.value, "sequence": sequence},
        )
        return notification

    def _dispatch(self, group: LinkGroup, notification: Notification) -> None:
        for handle in group.consumers():
            if handle.id == notification.source_id:
                continue
            handle.notify(notification)

        for observer in group.observers(notification.kind):
            observer.trigger(notification)

    # ------------------------------------------------------------------
    # Consumer-side API
    # ------------------------------------------------------------------
    def _log_detached(self, handle: ConsumerHandle, kind: Kind) -> None:
        err = DetachedConsumerError(
            f"Consumer '{handle.id}' is detached from group '{handle.group.name}'; {kind.value} mutation ignored"
        )
        logger.warning(str(err), extra={"group": handle.group.name, "consumer": handle.id})

    def _check_attached(self, handle: ConsumerHandle, kind: Kind) -> bool:
        if handle.attached:
            return True
        self._log_detached(handle, kind)
        return False

    def _message(
        self, handle: ConsumerHandle, kind: Kind, keys: Optional[Iterable[Any]], active: bool = True,
    ) -> MutationMessage:
        return MutationMessage(
            group_id=handle.group.name,
            kind=kind,
            source_id=handle.id,
            sequence=None,
            keys=_sorted_keys(keys),
            active=active,
        )

    def mutate_selection(self, handle: ConsumerHandle, keys: Iterable[Any], *, active: bool = True) -> Optional[int]:
        """Replace the group's selection on behalf of `handle`. Returns the applied sequence."""
        if not self._check_attached(handle, Kind.SELECTION):
            return None
        return self._run(_Pending(self._message(handle, Kind.SELECTION, keys, active), origin=handle))

    def clear_selection(self, handle: ConsumerHandle) -> Optional[int]:
        if not self._check_attached(handle, Kind.SELECTION):
            return None
        return self._run(_Pending(self._message(handle, Kind.SELECTION, (), False), origin=handle))

    def toggle_selection(self, handle: ConsumerHandle, key: Any) -> Optional[int]:
        if not self._check_attached(handle, Kind.SELECTION):
            return None
        msg = self._message(handle, Kind.SELECTION, ())
        return self._run(_Pending(msg, origin=handle, toggle_key=str(key)))

    def mutate_filter(self, handle: ConsumerHandle, keys: Optional[Iterable[Any]]) -> Optional[int]:
        """Set `handle`'s filter source. `None` lifts its restriction."""
        if not self._check_attached(handle, Kind.FILTER):
            return None
        return self._run(_Pending(self._message(handle, Kind.FILTER, keys), origin=handle))

    def toggle_filter(self, handle: ConsumerHandle, key: Any) -> Optional[int]:
        if not self._check_attached(handle, Kind.FILTER):
            return None
        msg = self._message(handle, Kind.FILTER, ())
        return self._run(_Pending(msg, origin=handle, toggle_key=str(key)))

    def detach(self, handle: ConsumerHandle) -> bool:
        """
        Detach immediately. If the consumer was restricting the filter, the remaining
        consumers are told about the widened visible set.
        """
        group = handle.group
        if not handle.attached:
            return False
        filter_changed = group.detach(handle)
        if filter_changed:
            msg = MutationMessage(
                group_id=group.name, kind=Kind.FILTER, source_id=handle.id, sequence=None, keys=None,
            )
            self._run(_Pending(msg, withdraw=True))
        return True

    # ------------------------------------------------------------------
    # Server-side API
    # ------------------------------------------------------------------
    def server_mutate_selection(self, group_id: str, keys: Iterable[Any], *, active: bool = True) -> Optional[int]:
        msg = MutationMessage(
            group_id=group_id,
            kind=Kind.SELECTION,
            source_id=self.server_source_id,
            sequence=None,
            keys=_sorted_keys(keys),
            active=active,
        )
        return self._run(_Pending(msg))

    def server_clear_selection(self, group_id: str) -> Optional[int]:
        return self.server_mutate_selection(group_id, (), active=False)

    def server_mutate_filter(self, group_id: str, keys: Optional[Iterable[Any]]) -> Optional[int]:
        msg = MutationMessage(
            group_id=group_id,
            kind=Kind.FILTER,
            source_id=self.server_source_id,
            sequence=None,
            keys=_sorted_keys(keys),
        )
        return self._run(_Pending(msg))

    def lift_filters(self, group_id: str) -> List[int]:
        """
        Withdraw every restricting filter source in a group, including sources set
        over the wire by ids that never attached. Returns the applied sequences.
        """
        applied: List[int] = []
        with self.lock:
            group = self._resolve_group(group_id)
            for source_id, keys in list(group.filter.sources.items()):
                if keys is None:
                    continue
                msg = MutationMessage(
                    group_id=group_id, kind=Kind.FILTER, source_id=source_id, sequence=None, keys=None,
                )
                sequence = self._run(_Pending(msg, origin=group.get(source_id)))
                if sequence is not None:
                    applied.append(sequence)
        return applied

    # ------------------------------------------------------------------
    # Wire API
    # ------------------------------------------------------------------
    def receive(self, payload: Mapping[str, Any]) -> Optional[int]:
        """
        Apply one inbound wire message. The origin is looked up by its sourceId so the
        sender does not get an echo. Malformed messages, and messages from consumers that
        have detached from the group, are logged and dropped.
        """
        try:
            msg = MutationMessage.from_dict(payload)
        except MessageFormatError as e:
            logger.warning("Malformed mutation message dropped", extra={"error": str(e)})
            return None

        with self.lock:
            try:
                group = self._resolve_group(msg.group_id)
            except CrosslinkError as e:
                logger.warning("Mutation for unavailable group dropped", extra={"group": msg.group_id, "error": str(e)})
                return None

            origin = group.get(msg.source_id)
            if origin is None and msg.source_id in group.detached_ids:
                err = DetachedConsumerError(
                    f"Consumer '{msg.source_id}' is detached from group '{group.name}'; "
                    f"{msg.kind.value} mutation ignored"
                )
                logger.warning(str(err), extra={"group": group.name, "consumer": msg.source_id, "sequence": msg.sequence})
                return None

            return self._run(_Pending(msg, origin=origin))
