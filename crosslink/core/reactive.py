from __future__ import annotations

import logging
from typing import Any, Callable, Generic, List, Protocol, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unsubscribe = Callable[[], None]


@runtime_checkable
class ReactiveSource(Protocol):
    """
    Capability handed to a SharedDataset instead of a value.

    - pull(): read the latest value (the host's `currentValue`)
    - subscribe(cb): call `cb()` whenever the value is invalidated (the host's `onInvalidate`);
      returns a callable that removes the subscription
    """

    def pull(self) -> Any: ...

    def subscribe(self, callback: Callable[[], None]) -> Unsubscribe: ...


class _Subscribers:
    """Ordered callback list shared by the host stand-ins below."""

    def __init__(self) -> None:
        self._callbacks: List[Callable[[], None]] = []

    def add(self, callback: Callable[[], None]) -> Unsubscribe:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def fire(self) -> None:
        for cb in list(self._callbacks):
            try:
                cb()
            except Exception:
                logger.exception("Invalidation callback failed")

    def __len__(self) -> int:
        return len(self._callbacks)


class ReactiveValue(Generic[T]):
    """
    A settable reactive input. Minimal stand-in for a host runtime's reactive value;
    the Dash app never uses it. Real hosts pass any object satisfying ReactiveSource.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._subscribers = _Subscribers()

    def pull(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._subscribers.fire()

    def invalidate(self) -> None:
        self._subscribers.fire()

    def subscribe(self, callback: Callable[[], None]) -> Unsubscribe:
        return self._subscribers.add(callback)


class ReactiveExpr(Generic[T]):
    """
    A lazily re-evaluated expression over other reactive sources.

    The function is called with the pulled values of `deps` in order. It only re-runs
    after one of its dependencies invalidates; invalidation is forwarded downstream.
    Like ReactiveValue, a stand-in for a host runtime's reactive expression.
    """

    def __init__(self, fn: Callable[..., T], *deps: ReactiveSource) -> None:
        self._fn = fn
        self._deps = deps
        self._subscribers = _Subscribers()
        self._stale = True
        self._value: Any = None
        self._unsubscribes = [dep.subscribe(self._invalidate) for dep in deps]

    def _invalidate(self) -> None:
        self._stale = True
        self._subscribers.fire()

    def pull(self) -> T:
        if self._stale:
            self._value = self._fn(*(dep.pull() for dep in self._deps))
            self._stale = False
        return self._value

    def subscribe(self, callback: Callable[[], None]) -> Unsubscribe:
        return self._subscribers.add(callback)

    def dispose(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes = []
