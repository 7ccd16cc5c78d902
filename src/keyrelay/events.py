"""Observable snapshot values with explicit subscribe/unsubscribe.

Runtime services publish their state (the account list, the connection
status, the OAuth session) through :class:`Observable`. A value is replaced
atomically by :meth:`Observable.set`; subscribers are notified afterwards, in
subscription order, with the new snapshot. Readers never receive a
reference they are expected to mutate.

Subscriber exceptions are logged and do not stop delivery to the remaining
subscribers, mirroring how the plugin hook chain isolates plugins.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]


class Observable(Generic[T]):
    """A single published value plus an ordered list of subscribers.

    Example::

        status = Observable(ConnectionStatus.DISCONNECTED)
        unsubscribe = status.subscribe(lambda s: print(s.value))
        status.set(ConnectionStatus.CONNECTED)   # prints "connected"
        unsubscribe()
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: list[Subscriber[T]] = []
        self._notifying = False
        self._pending: list[T] = []

    @property
    def value(self) -> T:
        """The current snapshot."""
        return self._value

    def subscribe(self, callback: Subscriber[T]) -> Callable[[], None]:
        """Register *callback* and return a function that unregisters it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber[T]) -> None:
        """Remove *callback*. No-op if it is not subscribed."""
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def set(self, value: T) -> None:
        """Replace the snapshot and notify subscribers.

        A ``set`` issued from inside a subscriber is queued and delivered
        after the current round finishes, so callbacks never re-enter one
        another.
        """
        if self._notifying:
            self._pending.append(value)
            return
        self._notifying = True
        try:
            self._value = value
            self._notify(value)
            while self._pending:
                next_value = self._pending.pop(0)
                self._value = next_value
                self._notify(next_value)
        finally:
            self._notifying = False

    def _notify(self, value: T) -> None:
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber %r failed", callback)
