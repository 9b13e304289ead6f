# src/taskflow/core/observable.py

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

Observer = Callable[[T], None]
Unsubscribe = Callable[[], None]

logger = logging.getLogger(__name__)


class Observable(Generic[T]):
    """
    A typed "current value" plus subscribe-for-changes.

    Observers are called synchronously, in subscription order, every time a new value
    is published. A failing observer is logged and does not stop the others.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._observers: list[Observer[T]] = []

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, observer: Observer[T]) -> Unsubscribe:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, value: T) -> None:
        self._value = value
        # Copy: observers may unsubscribe while being notified.
        for observer in list(self._observers):
            try:
                observer(value)
            except Exception:
                logger.exception("Observer %r failed", observer)
