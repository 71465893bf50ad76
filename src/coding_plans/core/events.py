from __future__ import annotations

import logging
from typing import Callable

log = logging.getLogger(__name__)

Listener = Callable[[], None]


class ChangeEvent:
    """Fire-and-forget notification with no payload."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def fire(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                log.exception("event.listener_failed", extra={"event": self.name})

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
