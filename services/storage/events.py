"""Minimal synchronous event source used by requests, responses and channels."""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventSource:
    """Listeners run synchronously, in registration order, inside emit()."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, listener: Callable[..., Any]):
        self._listeners[event].append(listener)
        return self

    def once(self, event: str, listener: Callable[..., Any]):
        def wrapper(*args):
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener
        return self.on(event, wrapper)

    def off(self, event: str, listener: Callable[..., Any]):
        listeners = self._listeners.get(event, [])
        for registered in listeners:
            if registered is listener or getattr(registered, "listener", None) is listener:
                listeners.remove(registered)
                break
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args) -> bool:
        listeners = list(self._listeners.get(event, []))
        if not listeners:
            if event == "error":
                logger.error(f"Unhandled error event on {type(self).__name__}: {args[0] if args else None}")
            return False

        for listener in listeners:
            listener(*args)
        return True
