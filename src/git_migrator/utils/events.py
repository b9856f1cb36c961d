"""Observer registry with isolated listener delivery."""

import threading
from typing import Callable, Generic, List, TypeVar

from loguru import logger

ListenerType = TypeVar('ListenerType')


class ListenerRegistry(Generic[ListenerType]):
    """Thread-safe list of listeners.

    Delivery iterates over a snapshot of the registered listeners, so a
    listener may subscribe or unsubscribe from inside its own callback.
    An exception raised by one listener is logged and does not reach the
    caller or the remaining listeners.
    """

    def __init__(self, name: str = 'listeners'):
        """Initialize listener registry.

        Args:
            name: Name used in log messages
        """
        self.name = name
        self._listeners: List[ListenerType] = []
        self._lock = threading.Lock()
        self.logger = logger.bind(component=name)

    def subscribe(self, listener: ListenerType) -> None:
        """Register a listener. Registering the same listener twice is a no-op."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: ListenerType) -> bool:
        """Remove a listener.

        Returns:
            True if the listener was registered
        """
        with self._lock:
            try:
                self._listeners.remove(listener)
                return True
            except ValueError:
                return False

    def snapshot(self) -> List[ListenerType]:
        with self._lock:
            return list(self._listeners)

    def notify(self, action: Callable[[ListenerType], None]) -> int:
        """Invoke action for each registered listener.

        Args:
            action: Callable applied to every listener

        Returns:
            Number of listeners that failed
        """
        failures = 0
        for listener in self.snapshot():
            try:
                action(listener)
            except Exception as e:
                failures += 1
                self.logger.warning(f'Listener {listener!r} failed: {e}')
        return failures

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def __bool__(self) -> bool:
        return len(self) > 0
