"""Dataset invalidation notifications."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], None]


class InvalidationBus:
    """Publishes ``invalidated(dataset_key)`` to every subscriber."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, dataset_key: str) -> None:
        logger.debug(f"Dataset invalidated: {dataset_key}")
        for callback in list(self._subscribers):
            try:
                callback(dataset_key)
            except Exception as e:
                logger.error(f"Invalidation subscriber failed for {dataset_key}: {e}")

    def __len__(self):
        return len(self._subscribers)
