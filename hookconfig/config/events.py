"""
Configuration change events.

A ChangeEventBus is an explicit, in-process publish/subscribe channel.
The update manager publishes one ConfigurationChangeEvent per applied
update or rollback; subscribers are called synchronously in subscription
order.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from hookconfig.config.utils import clone


class UpdateType(str, Enum):
    """Part of the configuration an update targets."""

    GLOBAL = "global"
    FACTORY = "factory"
    CONTENT_TYPE = "contentType"
    FEATURE_FLAG = "featureFlag"
    FULL = "full"


@dataclass(frozen=True)
class ConfigurationChangeEvent:
    """Notification that the live configuration changed."""

    update_id: str
    type: UpdateType
    timestamp: str
    old_value: Any
    new_value: Any
    path: Optional[str] = None
    author: Optional[str] = None
    reason: Optional[str] = None
    is_rollback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "updateId": self.update_id,
            "type": self.type.value,
            "path": self.path,
            "oldValue": clone(self.old_value),
            "newValue": clone(self.new_value),
            "timestamp": self.timestamp,
            "author": self.author,
            "reason": self.reason,
            "isRollback": self.is_rollback,
        }


Subscriber = Callable[[ConfigurationChangeEvent], None]


class ChangeEventBus:
    """
    Synchronous publish/subscribe channel for configuration changes.

    A subscriber that raises is logged and skipped; the remaining
    subscribers still receive the event.

    Usage::

        bus = ChangeEventBus()
        unsubscribe = bus.subscribe(lambda event: print(event.update_id))
        ...
        unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> bool:
        """Remove a subscriber. Returns False if it was not subscribed."""
        try:
            self._subscribers.remove(callback)
        except ValueError:
            return False
        return True

    def publish(self, event: ConfigurationChangeEvent) -> int:
        """
        Deliver an event to every subscriber.

        Returns:
            Number of subscribers that handled the event without raising.
        """
        delivered = 0
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.exception(f"Change subscriber failed for update {event.update_id}: {e}")
                continue
            delivered += 1
        logger.debug(f"Change event {event.update_id} delivered to {delivered} subscriber(s)")
        return delivered
