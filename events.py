"""Explicit publish/subscribe bus for controller events."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

STATE_CHANGE = "state-change"
TRANSCRIPTION = "transcription"
MODEL_PROGRESS = "model-progress"

EVENT_NAMES = (STATE_CHANGE, TRANSCRIPTION, MODEL_PROGRESS)

Listener = Callable[[Any], None]


class Subscription:
    """Handle returned by EventBus.subscribe; call unsubscribe() to detach."""

    def __init__(self, bus: "EventBus", event_name: str, listener: Listener) -> None:
        self._bus = bus
        self.event_name = event_name
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self)


class EventBus:
    def __init__(self, event_names: tuple[str, ...] = EVENT_NAMES) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Subscription]] = {name: [] for name in event_names}

    def subscribe(self, event_name: str, listener: Listener) -> Subscription:
        with self._lock:
            if event_name not in self._listeners:
                raise ValueError(f"unknown event: {event_name}")
            subscription = Subscription(self, event_name, listener)
            self._listeners[event_name].append(subscription)
            return subscription

    def publish(self, event_name: str, payload: Any) -> None:
        with self._lock:
            subscriptions = list(self._listeners.get(event_name, ()))
        for subscription in subscriptions:
            if not subscription.active:
                continue
            try:
                subscription.listener(payload)
            except Exception:
                logger.exception("Listener for %s raised", event_name)

    def clear(self) -> None:
        with self._lock:
            for subscriptions in self._listeners.values():
                for subscription in subscriptions:
                    subscription.active = False
                subscriptions.clear()

    def listener_count(self, event_name: str) -> int:
        with self._lock:
            return len(self._listeners.get(event_name, ()))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._listeners.get(subscription.event_name, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)
