"""In-process change notifications for whoever renders game state.

The settlement core publishes after each commit; it never waits on, or
depends on, a subscriber. Transports (websockets, SSE, a message broker)
subscribe here and forward.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class GameEventType(str, Enum):
    GAME_STARTED = "game_started"
    ORDER_SUBMITTED = "order_submitted"
    ORDER_RESET = "order_reset"
    WEEK_SETTLED = "week_settled"
    GAME_COMPLETED = "game_completed"


@dataclass
class GameEvent:
    type: GameEventType
    game_id: int
    week: int
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "game_id": self.game_id,
            "week": self.week,
            "payload": dict(self.payload),
            "timestamp": self.timestamp.isoformat(),
        }


Subscriber = Callable[[GameEvent], None]


class GameEventBus:
    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: GameEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug("Publishing %s for game %s (week %s)", event.type.value, event.game_id, event.week)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber %r failed on %s", callback, event.type.value)


# Process-wide bus used by the HTTP layer
event_bus = GameEventBus()
