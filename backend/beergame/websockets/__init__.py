import asyncio
import logging
import threading
from typing import Callable, Dict, Optional

from fastapi import WebSocket

from beergame.services.events import GameEvent, GameEventBus, event_bus

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Per-game websocket rooms fed from a :class:`GameEventBus`.

    Events are published from worker threads (request handlers, background
    settlement), so forwarding hands each message to the event loop that owns
    the sockets. The bus subscription lives only while someone is connected.
    """

    def __init__(self, bus: GameEventBus = event_bus):
        self.bus = bus
        self.active_connections: Dict[int, Dict[str, WebSocket]] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    async def connect(self, websocket: WebSocket, game_id: int, client_id: str) -> None:
        await websocket.accept()
        loop = asyncio.get_running_loop()
        with self._lock:
            self._loop = loop
            self.active_connections.setdefault(game_id, {})[client_id] = websocket
            if self._unsubscribe is None:
                self._unsubscribe = self.bus.subscribe(self.forward)
        logger.info("Client %s connected to game %s", client_id, game_id)

    def disconnect(self, game_id: int, client_id: str) -> None:
        with self._lock:
            room = self.active_connections.get(game_id, {})
            room.pop(client_id, None)
            if not room:
                self.active_connections.pop(game_id, None)
            if not self.active_connections and self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None
        logger.info("Client %s left game %s", client_id, game_id)

    def connection_count(self, game_id: int) -> int:
        with self._lock:
            return len(self.active_connections.get(game_id, {}))

    async def send_personal_message(self, message: dict, game_id: int, client_id: str) -> None:
        with self._lock:
            websocket = self.active_connections.get(game_id, {}).get(client_id)
        if websocket is not None:
            await websocket.send_json(message)

    async def broadcast(self, message: dict, game_id: int) -> None:
        with self._lock:
            room = list(self.active_connections.get(game_id, {}).items())
        for client_id, websocket in room:
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.error("Error broadcasting to %s: %s", client_id, e)
                self.disconnect(game_id, client_id)

    def forward(self, event: GameEvent) -> None:
        """Bus subscriber: schedule a broadcast of ``event`` to its game's room."""
        with self._lock:
            loop = self._loop
            listening = event.game_id in self.active_connections
        if not listening or loop is None or loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self.broadcast(event.to_dict(), event.game_id), loop)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Broadcast failed: %s", future.exception())


# Create a singleton instance
manager = ConnectionManager()
