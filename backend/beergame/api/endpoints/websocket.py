import json
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from beergame.api.deps import get_connection_manager, get_game_service
from beergame.core.exceptions import GameNotFound
from beergame.schemas.game import GameState
from beergame.services.game_service import GameService
from beergame.websockets import ConnectionManager

router = APIRouter()


@router.websocket("/ws/games/{game_id}")
async def game_updates(
    websocket: WebSocket,
    game_id: int,
    service: GameService = Depends(get_game_service),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """
    Real-time game updates.

    - Sends the current game state on connection
    - Forwards every event published for the game (orders, settled weeks,
      resets, completion)
    - Answers ``{"type": "ping"}`` with ``{"type": "pong"}``
    """
    try:
        game_state = GameState.model_validate(service.get_game_state(game_id)).model_dump(mode="json")
    except GameNotFound:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    finally:
        # Do not hold a database transaction open for the life of the socket
        service.db.close()

    client_id = uuid.uuid4().hex
    await manager.connect(websocket, game_id, client_id)
    try:
        await manager.send_personal_message(
            {"type": "game_state", "game_id": game_id, "data": game_state},
            game_id,
            client_id,
        )

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(game_id, client_id)
