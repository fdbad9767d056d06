from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from beergame.api.deps import get_game_service
from beergame.schemas.game import (
    GameCreate,
    GameDiagnosis,
    GameState,
    GameWeekSchema,
    OrderRequest,
    OrderResponse,
    PlayerCreate,
    ResetOrderResponse,
    RoleAvailability,
    RoleState,
    SettleResponse,
)
from beergame.services.game_service import GameService

router = APIRouter()


# Game endpoints
@router.post("", response_model=GameState, status_code=status.HTTP_201_CREATED)
def create_game(game_in: GameCreate, service: GameService = Depends(get_game_service)):
    """
    Create a new game in the waiting state.
    """
    try:
        return service.create_game(game_in)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/code/{code}", response_model=GameState)
def get_game_by_code(code: str, service: GameService = Depends(get_game_service)):
    return service.get_game_by_code(code)


@router.get("/{game_id}", response_model=GameState)
def get_game(game_id: int, service: GameService = Depends(get_game_service)):
    return service.get_game_state(game_id)


@router.post("/{game_id}/start", response_model=GameState)
def start_game(game_id: int, service: GameService = Depends(get_game_service)):
    """
    Start a game once all four roles are seated.
    """
    return service.start_game(game_id)


# Player endpoints
@router.post("/{game_id}/players", response_model=RoleState, status_code=status.HTTP_201_CREATED)
def add_player(game_id: int, player_in: PlayerCreate, service: GameService = Depends(get_game_service)):
    try:
        return service.add_player(game_id, player_in)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/{game_id}/players", response_model=Dict[str, Optional[str]])
def get_game_players(game_id: int, service: GameService = Depends(get_game_service)):
    return service.get_game_players(game_id)


@router.get("/{game_id}/roles/{role}/available", response_model=RoleAvailability)
def check_role_available(game_id: int, role: str, service: GameService = Depends(get_game_service)):
    available = service.check_role_available(game_id, role)
    return RoleAvailability(game_id=game_id, role=role.strip().lower(), available=available)


@router.get("/{game_id}/roles/{role}", response_model=RoleState)
def get_role_state(game_id: int, role: str, service: GameService = Depends(get_game_service)):
    return service.get_role_state(game_id, role)


# Order and settlement endpoints
@router.post("/{game_id}/orders", response_model=OrderResponse)
def submit_order(
    game_id: int,
    order_in: OrderRequest,
    background_tasks: BackgroundTasks,
    service: GameService = Depends(get_game_service),
):
    """
    Submit this week's order for a role.

    Resubmitting for the same week is accepted but changes nothing. The week
    is settled in the background once every role has ordered.
    """
    receipt = service.submit_order(game_id, order_in.role, order_in.quantity, background_tasks)
    return OrderResponse(
        game_id=receipt.game_id,
        role=receipt.role,
        week=receipt.week,
        accepted=receipt.accepted,
        outgoing_order=receipt.outgoing_order,
    )


@router.post("/{game_id}/settle", response_model=SettleResponse)
def settle(game_id: int, service: GameService = Depends(get_game_service)):
    settled = service.check_and_settle(game_id)
    game = service.get_game_state(game_id)
    return SettleResponse(
        game_id=game.id,
        settled=settled,
        current_week=game.current_week,
        status=game.status,
    )


@router.post("/{game_id}/roles/{role}/reset-order", response_model=ResetOrderResponse)
def reset_role_order(game_id: int, role: str, service: GameService = Depends(get_game_service)):
    cleared = service.reset_role_order(game_id, role)
    return ResetOrderResponse(game_id=game_id, role=role.strip().lower(), cleared=cleared)


# History and diagnostics
@router.get("/{game_id}/history", response_model=List[GameWeekSchema])
def get_week_history(game_id: int, service: GameService = Depends(get_game_service)):
    return service.get_week_history(game_id)


@router.get("/{game_id}/debug", response_model=GameDiagnosis)
def diagnose_game(game_id: int, service: GameService = Depends(get_game_service)):
    """
    Report pending deliveries and missing orders; clears a stuck settlement flag.
    """
    return service.diagnose_game(game_id)
