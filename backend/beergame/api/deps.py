"""FastAPI dependency helpers."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from beergame.db.session import SessionLocal, get_db
from beergame.services.events import event_bus
from beergame.services.game_service import GameService
from beergame.websockets import ConnectionManager, manager

__all__ = ["get_connection_manager", "get_db", "get_game_service"]


def get_game_service(db: Session = Depends(get_db)) -> GameService:
    """Service bound to the request session; settlement tasks open their own."""
    return GameService(db, session_factory=SessionLocal, notifier=event_bus)


def get_connection_manager() -> ConnectionManager:
    return manager
