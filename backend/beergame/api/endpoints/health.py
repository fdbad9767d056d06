from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from beergame.api.deps import get_db
from beergame.models.game import Game, GameStatus

router = APIRouter()


@router.get("/health", response_model=Dict[str, Any])
def health_check(db: Session = Depends(get_db)) -> Dict[str, Any]:
    """
    Verify database connectivity and report games currently mid-settlement.
    """
    try:
        db.execute(text("SELECT 1")).scalar()
        active = db.execute(
            select(func.count(Game.id)).where(Game.status == GameStatus.ACTIVE)
        ).scalar_one()
        settling = db.execute(
            select(func.count(Game.id)).where(Game.is_advancing_week.is_(True))
        ).scalar_one()
        db.rollback()
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(
            status_code=503,
            detail={"status": "unhealthy", "error": str(e)}
        )
    return {
        "status": "healthy",
        "database": "connected",
        "active_games": active,
        "settling_games": settling,
    }
