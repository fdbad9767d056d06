from enum import Enum
from datetime import datetime
from typing import List, Optional, TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Enum as SQLEnum, JSON, Boolean, Float
from sqlalchemy.orm import relationship, Mapped, mapped_column

from .base import Base

# Import for type checking only to avoid circular imports
if TYPE_CHECKING:
    from .player import Player, PlayerRole
    from .supply_chain import PipelineEntry, GameWeek


class GameStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"


class Game(Base):
    __tablename__ = "games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    game_code: Mapped[str] = mapped_column(String(6), unique=True, index=True)
    status: Mapped[GameStatus] = mapped_column(SQLEnum(GameStatus), default=GameStatus.WAITING)
    current_week: Mapped[int] = mapped_column(Integer, default=1)
    total_weeks: Mapped[int] = mapped_column(Integer, default=26)

    # Opening position for every role
    initial_inventory: Mapped[int] = mapped_column(Integer, default=12)
    initial_backlog: Mapped[int] = mapped_column(Integer, default=0)

    # Shipment lead times in weeks, one per stage
    retailer_lead_time: Mapped[int] = mapped_column(Integer, default=2)
    wholesaler_lead_time: Mapped[int] = mapped_column(Integer, default=2)
    distributor_lead_time: Mapped[int] = mapped_column(Integer, default=2)
    manufacturer_lead_time: Mapped[int] = mapped_column(Integer, default=2)

    # {"type": "fixed" | "random" | "step", "params": {...}}
    demand_pattern: Mapped[dict] = mapped_column(JSON, default=dict)
    fixed_demand: Mapped[int] = mapped_column(Integer, default=4)
    current_demand: Mapped[int] = mapped_column(Integer, default=4)

    holding_cost: Mapped[float] = mapped_column(Float, default=0.5)
    backorder_cost: Mapped[float] = mapped_column(Float, default=1.0)
    total_team_cost: Mapped[float] = mapped_column(Float, default=0.0)

    # Settlement-in-progress flag; only ever flipped by conditional updates
    is_advancing_week: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    players: Mapped[List["Player"]] = relationship(
        "Player", back_populates="game", lazy="selectin", cascade="all, delete-orphan"
    )
    pipeline_entries: Mapped[List["PipelineEntry"]] = relationship(
        "PipelineEntry", back_populates="game", cascade="all, delete-orphan"
    )
    weeks: Mapped[List["GameWeek"]] = relationship(
        "GameWeek", back_populates="game", cascade="all, delete-orphan"
    )

    def lead_time_for(self, role: "PlayerRole") -> int:
        """Shipment lead time of ``role``; never less than one week."""
        value = getattr(self, f"{role.value}_lead_time", None)
        return max(1, int(value)) if value is not None else 1

    def player_for(self, role: "PlayerRole") -> Optional["Player"]:
        for player in self.players:
            if player.role == role:
                return player
        return None

    def __repr__(self) -> str:
        return f"<Game {self.game_code} week={self.current_week}/{self.total_weeks} ({self.status})>"
