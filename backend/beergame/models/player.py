from enum import Enum
from datetime import datetime
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import Integer, String, DateTime, Enum as SQLEnum, JSON, ForeignKey, Boolean, Float, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

# Import for type checking only to avoid circular imports
if TYPE_CHECKING:
    from .game import Game


class PlayerRole(str, Enum):
    RETAILER = "retailer"
    WHOLESALER = "wholesaler"
    DISTRIBUTOR = "distributor"
    MANUFACTURER = "manufacturer"


class Player(Base):
    """Role ledger: the mutable state of one role in one game."""

    __tablename__ = "players"
    __table_args__ = (UniqueConstraint("game_id", "role", name="uq_players_game_role"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    game_id: Mapped[int] = mapped_column(Integer, ForeignKey("games.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[PlayerRole] = mapped_column(SQLEnum(PlayerRole), nullable=False)
    is_ai: Mapped[bool] = mapped_column(Boolean, default=False)
    ai_strategy: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Position
    inventory: Mapped[int] = mapped_column(Integer, default=0)
    backlog: Mapped[int] = mapped_column(Integer, default=0)
    pipeline_inventory: Mapped[int] = mapped_column(Integer, default=0)

    # This week's flows. NULL outgoing_order means "not submitted yet".
    incoming_order: Mapped[int] = mapped_column(Integer, default=0)
    outgoing_order: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    incoming_shipment: Mapped[int] = mapped_column(Integer, default=0)
    outgoing_shipment: Mapped[int] = mapped_column(Integer, default=0)
    next_week_incoming_shipment: Mapped[int] = mapped_column(Integer, default=0)

    # Costs
    weekly_holding_cost: Mapped[float] = mapped_column(Float, default=0.0)
    weekly_backorder_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_holding_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_backorder_cost: Mapped[float] = mapped_column(Float, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)

    # Cumulative volumes
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_backorders: Mapped[int] = mapped_column(Integer, default=0)
    total_inventory: Mapped[int] = mapped_column(Integer, default=0)
    total_outgoing_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_outgoing_shipments: Mapped[int] = mapped_column(Integer, default=0)
    total_incoming_shipments: Mapped[int] = mapped_column(Integer, default=0)

    # Order statistics (Welford running mean / M2)
    order_count: Mapped[int] = mapped_column(Integer, default=0)
    order_mean: Mapped[float] = mapped_column(Float, default=0.0)
    order_m2: Mapped[float] = mapped_column(Float, default=0.0)
    order_variability: Mapped[float] = mapped_column(Float, default=0.0)
    min_order: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_order: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Display-only, append-only
    inventory_history: Mapped[List[int]] = mapped_column(JSON, default=list)
    backlog_history: Mapped[List[int]] = mapped_column(JSON, default=list)
    order_history: Mapped[List[int]] = mapped_column(JSON, default=list)
    incoming_shipment_history: Mapped[List[int]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    game: Mapped["Game"] = relationship("Game", back_populates="players")

    @property
    def has_ordered(self) -> bool:
        return self.outgoing_order is not None

    def __repr__(self) -> str:
        return f"<Player {self.name} ({self.role})>"
