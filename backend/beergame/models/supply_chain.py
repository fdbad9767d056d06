"""Pipeline ledger and weekly snapshots that hang off the Game model."""

from __future__ import annotations

import datetime
from enum import Enum

from sqlalchemy import (
    Column,
    Integer,
    Float,
    String,
    DateTime,
    ForeignKey,
    JSON,
    Boolean,
    Enum as SQLEnum,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base


class EntryKind(str, Enum):
    ORDER = "order"
    SHIPMENT = "shipment"
    PRODUCTION = "production"


class PipelineEntry(Base):
    """One flow of goods or orders between two stages.

    ``from_role`` / ``to_role`` hold a role value or one of the endpoints
    ``customer`` and ``factory``. Rows are only ever appended; the one
    mutation allowed is flipping ``is_delivered`` from false to true.
    """

    __tablename__ = "pipeline_entries"
    __table_args__ = (
        Index("ix_pipeline_due", "game_id", "to_role", "week_delivered", "is_delivered"),
        Index("ix_pipeline_outbound", "game_id", "from_role", "is_delivered"),
    )

    id = Column(Integer, primary_key=True, index=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    kind = Column(SQLEnum(EntryKind), nullable=False, default=EntryKind.SHIPMENT)
    from_role = Column(String(20), nullable=False)
    to_role = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    week_placed = Column(Integer, nullable=False)
    week_delivered = Column(Integer, nullable=False)
    is_delivered = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    game = relationship("Game", back_populates="pipeline_entries")

    def __repr__(self) -> str:
        return (
            f"<PipelineEntry {self.kind} {self.from_role}->{self.to_role} "
            f"qty={self.quantity} w{self.week_placed}->w{self.week_delivered}>"
        )


class GameWeek(Base):
    """Snapshot of a settled week, kept for history and analytics."""

    __tablename__ = "game_weeks"
    __table_args__ = (UniqueConstraint("game_id", "week_number", name="uq_game_weeks_game_week"),)

    id = Column(Integer, primary_key=True, index=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, index=True)
    week_number = Column(Integer, nullable=False)
    customer_demand = Column(Integer, nullable=False, default=0)
    total_team_cost = Column(Float, nullable=False, default=0.0)
    # {role: {"inventory", "backlog", "order", "shipment", "incoming_shipment", "total_cost"}}
    roles = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.datetime.utcnow)

    game = relationship("Game", back_populates="weeks")
