"""Models package with all SQLAlchemy models."""
import logging

# Configure logger
logger = logging.getLogger(__name__)

from .base import Base  # noqa: E402

# Import models in dependency order so every table registers on Base.metadata
from .game import Game, GameStatus  # noqa: E402
from .player import Player, PlayerRole  # noqa: E402
from .supply_chain import PipelineEntry, EntryKind, GameWeek  # noqa: E402

registered_tables = set(Base.metadata.tables.keys())
expected_tables = {"games", "players", "pipeline_entries", "game_weeks"}

missing_tables = expected_tables - registered_tables
if missing_tables:
    logger.warning(f"Missing tables in metadata: {missing_tables}")

__all__ = [
    "Base",
    "Game",
    "GameStatus",
    "Player",
    "PlayerRole",
    "PipelineEntry",
    "EntryKind",
    "GameWeek",
]
