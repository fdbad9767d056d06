"""Order intake: one order per role per week, accepted exactly once."""

from __future__ import annotations

import logging
import math
from decimal import Decimal, InvalidOperation
from typing import Any, NamedTuple, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from beergame.core.exceptions import (
    GameNotActive,
    GameNotFound,
    InvalidQuantity,
    RoleNotFound,
    StorageError,
)
from beergame.models.game import Game, GameStatus
from beergame.models.player import Player, PlayerRole
from beergame.models.supply_chain import EntryKind, PipelineEntry
from beergame.services.topology import order_recipient, parse_role, upstream_role

logger = logging.getLogger(__name__)


class OrderReceipt(NamedTuple):
    accepted: bool
    game_id: int
    role: PlayerRole
    week: int
    quantity: int
    outgoing_order: Optional[int]


def coerce_quantity(quantity: Any) -> int:
    """Validate an order quantity and return it as an int.

    Accepts ints, integral floats/Decimals and numeric strings. Rejects
    booleans, NaN/inf, negatives and fractional values.
    """
    if isinstance(quantity, bool) or quantity is None:
        raise InvalidQuantity(quantity)
    if isinstance(quantity, int):
        value = Decimal(quantity)
    else:
        try:
            value = Decimal(str(quantity).strip())
        except (InvalidOperation, ValueError):
            raise InvalidQuantity(quantity) from None
    if not value.is_finite() or value < 0 or value != value.to_integral_value():
        raise InvalidQuantity(quantity)
    return int(value)


def update_order_statistics(player: Player, quantity: int) -> None:
    """Fold ``quantity`` into the role's running order statistics."""
    count = (player.order_count or 0) + 1
    mean = player.order_mean or 0.0
    delta = quantity - mean
    mean += delta / count
    m2 = (player.order_m2 or 0.0) + delta * (quantity - mean)

    player.order_count = count
    player.order_mean = mean
    player.order_m2 = m2
    player.order_variability = math.sqrt(m2 / (count - 1)) if count > 1 else 0.0
    player.min_order = quantity if player.min_order is None else min(player.min_order, quantity)
    player.max_order = quantity if player.max_order is None else max(player.max_order, quantity)
    player.total_outgoing_orders = (player.total_outgoing_orders or 0) + quantity


class OrderIntake:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Loading helpers
    # ------------------------------------------------------------------
    def load_game(self, game_id: int, *, for_update: bool = False) -> Optional[Game]:
        stmt = select(Game).where(Game.id == game_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def load_player(self, game_id: int, role: PlayerRole, *, for_update: bool = False) -> Optional[Player]:
        stmt = (
            select(Player)
            .where(Player.game_id == game_id, Player.role == role)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------
    def record_order(self, game: Game, player: Player, quantity: int) -> bool:
        """Place ``quantity`` for ``player`` in the game's current week.

        The write only lands if the role has no order yet this week; returns
        False (and changes nothing) otherwise. Does not commit.
        """
        self.db.flush()
        result = self.db.execute(
            update(Player)
            .where(Player.id == player.id, Player.outgoing_order.is_(None))
            .values(outgoing_order=quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        self.db.refresh(player)
        update_order_statistics(player, quantity)

        # Orders reach the upstream partner in the same week
        self.db.add(
            PipelineEntry(
                game_id=game.id,
                kind=EntryKind.ORDER,
                from_role=player.role.value,
                to_role=order_recipient(player.role),
                quantity=quantity,
                week_placed=game.current_week,
                week_delivered=game.current_week,
                is_delivered=True,
            )
        )

        supplier_role = upstream_role(player.role)
        if supplier_role is not None:
            supplier = self.load_player(game.id, supplier_role, for_update=True)
            if supplier is not None:
                supplier.incoming_order = quantity
                supplier.total_orders = (supplier.total_orders or 0) + quantity

        self.db.flush()
        return True

    def submit(self, game_id: int, role: Any, quantity: Any) -> OrderReceipt:
        """Accept an order from a client.

        A second order for the same role and week is not an error; the receipt
        comes back with ``accepted=False`` and the order already on record.
        """
        try:
            game = self.load_game(game_id)
            if game is None:
                raise GameNotFound(game_id)

            qty = coerce_quantity(quantity)

            if game.status != GameStatus.ACTIVE:
                raise GameNotActive(game.id, game.status.value)

            try:
                player_role = parse_role(role)
            except ValueError:
                raise RoleNotFound(role, game.id)
            player = self.load_player(game.id, player_role)
            if player is None:
                raise RoleNotFound(player_role.value, game.id)

            accepted = self.record_order(game, player, qty)
            week = game.current_week
            if accepted:
                existing = qty
                self.db.commit()
            else:
                existing = self.db.execute(
                    select(Player.outgoing_order).where(Player.id == player.id)
                ).scalar_one()
                self.db.rollback()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not record order for game {game_id}: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise

        if accepted:
            logger.info(
                "Order accepted: game=%s week=%s role=%s quantity=%s",
                game_id, week, player_role.value, qty,
            )
        else:
            logger.info(
                "Duplicate order ignored: game=%s week=%s role=%s (already %s)",
                game_id, week, player_role.value, existing,
            )
        return OrderReceipt(accepted, game_id, player_role, week, qty, existing)
