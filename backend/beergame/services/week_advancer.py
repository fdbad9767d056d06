"""Week advancement: close the settled week, then open the next one or end the game."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from beergame.core.demand_patterns import generate_demand
from beergame.models.game import Game, GameStatus
from beergame.models.player import Player, PlayerRole
from beergame.models.supply_chain import GameWeek, PipelineEntry
from beergame.services.costs import accrue_team_costs
from beergame.services.topology import CUSTOMER, ROLE_SEQUENCE, downstream_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvanceResult:
    completed: bool
    week: int
    demand: int
    team_cost: float


class WeekAdvancer:
    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng

    # ------------------------------------------------------------------
    # Pipeline ledger queries
    # ------------------------------------------------------------------
    def apply_deliveries(self, game_id: int, recipient: str, week: int) -> int:
        """Mark entries due to ``recipient`` in ``week`` delivered and return their total.

        An entry only counts if this call is the one that flipped its flag, so
        calling this twice for the same week never delivers anything twice.
        """
        due = self.db.execute(
            select(PipelineEntry.id, PipelineEntry.quantity).where(
                PipelineEntry.game_id == game_id,
                PipelineEntry.to_role == recipient,
                PipelineEntry.week_delivered == week,
                PipelineEntry.is_delivered.is_(False),
            )
        ).all()

        received = 0
        for entry_id, quantity in due:
            result = self.db.execute(
                update(PipelineEntry)
                .where(PipelineEntry.id == entry_id, PipelineEntry.is_delivered.is_(False))
                .values(is_delivered=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                received += int(quantity or 0)
        return received

    def pending_quantity(
        self,
        game_id: int,
        *,
        from_role: Optional[str] = None,
        to_role: Optional[str] = None,
        week_delivered: Optional[int] = None,
    ) -> int:
        stmt = select(func.coalesce(func.sum(PipelineEntry.quantity), 0)).where(
            PipelineEntry.game_id == game_id,
            PipelineEntry.is_delivered.is_(False),
        )
        if from_role is not None:
            stmt = stmt.where(PipelineEntry.from_role == from_role)
        if to_role is not None:
            stmt = stmt.where(PipelineEntry.to_role == to_role)
        if week_delivered is not None:
            stmt = stmt.where(PipelineEntry.week_delivered == week_delivered)
        return int(self.db.execute(stmt).scalar_one())

    def refresh_pipeline_view(self, game_id: int, player: Player, week: int) -> None:
        """Recompute ``pipeline_inventory`` and the one-week lookahead for ``player``."""
        role = player.role.value
        player.pipeline_inventory = self.pending_quantity(game_id, from_role=role)
        player.next_week_incoming_shipment = self.pending_quantity(
            game_id, to_role=role, week_delivered=week + 1
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def close_week(self, game: Game, players: Iterable[Player]) -> GameWeek:
        """Append histories and persist the snapshot of the week just settled."""
        roles: Dict[str, Dict[str, float]] = {}
        for player in players:
            order = player.outgoing_order or 0
            player.inventory_history = [*(player.inventory_history or []), player.inventory]
            player.backlog_history = [*(player.backlog_history or []), player.backlog]
            player.order_history = [*(player.order_history or []), order]
            player.incoming_shipment_history = [
                *(player.incoming_shipment_history or []),
                player.incoming_shipment,
            ]
            roles[player.role.value] = {
                "inventory": player.inventory,
                "backlog": player.backlog,
                "order": order,
                "shipment": player.outgoing_shipment,
                "incoming_shipment": player.incoming_shipment,
                "total_cost": player.total_cost,
            }

        snapshot = GameWeek(
            game_id=game.id,
            week_number=game.current_week,
            customer_demand=game.current_demand,
            total_team_cost=game.total_team_cost,
            roles=roles,
        )
        self.db.add(snapshot)
        return snapshot

    @staticmethod
    def record_costs(snapshot: GameWeek, game: Game, players: Iterable[Player]) -> None:
        """Copy the costs accrued for the week into its snapshot."""
        roles = {role: dict(state) for role, state in (snapshot.roles or {}).items()}
        for player in players:
            roles.setdefault(player.role.value, {}).update(
                weekly_cost=(player.weekly_holding_cost or 0.0) + (player.weekly_backorder_cost or 0.0),
                total_cost=player.total_cost,
            )
        # JSON columns only notice reassignment
        snapshot.roles = roles
        snapshot.total_team_cost = game.total_team_cost

    # ------------------------------------------------------------------
    # Advancement
    # ------------------------------------------------------------------
    def advance(self, game: Game, players: Iterable[Player]) -> AdvanceResult:
        """Open the next week, or complete the game after the last one.

        Costs are charged here, on the position after shipping and, when a
        next week opens, after its deliveries have landed. Runs inside the
        settlement transaction; every role is updated or none is.
        """
        by_role = {player.role: player for player in players}
        ordered = [by_role[role] for role in ROLE_SEQUENCE if role in by_role]

        snapshot = self.close_week(game, ordered)

        if game.current_week >= game.total_weeks:
            team_cost = accrue_team_costs(game, ordered)
            self.record_costs(snapshot, game, ordered)
            game.status = GameStatus.COMPLETED
            game.completed_at = datetime.utcnow()
            self.db.flush()
            logger.info("Game %s completed after week %s", game.id, game.current_week)
            return AdvanceResult(
                completed=True, week=game.current_week, demand=game.current_demand, team_cost=team_cost
            )

        next_week = game.current_week + 1
        next_demand = generate_demand(
            game.demand_pattern, next_week, rng=self.rng, fixed_demand=game.fixed_demand
        )

        # Orders of the week just settled, captured before they are cleared
        settled_orders = {role: player.outgoing_order for role, player in by_role.items()}

        self.db.flush()
        for player in ordered:
            received = self.apply_deliveries(game.id, player.role.value, next_week)

            if player.role == PlayerRole.RETAILER:
                incoming_order = next_demand
                player.total_orders = (player.total_orders or 0) + next_demand
            else:
                placed = settled_orders.get(downstream_role(player.role))
                incoming_order = placed if placed is not None else game.fixed_demand

            player.incoming_shipment = received
            player.inventory = (player.inventory or 0) + received
            player.incoming_order = incoming_order
            player.outgoing_order = None
            player.total_incoming_shipments = (player.total_incoming_shipments or 0) + received
            # Opening stock plus everything ever received
            player.total_inventory = (player.total_inventory or 0) + received

        # Goods reaching the customer leave the supply line
        self.apply_deliveries(game.id, CUSTOMER, next_week)

        team_cost = accrue_team_costs(game, ordered)
        self.record_costs(snapshot, game, ordered)

        self.db.flush()
        for player in ordered:
            self.refresh_pipeline_view(game.id, player, next_week)

        game.current_week = next_week
        game.current_demand = next_demand
        self.db.flush()

        logger.info("Game %s advanced to week %s (demand=%s)", game.id, next_week, next_demand)
        return AdvanceResult(completed=False, week=next_week, demand=next_demand, team_cost=team_cost)
