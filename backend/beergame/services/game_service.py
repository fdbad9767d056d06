"""Game setup, queries and the public entry points used by the API layer."""

from __future__ import annotations

import logging
import random
import string
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import BackgroundTasks
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from beergame.core.demand_patterns import (
    DemandPatternType,
    generate_demand,
    normalize_demand_pattern,
)
from beergame.core.exceptions import (
    BeerGameError,
    GameNotActive,
    GameNotFound,
    GameNotReady,
    RoleNotFound,
    RoleTaken,
    SettlementFailed,
    StorageError,
)
from beergame.db.session import SessionLocal
from beergame.models.game import Game, GameStatus
from beergame.models.player import Player, PlayerRole
from beergame.models.supply_chain import EntryKind, GameWeek, PipelineEntry
from beergame.schemas.game import GameCreate, PlayerCreate
from beergame.services.events import GameEvent, GameEventBus, GameEventType, event_bus
from beergame.services.order_intake import OrderIntake, OrderReceipt
from beergame.services.policies import make_policy, policy_for
from beergame.services.settlement import PolicyResolver, SettlementTrigger
from beergame.services.topology import (
    FACTORY,
    ROLE_SEQUENCE,
    lead_time,
    parse_role,
    shipment_recipient,
)
from beergame.services.week_advancer import WeekAdvancer

logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud
GAME_CODE_ALPHABET = "".join(c for c in string.ascii_uppercase + string.digits if c not in "01IO")
GAME_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 20


def generate_game_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choice(GAME_CODE_ALPHABET) for _ in range(GAME_CODE_LENGTH))


def run_settlement_check(
    game_id: int,
    session_factory: Callable[[], Session] = SessionLocal,
    notifier: Optional[GameEventBus] = None,
    policy_resolver: PolicyResolver = policy_for,
) -> bool:
    """Settlement check on a session of its own, for use as a background task.

    The order that triggered it has already been accepted, so a failure here
    is logged and left for the next check to retry.
    """
    db = session_factory()
    try:
        trigger = SettlementTrigger(db, policy_resolver=policy_resolver, notifier=notifier)
        return trigger.check_and_settle(game_id)
    except BeerGameError as exc:
        logger.warning("Settlement check for game %s failed: %s", game_id, exc)
        return False
    finally:
        db.close()


class GameService:
    def __init__(
        self,
        db: Session,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        notifier: Optional[GameEventBus] = None,
        policy_resolver: PolicyResolver = policy_for,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.session_factory = session_factory
        self.notifier = notifier if notifier is not None else event_bus
        self.policy_resolver = policy_resolver
        self.rng = rng

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------
    def create_game(self, game_data: Union[GameCreate, Dict[str, Any], None] = None) -> Game:
        """Create a game in the ``waiting`` state, with any AI roles already seated."""
        if not isinstance(game_data, GameCreate):
            game_data = GameCreate.model_validate(game_data or {})

        if game_data.demand_pattern is not None:
            pattern_config = game_data.demand_pattern.model_dump(mode="json")
        else:
            pattern_config = {
                "type": DemandPatternType.FIXED.value,
                "params": {"demand": game_data.fixed_demand},
            }
        demand_pattern = normalize_demand_pattern(pattern_config, game_data.fixed_demand)

        try:
            game = Game(
                game_code=self._unique_game_code(),
                status=GameStatus.WAITING,
                current_week=1,
                total_weeks=game_data.total_weeks,
                initial_inventory=game_data.initial_inventory,
                initial_backlog=game_data.initial_backlog,
                retailer_lead_time=game_data.lead_times.retailer,
                wholesaler_lead_time=game_data.lead_times.wholesaler,
                distributor_lead_time=game_data.lead_times.distributor,
                manufacturer_lead_time=game_data.lead_times.manufacturer,
                demand_pattern=demand_pattern,
                fixed_demand=game_data.fixed_demand,
                current_demand=generate_demand(
                    demand_pattern, 1, rng=self.rng, fixed_demand=game_data.fixed_demand
                ),
                holding_cost=game_data.holding_cost,
                backorder_cost=game_data.backorder_cost,
                total_team_cost=0.0,
                is_advancing_week=False,
            )
            self.db.add(game)
            self.db.flush()

            for ai_role in game_data.ai_roles:
                self._seat_player(
                    game,
                    ai_role.role,
                    ai_role.name or f"AI {ai_role.role.value.title()}",
                    is_ai=True,
                    ai_strategy=ai_role.strategy,
                )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not create game: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Created game %s (code=%s, weeks=%s, pattern=%s, ai=%s)",
            game.id, game.game_code, game.total_weeks, demand_pattern["type"],
            [r.role.value for r in game_data.ai_roles],
        )
        return game

    def add_player(
        self,
        game_id: int,
        role: Any,
        name: Optional[str] = None,
        is_ai: bool = False,
        ai_strategy: Optional[str] = None,
    ) -> Player:
        """Seat a player in a waiting game.

        Raises:
            GameNotFound, GameNotActive: the game is missing or already started.
            RoleNotFound: ``role`` is not one of the four roles.
            RoleTaken: somebody already plays ``role``.
            ValueError: ``ai_strategy`` does not name a known policy.
        """
        if isinstance(role, PlayerCreate):
            role, name, is_ai, ai_strategy = role.role, role.name, role.is_ai, role.ai_strategy

        game = self._get_game(game_id)
        player_role = self._parse_role(role, game.id)
        if game.status != GameStatus.WAITING:
            raise GameNotActive(game.id, game.status.value)

        try:
            player = self._seat_player(
                game, player_role, name or player_role.value.title(), is_ai=is_ai, ai_strategy=ai_strategy
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise RoleTaken(player_role.value, game.id) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not add {player_role.value} to game {game.id}: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info("Game %s: %s joined as %s%s", game.id, player.name, player_role.value, " (AI)" if is_ai else "")
        return player

    def _seat_player(
        self,
        game: Game,
        role: PlayerRole,
        name: str,
        *,
        is_ai: bool = False,
        ai_strategy: Optional[str] = None,
    ) -> Player:
        if game.player_for(role) is not None:
            raise RoleTaken(role.value, game.id)
        if is_ai:
            # Fail at setup rather than in the middle of a settlement
            make_policy(ai_strategy)

        stage_lead_time = lead_time(game, role)
        seeded_weeks = list(range(2 - stage_lead_time, 1))
        in_transit = len(seeded_weeks) * game.fixed_demand

        player = Player(
            game_id=game.id,
            role=role,
            name=name,
            is_ai=is_ai,
            ai_strategy=ai_strategy if is_ai else None,
            inventory=game.initial_inventory,
            backlog=game.initial_backlog,
            pipeline_inventory=in_transit,
            incoming_order=game.fixed_demand,
            outgoing_order=None,
            incoming_shipment=0,
            outgoing_shipment=0,
            next_week_incoming_shipment=0,
            total_inventory=game.initial_inventory,
            inventory_history=[],
            backlog_history=[],
            order_history=[],
            incoming_shipment_history=[],
        )
        game.players.append(player)

        # Shipments already on the road before week 1
        entries = [
            PipelineEntry(
                game_id=game.id,
                kind=EntryKind.SHIPMENT,
                from_role=role.value,
                to_role=shipment_recipient(role),
                quantity=game.fixed_demand,
                week_placed=week,
                week_delivered=week + stage_lead_time,
                is_delivered=False,
            )
            for week in seeded_weeks
        ]
        if role == PlayerRole.MANUFACTURER:
            entries.extend(
                PipelineEntry(
                    game_id=game.id,
                    kind=EntryKind.PRODUCTION,
                    from_role=FACTORY,
                    to_role=role.value,
                    quantity=game.fixed_demand,
                    week_placed=week,
                    week_delivered=week + stage_lead_time,
                    is_delivered=False,
                )
                for week in seeded_weeks
            )
        self.db.add_all(entries)
        self.db.flush()
        return player

    def start_game(self, game_id: int) -> Game:
        """Open week 1. Starting a game that already left ``waiting`` is a no-op."""
        game = self._get_game(game_id)
        if game.status != GameStatus.WAITING:
            logger.info("Game %s already %s; start ignored", game.id, game.status.value)
            return game

        missing = [role.value for role in ROLE_SEQUENCE if game.player_for(role) is None]
        if missing:
            raise GameNotReady(f"Game {game.id} is missing roles: {', '.join(missing)}")

        try:
            started = self.db.execute(
                update(Game)
                .where(Game.id == game.id, Game.status == GameStatus.WAITING)
                .values(status=GameStatus.ACTIVE, started_at=datetime.utcnow(), current_week=1)
                .execution_options(synchronize_session=False)
            ).rowcount == 1
            if not started:
                self.db.rollback()
                return self._get_game(game_id)

            self.db.refresh(game)
            retailer = game.player_for(PlayerRole.RETAILER)
            retailer.incoming_order = game.current_demand
            retailer.total_orders = (retailer.total_orders or 0) + game.current_demand

            advancer = WeekAdvancer(self.db)
            for player in game.players:
                advancer.refresh_pipeline_view(game.id, player, game.current_week)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not start game {game_id}: {exc}") from exc

        logger.info("Game %s started (week 1 demand=%s)", game.id, game.current_demand)
        self.notifier.publish(
            GameEvent(GameEventType.GAME_STARTED, game.id, game.current_week, {"demand": game.current_demand})
        )
        return game

    # ------------------------------------------------------------------
    # Orders and settlement
    # ------------------------------------------------------------------
    def submit_order(
        self,
        game_id: int,
        role: Any,
        quantity: Any,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> OrderReceipt:
        """Record an order, then check whether the week can be settled.

        With ``background_tasks`` the check runs after the response on a fresh
        session; otherwise it runs inline before returning.
        """
        receipt = OrderIntake(self.db).submit(game_id, role, quantity)
        if receipt.accepted:
            self.notifier.publish(
                GameEvent(
                    GameEventType.ORDER_SUBMITTED,
                    receipt.game_id,
                    receipt.week,
                    {"role": receipt.role.value, "quantity": receipt.quantity},
                )
            )

        if background_tasks is not None:
            background_tasks.add_task(
                run_settlement_check, game_id, self.session_factory, self.notifier, self.policy_resolver
            )
        else:
            try:
                self.check_and_settle(game_id)
            except SettlementFailed as exc:
                logger.warning("Order for game %s recorded; settlement check failed: %s", game_id, exc)
        return receipt

    def check_and_settle(self, game_id: int) -> bool:
        trigger = SettlementTrigger(
            self.db, policy_resolver=self.policy_resolver, notifier=self.notifier, rng=self.rng
        )
        return trigger.check_and_settle(game_id)

    def reset_role_order(self, game_id: int, role: Any) -> bool:
        """Clear a role's order for the current week so it can order again.

        Only ``outgoing_order`` is cleared; the supplier's incoming order and
        the role's statistics keep the earlier submission. Returns False when
        there was nothing to clear.
        """
        game = self._get_game(game_id)
        player_role = self._parse_role(role, game.id)
        if game.status != GameStatus.ACTIVE:
            raise GameNotActive(game.id, game.status.value)

        try:
            result = self.db.execute(
                update(Player)
                .where(
                    Player.game_id == game.id,
                    Player.role == player_role,
                    Player.outgoing_order.is_not(None),
                )
                .values(outgoing_order=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0 and self._find_player(game.id, player_role) is None:
                self.db.rollback()
                raise RoleNotFound(player_role.value, game.id)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not reset order for game {game_id}: {exc}") from exc

        cleared = result.rowcount == 1
        if cleared:
            logger.warning("Game %s week %s: order for %s reset", game.id, game.current_week, player_role.value)
            self.notifier.publish(
                GameEvent(GameEventType.ORDER_RESET, game.id, game.current_week, {"role": player_role.value})
            )
        return cleared

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_game_state(self, game_id: int) -> Game:
        return self._get_game(game_id)

    def get_game_by_code(self, code: str) -> Game:
        normalized = (code or "").strip().upper()
        game = self._read(select(Game).where(Game.game_code == normalized)).scalar_one_or_none()
        if game is None:
            raise GameNotFound(normalized)
        return game

    def get_role_state(self, game_id: int, role: Any) -> Player:
        game = self._get_game(game_id)
        player_role = self._parse_role(role, game.id)
        player = self._find_player(game.id, player_role)
        if player is None:
            raise RoleNotFound(player_role.value, game.id)
        return player

    def get_game_players(self, game_id: int) -> Dict[str, Optional[str]]:
        """Name seated in each role, ``None`` for open roles."""
        game = self._get_game(game_id)
        seated = {player.role: player.name for player in game.players}
        return {role.value: seated.get(role) for role in ROLE_SEQUENCE}

    def check_role_available(self, game_id: int, role: Any) -> bool:
        game = self._get_game(game_id)
        player_role = self._parse_role(role, game.id)
        return self._find_player(game.id, player_role) is None

    def get_week_history(self, game_id: int) -> List[GameWeek]:
        game = self._get_game(game_id)
        return list(
            self._read(
                select(GameWeek).where(GameWeek.game_id == game.id).order_by(GameWeek.week_number)
            ).scalars()
        )

    def diagnose_game(self, game_id: int) -> Dict[str, Any]:
        """Report why a game is not advancing; clears a stuck settlement flag.

        The flag is only considered stuck while a human still owes an order,
        since a settlement cannot legitimately be running in that state.
        """
        game = self._get_game(game_id)
        waiting_for = [
            player.role
            for player in sorted(game.players, key=lambda p: ROLE_SEQUENCE.index(p.role))
            if not player.is_ai and not player.has_ordered
        ]

        flag_cleared = False
        if game.status == GameStatus.ACTIVE and waiting_for and game.is_advancing_week:
            flag_cleared = SettlementTrigger(self.db, notifier=self.notifier).release_stuck_settlement(game.id)
            game = self._get_game(game_id)

        pending = self._read(
            select(PipelineEntry)
            .where(PipelineEntry.game_id == game.id, PipelineEntry.is_delivered.is_(False))
            .order_by(PipelineEntry.week_delivered, PipelineEntry.id)
        ).scalars()

        return {
            "game_id": game.id,
            "status": game.status,
            "current_week": game.current_week,
            "is_advancing_week": game.is_advancing_week,
            "flag_cleared": flag_cleared,
            "waiting_for": waiting_for,
            "orders": {player.role.value: player.outgoing_order for player in game.players},
            "pending_entries": [
                {
                    "id": entry.id,
                    "kind": entry.kind.value,
                    "from_role": entry.from_role,
                    "to_role": entry.to_role,
                    "quantity": entry.quantity,
                    "week_placed": entry.week_placed,
                    "week_delivered": entry.week_delivered,
                }
                for entry in pending
            ],
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _read(self, stmt):
        try:
            return self.db.execute(stmt.execution_options(populate_existing=True))
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(str(exc)) from exc

    def _get_game(self, game_id: int) -> Game:
        game = self._read(select(Game).where(Game.id == game_id)).scalar_one_or_none()
        if game is None:
            raise GameNotFound(game_id)
        return game

    def _find_player(self, game_id: int, role: PlayerRole) -> Optional[Player]:
        return self._read(
            select(Player).where(Player.game_id == game_id, Player.role == role)
        ).scalar_one_or_none()

    @staticmethod
    def _parse_role(role: Any, game_id: int) -> PlayerRole:
        try:
            return parse_role(role)
        except ValueError:
            raise RoleNotFound(role, game_id) from None

    def _unique_game_code(self) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_game_code(self.rng)
            taken = self.db.execute(select(Game.id).where(Game.game_code == code)).first()
            if taken is None:
                return code
        raise StorageError("Could not generate a unique game code")
