"""Settlement trigger: settle a week once every role has an order on record.

Any client may call :meth:`SettlementTrigger.check_and_settle` at any time and
as often as it likes. A persisted ``is_advancing_week`` flag, flipped by a
conditional UPDATE, lets exactly one caller per game into the settlement
section; everyone else returns immediately. The week itself is settled in a
single database transaction: AI auto-fill, shipments, advancement and costs
either all land or none do.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from beergame.core.config import settings
from beergame.core.exceptions import GameNotFound, SettlementFailed, StorageError
from beergame.models.game import Game, GameStatus
from beergame.models.player import Player
from beergame.services.events import GameEvent, GameEventBus, GameEventType, event_bus
from beergame.services.order_intake import OrderIntake
from beergame.services.policies import OrderPolicy, build_observation, policy_for
from beergame.services.shipments import resolve_shipments
from beergame.services.topology import ROLE_SEQUENCE
from beergame.services.week_advancer import WeekAdvancer

logger = logging.getLogger(__name__)

PolicyResolver = Callable[[Player], OrderPolicy]


@dataclass
class SettlementOutcome:
    game_id: int
    week: int
    demand: int
    team_cost: float
    completed: bool
    next_week: int
    orders: Dict[str, int] = field(default_factory=dict)
    auto_filled: List[str] = field(default_factory=list)


class SettlementTrigger:
    def __init__(
        self,
        db: Session,
        *,
        policy_resolver: PolicyResolver = policy_for,
        notifier: Optional[GameEventBus] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.policy_resolver = policy_resolver
        self.notifier = notifier if notifier is not None else event_bus
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.SETTLEMENT_MAX_ATTEMPTS)
        self.retry_delay = retry_delay if retry_delay is not None else settings.SETTLEMENT_RETRY_DELAY
        self.rng = rng

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def check_and_settle(self, game_id: int) -> bool:
        """Settle the current week of ``game_id`` if every role has ordered.

        Returns True if at least one week was settled by this call. Returns
        False when another caller holds the settlement flag, the game is not
        active, or a human role has not ordered yet.

        Raises:
            GameNotFound: no game with this id exists.
            SettlementFailed: the week could not be settled; nothing was
                applied and the call may be retried.
        """
        settled_any = False
        while True:
            settled = self._settle_once(game_id)
            if settled is None:
                break
            settled_any = settled_any or settled
            # Callers turned away while we held the flag leave their orders
            # for us to pick up.
            if not self._humans_ready(game_id):
                break
            logger.info("Game %s: every human has ordered, checking again", game_id)
        return settled_any

    def release_stuck_settlement(self, game_id: int) -> bool:
        """Clear the settlement flag unconditionally. Returns True if it was set."""
        try:
            result = self.db.execute(
                update(Game)
                .where(Game.id == game_id, Game.is_advancing_week.is_(True))
                .values(is_advancing_week=False)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not clear settlement flag for game {game_id}: {exc}") from exc

        cleared = result.rowcount == 1
        if cleared:
            logger.warning("Cleared stuck settlement flag on game %s", game_id)
        return cleared

    # ------------------------------------------------------------------
    # Settlement flag
    # ------------------------------------------------------------------
    def _acquire(self, game_id: int) -> bool:
        try:
            result = self.db.execute(
                update(Game)
                .where(
                    Game.id == game_id,
                    Game.status == GameStatus.ACTIVE,
                    Game.is_advancing_week.is_(False),
                )
                .values(is_advancing_week=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self.db.commit()
                return True

            exists = self.db.execute(select(Game.id).where(Game.id == game_id)).scalar_one_or_none()
            self.db.rollback()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not acquire settlement flag for game {game_id}: {exc}") from exc

        if exists is None:
            raise GameNotFound(game_id)
        logger.debug("Game %s: settlement already running or game not active", game_id)
        return False

    def _release(self, game_id: int) -> None:
        try:
            self.db.rollback()
            self.db.execute(
                update(Game)
                .where(Game.id == game_id)
                .values(is_advancing_week=False)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Game %s: settlement flag left set: %s", game_id, exc)
            raise StorageError(f"Could not release settlement flag for game {game_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------
    def _settle_once(self, game_id: int) -> Optional[bool]:
        """None if another caller holds the flag, else whether a week was settled."""
        if not self._acquire(game_id):
            return None
        try:
            outcome = self._settle_with_retries(game_id)
        finally:
            self._release(game_id)

        if outcome is None:
            return False
        self._publish(outcome)
        return True

    def _settle_with_retries(self, game_id: int) -> Optional[SettlementOutcome]:
        for attempt in range(1, self.max_attempts + 1):
            try:
                outcome = self._settle_week(game_id)
                self.db.commit()
                return outcome
            except OperationalError as exc:
                self.db.rollback()
                if attempt >= self.max_attempts:
                    logger.error("Game %s: settlement failed after %s attempts: %s", game_id, attempt, exc)
                    raise SettlementFailed(game_id, exc) from exc
                logger.warning(
                    "Game %s: transient storage error on attempt %s/%s, retrying: %s",
                    game_id, attempt, self.max_attempts, exc,
                )
                time.sleep(self.retry_delay * attempt)
            except Exception as exc:
                self.db.rollback()
                logger.exception("Game %s: settlement failed", game_id)
                raise SettlementFailed(game_id, exc) from exc
        return None

    def _load_players(self, game_id: int) -> List[Player]:
        stmt = (
            select(Player)
            .where(Player.game_id == game_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(self.db.execute(stmt).scalars())

    def _settle_week(self, game_id: int) -> Optional[SettlementOutcome]:
        intake = OrderIntake(self.db)
        game = intake.load_game(game_id, for_update=True)
        if game is None:
            raise GameNotFound(game_id)
        if game.status != GameStatus.ACTIVE:
            return None

        by_role = {player.role: player for player in self._load_players(game.id)}
        missing = [role.value for role in ROLE_SEQUENCE if role not in by_role]
        if missing:
            logger.debug("Game %s: roles not joined yet: %s", game.id, ", ".join(missing))
            return None
        players = [by_role[role] for role in ROLE_SEQUENCE]

        waiting = [p.role.value for p in players if not p.is_ai and not p.has_ordered]
        if waiting:
            logger.debug("Game %s week %s: waiting for %s", game.id, game.current_week, ", ".join(waiting))
            return None

        # Retailer first, so each AI sees the order its downstream partner just placed
        auto_filled = []
        for player in players:
            if player.is_ai and not player.has_ordered:
                quantity = self.policy_resolver(player)(build_observation(player))
                if intake.record_order(game, player, quantity):
                    auto_filled.append(player.role.value)
                    logger.debug(
                        "Game %s week %s: AI %s ordered %s",
                        game.id, game.current_week, player.role.value, quantity,
                    )

        week = game.current_week
        demand = game.current_demand
        orders = {p.role.value: int(p.outgoing_order or 0) for p in players}

        resolve_shipments(self.db, game, players)
        advanced = WeekAdvancer(self.db, rng=self.rng).advance(game, players)
        team_cost = advanced.team_cost

        logger.info(
            "Game %s settled week %s: demand=%s orders=%s team_cost=%.2f%s",
            game.id, week, demand, orders, team_cost,
            " (completed)" if advanced.completed else "",
        )
        return SettlementOutcome(
            game_id=game.id,
            week=week,
            demand=demand,
            team_cost=team_cost,
            completed=advanced.completed,
            next_week=advanced.week,
            orders=orders,
            auto_filled=auto_filled,
        )

    def _humans_ready(self, game_id: int) -> bool:
        try:
            status = self.db.execute(select(Game.status).where(Game.id == game_id)).scalar_one_or_none()
            pending = self.db.execute(
                select(Player.outgoing_order).where(Player.game_id == game_id, Player.is_ai.is_(False))
            ).scalars().all()
            self.db.rollback()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(f"Could not read players for game {game_id}: {exc}") from exc

        if status != GameStatus.ACTIVE or not pending:
            return False
        return all(order is not None for order in pending)

    def _publish(self, outcome: SettlementOutcome) -> None:
        payload = {
            "demand": outcome.demand,
            "orders": outcome.orders,
            "auto_filled": outcome.auto_filled,
            "team_cost": outcome.team_cost,
            "next_week": outcome.next_week,
        }
        self.notifier.publish(
            GameEvent(GameEventType.WEEK_SETTLED, outcome.game_id, outcome.week, payload)
        )
        if outcome.completed:
            self.notifier.publish(
                GameEvent(
                    GameEventType.GAME_COMPLETED,
                    outcome.game_id,
                    outcome.week,
                    {"team_cost": outcome.team_cost},
                )
            )
