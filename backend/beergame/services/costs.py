"""Weekly holding and backorder costs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from beergame.models.game import Game
from beergame.models.player import Player


@dataclass(frozen=True)
class WeeklyCost:
    holding: float
    backorder: float

    @property
    def total(self) -> float:
        return self.holding + self.backorder


def weekly_cost(inventory: int, backlog: int, holding_rate: float, backorder_rate: float) -> WeeklyCost:
    return WeeklyCost(
        holding=max(0, inventory) * holding_rate,
        backorder=max(0, backlog) * backorder_rate,
    )


def accrue_costs(player: Player, game: Game) -> WeeklyCost:
    """Charge ``player`` for its settled end-of-week position."""
    cost = weekly_cost(player.inventory, player.backlog, game.holding_cost, game.backorder_cost)

    player.weekly_holding_cost = cost.holding
    player.weekly_backorder_cost = cost.backorder
    player.total_holding_cost = (player.total_holding_cost or 0.0) + cost.holding
    player.total_backorder_cost = (player.total_backorder_cost or 0.0) + cost.backorder
    player.total_cost = (player.total_cost or 0.0) + cost.total
    return cost


def team_cost(players: Iterable[Player]) -> float:
    return sum(player.total_cost or 0.0 for player in players)


def accrue_team_costs(game: Game, players: Iterable[Player]) -> float:
    """Accrue every role, then store the team total on the game."""
    players = list(players)
    for player in players:
        accrue_costs(player, game)
    game.total_team_cost = team_cost(players)
    return game.total_team_cost
