"""Shipment resolution: ship what inventory allows, carry the rest as backlog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from beergame.models.game import Game
from beergame.models.player import Player, PlayerRole
from beergame.models.supply_chain import EntryKind, PipelineEntry
from beergame.services.topology import FACTORY, lead_time, shipment_recipient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShipmentOutcome:
    shipped: int
    backlog: int
    inventory: int


def resolve_position(inventory: int, backlog: int, incoming_order: int) -> ShipmentOutcome:
    """Backlog is served together with this week's order; never ships more than on hand."""
    available = max(0, int(inventory))
    demand = max(0, int(incoming_order)) + max(0, int(backlog))
    shipped = min(available, demand)
    return ShipmentOutcome(shipped=shipped, backlog=demand - shipped, inventory=available - shipped)


def resolve_shipments(db: Session, game: Game, players: Iterable[Player]) -> Dict[PlayerRole, ShipmentOutcome]:
    """Ship for every role and append the in-transit ledger entries.

    Roles are independent at this step; each reads only its own position and
    the game's lead times.
    """
    week = game.current_week
    outcomes: Dict[PlayerRole, ShipmentOutcome] = {}
    entries: List[PipelineEntry] = []

    for player in players:
        outcome = resolve_position(player.inventory, player.backlog, player.incoming_order)

        player.inventory = outcome.inventory
        player.backlog = outcome.backlog
        player.outgoing_shipment = outcome.shipped
        player.total_outgoing_shipments = (player.total_outgoing_shipments or 0) + outcome.shipped
        player.total_backorders = (player.total_backorders or 0) + outcome.backlog

        role_lead_time = lead_time(game, player.role)
        entries.append(
            PipelineEntry(
                game_id=game.id,
                kind=EntryKind.SHIPMENT,
                from_role=player.role.value,
                to_role=shipment_recipient(player.role),
                quantity=outcome.shipped,
                week_placed=week,
                week_delivered=week + role_lead_time,
                is_delivered=False,
            )
        )

        if player.role == PlayerRole.MANUFACTURER:
            # The factory always produces exactly what the manufacturer ordered
            entries.append(
                PipelineEntry(
                    game_id=game.id,
                    kind=EntryKind.PRODUCTION,
                    from_role=FACTORY,
                    to_role=player.role.value,
                    quantity=max(0, int(player.outgoing_order or 0)),
                    week_placed=week,
                    week_delivered=week + role_lead_time,
                    is_delivered=False,
                )
            )

        outcomes[player.role] = outcome
        logger.debug(
            "Week %s %s: shipped=%s backlog=%s inventory=%s",
            week, player.role.value, outcome.shipped, outcome.backlog, outcome.inventory,
        )

    db.add_all(entries)
    db.flush()
    return outcomes
