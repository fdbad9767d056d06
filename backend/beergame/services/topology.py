"""Fixed four-stage topology of the Beer Game supply line.

Orders travel upstream (retailer -> ... -> factory), goods travel
downstream (factory -> ... -> customer). Every role shares the same
settlement logic; only its neighbours and lead time differ.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from beergame.models.game import Game
from beergame.models.player import PlayerRole

CUSTOMER = "customer"
FACTORY = "factory"

#: Customer demand enters at index 0; production enters at the last index.
ROLE_SEQUENCE: List[PlayerRole] = [
    PlayerRole.RETAILER,
    PlayerRole.WHOLESALER,
    PlayerRole.DISTRIBUTOR,
    PlayerRole.MANUFACTURER,
]

_UPSTREAM: Dict[PlayerRole, str] = {
    PlayerRole.RETAILER: PlayerRole.WHOLESALER.value,
    PlayerRole.WHOLESALER: PlayerRole.DISTRIBUTOR.value,
    PlayerRole.DISTRIBUTOR: PlayerRole.MANUFACTURER.value,
    PlayerRole.MANUFACTURER: FACTORY,
}

_DOWNSTREAM: Dict[PlayerRole, str] = {
    PlayerRole.RETAILER: CUSTOMER,
    PlayerRole.WHOLESALER: PlayerRole.RETAILER.value,
    PlayerRole.DISTRIBUTOR: PlayerRole.WHOLESALER.value,
    PlayerRole.MANUFACTURER: PlayerRole.DISTRIBUTOR.value,
}


def order_recipient(role: PlayerRole) -> str:
    """Who receives the orders ``role`` places (a role value or ``factory``)."""
    return _UPSTREAM[role]


def shipment_recipient(role: PlayerRole) -> str:
    """Who receives the goods ``role`` ships (a role value or ``customer``)."""
    return _DOWNSTREAM[role]


def upstream_role(role: PlayerRole) -> Optional[PlayerRole]:
    recipient = _UPSTREAM[role]
    return None if recipient == FACTORY else PlayerRole(recipient)


def downstream_role(role: PlayerRole) -> Optional[PlayerRole]:
    recipient = _DOWNSTREAM[role]
    return None if recipient == CUSTOMER else PlayerRole(recipient)


def lead_time(game: Game, role: PlayerRole) -> int:
    return game.lead_time_for(role)


def parse_role(value) -> PlayerRole:
    """Accept a PlayerRole or its (case-insensitive) name/value."""
    if isinstance(value, PlayerRole):
        return value
    key = str(value).strip().lower()
    return PlayerRole(key)
