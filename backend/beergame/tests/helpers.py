from beergame.models.player import PlayerRole
from beergame.services.topology import ROLE_SEQUENCE

UPSTREAM_ROLES = tuple(r for r in ROLE_SEQUENCE if r != PlayerRole.RETAILER)


def seat_all(service, game, ai_roles=()):
    """Fill every open role; roles listed in ``ai_roles`` are AI players."""
    for role in ROLE_SEQUENCE:
        if game.player_for(role) is None:
            service.add_player(game.id, role, f"{role.value} player", is_ai=role in ai_roles)
    return service.get_game_state(game.id)


def order_all(service, game_id, quantity=4, roles=ROLE_SEQUENCE):
    for role in roles:
        service.submit_order(game_id, role, quantity)
