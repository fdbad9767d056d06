from sqlalchemy import select

from beergame.models.game import Game, GameStatus
from beergame.models.player import PlayerRole
from beergame.models.supply_chain import EntryKind, GameWeek, PipelineEntry
from beergame.services.topology import CUSTOMER, ROLE_SEQUENCE
from beergame.services.week_advancer import WeekAdvancer
from beergame.tests.helpers import order_all


def test_deliveries_are_applied_exactly_once(make_game, db_session):
    game = make_game()
    advancer = WeekAdvancer(db_session)

    first = advancer.apply_deliveries(game.id, PlayerRole.RETAILER.value, 2)
    second = advancer.apply_deliveries(game.id, PlayerRole.RETAILER.value, 2)

    assert first == 4
    assert second == 0
    db_session.rollback()


def test_entries_due_later_are_left_alone(make_game, db_session):
    game = make_game(retailer_lead_time=3, wholesaler_lead_time=3)
    advancer = WeekAdvancer(db_session)

    assert advancer.apply_deliveries(game.id, PlayerRole.RETAILER.value, 2) == 4
    assert advancer.apply_deliveries(game.id, PlayerRole.RETAILER.value, 4) == 0
    assert advancer.pending_quantity(game.id, to_role=PlayerRole.RETAILER.value) == 4
    db_session.rollback()


def test_seeded_pipeline_matches_lead_times(make_game, db_session, service):
    game = make_game(wholesaler_lead_time=3, manufacturer_lead_time=4)

    seeded = db_session.execute(
        select(PipelineEntry).where(PipelineEntry.game_id == game.id).order_by(PipelineEntry.id)
    ).scalars().all()
    by_source = {}
    for entry in seeded:
        by_source.setdefault((entry.kind, entry.from_role), []).append(entry)

    wholesaler = by_source[(EntryKind.SHIPMENT, "wholesaler")]
    assert [(e.week_placed, e.week_delivered) for e in wholesaler] == [(-1, 2), (0, 3)]
    assert all(e.to_role == "retailer" and e.quantity == 4 for e in wholesaler)

    production = by_source[(EntryKind.PRODUCTION, "factory")]
    assert [e.week_delivered for e in production] == [2, 3, 4]

    assert service.get_role_state(game.id, "wholesaler").pipeline_inventory == 8
    assert service.get_role_state(game.id, "retailer").next_week_incoming_shipment == 4
    assert service.get_role_state(game.id, "manufacturer").next_week_incoming_shipment == 4


def test_customer_shipments_leave_the_pipeline(make_game, service, db_session):
    game = make_game()
    order_all(service, game.id, 4)
    order_all(service, game.id, 4)

    advancer = WeekAdvancer(db_session)
    assert advancer.pending_quantity(game.id, to_role=CUSTOMER) == 4
    assert service.get_role_state(game.id, "retailer").pipeline_inventory == 4


def test_late_orders_fall_back_to_fixed_demand(make_game, db_session):
    game = make_game(fixed_demand=5)
    game = db_session.get(Game, game.id)
    players = [game.player_for(role) for role in ROLE_SEQUENCE]
    for player in players:
        player.outgoing_order = 9 if player.role == PlayerRole.RETAILER else None

    WeekAdvancer(db_session).advance(game, players)

    assert game.current_week == 2
    assert game.player_for(PlayerRole.WHOLESALER).incoming_order == 9
    assert game.player_for(PlayerRole.DISTRIBUTOR).incoming_order == 5
    assert game.player_for(PlayerRole.RETAILER).incoming_order == 5
    assert all(player.outgoing_order is None for player in players)
    db_session.rollback()


def test_last_week_completes_the_game(make_game, db_session):
    game = make_game(total_weeks=1)
    game = db_session.get(Game, game.id)
    players = [game.player_for(role) for role in ROLE_SEQUENCE]

    result = WeekAdvancer(db_session).advance(game, players)

    assert result.completed is True
    assert game.status == GameStatus.COMPLETED
    assert game.current_week == 1
    snapshots = db_session.execute(select(GameWeek).where(GameWeek.game_id == game.id)).scalars().all()
    assert [s.week_number for s in snapshots] == [1]
    db_session.rollback()


def test_total_inventory_counts_opening_stock_and_receipts(make_game, service):
    game = make_game(total_weeks=4, initial_inventory=10)

    order_all(service, game.id, 4)
    order_all(service, game.id, 4)

    retailer = service.get_role_state(game.id, PlayerRole.RETAILER)
    # 10 on hand at the start, then 4 received in each of weeks 2 and 3
    assert retailer.total_incoming_shipments == 8
    assert retailer.total_inventory == 18
    assert retailer.inventory == 10
