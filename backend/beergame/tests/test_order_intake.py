from decimal import Decimal

import pytest
from sqlalchemy import func, select

from beergame.core.exceptions import GameNotActive, GameNotFound, InvalidQuantity, RoleNotFound
from beergame.models.player import PlayerRole
from beergame.models.supply_chain import EntryKind, PipelineEntry
from beergame.services.order_intake import OrderIntake, coerce_quantity, update_order_statistics
from beergame.models.player import Player


def order_entries(db, game_id, role):
    return db.execute(
        select(func.count(PipelineEntry.id)).where(
            PipelineEntry.game_id == game_id,
            PipelineEntry.kind == EntryKind.ORDER,
            PipelineEntry.from_role == role.value,
        )
    ).scalar_one()


@pytest.mark.parametrize("value, expected", [(0, 0), (4, 4), (7.0, 7), ("12", 12), (Decimal("3"), 3), (" 5 ", 5)])
def test_coerce_quantity_accepts_whole_numbers(value, expected):
    assert coerce_quantity(value) == expected


@pytest.mark.parametrize("value", [-1, 2.5, float("nan"), float("inf"), "abc", None, True, False, "", [4]])
def test_coerce_quantity_rejects_invalid(value):
    with pytest.raises(InvalidQuantity):
        coerce_quantity(value)


def test_order_statistics_use_sample_standard_deviation():
    player = Player(role=PlayerRole.RETAILER, name="r")
    for quantity in (2, 4, 4, 4, 5, 5, 7, 9):
        update_order_statistics(player, quantity)

    assert player.order_count == 8
    assert player.order_mean == pytest.approx(5.0)
    assert player.order_variability == pytest.approx(2.13809, rel=1e-4)
    assert player.min_order == 2
    assert player.max_order == 9
    assert player.total_outgoing_orders == 40


def test_first_order_is_recorded_and_sent_upstream(make_game, service, db_session):
    game = make_game()

    receipt = service.submit_order(game.id, "retailer", 6)

    assert receipt.accepted is True
    assert receipt.week == 1
    retailer = service.get_role_state(game.id, PlayerRole.RETAILER)
    wholesaler = service.get_role_state(game.id, PlayerRole.WHOLESALER)
    assert retailer.outgoing_order == 6
    assert retailer.order_count == 1
    assert retailer.min_order == retailer.max_order == 6
    assert wholesaler.incoming_order == 6
    assert wholesaler.total_orders == 6
    assert order_entries(db_session, game.id, PlayerRole.RETAILER) == 1


def test_manufacturer_order_goes_to_factory(make_game, service, db_session):
    game = make_game()
    service.submit_order(game.id, PlayerRole.MANUFACTURER, 5)

    entry = db_session.execute(
        select(PipelineEntry).where(
            PipelineEntry.game_id == game.id,
            PipelineEntry.kind == EntryKind.ORDER,
        )
    ).scalar_one()
    assert entry.to_role == "factory"
    assert entry.is_delivered is True
    assert entry.week_placed == entry.week_delivered == 1


def test_duplicate_submission_is_a_no_op(make_game, service, db_session, events):
    game = make_game()

    first = service.submit_order(game.id, PlayerRole.RETAILER, 4)
    second = service.submit_order(game.id, PlayerRole.RETAILER, 99)

    assert first.accepted is True
    assert second.accepted is False
    assert second.outgoing_order == 4
    retailer = service.get_role_state(game.id, PlayerRole.RETAILER)
    assert retailer.outgoing_order == 4
    assert retailer.max_order == 4
    assert retailer.order_count == 1
    assert retailer.total_outgoing_orders == 4
    assert service.get_role_state(game.id, PlayerRole.WHOLESALER).incoming_order == 4
    assert order_entries(db_session, game.id, PlayerRole.RETAILER) == 1
    assert [e.type.value for e in events.received].count("order_submitted") == 1


def test_unknown_game_is_reported_before_quantity(db_session):
    with pytest.raises(GameNotFound):
        OrderIntake(db_session).submit(12345, "retailer", -3)


def test_invalid_quantity_is_rejected(make_game, service):
    game = make_game()
    with pytest.raises(InvalidQuantity):
        service.submit_order(game.id, "retailer", -1)
    assert service.get_role_state(game.id, "retailer").outgoing_order is None


def test_orders_rejected_before_start(make_game, service):
    game = make_game(start=False)
    with pytest.raises(GameNotActive):
        service.submit_order(game.id, "retailer", 4)


def test_unknown_role_is_rejected(make_game, service):
    game = make_game()
    with pytest.raises(RoleNotFound):
        service.submit_order(game.id, "brewer", 4)
