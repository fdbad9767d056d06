import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from beergame.core.exceptions import GameNotActive, GameNotFound, SettlementFailed
from beergame.models.game import Game, GameStatus
from beergame.models.player import PlayerRole
from beergame.services import settlement as settlement_module
from beergame.services.order_intake import OrderIntake
from beergame.services.policies import OrderPolicy
from beergame.services.settlement import SettlementTrigger
from beergame.services.topology import ROLE_SEQUENCE
from beergame.tests.helpers import UPSTREAM_ROLES, order_all


class ExplodingPolicy(OrderPolicy):
    def order(self, obs):
        raise RuntimeError("policy crashed")


def role_states(service, game_id):
    return {role: service.get_role_state(game_id, role) for role in ROLE_SEQUENCE}


def test_single_week_game_settles_and_completes(make_game, service):
    game = make_game(
        total_weeks=1,
        holding_cost=0.5,
        backorder_cost=1.0,
        fixed_demand=4,
        initial_inventory=12,
        initial_backlog=0,
    )

    order_all(service, game.id, 4)

    game = service.get_game_state(game.id)
    assert game.status == GameStatus.COMPLETED
    assert game.completed_at is not None
    assert game.current_week == 1
    assert game.total_team_cost == pytest.approx(16.0)
    assert game.is_advancing_week is False
    for player in role_states(service, game.id).values():
        assert player.outgoing_shipment == 4
        assert player.inventory == 8
        assert player.backlog == 0
        assert player.weekly_holding_cost == pytest.approx(4.0)
        assert player.total_cost == pytest.approx(4.0)

    history = service.get_week_history(game.id)
    assert [week.week_number for week in history] == [1]
    assert history[0].roles["retailer"]["inventory"] == 8

    with pytest.raises(GameNotActive):
        service.submit_order(game.id, PlayerRole.RETAILER, 4)


def test_steady_state_over_several_weeks(make_game, service):
    game = make_game(total_weeks=3)

    order_all(service, game.id, 4)

    game = service.get_game_state(game.id)
    assert game.current_week == 2
    assert game.status == GameStatus.ACTIVE
    for role, player in role_states(service, game.id).items():
        # 8 left after shipping, plus the seeded shipment arriving in week 2
        assert player.inventory == 12, role
        assert player.incoming_shipment == 4
        assert player.incoming_order == 4
        assert player.outgoing_order is None
        assert player.next_week_incoming_shipment == 4
        # Charged on the 12 units held once the delivery landed
        assert player.weekly_holding_cost == pytest.approx(6.0)
        assert player.total_cost == pytest.approx(6.0)
    assert service.get_role_state(game.id, PlayerRole.RETAILER).total_orders == 8

    order_all(service, game.id, 4)
    order_all(service, game.id, 4)

    game = service.get_game_state(game.id)
    assert game.status == GameStatus.COMPLETED
    assert game.current_week == 3
    # 6.0 + 6.0 for the two weeks followed by a delivery, 4.0 for the last one
    assert game.total_team_cost == pytest.approx(64.0)
    for player in role_states(service, game.id).values():
        assert player.inventory_history == [8, 8, 8]
        assert player.order_history == [4, 4, 4]
        assert player.weekly_holding_cost == pytest.approx(4.0)
        assert player.total_cost == pytest.approx(16.0)

    history = service.get_week_history(game.id)
    assert [week.week_number for week in history] == [1, 2, 3]
    assert [week.total_team_cost for week in history] == pytest.approx([24.0, 48.0, 64.0])
    assert [week.roles["retailer"]["total_cost"] for week in history] == pytest.approx([6.0, 12.0, 16.0])
    assert [week.roles["retailer"]["weekly_cost"] for week in history] == pytest.approx([6.0, 6.0, 4.0])


def test_costs_follow_the_delivered_position(make_game, service):
    game = make_game(total_weeks=4, initial_inventory=2, holding_cost=0.5, backorder_cost=1.0)

    order_all(service, game.id, 4)

    # Shipped 2 of 4 and owes 2; the seeded delivery of 4 then lands
    retailer = service.get_role_state(game.id, PlayerRole.RETAILER)
    assert retailer.inventory == 4
    assert retailer.backlog == 2
    assert retailer.weekly_holding_cost == pytest.approx(2.0)
    assert retailer.weekly_backorder_cost == pytest.approx(2.0)
    assert retailer.total_cost == pytest.approx(4.0)


def test_waits_for_every_human(make_game, service):
    game = make_game()

    order_all(service, game.id, 4, roles=ROLE_SEQUENCE[:3])

    assert service.check_and_settle(game.id) is False
    game = service.get_game_state(game.id)
    assert game.current_week == 1
    assert game.is_advancing_week is False


def test_ai_roles_are_filled_in_order_when_humans_are_done(make_game, service, events):
    game = make_game(ai_roles=UPSTREAM_ROLES)

    service.submit_order(game.id, PlayerRole.RETAILER, 7)

    game = service.get_game_state(game.id)
    assert game.current_week == 2
    week_one = service.get_week_history(game.id)[0]
    assert {role: state["order"] for role, state in week_one.roles.items()} == {
        "retailer": 7,
        "wholesaler": 7,
        "distributor": 7,
        "manufacturer": 7,
    }
    settled = [e for e in events.received if e.type.value == "week_settled"]
    assert len(settled) == 1
    assert settled[0].payload["auto_filled"] == ["wholesaler", "distributor", "manufacturer"]


def test_all_ai_game_settles_one_week_per_check(make_game, service):
    game = make_game(ai_roles=ROLE_SEQUENCE)

    assert service.check_and_settle(game.id) is True
    assert service.get_game_state(game.id).current_week == 2
    assert service.check_and_settle(game.id) is True
    assert service.get_game_state(game.id).current_week == 3


def test_order_placed_during_settlement_is_not_stranded(make_game, service, db_session, events):
    game = make_game(ai_roles=UPSTREAM_ROLES)
    submitted = []

    def order_next_week(event):
        if event.type.value == "week_settled" and not submitted:
            submitted.append(OrderIntake(db_session).submit(game.id, PlayerRole.RETAILER, 5))

    events.subscribe(order_next_week)
    service.submit_order(game.id, PlayerRole.RETAILER, 4)

    assert submitted[0].accepted is True
    assert submitted[0].week == 2
    assert service.get_game_state(game.id).current_week == 3


def test_failed_settlement_applies_nothing_and_releases_flag(make_game, service, db_session, events):
    game = make_game(ai_roles=UPSTREAM_ROLES)
    service.submit_order(game.id, PlayerRole.RETAILER, 4)  # settles week 1 normally
    service.submit_order(game.id, PlayerRole.RETAILER, 4)  # and week 2
    assert service.get_game_state(game.id).current_week == 3
    before = service.get_role_state(game.id, PlayerRole.WHOLESALER).order_count

    # Week 3: the retailer has ordered, but the AI policy blows up
    OrderIntake(db_session).submit(game.id, PlayerRole.RETAILER, 4)
    trigger = SettlementTrigger(db_session, policy_resolver=lambda p: ExplodingPolicy(), notifier=events)

    with pytest.raises(SettlementFailed) as info:
        trigger.check_and_settle(game.id)

    assert isinstance(info.value.cause, RuntimeError)
    game = service.get_game_state(game.id)
    assert game.current_week == 3
    assert game.is_advancing_week is False
    wholesaler = service.get_role_state(game.id, PlayerRole.WHOLESALER)
    assert wholesaler.outgoing_order is None
    assert wholesaler.order_count == before
    assert service.get_role_state(game.id, PlayerRole.RETAILER).outgoing_order == 4

    # Once the cause is gone the same week settles
    assert service.check_and_settle(game.id) is True
    assert service.get_game_state(game.id).status == GameStatus.COMPLETED


def test_transient_storage_errors_are_retried(make_game, service, db_session, events, monkeypatch):
    game = make_game()
    order_all(service, game.id, 4, roles=ROLE_SEQUENCE[:3])
    OrderIntake(db_session).submit(game.id, PlayerRole.MANUFACTURER, 4)

    real_resolve = settlement_module.resolve_shipments
    calls = []

    def flaky_resolve(db, game, players):
        calls.append(game.current_week)
        if len(calls) == 1:
            raise OperationalError("UPDATE players", {}, Exception("database is locked"))
        return real_resolve(db, game, players)

    monkeypatch.setattr(settlement_module, "resolve_shipments", flaky_resolve)
    trigger = SettlementTrigger(db_session, notifier=events, max_attempts=3, retry_delay=0)

    assert trigger.check_and_settle(game.id) is True
    assert calls == [1, 1]
    assert service.get_game_state(game.id).current_week == 2


def test_exhausted_retries_surface_settlement_failed(make_game, service, db_session, events, monkeypatch):
    game = make_game()
    order_all(service, game.id, 4, roles=ROLE_SEQUENCE[:3])
    OrderIntake(db_session).submit(game.id, PlayerRole.MANUFACTURER, 4)

    def locked(db, game, players):
        raise OperationalError("UPDATE players", {}, Exception("database is locked"))

    monkeypatch.setattr(settlement_module, "resolve_shipments", locked)
    trigger = SettlementTrigger(db_session, notifier=events, max_attempts=2, retry_delay=0)

    with pytest.raises(SettlementFailed) as info:
        trigger.check_and_settle(game.id)

    assert isinstance(info.value.cause, OperationalError)
    game = service.get_game_state(game.id)
    assert game.current_week == 1
    assert game.is_advancing_week is False


def test_held_flag_turns_checks_into_no_ops(make_game, service, db_session):
    game = make_game()
    db_session.execute(update(Game).where(Game.id == game.id).values(is_advancing_week=True))
    db_session.commit()

    order_all(service, game.id, 4)

    assert service.check_and_settle(game.id) is False
    assert service.get_game_state(game.id).current_week == 1


def test_unknown_game_raises(service):
    with pytest.raises(GameNotFound):
        service.check_and_settle(999)


def test_checks_on_waiting_or_completed_games_do_nothing(make_game, service):
    waiting = make_game(start=False)
    assert service.check_and_settle(waiting.id) is False

    done = make_game(total_weeks=1)
    order_all(service, done.id, 4)
    assert service.check_and_settle(done.id) is False
    assert service.get_game_state(done.id).current_week == 1
