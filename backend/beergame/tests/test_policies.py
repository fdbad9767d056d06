import pytest

from beergame.models.player import Player, PlayerRole
from beergame.services.policies import (
    BaseStockPolicy,
    MatchDemandPolicy,
    build_observation,
    make_policy,
    policy_for,
)


def make_player(**fields):
    defaults = dict(
        role=PlayerRole.WHOLESALER,
        name="AI",
        is_ai=True,
        inventory=12,
        backlog=0,
        pipeline_inventory=4,
        incoming_order=6,
        incoming_shipment=4,
        next_week_incoming_shipment=4,
        inventory_history=[],
        backlog_history=[],
        order_history=[],
    )
    defaults.update(fields)
    return Player(**defaults)


def test_match_demand_orders_incoming_order():
    player = make_player(incoming_order=9)
    assert MatchDemandPolicy()(build_observation(player)) == 9


def test_observation_contains_ledger_position():
    obs = build_observation(make_player(inventory=3, backlog=2, order_history=[4, 5]))
    assert obs["role"] == "wholesaler"
    assert obs["inventory"] == 3
    assert obs["backlog"] == 2
    assert obs["order_history"] == [4, 5]


def test_base_stock_orders_more_when_position_is_below_target():
    policy = BaseStockPolicy(base_stock=20, kp=0.5, ki=0.0)
    low = build_observation(make_player(inventory=0, backlog=6, pipeline_inventory=0, incoming_order=4))
    high = build_observation(make_player(inventory=30, backlog=0, pipeline_inventory=0, incoming_order=4))

    assert policy(low) > 4
    assert policy(high) == 0


def test_base_stock_respects_clamps():
    policy = BaseStockPolicy(base_stock=100, kp=1.0, ki=0.0, clamp_min=2, clamp_max=10)
    obs = build_observation(make_player(inventory=0, pipeline_inventory=0))
    assert policy(obs) == 10


@pytest.mark.parametrize("kind", [None, "match_demand", "naive", " Echo "])
def test_make_policy_match_demand_aliases(kind):
    assert isinstance(make_policy(kind), MatchDemandPolicy)


def test_make_policy_builds_base_stock_with_params():
    policy = make_policy("pi", {"base_stock": 16, "kp": 0.3})
    assert isinstance(policy, BaseStockPolicy)
    assert policy.base_stock == 16
    assert policy.kp == 0.3


def test_make_policy_rejects_unknown_kind():
    with pytest.raises(ValueError):
        make_policy("oracle")


def test_policy_for_uses_player_strategy():
    assert isinstance(policy_for(make_player(ai_strategy="base_stock")), BaseStockPolicy)
    assert isinstance(policy_for(make_player(ai_strategy=None)), MatchDemandPolicy)
