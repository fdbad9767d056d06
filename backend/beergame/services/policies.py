"""Order policies for AI-controlled roles.

Policies consume a dictionary of observations built from a role's ledger
entry and return the order quantity to place upstream this week. The
settlement trigger calls a policy only for AI roles that have not ordered by
the time every human has.

Two policies are provided:

* :class:`MatchDemandPolicy` – orders exactly what was ordered from the role
  this week (its ``incoming_order``). This is the reference behaviour.
* :class:`BaseStockPolicy` – a lightweight proportional–integral controller
  that keeps the inventory position (on-hand + pipeline − backlog) close to a
  base-stock target, anchored on the incoming order.

Policies are stateless between weeks; the integral term is rebuilt from the
role's recorded histories so nothing extra has to be persisted.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from beergame.models.player import Player


def build_observation(player: Player) -> Dict[str, Any]:
    """Snapshot of the ledger fields a policy is allowed to look at."""
    return {
        "role": player.role.value,
        "inventory": int(player.inventory or 0),
        "backlog": int(player.backlog or 0),
        "pipeline_inventory": int(player.pipeline_inventory or 0),
        "incoming_order": int(player.incoming_order or 0),
        "incoming_shipment": int(player.incoming_shipment or 0),
        "next_week_incoming_shipment": int(player.next_week_incoming_shipment or 0),
        "inventory_history": list(player.inventory_history or []),
        "backlog_history": list(player.backlog_history or []),
        "order_history": list(player.order_history or []),
    }


class OrderPolicy:
    """Base interface for order policies."""

    def order(self, obs: Dict[str, Any]) -> int:
        """Return the order quantity for the current week."""
        raise NotImplementedError

    def __call__(self, obs: Dict[str, Any]) -> int:
        return max(0, int(round(self.order(obs))))


class MatchDemandPolicy(OrderPolicy):
    """Order exactly what the downstream partner ordered this week."""

    def order(self, obs: Dict[str, Any]) -> int:
        return max(0, int(obs.get("incoming_order", 0)))


class BaseStockPolicy(OrderPolicy):
    """Simple PI controller operating on inventory position."""

    def __init__(
        self,
        base_stock: int,
        kp: float = 0.6,
        ki: float = 0.1,
        clamp_min: int = 0,
        clamp_max: Optional[int] = None,
    ) -> None:
        self.base_stock = int(base_stock)
        self.kp = float(kp)
        self.ki = float(ki)
        self.clamp_min = int(clamp_min)
        self.clamp_max = None if clamp_max is None else int(clamp_max)

    def _integral_error(self, obs: Dict[str, Any]) -> float:
        inventories = obs.get("inventory_history") or []
        backlogs = obs.get("backlog_history") or []
        return float(
            sum(self.base_stock - (inv - back) for inv, back in zip(inventories, backlogs))
        )

    def order(self, obs: Dict[str, Any]) -> int:
        on_hand = int(obs.get("inventory", 0))
        backlog = int(obs.get("backlog", 0))
        pipeline = int(obs.get("pipeline_inventory", 0))
        demand_anchor = int(obs.get("incoming_order", 0))

        inv_position = on_hand + pipeline - backlog
        error = self.base_stock - inv_position
        integral = self._integral_error(obs) + error

        control = self.kp * error + self.ki * integral
        quantity = max(0, int(round(demand_anchor + control)))

        if self.clamp_max is not None:
            quantity = max(self.clamp_min, min(quantity, self.clamp_max))
        else:
            quantity = max(self.clamp_min, quantity)
        return quantity


DEFAULT_POLICY_KIND = "match_demand"


def make_policy(kind: Optional[str], params: Optional[Dict[str, Any]] = None) -> OrderPolicy:
    """Instantiate an :class:`OrderPolicy` from a configuration mapping."""

    params = params or {}
    key = (kind or DEFAULT_POLICY_KIND).strip().lower()

    if key in {"match_demand", "naive", "echo", "naive_echo"}:
        return MatchDemandPolicy()

    if key in {"base_stock", "pi", "pi_controller"}:
        return BaseStockPolicy(
            base_stock=int(params.get("base_stock", 20)),
            kp=float(params.get("kp", 0.6)),
            ki=float(params.get("ki", 0.1)),
            clamp_min=int(params.get("clamp_min", 0)),
            clamp_max=(
                None
                if params.get("clamp_max") is None
                else int(params.get("clamp_max"))
            ),
        )

    raise ValueError(f"Unknown policy kind: {kind}")


def policy_for(player: Player) -> OrderPolicy:
    """Policy configured on ``player`` (``ai_strategy``), defaulting to match-demand."""
    return make_policy(player.ai_strategy)
