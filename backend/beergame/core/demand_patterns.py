from typing import Dict, Optional, Any
import math
import random
from enum import Enum


class DemandPatternType(str, Enum):
    FIXED = "fixed"
    RANDOM = "random"
    STEP = "step"


DEFAULT_FIXED_DEMAND = 4

DEFAULT_STEP_PARAMS = {
    "base_demand": DEFAULT_FIXED_DEMAND,
    "step_week": 5,
    "step_amount": 4,
}

DEFAULT_RANDOM_PARAMS = {
    "mean": 8.0,
    "variance": 4.0,
}


def _safe_int(value: Any, default: int) -> int:
    """Convert a value to an integer, falling back to the provided default."""
    try:
        if value is None:
            raise ValueError("None")
        return int(value)
    except (TypeError, ValueError):
        return default


def _safe_float(value: Any, default: float) -> float:
    try:
        if value is None:
            raise ValueError("None")
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def normalize_fixed_params(params: Optional[Dict[str, Any]], fixed_demand: int) -> Dict[str, int]:
    params = params or {}
    demand = _safe_int(params.get("demand", params.get("fixed_demand")), fixed_demand)
    return {"demand": max(0, demand)}


def normalize_random_params(params: Optional[Dict[str, Any]]) -> Dict[str, float]:
    params = params or {}
    mean = _safe_float(params.get("mean"), DEFAULT_RANDOM_PARAMS["mean"])
    variance = _safe_float(params.get("variance"), DEFAULT_RANDOM_PARAMS["variance"])
    return {"mean": max(0.0, mean), "variance": max(0.0, variance)}


def normalize_step_params(params: Optional[Dict[str, Any]], fixed_demand: int) -> Dict[str, int]:
    """Normalize step demand parameters to the {base_demand, step_week, step_amount} schema."""
    params = params or {}

    base = _safe_int(params.get("base_demand", params.get("initial_demand")), fixed_demand)
    step_week = _safe_int(
        params.get("step_week", params.get("change_week")), DEFAULT_STEP_PARAMS["step_week"]
    )
    if "step_amount" in params:
        amount = _safe_int(params.get("step_amount"), DEFAULT_STEP_PARAMS["step_amount"])
    elif "final_demand" in params:
        amount = _safe_int(params.get("final_demand"), base + DEFAULT_STEP_PARAMS["step_amount"]) - base
    else:
        amount = DEFAULT_STEP_PARAMS["step_amount"]

    base = max(0, base)
    return {
        "base_demand": base,
        "step_week": max(1, step_week),
        # the stepped level itself may not go below zero
        "step_amount": max(-base, amount),
    }


def normalize_demand_pattern(
    pattern_config: Optional[Dict[str, Any]],
    fixed_demand: int = DEFAULT_FIXED_DEMAND,
) -> Dict[str, Any]:
    """Return a normalized demand pattern dictionary with sanitized parameters."""
    pattern = dict(pattern_config or {})
    raw_type = pattern.get("type", DemandPatternType.FIXED)
    try:
        pattern_type = DemandPatternType(raw_type)
    except ValueError:
        pattern_type = DemandPatternType.FIXED

    params = pattern.get("params", {}) if isinstance(pattern.get("params", {}), dict) else {}

    if pattern_type == DemandPatternType.FIXED:
        params = normalize_fixed_params(params, fixed_demand)
    elif pattern_type == DemandPatternType.RANDOM:
        params = normalize_random_params(params)
    else:
        params = normalize_step_params(params, fixed_demand)

    return {
        "type": pattern_type.value,
        "params": params,
    }


class DemandGenerator:
    """Produces the external customer demand seen by the retailer each week."""

    @staticmethod
    def fixed(week: int, demand: int = DEFAULT_FIXED_DEMAND, **_: Any) -> int:
        return max(0, int(demand))

    @staticmethod
    def normal(
        week: int,
        mean: float = DEFAULT_RANDOM_PARAMS["mean"],
        variance: float = DEFAULT_RANDOM_PARAMS["variance"],
        rng: Optional[random.Random] = None,
        **_: Any,
    ) -> int:
        """Normally distributed demand, rounded and clamped at zero."""
        rng = rng or random
        std_dev = math.sqrt(max(0.0, variance))
        return max(0, int(round(rng.gauss(mean, std_dev))))

    @staticmethod
    def step(
        week: int,
        base_demand: int = DEFAULT_STEP_PARAMS["base_demand"],
        step_week: int = DEFAULT_STEP_PARAMS["step_week"],
        step_amount: int = DEFAULT_STEP_PARAMS["step_amount"],
        **_: Any,
    ) -> int:
        if week >= step_week:
            return max(0, base_demand + step_amount)
        return max(0, base_demand)

    @classmethod
    def generate(
        cls,
        pattern_type: DemandPatternType,
        week: int,
        rng: Optional[random.Random] = None,
        **params: Any,
    ) -> int:
        if pattern_type == DemandPatternType.FIXED:
            return cls.fixed(week, **params)
        if pattern_type == DemandPatternType.RANDOM:
            return cls.normal(week, rng=rng, **params)
        if pattern_type == DemandPatternType.STEP:
            return cls.step(week, **params)
        raise ValueError(f"Unknown demand pattern type: {pattern_type}")


DEFAULT_DEMAND_PATTERN = {
    "type": DemandPatternType.FIXED.value,
    "params": {"demand": DEFAULT_FIXED_DEMAND},
}


def generate_demand(
    pattern_config: Optional[Dict[str, Any]],
    week: int,
    rng: Optional[random.Random] = None,
    fixed_demand: int = DEFAULT_FIXED_DEMAND,
) -> int:
    """Demand for ``week`` under ``pattern_config``; always a non-negative integer."""
    normalized = normalize_demand_pattern(pattern_config or DEFAULT_DEMAND_PATTERN, fixed_demand)
    pattern_type = DemandPatternType(normalized["type"])
    return DemandGenerator.generate(pattern_type, week, rng=rng, **normalized["params"])
