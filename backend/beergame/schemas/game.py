from typing import Any, Dict, List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from beergame.core.config import settings
from beergame.core.demand_patterns import DemandPatternType
from beergame.models.game import GameStatus
from beergame.models.player import PlayerRole


class DemandPattern(BaseModel):
    type: DemandPatternType = Field(default=DemandPatternType.FIXED, description="Type of demand pattern")
    params: Dict[str, Any] = Field(
        default_factory=dict,
        description="Parameters for the demand pattern"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "type": "step",
                "params": {
                    "base_demand": 4,
                    "step_week": 5,
                    "step_amount": 4
                }
            }
        }
    )


class LeadTimes(BaseModel):
    retailer: int = Field(default=settings.DEFAULT_LEAD_TIME, ge=1, le=52)
    wholesaler: int = Field(default=settings.DEFAULT_LEAD_TIME, ge=1, le=52)
    distributor: int = Field(default=settings.DEFAULT_LEAD_TIME, ge=1, le=52)
    manufacturer: int = Field(default=settings.DEFAULT_LEAD_TIME, ge=1, le=52)


class AIRoleConfig(BaseModel):
    role: PlayerRole
    name: Optional[str] = Field(default=None, max_length=100)
    strategy: Optional[str] = Field(default=None, max_length=50)


class GameCreate(BaseModel):
    total_weeks: int = Field(default=settings.DEFAULT_TOTAL_WEEKS, ge=1, le=1000)
    initial_inventory: int = Field(default=settings.INITIAL_INVENTORY, ge=0)
    initial_backlog: int = Field(default=settings.INITIAL_BACKLOG, ge=0)
    fixed_demand: int = Field(default=settings.FIXED_DEMAND, ge=0)
    holding_cost: float = Field(default=settings.HOLDING_COST_PER_UNIT, ge=0)
    backorder_cost: float = Field(default=settings.BACKORDER_COST_PER_UNIT, ge=0)
    lead_times: LeadTimes = Field(default_factory=LeadTimes)
    demand_pattern: Optional[DemandPattern] = None
    ai_roles: List[AIRoleConfig] = Field(
        default_factory=list,
        description="Roles filled by AI players when the game is created"
    )

    @field_validator("ai_roles")
    @classmethod
    def unique_ai_roles(cls, value: List[AIRoleConfig]) -> List[AIRoleConfig]:
        roles = [item.role for item in value]
        if len(roles) != len(set(roles)):
            raise ValueError("Each role can only be assigned once")
        return value


class PlayerCreate(BaseModel):
    role: PlayerRole
    name: str = Field(..., min_length=1, max_length=100)
    is_ai: bool = False
    ai_strategy: Optional[str] = Field(default=None, max_length=50)


class OrderRequest(BaseModel):
    role: PlayerRole
    # Validated by the order intake so every caller gets the same rules
    quantity: Any = Field(..., description="Non-negative whole number of units")


class OrderResponse(BaseModel):
    game_id: int
    role: PlayerRole
    week: int
    accepted: bool
    outgoing_order: Optional[int] = None


class SettleResponse(BaseModel):
    game_id: int
    settled: bool
    current_week: int
    status: GameStatus


class ResetOrderResponse(BaseModel):
    game_id: int
    role: PlayerRole
    cleared: bool


class RoleAvailability(BaseModel):
    game_id: int
    role: PlayerRole
    available: bool


class RoleState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    game_id: int
    role: PlayerRole
    name: str
    is_ai: bool
    ai_strategy: Optional[str] = None
    inventory: int
    backlog: int
    pipeline_inventory: int
    incoming_order: int
    outgoing_order: Optional[int] = None
    incoming_shipment: int
    outgoing_shipment: int
    next_week_incoming_shipment: int
    weekly_holding_cost: float
    weekly_backorder_cost: float
    total_holding_cost: float
    total_backorder_cost: float
    total_cost: float
    total_orders: int
    total_backorders: int
    total_inventory: int
    total_outgoing_orders: int
    total_outgoing_shipments: int
    total_incoming_shipments: int
    order_count: int
    order_mean: float
    order_variability: float
    min_order: Optional[int] = None
    max_order: Optional[int] = None
    inventory_history: List[int] = Field(default_factory=list)
    backlog_history: List[int] = Field(default_factory=list)
    order_history: List[int] = Field(default_factory=list)
    incoming_shipment_history: List[int] = Field(default_factory=list)
    has_ordered: bool


class GameState(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    game_code: str
    status: GameStatus
    current_week: int
    total_weeks: int
    initial_inventory: int
    initial_backlog: int
    retailer_lead_time: int
    wholesaler_lead_time: int
    distributor_lead_time: int
    manufacturer_lead_time: int
    demand_pattern: Dict[str, Any]
    fixed_demand: int
    current_demand: int
    holding_cost: float
    backorder_cost: float
    total_team_cost: float
    is_advancing_week: bool
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    players: List[RoleState] = Field(default_factory=list)


class GameWeekSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    week_number: int
    customer_demand: int
    total_team_cost: float
    roles: Dict[str, Dict[str, Any]]
    created_at: Optional[datetime] = None


class GameDiagnosis(BaseModel):
    game_id: int
    status: GameStatus
    current_week: int
    is_advancing_week: bool
    flag_cleared: bool
    waiting_for: List[PlayerRole]
    orders: Dict[str, Optional[int]]
    pending_entries: List[Dict[str, Any]]
