from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from draymaster.models.settlement import SettlementLineType


class DemurrageTier(BaseModel):
    tier: int
    days: int
    rate: Decimal
    amount: Decimal
    description: str


class FreeTimeStatusResponse(BaseModel):
    container_id: str
    gate_out_at: Optional[datetime] = None
    free_time_expires_at: Optional[datetime] = None
    gate_in_at: Optional[datetime] = None
    hours_elapsed: float
    hours_remaining: float
    percent_used: float
    status: str
    days_used: int
    days_over: int
    charge: Decimal
    breakdown: List[DemurrageTier] = []

    model_config = {"from_attributes": True}


class ReevaluationResponse(BaseModel):
    evaluated: int
    updated: List[str]
    skipped: List[str]

    model_config = {"from_attributes": True}


class ShipmentResponse(BaseModel):
    id: str
    status: str
    total_containers: int
    completed_containers: int
    total_orders: int
    completed_orders: int
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    id: str
    settlement_number: str
    driver_id: str
    period_start: date
    period_end: date
    status: str
    total_trips: int
    total_miles: Decimal
    gross_earnings: Decimal
    waiting_pay: Decimal
    fuel_deductions: Decimal
    advance_deductions: Decimal
    other_deductions: Decimal
    net_pay: Decimal
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DeductionRequest(BaseModel):
    line_type: SettlementLineType
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1, max_length=255)
