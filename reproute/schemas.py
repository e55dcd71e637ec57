
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional, Dict, List
from datetime import datetime

from .enums import AllocationMethod, AllocationStatus, FailureReason, PartnerStatus

# ----------------------------
# Ledger views
# ----------------------------
class RecentOrder(BaseModel):
    order_id: str
    order_value: float
    status: str
    product_category: str
    destination: str
    created_at: datetime

class UserBehaviorStats(BaseModel):
    user_id: str
    total_orders: int = 0
    completed_orders: int = 0
    returned_orders: int = 0
    delivery_failures: int = 0
    total_value: float = 0.0
    avg_value: float = 0.0
    recent_orders: List[RecentOrder] = Field(default_factory=list)
    avg_days_between_orders: Optional[float] = None

    @property
    def success_rate(self) -> float:
        if self.total_orders == 0:
            return 0.0
        ok = self.total_orders - self.delivery_failures - self.returned_orders
        return max(ok, 0) / self.total_orders

    @property
    def return_rate(self) -> float:
        return self.returned_orders / self.total_orders if self.total_orders else 0.0

    @property
    def failure_rate(self) -> float:
        return self.delivery_failures / self.total_orders if self.total_orders else 0.0

class OrderRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    user_id: str
    order_value: float
    product_category: str
    destination: str
    status: str
    delivery_attempts: int
    failure_reason: str
    return_reason: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    returned_at: Optional[datetime] = None

class ReputationReceipt(BaseModel):
    receipt_id: str
    user_id: str
    requested_delta: int
    applied_delta: int
    new_reputation: int
    recorded_at: datetime

# ----------------------------
# Engine inputs
# ----------------------------
class OrderDetails(BaseModel):
    order_id: str
    user_id: str
    order_value: float
    product_category: str
    destination: str

class PartnerView(BaseModel):
    """Candidate partner as the allocation engine sees it."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    min_reputation: int = 0
    max_reputation: Optional[int] = None
    service_areas: List[str] = Field(default_factory=list)
    operational_status: str = PartnerStatus.ACTIVE.value
    daily_order_limit: int = 100
    max_order_value: float = 10000.0
    min_order_value: float = 0.0
    preferred_categories: List[str] = Field(default_factory=list)
    success_rate: float = 0.0
    avg_delivery_hours: float = 0.0
    customer_rating: float = 0.0
    current_orders: int = 0

    @property
    def available_capacity(self) -> int:
        return max(self.daily_order_limit - self.current_orders, 0)

    def band_contains(self, reputation: int) -> bool:
        upper = self.max_reputation if self.max_reputation is not None else float("inf")
        return (self.min_reputation or 0) <= reputation <= upper

    def serves(self, destination: str) -> bool:
        if not self.service_areas:
            return True
        dest = (destination or "").lower()
        return any(area and area.lower() in dest for area in self.service_areas)

# ----------------------------
# Engine outputs
# ----------------------------
class ScoreResult(BaseModel):
    user_id: str
    event_type: str
    reputation_change: int
    confidence: float
    tier: str                                  # new_customer|oracle|fallback
    oracle_used: bool
    new_customer: bool = False
    fallback_reason: Optional[str] = None
    analysis: Dict[str, Any] = Field(default_factory=dict)
    risk_prediction: Optional[Dict[str, Any]] = None
    user_summary: Optional[Dict[str, Any]] = None
    scored_at: datetime

class AllocationDecision(BaseModel):
    order_id: str
    user_id: str
    partner_id: str
    partner_name: str
    method: AllocationMethod
    confidence: float
    reasoning: List[str] = Field(default_factory=list)
    alternative_partners: List[str] = Field(default_factory=list)
    risk_mitigation: List[str] = Field(default_factory=list)
    delivery_success_probability: Optional[float] = None
    user_reputation: int
    qualified_partner_ids: List[str] = Field(default_factory=list)
    partner_metadata: Dict[str, Any] = Field(default_factory=dict)

class AllocationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    user_id: str
    partner_id: str
    partner_name: Optional[str] = None
    order_value: Optional[float] = None
    product_category: Optional[str] = None
    destination: Optional[str] = None
    method: str
    confidence: Optional[float] = None
    reasoning: List[str] = Field(default_factory=list)
    user_reputation: Optional[int] = None
    delivery_success_probability: Optional[float] = None
    status: str
    allocated_at: datetime
    updated_at: datetime
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    failure_reason: Optional[str] = None
    attempt_count: Optional[int] = None
    return_reason: Optional[str] = None
    customer_rating: Optional[float] = None
    partner_rating: Optional[float] = None
    comments: List[str] = Field(default_factory=list)

class CapacityStatus(BaseModel):
    partner_id: str
    current_orders: int
    daily_order_limit: int
    available: int
    utilization: float

class PartnerAnalytics(BaseModel):
    partner_id: str
    period_days: int
    total_allocations: int
    delivered: int
    success_rate: float
    avg_delivery_hours: Optional[float] = None
    avg_customer_rating: Optional[float] = None
    calculated_at: datetime

class SystemAnalytics(BaseModel):
    period_days: int
    total_allocations: int
    allocation_methods: Dict[str, int]
    status_distribution: Dict[str, int]
    average_confidence: Optional[float] = None
    average_delivery_success_probability: Optional[float] = None
    calculated_at: datetime

# ----------------------------
# HTTP request bodies
# ----------------------------
class OrderInput(BaseModel):
    user_id: str = Field(min_length=1)
    order_value: float = Field(gt=0)
    product_category: str = Field(min_length=1)
    destination: str = Field(min_length=1)
    order_id: Optional[str] = None

class FeedbackInput(BaseModel):
    customer_rating: Optional[float] = Field(None, ge=1, le=5)
    partner_rating: Optional[float] = Field(None, ge=1, le=5)
    comments: List[str] = Field(default_factory=list)

class DeliveryFailureInput(BaseModel):
    reason: FailureReason
    attempt_count: int = Field(1, ge=1)

    @field_validator("reason", mode="before")
    @classmethod
    def upper_reason(cls, v):
        return v.upper() if isinstance(v, str) else v

class ReturnInput(BaseModel):
    reason: Optional[str] = None

class CompleteInput(BaseModel):
    feedback: Optional[FeedbackInput] = None

class PositiveBehaviorInput(BaseModel):
    user_id: str = Field(min_length=1)
    behavior_type: str
    details: Dict[str, Any] = Field(default_factory=dict)

class PartnerInput(BaseModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    min_reputation: int = Field(0, ge=0)
    max_reputation: Optional[int] = Field(None, ge=0)
    service_areas: List[str] = Field(default_factory=list)
    special_capabilities: List[str] = Field(default_factory=list)
    email: str = ""
    phone: str = ""
    address: str = ""
    operational_status: PartnerStatus = PartnerStatus.ACTIVE
    daily_order_limit: int = Field(100, ge=0)
    max_order_value: float = Field(10000.0, ge=0)
    min_order_value: float = Field(0.0, ge=0)
    preferred_categories: List[str] = Field(default_factory=list)

class PartnerStatusInput(BaseModel):
    operational_status: PartnerStatus

class AllocationStatusInput(BaseModel):
    status: AllocationStatus
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("status", mode="before")
    @classmethod
    def lower_status(cls, v):
        return v.lower() if isinstance(v, str) else v

class ScoreEventInput(BaseModel):
    event_type: str = Field(min_length=1)
    context: Dict[str, Any] = Field(default_factory=dict)
